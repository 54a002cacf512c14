"""
Reminder API Endpoints.

Manual trigger for a reminder pass. Production runs the same pass from
cron via scripts/run_reminder_pass.py.
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.api.dependencies import get_reminder_scheduler
from app.api.middleware.auth import require_staff
from app.core.scheduling.models import Principal
from app.core.scheduling.reminders import ReminderScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reminders", tags=["Reminders"])


class FailedReminder(BaseModel):
    id: str
    reason: str


class ReminderPassResponse(BaseModel):
    """Reminder pass result."""

    sent: list[str]
    failed: list[FailedReminder]
    skipped: list[str]


@router.post(
    "/run",
    response_model=ReminderPassResponse,
    summary="Run a reminder pass",
    description="Send reminders for appointments starting within the lookahead window.",
)
async def run_reminders(
    lookahead_hours: Optional[float] = Query(None, gt=0, le=24 * 14),
    principal: Principal = Depends(require_staff),
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
) -> ReminderPassResponse:
    """Run one reminder pass now."""
    lookahead = timedelta(hours=lookahead_hours) if lookahead_hours else None
    logger.info(f"Reminder pass triggered by {principal.id}")
    result = await scheduler.run_reminder_pass(lookahead=lookahead)
    return ReminderPassResponse(**result.to_dict())
