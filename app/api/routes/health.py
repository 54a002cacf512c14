"""
Health Endpoints

Probes for the process, the booking store and the optional Redis claim
registry. Only the booking store gates readiness: without Redis the
reminder pass still runs, just at-least-once.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.infra.notifications import SmtpNotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"

_started_at: Optional[datetime] = None


def set_start_time() -> None:
    """Record process start. Called from the lifespan."""
    global _started_at
    _started_at = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    if _started_at is None:
        return None
    return (datetime.now(timezone.utc) - _started_at).total_seconds()


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    environment: str
    authority_timezone: str


class ReadyResponse(BaseModel):
    """Readiness with one entry per dependency."""
    status: str
    timestamp: datetime
    checks: dict[str, str]


class LiveResponse(BaseModel):
    status: str
    timestamp: datetime
    uptime_seconds: Optional[float] = None


async def _booking_store_check(request: Request) -> str:
    database = getattr(request.app.state, "database", None)
    if database is None:
        return "memory"
    if await database.check_health():
        return "ok"
    logger.warning("Readiness: booking store unreachable")
    return "failed"


async def _reminder_claims_check(request: Request) -> str:
    redis_client = getattr(request.app.state, "redis", None)
    if redis_client is None or not redis_client.url:
        return "not_configured"
    if await redis_client.check_health():
        return "ok"
    logger.warning("Readiness: Redis unreachable, reminder claims disabled")
    return "degraded"


def _notifications_check(request: Request) -> str:
    notifier = getattr(request.app.state, "notifier", None)
    return "smtp" if isinstance(notifier, SmtpNotificationService) else "log_only"


@router.get(
    "",
    response_model=HealthResponse,
    summary="Process health",
    description="200 while the process serves requests. Dependencies are not checked.",
)
async def health() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
        environment=settings.app_env,
        authority_timezone=settings.authority_timezone,
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness probe",
    description="503 when the booking store is unreachable. Redis only degrades reminders.",
    responses={
        200: {"description": "Accepting bookings"},
        503: {"description": "Booking store unavailable"},
    },
)
async def ready(request: Request) -> ReadyResponse | JSONResponse:
    """
    Readiness probe.

    Checks:
    - booking_store: "ok", "failed", or "memory" for the in-process store
    - reminder_claims: "ok", "degraded" or "not_configured"
    - notifications: "smtp" or "log_only"
    """
    checks = {
        "booking_store": await _booking_store_check(request),
        "reminder_claims": await _reminder_claims_check(request),
        "notifications": _notifications_check(request),
    }
    accepting = checks["booking_store"] != "failed"

    response = ReadyResponse(
        status="ready" if accepting else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )
    if not accepting:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response


@router.get(
    "/live",
    response_model=LiveResponse,
    summary="Liveness probe",
    description="200 while the event loop is responsive.",
)
async def live() -> LiveResponse:
    return LiveResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=get_uptime_seconds(),
    )
