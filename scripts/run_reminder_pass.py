#!/usr/bin/env python3
"""
Reminder Pass

Sends reminders for appointments starting within the lookahead window.
Meant to run periodically from cron or a systemd timer; overlapping runs
are safe.

Usage:
    python scripts/run_reminder_pass.py
    python scripts/run_reminder_pass.py --lookahead-hours 48

Crontab (every 15 minutes):
    */15 * * * * cd /srv/appointments && python scripts/run_reminder_pass.py
"""

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from app.bootstrap import open_services  # noqa: E402
from app.config import settings  # noqa: E402

logger = logging.getLogger("reminders")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send due appointment reminders.")
    parser.add_argument(
        "--lookahead-hours",
        type=float,
        default=None,
        help=f"Override REMINDER_LOOKAHEAD_HOURS (default {settings.reminder_lookahead_hours})",
    )
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """Run one pass. Exit code 1 when any reminder failed."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    services = await open_services(settings)
    try:
        lookahead = (
            timedelta(hours=args.lookahead_hours) if args.lookahead_hours else None
        )
        result = await services.reminder_scheduler.run_reminder_pass(lookahead=lookahead)
    finally:
        await services.close()

    logger.info(
        f"Sent: {len(result.sent)} | Failed: {len(result.failed)} | "
        f"Skipped: {len(result.skipped)}"
    )
    for booking_id, reason in result.failed:
        logger.warning(f"Reminder failed for {booking_id}: {reason}")

    return 1 if result.failed else 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
