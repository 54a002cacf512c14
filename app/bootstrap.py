"""
Service wiring.

Builds the booking store, notification sender and scheduling services
from Settings. Shared by the FastAPI lifespan and the reminder cron
script so both run against the same configuration.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.config import Settings
from app.core.scheduling.clock import AuthorityClock
from app.core.scheduling.lifecycle import BookingStateMachine
from app.core.scheduling.messages import MessageComposer
from app.core.scheduling.policy import AvailabilityPolicy
from app.core.scheduling.reminders import ReminderScheduler, ReminderWindow
from app.core.scheduling.service import AppointmentService
from app.core.scheduling.store import BookingStore
from app.infra.booking_store import InMemoryBookingStore, SqlAlchemyBookingStore
from app.infra.database import Database
from app.infra.notifications import (
    LoggingNotificationService,
    NotificationService,
    SmtpNotificationService,
)
from app.infra.redis import RedisClient, RedisReminderClaims

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Application-scoped handles. Closed explicitly on shutdown."""

    store: BookingStore
    notifier: NotificationService
    appointment_service: AppointmentService
    reminder_scheduler: ReminderScheduler
    redis: RedisClient
    database: Optional[Database] = None

    async def close(self) -> None:
        await self.notifier.close()
        await self.store.close()
        await self.redis.close()
        if self.database is not None:
            await self.database.close()


def build_notifier(cfg: Settings) -> NotificationService:
    """SMTP sender when configured, otherwise a logging-only sender."""
    if not cfg.smtp_configured:
        logger.warning("SMTP not configured - notifications will only be logged")
        return LoggingNotificationService()
    return SmtpNotificationService(
        host=cfg.smtp_host,
        port=cfg.smtp_port,
        username=cfg.smtp_user,
        password=cfg.smtp_password,
        from_email=cfg.from_email,
        use_tls=cfg.smtp_use_tls,
        timeout_seconds=cfg.notification_timeout_seconds,
        max_attempts=cfg.notification_max_attempts,
    )


def build_services(
    cfg: Settings,
    store: BookingStore,
    notifier: NotificationService,
    redis_client: Optional[RedisClient] = None,
    database: Optional[Database] = None,
) -> Services:
    """Wire the scheduling core around an already-open store."""
    clock = AuthorityClock(cfg.authority_timezone)
    policy = AvailabilityPolicy.from_config(cfg.availability_windows, cfg.slot_step_minutes)
    composer = MessageComposer(clock, cfg.public_base_url)
    redis_client = redis_client or RedisClient(cfg.redis_url)

    state_machine = BookingStateMachine(
        store=store,
        notifier=notifier,
        composer=composer,
        clock=clock,
        buffer_minutes=cfg.booking_buffer_minutes,
        notification_timeout_seconds=cfg.notification_timeout_seconds,
        duration_minutes=cfg.default_duration_minutes,
        organizer_email=cfg.organizer_email,
    )
    appointment_service = AppointmentService(
        store=store,
        clock=clock,
        policy=policy,
        state_machine=state_machine,
        buffer_minutes=cfg.booking_buffer_minutes,
        duration_minutes=cfg.default_duration_minutes,
        organizer_email=cfg.organizer_email,
    )
    reminder_scheduler = ReminderScheduler(
        store=store,
        state_machine=state_machine,
        notifier=notifier,
        composer=composer,
        window=ReminderWindow.from_config(cfg.reminder_lookahead_hours, cfg.reminder_status_list),
        claims=RedisReminderClaims(redis_client, cfg.reminder_claim_ttl_seconds),
        batch_size=cfg.reminder_batch_size,
        notification_timeout_seconds=cfg.notification_timeout_seconds,
    )

    return Services(
        store=store,
        notifier=notifier,
        appointment_service=appointment_service,
        reminder_scheduler=reminder_scheduler,
        redis=redis_client,
        database=database,
    )


async def open_services(cfg: Settings) -> Services:
    """Open the configured store and build every service."""
    database: Optional[Database] = None

    if cfg.store_backend == "memory":
        logger.warning("Using in-memory booking store - bookings are lost on restart")
        store: BookingStore = InMemoryBookingStore()
    else:
        database = Database(cfg.database_url, echo=cfg.debug)
        # Tables are created directly only in development; use migrations elsewhere
        await database.connect(create_schema=cfg.is_development)
        store = SqlAlchemyBookingStore(database, timeout_seconds=cfg.store_timeout_seconds)
        logger.info(f"Booking store connected ({database.dialect})")

    return build_services(
        cfg,
        store=store,
        notifier=build_notifier(cfg),
        redis_client=RedisClient(cfg.redis_url or None),
        database=database,
    )
