"""Background deadline reminders driven by APScheduler."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from datetime import datetime
from typing import Callable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from .models import Order
from .services.lifecycle import OrderLifecycle
from .telemetry import TelemetryCollector, get_telemetry, track_duration

logger = logging.getLogger(__name__)

ReminderPublisher = Callable[[Order], Optional[Future]]

_PUBLISH_TIMEOUT_SECONDS = 30


class DeadlineScheduler:
    """Periodically reminds private channels about approaching deadlines.

    The publisher usually wraps ``asyncio.run_coroutine_threadsafe``; when it
    returns a future the scheduler waits for it so only delivered reminders
    are marked as sent.
    """

    JOB_ID = "deadline_reminders"
    CLEANUP_JOB_ID = "telemetry_cleanup"

    def __init__(
        self,
        lifecycle: OrderLifecycle,
        *,
        reminder_publisher: Optional[ReminderPublisher] = None,
        interval_minutes: float = 60,
        scheduler: Optional[BackgroundScheduler] = None,
        telemetry: Optional[TelemetryCollector] = None,
        telemetry_retention_days: int = 30,
    ) -> None:
        self.lifecycle = lifecycle
        self.telemetry = telemetry
        self.telemetry_retention_days = telemetry_retention_days
        self.reminder_publisher = reminder_publisher
        self.interval_minutes = interval_minutes
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")

    def start(self) -> None:
        self.scheduler.add_job(
            self.check_deadlines,
            "interval",
            minutes=self.interval_minutes,
            id=self.JOB_ID,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.cleanup_telemetry,
            "interval",
            hours=24,
            id=self.CLEANUP_JOB_ID,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("Deadline scheduler started (every %s minutes)", self.interval_minutes)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def cleanup_telemetry(self) -> int:
        """Drop metric events older than the retention window."""

        collector = self.telemetry or get_telemetry()
        return collector.cleanup_old_data(days_to_keep=self.telemetry_retention_days)

    def check_deadlines(self, now: Optional[datetime] = None) -> List[Order]:
        """Send reminders for due orders; returns the orders that were reminded."""

        reminded: List[Order] = []
        with track_duration("deadline_check"):
            due = self.lifecycle.due_deadline_reminders(now)
            if not due:
                return reminded
            if self.reminder_publisher is None:
                logger.info("%d deadline reminder(s) due but no publisher configured", len(due))
                return reminded
            for order in due:
                try:
                    outcome = self.reminder_publisher(order)
                    if outcome is not None:
                        outcome.result(timeout=_PUBLISH_TIMEOUT_SECONDS)
                except Exception:
                    logger.exception("Failed to send deadline reminder for order %s", order.order_id)
                    continue
                self.lifecycle.mark_reminded(order.order_id, now)
                reminded.append(order)
        logger.info("Sent %d deadline reminder(s)", len(reminded))
        return reminded


__all__ = ["DeadlineScheduler", "BackgroundScheduler"]
