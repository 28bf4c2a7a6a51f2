"""APScheduler configuration for autosave timers and session housekeeping."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from results_engine.core.config import settings

if TYPE_CHECKING:
    from results_engine.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

TimerCallback = Callable[..., Awaitable[None]]

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


class DebounceTimers(Protocol):
    """Cancellable one-shot timers keyed by a string id.

    Scheduling a key that is already pending replaces it, which is what
    gives debounce semantics to repeated edits.
    """

    def schedule(self, key: str, delay: float, func: TimerCallback, *args: Any) -> None:
        ...

    def cancel(self, key: str) -> None:
        ...

    def is_pending(self, key: str) -> bool:
        ...


class SchedulerTimers:
    """Debounce timers backed by one-shot APScheduler date jobs."""

    def __init__(self, scheduler: AsyncIOScheduler):
        self.scheduler = scheduler

    def schedule(self, key: str, delay: float, func: TimerCallback, *args: Any) -> None:
        run_date = datetime.now(self.scheduler.timezone) + timedelta(seconds=delay)
        self.scheduler.add_job(
            func,
            trigger=DateTrigger(run_date=run_date),
            args=list(args),
            id=key,
            name=f"Autosave {key}",
            replace_existing=True,
            misfire_grace_time=None,
        )

    def cancel(self, key: str) -> None:
        if self.scheduler.get_job(key) is not None:
            self.scheduler.remove_job(key)

    def is_pending(self, key: str) -> bool:
        return self.scheduler.get_job(key) is not None


class ManualTimers:
    """Virtual-clock timers: nothing fires until advance() is awaited."""

    def __init__(self) -> None:
        self.now = 0.0
        self._pending: dict[str, tuple[float, TimerCallback, tuple]] = {}

    def schedule(self, key: str, delay: float, func: TimerCallback, *args: Any) -> None:
        self._pending[key] = (self.now + delay, func, args)

    def cancel(self, key: str) -> None:
        self._pending.pop(key, None)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    async def advance(self, seconds: float) -> int:
        """Move the clock forward, running due callbacks in due order.

        Returns the number of callbacks fired. Callbacks that schedule new
        timers inside the window fire too.
        """
        target = self.now + seconds
        fired = 0
        while True:
            due = [
                (when, key)
                for key, (when, _, _) in self._pending.items()
                if when <= target
            ]
            if not due:
                break
            when, key = min(due)
            _, func, args = self._pending.pop(key)
            self.now = when
            await func(*args)
            fired += 1
        self.now = target
        return fired


async def sweep_idle_sessions_job(registry: SessionRegistry) -> None:
    """
    Job to flush and close dashboard sessions nobody has touched recently.
    Runs every SESSION_SWEEP_INTERVAL_MINUTES.
    """
    idle_for = timedelta(minutes=settings.SESSION_IDLE_TIMEOUT_MINUTES)
    try:
        closed = await registry.close_idle(idle_for)
        if closed:
            logger.info(f"Closed {closed} idle dashboard sessions")
    except Exception as e:
        logger.exception(f"Error sweeping idle dashboard sessions: {e}")


def init_scheduler() -> AsyncIOScheduler:
    """Initialize and configure the scheduler."""
    global scheduler

    scheduler = AsyncIOScheduler(
        timezone=settings.SCHEDULER_TIMEZONE,
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
        },
    )

    logger.info(f"Scheduler initialized ({settings.SCHEDULER_TIMEZONE})")
    return scheduler


def start_scheduler(registry: SessionRegistry) -> AsyncIOScheduler:
    """Register the idle-session sweep and start the scheduler."""
    global scheduler
    if scheduler is None:
        scheduler = init_scheduler()

    scheduler.add_job(
        sweep_idle_sessions_job,
        trigger=IntervalTrigger(minutes=settings.SESSION_SWEEP_INTERVAL_MINUTES),
        args=[registry],
        id="sweep_idle_sessions",
        name="Close idle dashboard sessions",
        replace_existing=True,
    )

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")
    return scheduler


def stop_scheduler():
    """Stop the scheduler gracefully."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None
