"""Refresh schedule: fixed local wall-clock hours, no catch-up.

Each run is a one-shot APScheduler ``date`` job aimed at the next configured
hour; the job re-arms itself after firing. A fire that was missed (machine
asleep, process stopped) is dropped and the next future hour is armed instead.
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from apscheduler.events import EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler

logger = logging.getLogger(__name__)

REFRESH_HOURS = (8, 12, 16, 20)
JOB_ID = "fare-refresh"


def next_fire_time(now: datetime, hours: Sequence[int] = REFRESH_HOURS) -> datetime:
    """Earliest configured hour strictly after *now*, rolling over to tomorrow."""
    for hour in sorted(hours):
        candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
        if candidate > now:
            return candidate
    tomorrow = now + timedelta(days=1)
    return tomorrow.replace(hour=min(hours), minute=0, second=0, microsecond=0)


class SchedulerState(enum.Enum):
    IDLE = "idle"
    ARMED = "armed"


class RefreshScheduler:
    def __init__(
        self,
        job: Callable[[], object],
        hours: Sequence[int] = REFRESH_HOURS,
        *,
        scheduler: Optional[BaseScheduler] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if not hours:
            raise ValueError("at least one refresh hour is required")
        self.job = job
        self.hours = tuple(sorted(set(hours)))
        self._scheduler = scheduler or BackgroundScheduler()
        self._clock = clock
        self.state = SchedulerState.IDLE
        self.next_fire_at: Optional[datetime] = None
        self._scheduler.add_listener(self._on_missed, EVENT_JOB_MISSED)

    def start(self) -> None:
        """Arm the next run and start the underlying scheduler.

        With a ``BlockingScheduler`` this call only returns after
        :meth:`stop`.
        """
        self._arm()
        logger.info("Scheduler started, refresh hours %s", self.hours)
        if not self._scheduler.running:
            self._scheduler.start()

    def stop(self) -> None:
        if self.state is SchedulerState.IDLE:
            return
        self.state = SchedulerState.IDLE
        self.next_fire_at = None
        for job in self._scheduler.get_jobs():
            if job.id.startswith(JOB_ID):
                job.remove()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    def _arm(self) -> None:
        self.next_fire_at = next_fire_time(self._clock(), self.hours)
        self._scheduler.add_job(
            self._fire,
            trigger="date",
            run_date=self.next_fire_at,
            id=f"{JOB_ID}@{self.next_fire_at.isoformat()}",
            replace_existing=True,
        )
        self.state = SchedulerState.ARMED
        logger.info("Next refresh scheduled for %s", self.next_fire_at.strftime("%Y-%m-%d %H:%M:%S"))

    def _fire(self) -> None:
        logger.info("Scheduled refresh time reached: %s", self.next_fire_at)
        try:
            self.job()
        except Exception:
            logger.exception("Scheduled refresh failed")
        finally:
            if self.state is SchedulerState.ARMED:
                self._arm()

    def _on_missed(self, event: JobExecutionEvent) -> None:
        if not event.job_id.startswith(JOB_ID) or self.state is not SchedulerState.ARMED:
            return
        logger.info("Missed refresh at %s, skipping to the next slot", event.scheduled_run_time)
        self._arm()


__all__ = [
    "REFRESH_HOURS",
    "RefreshScheduler",
    "SchedulerState",
    "next_fire_time",
]
