"""Fixed-cadence trigger for the backup run.

An APScheduler ``BlockingScheduler`` fires a cron trigger derived from the
configured interval. Each firing spawns ``stackops backup`` as a detached
process and returns without waiting for it. Overlapping runs are resolved by
the backup run's own guard, which records a skipped run instead of failing.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from collections.abc import Callable, Sequence
from datetime import datetime

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

JOB_ID = "stackops-backup"
SCHEDULER_TIMEZONE = "UTC"


def backup_command() -> list[str]:
    return [sys.executable, "-m", "stackops", "backup"]


def spawn_detached(command: Sequence[str]) -> int:
    """Start ``command`` in its own session and return its pid without waiting."""
    proc = subprocess.Popen(
        list(command),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        close_fds=True,
    )
    logger.info("Spawned %s (pid %d)", " ".join(command), proc.pid)
    return proc.pid


def cron_expression(interval_minutes: int) -> str:
    """Five-field cron expression that fires every ``interval_minutes``."""
    if interval_minutes <= 0:
        raise ValueError("interval_minutes must be positive")
    if interval_minutes % 1440 == 0:
        days = interval_minutes // 1440
        return "0 0 * * *" if days == 1 else f"0 0 */{days} * *"
    if interval_minutes % 60 == 0:
        hours = interval_minutes // 60
        if 24 % hours != 0:
            raise ValueError(f"cron cannot express an interval of {interval_minutes} minutes")
        return "0 * * * *" if hours == 1 else f"0 */{hours} * * *"
    if 60 % interval_minutes == 0:
        return f"*/{interval_minutes} * * * *"
    raise ValueError(f"cron cannot express an interval of {interval_minutes} minutes")


def build_trigger(interval_minutes: int) -> CronTrigger:
    return CronTrigger.from_crontab(cron_expression(interval_minutes), timezone=SCHEDULER_TIMEZONE)


def cron_entry(interval_minutes: int, command: Sequence[str]) -> str:
    """Render the crontab line matching the scheduler's own trigger."""
    return f"{cron_expression(interval_minutes)} {' '.join(command)}"


class Scheduler:
    def __init__(
        self,
        interval_minutes: int,
        launch: Callable[[], int],
        *,
        scheduler: BaseScheduler | None = None,
    ) -> None:
        self._trigger = build_trigger(interval_minutes)
        self._launch = launch
        self._scheduler = scheduler or BlockingScheduler(timezone=SCHEDULER_TIMEZONE)

    @property
    def trigger(self) -> CronTrigger:
        return self._trigger

    def next_fire_time(self, now: datetime) -> datetime | None:
        return self._trigger.get_next_fire_time(None, now)

    def tick(self) -> int:
        pid = self._launch()
        logger.info("Scheduled backup triggered (pid %d)", pid)
        return pid

    def add_job(self):
        # One launcher at a time; missed firings collapse into a single run.
        return self._scheduler.add_job(
            self.tick,
            trigger=self._trigger,
            id=JOB_ID,
            name="backup",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=60,
        )

    def start(self) -> None:
        """Block and fire the backup on every trigger until interrupted."""
        self.add_job()
        logger.info("Scheduler started with trigger %s", self._trigger)
        try:
            self._scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Scheduler stopping")
            self.shutdown()

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
