"""Cron-driven trigger that invokes the backup pipeline per kind."""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Optional

from croniter import croniter

from services.pipeline import BackupPipeline, BackupResult
from surreal_backup.logging import log_event

logger = logging.getLogger(__name__)


class BackupScheduler:
    """Polls the clock and runs each kind when its cron expression comes due."""

    def __init__(
        self,
        pipeline: BackupPipeline,
        schedules: Dict[str, str],
        *,
        poll_seconds: float = 30.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        for kind, expr in schedules.items():
            if not croniter.is_valid(expr):
                raise ValueError(f"Invalid cron schedule for {kind}: '{expr}'")
        self.pipeline = pipeline
        self.schedules = dict(schedules)
        self.poll_seconds = poll_seconds
        self.clock = clock
        now = clock()
        self.next_run: Dict[str, datetime] = {
            kind: croniter(expr, now).get_next(datetime) for kind, expr in self.schedules.items()
        }

    def run_pending(self, now: Optional[datetime] = None) -> list[BackupResult]:
        """Run every kind whose next run time has passed, then reschedule it."""
        now = now or self.clock()
        results = []
        for kind in sorted(self.next_run, key=lambda k: self.next_run[k]):
            if now < self.next_run[kind]:
                continue
            log_event(logger, logging.INFO, f"Running scheduled {kind} backup", component="scheduler")
            try:
                results.append(self.pipeline.run(kind))
            except Exception as e:
                logger.exception(f"Scheduled {kind} backup raised: {e}")
            finally:
                self.next_run[kind] = croniter(self.schedules[kind], self.clock()).get_next(datetime)
            log_event(
                logger,
                logging.INFO,
                f"Next {kind} backup at {self.next_run[kind].isoformat()}",
                component="scheduler",
            )
        return results

    def run_forever(self, stop: threading.Event) -> None:
        for kind, when in self.next_run.items():
            log_event(logger, logging.INFO, f"Next {kind} backup at {when.isoformat()}", component="scheduler")
        while not stop.is_set():
            try:
                self.run_pending()
            except Exception as e:
                logger.error(f"Error in backup loop: {e}")
            stop.wait(self.poll_seconds)
