from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable
from zoneinfo import ZoneInfo

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler

from approval_center.core.store.jsonl import default_state_dir

from .schemas import JobInfo


def is_test_mode() -> bool:
    return os.getenv("APPROVAL_CENTER_TEST_MODE", "").casefold() in {"1", "true", "yes", "on"}


class SchedulerService:
    """Thin wrapper over APScheduler's background scheduler.

    Jobs carry live service objects in their kwargs, so they live in memory
    and are re-registered by the worker on every start.
    """

    def __init__(self, state_dir: Path | None = None) -> None:
        self.state_dir = state_dir or default_state_dir()
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.test_mode = is_test_mode()
        self.timezone = ZoneInfo(os.getenv("APPROVAL_CENTER_TIMEZONE", "UTC"))
        self.scheduler = BackgroundScheduler(
            jobstores={"default": MemoryJobStore()},
            timezone=self.timezone,
        )
        self.logger = logging.getLogger("approval_center.scheduler")
        self._started = False

    def start(self) -> None:
        if self.test_mode or self._started:
            return
        self.scheduler.start()
        self._started = True
        self.logger.info("scheduler_started", extra={"extra_fields": {"jobs": len(self.scheduler.get_jobs())}})

    def shutdown(self) -> None:
        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False
            self.logger.info("scheduler_stopped")

    def list_jobs(self) -> list[JobInfo]:
        jobs: list[JobInfo] = []
        for job in self.scheduler.get_jobs():
            # Pending jobs on a stopped scheduler have no next_run_time yet.
            next_run_time = getattr(job, "next_run_time", None)
            jobs.append(
                JobInfo(
                    id=job.id,
                    next_run_time_iso=next_run_time.isoformat() if next_run_time else None,
                    trigger=str(job.trigger),
                    kwargs={key: repr(value) for key, value in job.kwargs.items()},
                )
            )
        return jobs

    def add_interval(
        self,
        job_id: str,
        minutes: int,
        func: Callable[..., Any],
        kwargs: dict[str, Any] | None = None,
    ) -> None:
        self.scheduler.add_job(
            func,
            trigger="interval",
            id=job_id,
            minutes=minutes,
            kwargs=kwargs or {},
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def remove_job(self, job_id: str) -> None:
        self.scheduler.remove_job(job_id)
