from __future__ import annotations

import asyncio
import os
import signal
import time
from pathlib import Path

from approval_center.core.approvals.escalation import EscalationSweep
from approval_center.core.approvals.sla_config import load_org_sla_rules
from approval_center.core.audit.logger import AuditLogger
from approval_center.core.ledger import ExecutionLedger
from approval_center.core.logging import configure_logging
from approval_center.core.scheduler.scheduler import SchedulerService
from approval_center.core.store.jsonl import JsonlApprovalRequestStore, JsonlAuditStore, default_state_dir
from approval_center.handlers import build_registry

ESCALATION_JOB_ID = "approvals:escalation_sweep"


def escalation_interval_minutes() -> int:
    try:
        return max(1, int(os.getenv("APPROVAL_CENTER_ESCALATION_INTERVAL_MIN", "15")))
    except ValueError:
        return 15


def run_escalation_sweep(sweep: EscalationSweep) -> int:
    """Scheduler entry point; APScheduler runs jobs on worker threads without a loop."""
    return len(asyncio.run(sweep.run()))


class Worker:
    def __init__(self, state_dir: Path | None = None) -> None:
        self.state_dir = state_dir or default_state_dir()
        self.logger = configure_logging(self.state_dir).getChild("worker")
        request_store = JsonlApprovalRequestStore(self.state_dir)
        self.sweep = EscalationSweep(
            registry=build_registry(request_store, self.state_dir, sla_rules=load_org_sla_rules()),
            request_store=request_store,
            audit_logger=AuditLogger(JsonlAuditStore(self.state_dir)),
            ledger=ExecutionLedger(self.state_dir),
        )
        self.scheduler = SchedulerService(state_dir=self.state_dir)
        self._running = True

    def schedule_jobs(self) -> None:
        minutes = escalation_interval_minutes()
        self.scheduler.add_interval(
            ESCALATION_JOB_ID,
            minutes=minutes,
            func=run_escalation_sweep,
            kwargs={"sweep": self.sweep},
        )
        self.logger.info("escalation_job_scheduled", extra={"extra_fields": {"every_minutes": minutes}})

    def _handle_signal(self, signum, frame) -> None:  # type: ignore[no-untyped-def]
        _ = frame
        self.logger.info("worker_signal_received", extra={"extra_fields": {"signal": signum}})
        self._running = False

    def run_forever(self) -> None:
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)
        self.schedule_jobs()
        self.scheduler.start()
        try:
            while self._running:
                time.sleep(0.5)
        finally:
            self.scheduler.shutdown()


def run() -> None:
    Worker().run_forever()


if __name__ == "__main__":
    run()
