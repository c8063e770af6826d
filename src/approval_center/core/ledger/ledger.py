from __future__ import annotations

import asyncio
import os
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from approval_center.core.ledger.schemas import LedgerRecord, LedgerStatus
from approval_center.core.store.jsonl import JsonlModelFile

# A key that is in flight or already done cannot be claimed again; a failed one can.
_BLOCKING_STATUSES = {"started", "succeeded"}


class ExecutionLedger:
    """Idempotency ledger for approval side effects.

    Every claim and outcome is appended as a ``LedgerRecord``; the newest
    record for a key is its state. The async methods run the file work on a
    thread. Claims are serialized by a process-local lock plus a lock file
    shared with other processes on the same state dir.
    """

    def __init__(self, state_dir: str | Path) -> None:
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.records = JsonlModelFile(self.state_dir / "executions.jsonl", LedgerRecord)
        self.lock_path = self.state_dir / "executions.lock"
        self.max_records = int(os.getenv("APPROVAL_CENTER_LEDGER_MAX", "5000"))
        self.lock_mode = os.getenv("APPROVAL_CENTER_LEDGER_LOCK_MODE", "file").casefold()
        self._thread_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self.records.file_path

    async def try_start(
        self,
        key: str,
        kind: str,
        correlation_id: str | None = None,
        meta: dict | None = None,
    ) -> bool:
        return await asyncio.to_thread(self.try_start_sync, key, kind, correlation_id, meta)

    async def mark(self, key: str, status: LedgerStatus, meta_update: dict | None = None) -> None:
        await asyncio.to_thread(self.mark_sync, key, status, meta_update)

    async def status_of(self, key: str) -> str | None:
        latest = await self.latest(key)
        return latest.status if latest is not None else None

    async def latest(self, key: str) -> LedgerRecord | None:
        return await asyncio.to_thread(self._latest_for, key)

    def has_succeeded(self, key: str) -> bool:
        latest = self._latest_for(key)
        return latest is not None and latest.status == "succeeded"

    def try_start_sync(
        self,
        key: str,
        kind: str,
        correlation_id: str | None = None,
        meta: dict | None = None,
    ) -> bool:
        with self._exclusive():
            latest = self._latest_for(key)
            if latest is not None and latest.status in _BLOCKING_STATUSES:
                return False
            self._record(
                LedgerRecord(
                    key=key,
                    kind=kind,
                    status="started",
                    ts_iso=_utc_iso(),
                    correlation_id=correlation_id,
                    meta=meta or {},
                )
            )
            return True

    def mark_sync(self, key: str, status: LedgerStatus, meta_update: dict | None = None) -> None:
        with self._exclusive():
            latest = self._latest_for(key)
            if latest is None:
                raise KeyError(f"ledger key was never started: {key}")
            self._record(
                latest.model_copy(
                    update={
                        "status": status,
                        "ts_iso": _utc_iso(),
                        "meta": {**latest.meta, **(meta_update or {})},
                    }
                )
            )

    def list_recent(self, limit: int) -> list[LedgerRecord]:
        if limit <= 0:
            return []
        return self.records.load_all()[-limit:]

    def trim(self, max_records: int) -> None:
        if max_records <= 0:
            return
        current = self.records.load_all()
        if len(current) > max_records:
            self.records.rewrite(current[-max_records:])

    def _record(self, record: LedgerRecord) -> None:
        self.records.append_many([record])
        self.trim(self.max_records)

    def _latest_for(self, key: str) -> LedgerRecord | None:
        matches = [record for record in self.records.load_all() if record.key == key]
        return matches[-1] if matches else None

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        with self._thread_lock:
            if self.lock_mode != "file":
                yield
                return
            acquired = _acquire_lock_file(self.lock_path, timeout_s=2.0)
            try:
                yield
            finally:
                if acquired:
                    self.lock_path.unlink(missing_ok=True)


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _acquire_lock_file(lock_path: Path, timeout_s: float) -> bool:
    """Create ``lock_path`` exclusively; give up after ``timeout_s`` and proceed unlocked."""
    deadline = time.monotonic() + timeout_s
    while True:
        try:
            os.close(os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY))
            return True
        except FileExistsError:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
