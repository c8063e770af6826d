from __future__ import annotations

import asyncio
import json
import os
import threading
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel

from approval_center.core.approvals.schemas import ApprovalRequestRow, utc_now
from approval_center.core.audit.schemas import ApprovalAuditEntry
from approval_center.core.store.base import RequestFilter

ModelT = TypeVar("ModelT", bound=BaseModel)


def default_state_dir() -> Path:
    configured = os.getenv("APPROVAL_CENTER_STATE_DIR")
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".approval_center"


class JsonlModelFile(Generic[ModelT]):
    """Line-per-record file of pydantic models; unreadable lines are skipped."""

    def __init__(self, file_path: Path, model: type[ModelT]) -> None:
        self.file_path = file_path
        self.model = model
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def load_all(self) -> list[ModelT]:
        if not self.file_path.exists() or self.file_path.stat().st_size == 0:
            return []
        records: list[ModelT] = []
        with self.file_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(self.model.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValueError):
                    continue
        return records

    def rewrite(self, records: list[ModelT]) -> None:
        tmp_path = self.file_path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            handle.write("".join(record.model_dump_json() + "\n" for record in records))
        tmp_path.replace(self.file_path)

    def append_many(self, records: list[ModelT]) -> None:
        with self._lock:
            with self.file_path.open("a", encoding="utf-8") as handle:
                handle.write("".join(record.model_dump_json() + "\n" for record in records))

    def upsert(self, record: ModelT, key: str = "id") -> None:
        with self._lock:
            records = self.load_all()
            record_key = getattr(record, key)
            for idx, current in enumerate(records):
                if getattr(current, key) == record_key:
                    records[idx] = record
                    break
            else:
                records.append(record)
            self.rewrite(records)


class JsonlApprovalRequestStore:
    def __init__(self, state_dir: Path | None = None) -> None:
        self.state_dir = state_dir or default_state_dir()
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._file = JsonlModelFile(self.state_dir / "approval_requests.jsonl", ApprovalRequestRow)

    @property
    def file_path(self) -> Path:
        return self._file.file_path

    def _find(self, request_filter: RequestFilter, limit: int, oldest_first: bool) -> list[ApprovalRequestRow]:
        if limit <= 0:
            return []
        rows = [row for row in self._file.load_all() if request_filter.matches(row)]
        rows.sort(key=lambda row: row.created_at, reverse=not oldest_first)
        return rows[:limit]

    async def find_requests(
        self,
        request_filter: RequestFilter,
        limit: int,
        oldest_first: bool = False,
    ) -> list[ApprovalRequestRow]:
        return await asyncio.to_thread(self._find, request_filter, limit, oldest_first)

    async def count_requests(self, request_filter: RequestFilter) -> int:
        rows = await asyncio.to_thread(self._file.load_all)
        return sum(1 for row in rows if request_filter.matches(row))

    async def get_requests_by_ids(self, ids: list[str]) -> list[ApprovalRequestRow]:
        wanted = set(ids)
        rows = await asyncio.to_thread(self._file.load_all)
        return [row for row in rows if row.id in wanted]

    async def get_request_for_entity(self, entity_type: str, entity_id: str) -> ApprovalRequestRow | None:
        rows = await asyncio.to_thread(self._file.load_all)
        for row in rows:
            if row.entity_type == entity_type and row.entity_id == entity_id:
                return row
        return None

    async def save_request(self, row: ApprovalRequestRow) -> None:
        updated = row.model_copy(update={"updated_at": utc_now()})
        await asyncio.to_thread(self._file.upsert, updated)


class JsonlAuditStore:
    def __init__(self, state_dir: Path | None = None) -> None:
        self.state_dir = state_dir or default_state_dir()
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._file = JsonlModelFile(self.state_dir / "audit_log.jsonl", ApprovalAuditEntry)

    async def insert_audit_entries(self, entries: list[ApprovalAuditEntry]) -> None:
        await asyncio.to_thread(self._file.append_many, entries)

    def list_recent(self, limit: int = 50) -> list[ApprovalAuditEntry]:
        if limit <= 0:
            return []
        return list(reversed(self._file.load_all()[-limit:]))


class JsonlEntityStore(Generic[ModelT]):
    """Entity persistence for the built-in handlers, keyed by ``id``."""

    def __init__(self, file_path: Path, model: type[ModelT]) -> None:
        self._file = JsonlModelFile(file_path, model)

    async def load_many(self, ids: list[str]) -> dict[str, ModelT]:
        wanted = set(ids)
        records = await asyncio.to_thread(self._file.load_all)
        return {record.id: record for record in records if record.id in wanted}  # type: ignore[attr-defined]

    async def save(self, entity: ModelT) -> None:
        await asyncio.to_thread(self._file.upsert, entity)
