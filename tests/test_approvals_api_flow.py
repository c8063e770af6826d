from __future__ import annotations

from datetime import date, timedelta
from pathlib import Path

from fastapi.testclient import TestClient

from approval_center.apps.api import deps
from approval_center.apps.api.main import app
from approval_center.core.approvals.schemas import ApprovalRequestRow, utc_now
from approval_center.core.store.jsonl import JsonlModelFile, default_state_dir
from approval_center.handlers.absence import AbsenceCategory, AbsenceEntry
from approval_center.handlers.common import EmployeeRef, EmployeeUser

HEADERS = {"X-Employee-ID": "mgr-1", "X-Organization-ID": "org-1"}


def _reset_deps() -> None:
    deps.get_state_dir.cache_clear()
    deps.get_request_store.cache_clear()
    deps.get_audit_store.cache_clear()
    deps.get_sla_rule_book.cache_clear()
    deps.get_registry.cache_clear()
    deps.get_ledger.cache_clear()
    deps.get_inbox_service.cache_clear()


def _seed_absences(state_dir: Path, *entry_ids: str, approver_id: str = "mgr-1") -> None:
    now = utc_now()
    entries: list[AbsenceEntry] = []
    rows: list[ApprovalRequestRow] = []
    for offset, entry_id in enumerate(entry_ids):
        created_at = now - timedelta(hours=offset + 1)
        entries.append(
            AbsenceEntry(
                id=entry_id,
                start_date=date.today() + timedelta(days=30),
                end_date=date.today() + timedelta(days=31),
                created_at=created_at,
                employee=EmployeeRef(
                    id="emp-1",
                    user_id="user-1",
                    organization_id="org-1",
                    team_id="team-a",
                    user=EmployeeUser(id="user-1", name="Grace Hopper", email="grace@example.com"),
                ),
                category=AbsenceCategory(id="cat-1", name="Vacation", type="vacation"),
            )
        )
        rows.append(
            ApprovalRequestRow(
                id=f"req-{entry_id}",
                organization_id="org-1",
                entity_type="absence_entry",
                entity_id=entry_id,
                requested_by="emp-1",
                approver_id=approver_id,
                created_at=created_at,
                updated_at=created_at,
            )
        )
    JsonlModelFile(state_dir / "absence_entries.jsonl", AbsenceEntry).append_many(entries)
    JsonlModelFile(state_dir / "approval_requests.jsonl", ApprovalRequestRow).append_many(rows)


def test_requests_without_identity_headers_are_unauthorized() -> None:
    _reset_deps()
    with TestClient(app) as client:
        assert client.get("/approvals").status_code == 401
        assert client.get("/approvals", headers={"X-Employee-ID": "mgr-1"}).status_code == 401


def test_list_counts_and_detail() -> None:
    _reset_deps()
    _seed_absences(default_state_dir(), "abs-1", "abs-2")

    with TestClient(app) as client:
        response = client.get("/approvals", params={"limit": 1}, headers={**HEADERS, "X-Correlation-ID": "corr-42"})
        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "corr-42"
        page = response.json()
        assert [item["entity_id"] for item in page["items"]] == ["abs-1"]
        assert page["has_more"] is True
        assert page["total"] == 2
        assert page["next_cursor"]

        counts = client.get("/approvals/counts", headers=HEADERS).json()
        assert counts == {"absence_entry": 2, "time_entry": 0}

        detail = client.get("/approvals/absence_entry/abs-2", headers=HEADERS)
        assert detail.status_code == 200
        body = detail.json()
        assert body["approval"]["id"] == "req-abs-2"
        assert body["entity"]["category"]["name"] == "Vacation"
        assert body["timeline"][0]["type"] == "created"


def test_invalid_query_parameters_are_bad_requests() -> None:
    _reset_deps()
    with TestClient(app) as client:
        assert client.get("/approvals", params={"limit": 0}, headers=HEADERS).status_code == 400
        assert client.get("/approvals", params={"limit": 101}, headers=HEADERS).status_code == 400
        assert client.get("/approvals", params={"cursor": "yesterday"}, headers=HEADERS).status_code == 400
        assert client.get("/approvals", params={"types": "expense_claim"}, headers=HEADERS).status_code == 404


def test_approve_and_reject_flow() -> None:
    _reset_deps()
    state_dir = default_state_dir()
    _seed_absences(state_dir, "abs-1", "abs-2")

    with TestClient(app) as client:
        approved = client.post("/approvals/absence_entry/abs-1/approve", headers=HEADERS)
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"

        again = client.post("/approvals/absence_entry/abs-1/approve", headers=HEADERS)
        assert again.status_code == 400
        assert again.json()["detail"] == "Approval is already approved"

        assert client.post("/approvals/absence_entry/abs-2/reject", json={"reason": ""}, headers=HEADERS).status_code == 422
        rejected = client.post("/approvals/absence_entry/abs-2/reject", json={"reason": "Coverage"}, headers=HEADERS)
        assert rejected.status_code == 200
        assert rejected.json()["rejection_reason"] == "Coverage"

        remaining = client.get("/approvals", headers=HEADERS).json()
        assert remaining["items"] == []

    audit_lines = (state_dir / "audit_log.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(audit_lines) == 2


def test_approval_errors_map_to_status_codes() -> None:
    _reset_deps()
    _seed_absences(default_state_dir(), "abs-1", approver_id="mgr-2")

    with TestClient(app) as client:
        forbidden = client.post("/approvals/absence_entry/abs-1/approve", headers=HEADERS)
        assert forbidden.status_code == 403

        other_org = client.post(
            "/approvals/absence_entry/abs-1/approve",
            headers={"X-Employee-ID": "mgr-2", "X-Organization-ID": "org-9"},
        )
        assert other_org.status_code == 404

        unknown_type = client.post("/approvals/expense_claim/abs-1/approve", headers=HEADERS)
        assert unknown_type.status_code == 404


def test_bulk_approve_endpoint() -> None:
    _reset_deps()
    _seed_absences(default_state_dir(), "abs-1", "abs-2")

    with TestClient(app) as client:
        response = client.post(
            "/approvals/bulk-approve",
            json={"approval_ids": ["req-abs-1", "req-abs-2", "req-missing"]},
            headers=HEADERS,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["succeeded"] == ["req-abs-1", "req-abs-2"]
        assert body["failed"] == [{"id": "req-missing", "error": "Approval request not found"}]

        empty = client.post("/approvals/bulk-approve", json={"approval_ids": []}, headers=HEADERS)
        assert empty.status_code == 400
