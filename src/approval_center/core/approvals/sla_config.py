"""Organization-level SLA rule overrides loaded from YAML."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from approval_center.core.approvals.sla import SLARule


class OrgSLARuleBook(BaseModel):
    organizations: dict[str, list[SLARule]] = Field(default_factory=dict)

    def rules_for(self, organization_id: str | None) -> list[SLARule]:
        if not organization_id:
            return []
        return list(self.organizations.get(organization_id, []))


def _default_path() -> Path | None:
    configured = os.getenv("APPROVAL_CENTER_SLA_RULES_PATH")
    if configured:
        return Path(configured).expanduser()
    return None


def load_org_sla_rules(path: Optional[str | Path] = None) -> OrgSLARuleBook:
    """Load per-organization SLA rules; a missing file yields an empty book."""
    cfg_path = Path(path) if path else _default_path()
    if cfg_path is None or not cfg_path.exists():
        return OrgSLARuleBook()
    with cfg_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return OrgSLARuleBook.model_validate(data)
