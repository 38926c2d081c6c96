"""Admin activity log contracts."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class AuditEntry(BaseModel):
    audit_id: str
    actor_id: str
    action: str
    resource_type: str | None = None
    resource_id: str | None = None
    changes: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class AuditPage(BaseModel):
    """Envelope for paginated audit log data."""

    items: list[AuditEntry]
    next_cursor: str | None = None
