"""Append-only audit trail of privileged storefront actions."""

from __future__ import annotations

from base64 import urlsafe_b64decode, urlsafe_b64encode
from datetime import datetime
from enum import Enum
import json
import logging
from typing import Any, Optional, Tuple

from ..metrics import AUDIT_WRITE_FAILURES
from ..repository import AccountRepository, AuditLogRecord

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    admin_login = "admin_login"
    page_access = "page_access"
    user_promoted = "user_promoted"
    user_demoted = "user_demoted"
    user_deleted = "user_deleted"
    user_activated = "user_activated"
    user_deactivated = "user_deactivated"
    product_created = "product_created"
    product_updated = "product_updated"
    product_deleted = "product_deleted"
    product_toggled = "product_toggled"
    order_status_changed = "order_status_changed"


class AuditTrail:
    """Writes and pages through the admin activity log.

    Writes are best-effort: callers record an entry after their mutation has
    succeeded, and a failed write is logged and counted but never raised.
    """

    def __init__(self, repository: AccountRepository) -> None:
        self._repository = repository

    def record(
        self,
        *,
        actor_id: str,
        action: AuditAction | str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        changes: dict[str, Any] | None = None,
    ) -> bool:
        """Append one entry; returns ``False`` when the write failed."""
        tag = action.value if isinstance(action, AuditAction) else action
        try:
            self._repository.write_audit_entry(
                actor_id=actor_id,
                action=tag,
                resource_type=resource_type,
                resource_id=resource_id,
                changes=changes,
            )
        except Exception:
            logger.exception("audit write failed for action %s by %s on %s/%s", tag, actor_id, resource_type, resource_id)
            AUDIT_WRITE_FAILURES.labels(action=tag).inc()
            return False
        return True

    def list_entries(
        self,
        *,
        actor_id: str | None = None,
        action: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> tuple[list[AuditLogRecord], str | None]:
        """Return one page of entries, newest first, plus the cursor of the next page."""
        decoded_cursor: Optional[Tuple[datetime, str]] = None
        if cursor:
            decoded_cursor = self._decode_cursor(cursor)
        records, next_cursor_tuple = self._repository.list_audit_entries(
            actor_id=actor_id,
            action=action,
            created_after=created_after,
            created_before=created_before,
            limit=limit,
            cursor=decoded_cursor,
        )
        next_cursor = self._encode_cursor(next_cursor_tuple) if next_cursor_tuple else None
        return records, next_cursor

    def _encode_cursor(self, cursor: Tuple[datetime, str]) -> str:
        created_at, audit_id = cursor
        payload = json.dumps({"created_at": created_at.isoformat(), "audit_id": audit_id})
        return urlsafe_b64encode(payload.encode("utf-8")).decode("utf-8")

    def _decode_cursor(self, cursor: str) -> Tuple[datetime, str]:
        try:
            data = json.loads(urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8"))
            return datetime.fromisoformat(data["created_at"]), str(data["audit_id"])
        except Exception as exc:
            raise ValueError("invalid cursor") from exc
