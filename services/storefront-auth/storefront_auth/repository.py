"""Database repository for storefront accounts, staff records and the audit log."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from psycopg import sql
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .domain.account import Account, StaffExtension
from .domain.roles import Role, parse_role

_ACCOUNT_COLUMNS = "id, email, role, is_active, full_name, phone, created_at, updated_at"
_PROFILE_FIELDS = ("full_name", "phone", "avatar_url", "date_of_birth", "gender")


@dataclass(slots=True)
class AuditLogRecord:
    """Row projection for items in admin_activity_logs."""

    audit_id: str
    actor_id: str
    action: str
    resource_type: str | None
    resource_id: str | None
    changes: dict[str, Any]
    created_at: datetime


class AccountRepository:
    """Postgres-backed persistence for the ``profiles``, ``admin_staff`` and
    ``admin_activity_logs`` relations."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def get_account(self, account_id: str) -> Account | None:
        """Fetch a profile by identity id or return ``None``."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM profiles WHERE id = %s",
                    (account_id,),
                )
                row = cur.fetchone()
        return self._map_account(row) if row else None

    def upsert_customer(
        self,
        *,
        account_id: str,
        email: str,
        full_name: str,
        phone: str,
        is_active: bool,
    ) -> Account:
        """Create the profile of a freshly signed-up identity.

        The provider's signup trigger may already have inserted the row; the
        conflict branch pins the role to ``customer`` and applies the
        activation state chosen by the caller.
        """
        now = datetime.now(timezone.utc)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO profiles (id, email, full_name, phone, role, is_active, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, 'customer', %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE
                    SET role = 'customer',
                        is_active = EXCLUDED.is_active,
                        full_name = EXCLUDED.full_name,
                        phone = EXCLUDED.phone,
                        updated_at = EXCLUDED.updated_at
                    RETURNING {_ACCOUNT_COLUMNS}
                    """,
                    (account_id, email, full_name, phone, is_active, now, now),
                )
                row = cur.fetchone()
                conn.commit()
        return self._map_account(row)

    def set_active(self, account_id: str, is_active: bool) -> bool:
        """Set the activation flag; returns ``False`` when no profile matched."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE profiles SET is_active = %s, updated_at = NOW() WHERE id = %s",
                    (is_active, account_id),
                )
                updated = cur.rowcount > 0
                conn.commit()
        return updated

    def update_role(self, account_id: str, role: Role) -> bool:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE profiles SET role = %s, updated_at = NOW() WHERE id = %s",
                    (role.value, account_id),
                )
                updated = cur.rowcount > 0
                conn.commit()
        return updated

    def update_profile(self, account_id: str, changes: dict[str, Any]) -> Account | None:
        """Apply owner-editable profile changes and return the refreshed account."""
        unknown = set(changes) - set(_PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"non-editable profile fields: {sorted(unknown)}")
        if not changes:
            return self.get_account(account_id)

        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(name)) for name in changes
        )
        query = sql.SQL(
            "UPDATE profiles SET {assignments}, updated_at = NOW() WHERE id = %s RETURNING "
            + _ACCOUNT_COLUMNS
        ).format(assignments=assignments)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, (*changes.values(), account_id))
                row = cur.fetchone()
                conn.commit()
        return self._map_account(row) if row else None

    def delete_account(self, account_id: str) -> bool:
        """Remove the staff record and the profile together; ``False`` when no profile matched."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM admin_staff WHERE id = %s", (account_id,))
                cur.execute("DELETE FROM profiles WHERE id = %s", (account_id,))
                deleted = cur.rowcount > 0
                conn.commit()
        return deleted

    def list_accounts(self, role: Role | None = None) -> list[Account]:
        """Return profiles newest first, optionally restricted to one role."""
        query = f"SELECT {_ACCOUNT_COLUMNS} FROM profiles"
        params: list[Any] = []
        if role is not None:
            query += " WHERE role = %s"
            params.append(role.value)
        query += " ORDER BY created_at DESC"
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                rows = cur.fetchall()
        return [self._map_account(row) for row in rows]

    def create_staff_extension(self, staff: StaffExtension) -> bool:
        """Insert a staff record; returns ``False`` when one already existed."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO admin_staff (id, profile_id, staff_id, department, position, is_active)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT DO NOTHING
                    """,
                    (
                        staff.account_id,
                        staff.account_id,
                        staff.staff_id,
                        staff.department,
                        staff.position,
                        staff.is_active,
                    ),
                )
                created = cur.rowcount > 0
                conn.commit()
        return created

    def demote_to_customer(self, account_id: str) -> bool:
        """Set the role to ``customer`` and drop the staff record in one transaction.

        Returns ``False`` when no profile matched. A staff record still referenced
        by the activity log makes the delete fail, and the role update is rolled
        back with it.
        """
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE profiles SET role = %s, updated_at = NOW() WHERE id = %s",
                    (Role.customer.value, account_id),
                )
                updated = cur.rowcount > 0
                if updated:
                    cur.execute("DELETE FROM admin_staff WHERE id = %s", (account_id,))
                conn.commit()
        return updated

    def touch_last_login(self, account_id: str, at: datetime) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE admin_staff SET last_login_at = %s, updated_at = %s WHERE id = %s",
                    (at, at, account_id),
                )
                conn.commit()

    def write_audit_entry(
        self,
        *,
        actor_id: str,
        action: str,
        resource_type: str | None,
        resource_id: str | None,
        changes: dict[str, Any] | None = None,
    ) -> None:
        """Append one row to the admin activity log."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO admin_activity_logs (admin_id, action, resource_type, resource_id, changes)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (actor_id, action, resource_type, resource_id, Json(changes or {})),
                )
                conn.commit()

    def list_audit_entries(
        self,
        *,
        actor_id: str | None = None,
        action: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: Tuple[datetime, str] | None = None,
    ) -> tuple[list[AuditLogRecord], Optional[Tuple[datetime, str]]]:
        """Return activity log entries newest first with optional filters and cursor pagination."""
        limit = max(1, min(limit, 100))
        clauses: list[str] = []
        params: list[Any] = []

        if actor_id:
            clauses.append("admin_id = %s")
            params.append(actor_id)
        if action:
            clauses.append("action = %s")
            params.append(action)
        if created_after:
            clauses.append("created_at >= %s")
            params.append(created_after)
        if created_before:
            clauses.append("created_at <= %s")
            params.append(created_before)
        if cursor:
            clauses.append("(created_at, id) < (%s, %s::uuid)")
            params.extend(cursor)

        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"""
            SELECT id::text, admin_id::text, action, resource_type, resource_id::text, changes, created_at
            FROM admin_activity_logs
            {where_sql}
            ORDER BY created_at DESC, id DESC
            LIMIT %s
        """
        params.append(limit)

        records: list[AuditLogRecord] = []
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                for row in cur.fetchall():
                    records.append(
                        AuditLogRecord(
                            audit_id=row[0],
                            actor_id=row[1],
                            action=row[2],
                            resource_type=row[3],
                            resource_id=row[4],
                            changes=row[5] or {},
                            created_at=row[6],
                        )
                    )

        next_cursor: Tuple[datetime, str] | None = None
        if len(records) == limit:
            last = records[-1]
            next_cursor = (last.created_at, last.audit_id)
        return records, next_cursor

    def _map_account(self, row: tuple) -> Account:
        """Convert a raw profiles tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=str(row[0]),
            email=row[1],
            role=parse_role(row[2] or Role.customer.value),
            is_active=bool(row[3]),
            full_name=row[4],
            phone=row[5],
            created_at=row[6],
            updated_at=row[7],
        )
