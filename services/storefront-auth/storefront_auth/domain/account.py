from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .roles import Role, is_admin_tier


@dataclass(slots=True)
class Account:
    """Persisted storefront identity keyed by the identity provider's user id."""

    account_id: str
    email: str
    role: Role = Role.customer
    is_active: bool = True
    full_name: str | None = None
    phone: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return is_admin_tier(self.role)

    @property
    def is_chief_admin(self) -> bool:
        return self.role is Role.chief_admin


@dataclass(slots=True)
class StaffExtension:
    """Staff-only details kept alongside accounts that hold an admin-tier role."""

    account_id: str
    staff_id: str
    department: str | None = None
    position: str | None = None
    is_active: bool = True
    last_login_at: datetime | None = None
