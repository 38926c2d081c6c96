"""Account-related DTOs shared across storefront services."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, EmailStr


class AccountRole(str, Enum):
    customer = "customer"
    agent = "agent"
    admin = "admin"
    chief_admin = "chief_admin"


class Account(BaseModel):
    account_id: str
    email: EmailStr
    role: AccountRole = AccountRole.customer
    is_active: bool = True
    full_name: str | None = None
    phone: str | None = None
    created_at: datetime | None = None


class AdminPermissions(BaseModel):
    role: AccountRole
    can_manage_users: bool
    can_manage_products: bool
    can_manage_orders: bool
    can_view_audit_logs: bool
    can_view_sales_logs: bool
    can_manage_agents: bool
