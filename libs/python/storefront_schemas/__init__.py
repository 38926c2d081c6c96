"""Shared schema exports."""

from .account import Account, AccountRole, AdminPermissions
from .audit import AuditEntry, AuditPage

__all__ = [
    "Account",
    "AccountRole",
    "AdminPermissions",
    "AuditEntry",
    "AuditPage",
]
