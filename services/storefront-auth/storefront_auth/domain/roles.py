"""Role hierarchy shared by every permission decision in the storefront."""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Account tiers ordered by privilege."""

    customer = "customer"
    agent = "agent"
    admin = "admin"
    chief_admin = "chief_admin"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS: dict[Role, int] = {
    Role.customer: 0,
    Role.agent: 1,
    Role.admin: 2,
    Role.chief_admin: 3,
}


def parse_role(value: str | Role) -> Role:
    """Return the ``Role`` for stored or requested role text.

    Raises
    ------
    ValueError
        When ``value`` does not name one of the four tiers.
    """
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError as exc:
        raise ValueError(f"unknown role: {value!r}") from exc


def at_least(actual: Role, required: Role) -> bool:
    """Return ``True`` when ``actual`` ranks at or above ``required``."""
    return actual.rank >= required.rank


def is_admin_tier(role: Role | None) -> bool:
    """Agents, admins and chief admins all belong to the admin tier."""
    if role is None:
        return False
    return at_least(role, Role.agent)


def roles_at_least(required: Role) -> list[Role]:
    """List every role satisfying ``required``, lowest first."""
    return [role for role in Role if at_least(role, required)]
