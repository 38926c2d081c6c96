"""Domain-level request contracts and audience policies shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from ..config import get_settings
from .roles import Role


@dataclass(slots=True)
class LoginInput:
    email: str
    password: str


@dataclass(slots=True)
class SignupInput:
    """Raw signup form fields; validated by the authentication service."""

    email: str
    password: str
    full_name: str
    phone: str


@dataclass(slots=True)
class PasswordResetInput:
    password: str
    confirm_password: str


@dataclass(slots=True)
class ProfileUpdate:
    """Owner-editable profile fields; ``None`` leaves a column untouched."""

    full_name: str | None = None
    phone: str | None = None
    avatar_url: str | None = None
    date_of_birth: str | None = None
    gender: str | None = None

    def changes(self) -> dict[str, str]:
        return {
            name: value
            for name, value in (
                ("full_name", self.full_name),
                ("phone", self.phone),
                ("avatar_url", self.avatar_url),
                ("date_of_birth", self.date_of_birth),
                ("gender", self.gender),
            )
            if value is not None
        }


@dataclass(frozen=True, slots=True)
class AudiencePolicy:
    """Per-portal authentication policy.

    ``fail_open`` decides what a guard does when the identity provider or the
    datastore fails unexpectedly: customer shopping pages let the request
    through, the admin console never does.
    """

    name: str
    minimum_role: Role
    session_lifetime: timedelta
    login_path: str
    denied_path: str
    fail_open: bool = False
    protected_prefixes: tuple[str, ...] = field(default_factory=tuple)


def _build_admin_audience() -> AudiencePolicy:
    settings = get_settings()
    return AudiencePolicy(
        name="admin",
        minimum_role=Role.agent,
        session_lifetime=timedelta(seconds=settings.admin_session_ttl_seconds),
        login_path="/admin/login",
        denied_path="/",
        fail_open=False,
        protected_prefixes=("/admin",),
    )


def _build_customer_audience() -> AudiencePolicy:
    settings = get_settings()
    return AudiencePolicy(
        name="customer",
        minimum_role=Role.customer,
        session_lifetime=timedelta(seconds=settings.customer_session_ttl_seconds),
        login_path="/shop/auth",
        denied_path="/shop/auth",
        fail_open=True,
        protected_prefixes=("/shop/history", "/shop/wishlist", "/shop/checkout"),
    )


ADMIN_AUDIENCE = _build_admin_audience()
CUSTOMER_AUDIENCE = _build_customer_audience()
