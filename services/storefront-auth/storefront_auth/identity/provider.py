"""Contract for the hosted identity provider consumed by the storefront."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


class IdentityProviderError(Exception):
    """The provider answered but refused the request.

    ``error_code`` carries the provider's machine-readable code when it sends
    one; older deployments only send free text in ``message``.
    """

    def __init__(self, message: str, *, status_code: int | None = None, error_code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code


class IdentityProviderUnavailable(Exception):
    """The provider could not be reached or did not answer in time."""

    def __init__(self, message: str, *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


@dataclass(slots=True)
class ProviderUser:
    user_id: str
    email: str
    metadata: dict[str, Any] = field(default_factory=dict)
    email_confirmed: bool = False
    # False for the placeholder user returned when signing up an email that is
    # already registered while confirmation is required.
    has_identity: bool = True


@dataclass(slots=True)
class ProviderSession:
    access_token: str
    refresh_token: str
    expires_in: int
    user: ProviderUser


@dataclass(slots=True)
class SignUpOutcome:
    """A new identity; ``session`` is ``None`` while email confirmation is pending."""

    user: ProviderUser
    session: ProviderSession | None


class IdentityProvider(Protocol):
    def sign_in_with_password(self, email: str, password: str) -> ProviderSession: ...

    def sign_up(
        self, email: str, password: str, metadata: dict[str, Any], redirect_to: str
    ) -> SignUpOutcome: ...

    def verify_otp(self, token_hash: str, otp_type: str) -> ProviderSession | None: ...

    def reset_password_for_email(self, email: str, redirect_to: str) -> None: ...

    def update_user(self, access_token: str, *, password: str) -> ProviderUser: ...

    def sign_out(self, access_token: str) -> None: ...

    def get_user(self, access_token: str) -> ProviderUser: ...

    def refresh_session(self, refresh_token: str) -> ProviderSession: ...

    def set_banned(self, user_id: str, banned: bool) -> None: ...

    def delete_user(self, user_id: str) -> None: ...
