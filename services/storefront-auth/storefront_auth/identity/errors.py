"""Translation of identity-provider failures into the storefront error taxonomy.

This is the only module that inspects provider error text. Stable
``error_code`` values are preferred; free-text substrings are the fallback
for deployments that do not send codes.
"""

from __future__ import annotations

from enum import Enum

from ..domain.errors import AuthError, AuthErrorCode
from .provider import IdentityProviderError, IdentityProviderUnavailable


class ProviderOperation(str, Enum):
    login = "login"
    signup = "signup"
    verify_email = "verify_email"
    password_reset = "password_reset"
    sign_out = "sign_out"
    session = "session"
    refresh = "refresh"


RATE_LIMITED_MESSAGE = "Too many attempts. Please try again later"
TIMEOUT_MESSAGE = "The authentication service is not responding. Please try again"

_FALLBACKS: dict[ProviderOperation, tuple[AuthErrorCode, str]] = {
    ProviderOperation.login: (AuthErrorCode.LOGIN_FAILED, "Authentication failed"),
    ProviderOperation.signup: (AuthErrorCode.SIGNUP_FAILED, "Signup failed"),
    ProviderOperation.verify_email: (AuthErrorCode.ACCOUNT_NOT_CONFIRMED, "Invalid confirmation link"),
    ProviderOperation.password_reset: (AuthErrorCode.PASSWORD_RESET_FAILED, "Password reset failed"),
    ProviderOperation.sign_out: (AuthErrorCode.LOGOUT_FAILED, "Logout failed"),
    ProviderOperation.session: (AuthErrorCode.SESSION_INVALID, "Session is no longer valid"),
    ProviderOperation.refresh: (AuthErrorCode.SESSION_EXPIRED, "Session has expired. Please log in again"),
}

# (error_code, substring, operations or None for all, code, message)
_RULES: list[tuple[str, str, frozenset[ProviderOperation] | None, AuthErrorCode | None, str]] = [
    (
        "over_request_rate_limit",
        "rate limit",
        None,
        AuthErrorCode.UNKNOWN_ERROR,
        RATE_LIMITED_MESSAGE,
    ),
    (
        "invalid_credentials",
        "invalid login credentials",
        frozenset({ProviderOperation.login}),
        AuthErrorCode.INVALID_CREDENTIALS,
        "Invalid email or password",
    ),
    (
        "email_not_confirmed",
        "email not confirmed",
        frozenset({ProviderOperation.login}),
        AuthErrorCode.ACCOUNT_NOT_CONFIRMED,
        "Please verify your email address before logging in",
    ),
    (
        "user_already_exists",
        "user already registered",
        frozenset({ProviderOperation.signup}),
        AuthErrorCode.SIGNUP_FAILED,
        "An account with this email already exists",
    ),
    (
        "weak_password",
        "weak password",
        frozenset({ProviderOperation.signup, ProviderOperation.password_reset}),
        None,
        "Password is too weak. Please choose a stronger password",
    ),
    (
        "email_address_invalid",
        "invalid email",
        frozenset({ProviderOperation.signup, ProviderOperation.password_reset}),
        None,
        "Please enter a valid email address",
    ),
    (
        "otp_expired",
        "expired",
        frozenset({ProviderOperation.verify_email}),
        AuthErrorCode.ACCOUNT_NOT_CONFIRMED,
        "Confirmation link has expired. Please sign up again.",
    ),
    (
        "session_not_found",
        "session not found",
        frozenset({ProviderOperation.session, ProviderOperation.refresh}),
        AuthErrorCode.SESSION_EXPIRED,
        "Session has expired. Please log in again",
    ),
    (
        "refresh_token_not_found",
        "refresh token not found",
        frozenset({ProviderOperation.session, ProviderOperation.refresh}),
        AuthErrorCode.SESSION_EXPIRED,
        "Session has expired. Please log in again",
    ),
]


def translate_provider_error(exc: Exception, operation: ProviderOperation) -> AuthError:
    """Map a provider failure onto an ``AuthError`` with a user-safe message.

    A rule whose code is ``None`` keeps the operation's fallback code and only
    replaces the message.
    """
    fallback_code, fallback_message = _FALLBACKS[operation]
    if isinstance(exc, IdentityProviderUnavailable):
        if exc.timed_out:
            return AuthError(AuthErrorCode.TIMEOUT, TIMEOUT_MESSAGE)
        return AuthError(AuthErrorCode.UNKNOWN_ERROR, TIMEOUT_MESSAGE)
    if not isinstance(exc, IdentityProviderError):
        return AuthError(fallback_code, fallback_message)

    message = (exc.message or "").lower()
    for error_code, substring, operations, code, text in _RULES:
        if operations is not None and operation not in operations:
            continue
        if (exc.error_code and exc.error_code == error_code) or substring in message:
            return AuthError(code or fallback_code, text)
    return AuthError(fallback_code, fallback_message)
