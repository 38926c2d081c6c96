"""Closed error taxonomy raised by authentication and authorization workflows."""

from __future__ import annotations

from enum import Enum


class AuthErrorCode(str, Enum):
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
    ACCOUNT_NOT_CONFIRMED = "ACCOUNT_NOT_CONFIRMED"
    UNAUTHORIZED_ROLE = "UNAUTHORIZED_ROLE"
    ACCESS_DENIED = "ACCESS_DENIED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    SESSION_INVALID = "SESSION_INVALID"
    LOGIN_FAILED = "LOGIN_FAILED"
    SIGNUP_FAILED = "SIGNUP_FAILED"
    LOGOUT_FAILED = "LOGOUT_FAILED"
    PASSWORD_RESET_FAILED = "PASSWORD_RESET_FAILED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class AuthError(Exception):
    """A failed workflow step paired with a message safe to show end users.

    ``not_found`` marks a missing target record, as opposed to a missing
    profile behind the caller's own session.
    """

    def __init__(self, code: AuthErrorCode, message: str, *, not_found: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.not_found = not_found

    def __repr__(self) -> str:
        return f"AuthError({self.code.value}, {self.message!r})"
