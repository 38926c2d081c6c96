"""Local inspection of identity-provider session tokens."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import jwt

from ..config import get_settings
from ..domain.errors import AuthError, AuthErrorCode


@dataclass(slots=True)
class SessionClaims:
    subject: str
    expires_at: datetime
    session_id: str | None
    metadata: dict[str, Any]


def read_session_claims(token: str) -> SessionClaims:
    """Verify a session JWT signed by the identity provider and return its claims.

    The check is local: it catches expired or forged tokens without a network
    round trip. Revocation (sign-out, bans) is only visible to the provider,
    so callers still confirm the session with it.

    Parameters
    ----------
    token:
        Encoded access token taken from the Authorization header or the
        session cookie.

    Raises
    ------
    AuthError
        ``SESSION_EXPIRED`` when the ``exp`` claim has passed and
        ``SESSION_INVALID`` for any other decoding or signature failure.
    """

    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.identity_jwt_secret,
            algorithms=["HS256"],
            audience=settings.identity_jwt_audience,
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthError(AuthErrorCode.SESSION_EXPIRED, "Session has expired. Please log in again") from exc
    except jwt.PyJWTError as exc:
        raise AuthError(AuthErrorCode.SESSION_INVALID, "Not authenticated") from exc

    return SessionClaims(
        subject=str(payload["sub"]),
        expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        session_id=payload.get("session_id"),
        metadata=payload.get("user_metadata") or {},
    )
