"""GoTrue REST client implementing the ``IdentityProvider`` contract."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .provider import (
    IdentityProviderError,
    IdentityProviderUnavailable,
    ProviderSession,
    ProviderUser,
    SignUpOutcome,
)

logger = logging.getLogger(__name__)

# Roughly a century; GoTrue has no permanent ban flag.
BAN_FOREVER = "876000h"


class GoTrueIdentityProvider:
    """Synchronous client for the hosted auth API (``/auth/v1``).

    Parameters
    ----------
    client:
        Shared ``httpx.Client`` whose ``base_url`` points at the project URL.
    anon_key:
        Public API key sent with every end-user request.
    service_key:
        Service-role key used only by the admin endpoints (ban, delete).
    """

    def __init__(self, client: httpx.Client, *, anon_key: str, service_key: str = "") -> None:
        self._client = client
        self._anon_key = anon_key
        self._service_key = service_key

    def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        body = self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return _parse_session(body)

    def sign_up(
        self, email: str, password: str, metadata: dict[str, Any], redirect_to: str
    ) -> SignUpOutcome:
        body = self._request(
            "POST",
            "/auth/v1/signup",
            params={"redirect_to": redirect_to},
            json={"email": email, "password": password, "data": metadata},
        )
        if body.get("access_token"):
            session = _parse_session(body)
            return SignUpOutcome(user=session.user, session=session)
        user_payload = body.get("user") or body
        return SignUpOutcome(user=_parse_user(user_payload), session=None)

    def verify_otp(self, token_hash: str, otp_type: str) -> ProviderSession | None:
        body = self._request(
            "POST",
            "/auth/v1/verify",
            json={"type": otp_type, "token_hash": token_hash},
        )
        if body.get("access_token"):
            return _parse_session(body)
        return None

    def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        self._request(
            "POST",
            "/auth/v1/recover",
            params={"redirect_to": redirect_to},
            json={"email": email},
        )

    def update_user(self, access_token: str, *, password: str) -> ProviderUser:
        body = self._request("PUT", "/auth/v1/user", json={"password": password}, bearer=access_token)
        return _parse_user(body)

    def sign_out(self, access_token: str) -> None:
        self._request("POST", "/auth/v1/logout", bearer=access_token)

    def get_user(self, access_token: str) -> ProviderUser:
        return _parse_user(self._request("GET", "/auth/v1/user", bearer=access_token))

    def refresh_session(self, refresh_token: str) -> ProviderSession:
        body = self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return _parse_session(body)

    def set_banned(self, user_id: str, banned: bool) -> None:
        """Ban or unban a user; banning revokes every session the user holds."""
        self._request(
            "PUT",
            f"/auth/v1/admin/users/{user_id}",
            json={"ban_duration": BAN_FOREVER if banned else "none"},
            admin=True,
        )

    def delete_user(self, user_id: str) -> None:
        self._request("DELETE", f"/auth/v1/admin/users/{user_id}", admin=True)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        bearer: str | None = None,
        admin: bool = False,
    ) -> dict[str, Any]:
        key = self._service_key if admin else self._anon_key
        headers = {"apikey": key}
        token = key if admin else bearer
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = self._client.request(method, path, params=params, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            raise IdentityProviderUnavailable(f"{method} {path} timed out", timed_out=True) from exc
        except httpx.TransportError as exc:
            raise IdentityProviderUnavailable(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise _error_from_response(response)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise IdentityProviderError(
                "identity provider returned a non-JSON body", status_code=response.status_code
            ) from exc


def _error_from_response(response: httpx.Response) -> IdentityProviderError:
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    message = (
        payload.get("msg")
        or payload.get("error_description")
        or payload.get("message")
        or payload.get("error")
        or response.reason_phrase
        or "identity provider error"
    )
    error_code = payload.get("error_code")
    logger.debug("identity provider error %s: %s (%s)", response.status_code, message, error_code)
    return IdentityProviderError(str(message), status_code=response.status_code, error_code=error_code)


def _parse_user(payload: dict[str, Any]) -> ProviderUser:
    return ProviderUser(
        user_id=str(payload["id"]),
        email=payload.get("email") or "",
        metadata=payload.get("user_metadata") or {},
        email_confirmed=bool(payload.get("email_confirmed_at") or payload.get("confirmed_at")),
        has_identity="identities" not in payload or bool(payload["identities"]),
    )


def _parse_session(payload: dict[str, Any]) -> ProviderSession:
    return ProviderSession(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token", ""),
        expires_in=int(payload.get("expires_in", 0)),
        user=_parse_user(payload["user"]),
    )
