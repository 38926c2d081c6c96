"""Tests for the GoTrue client and provider error translation."""

from __future__ import annotations

import json

import httpx
import pytest

from storefront_auth.domain.errors import AuthErrorCode
from storefront_auth.identity.errors import ProviderOperation, translate_provider_error
from storefront_auth.identity.gotrue import BAN_FOREVER, GoTrueIdentityProvider
from storefront_auth.identity.provider import IdentityProviderError, IdentityProviderUnavailable

USER = {"id": "4b1c2f9e-0000-4000-8000-000000000001", "email": "shopper@example.com", "user_metadata": {"role": "customer"}}
SESSION = {"access_token": "access", "refresh_token": "refresh", "expires_in": 3600, "user": USER}


def _provider(handler) -> GoTrueIdentityProvider:
    client = httpx.Client(base_url="http://identity.test", transport=httpx.MockTransport(handler))
    return GoTrueIdentityProvider(client, anon_key="anon-key", service_key="service-key")


def test_sign_in_posts_password_grant():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=SESSION)

    session = _provider(handler).sign_in_with_password("shopper@example.com", "secret123")

    request = seen[0]
    assert request.url.path == "/auth/v1/token"
    assert request.url.params["grant_type"] == "password"
    assert request.headers["apikey"] == "anon-key"
    assert "authorization" not in request.headers
    assert json.loads(request.content) == {"email": "shopper@example.com", "password": "secret123"}
    assert session.access_token == "access"
    assert session.user.user_id == USER["id"]
    assert session.user.metadata == {"role": "customer"}


def test_sign_up_without_session_means_confirmation_pending():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["redirect_to"] == "http://shop.test/shop/auth/confirm"
        assert json.loads(request.content)["data"] == {"role": "customer"}
        return httpx.Response(200, json=USER)

    outcome = _provider(handler).sign_up(
        "shopper@example.com", "secret123", {"role": "customer"}, redirect_to="http://shop.test/shop/auth/confirm"
    )

    assert outcome.session is None
    assert outcome.user.email == "shopper@example.com"
    assert outcome.user.has_identity


def test_sign_up_flags_user_without_identities():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={**USER, "id": "00000000-0000-4000-8000-00000000beef", "identities": []})

    outcome = _provider(handler).sign_up("shopper@example.com", "secret123", {}, redirect_to="http://shop.test")

    assert outcome.session is None
    assert not outcome.user.has_identity


def test_user_calls_send_bearer_token():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["authorization"] == "Bearer user-token"
        return httpx.Response(200, json=USER)

    assert _provider(handler).get_user("user-token").user_id == USER["id"]


def test_admin_calls_use_service_key():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=USER)

    _provider(handler).set_banned(USER["id"], True)

    request = seen[0]
    assert request.method == "PUT"
    assert request.url.path == f"/auth/v1/admin/users/{USER['id']}"
    assert request.headers["authorization"] == "Bearer service-key"
    assert json.loads(request.content) == {"ban_duration": BAN_FOREVER}


def test_error_responses_carry_status_and_code():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error_code": "invalid_credentials", "msg": "Invalid login credentials"})

    with pytest.raises(IdentityProviderError) as excinfo:
        _provider(handler).sign_in_with_password("shopper@example.com", "bad")

    assert excinfo.value.status_code == 400
    assert excinfo.value.error_code == "invalid_credentials"
    assert excinfo.value.message == "Invalid login credentials"


def test_logout_accepts_empty_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    _provider(handler).sign_out("user-token")


def test_timeouts_become_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(IdentityProviderUnavailable) as excinfo:
        _provider(handler).get_user("user-token")
    assert excinfo.value.timed_out


def test_connection_errors_become_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(IdentityProviderUnavailable) as excinfo:
        _provider(handler).get_user("user-token")
    assert not excinfo.value.timed_out


@pytest.mark.parametrize(
    "error,operation,code,message",
    [
        (
            IdentityProviderError("Invalid login credentials", status_code=400),
            ProviderOperation.login,
            AuthErrorCode.INVALID_CREDENTIALS,
            "Invalid email or password",
        ),
        (
            IdentityProviderError("whatever", status_code=400, error_code="email_not_confirmed"),
            ProviderOperation.login,
            AuthErrorCode.ACCOUNT_NOT_CONFIRMED,
            "Please verify your email address before logging in",
        ),
        (
            IdentityProviderError("Email rate limit exceeded", status_code=429),
            ProviderOperation.signup,
            AuthErrorCode.UNKNOWN_ERROR,
            "Too many attempts. Please try again later",
        ),
        (
            IdentityProviderError("Password should be at least 6 characters", status_code=422, error_code="weak_password"),
            ProviderOperation.password_reset,
            AuthErrorCode.PASSWORD_RESET_FAILED,
            "Password is too weak. Please choose a stronger password",
        ),
        (
            IdentityProviderError("Token has expired or is invalid", status_code=403),
            ProviderOperation.verify_email,
            AuthErrorCode.ACCOUNT_NOT_CONFIRMED,
            "Confirmation link has expired. Please sign up again.",
        ),
        (
            IdentityProviderError("something unexpected", status_code=500),
            ProviderOperation.login,
            AuthErrorCode.LOGIN_FAILED,
            "Authentication failed",
        ),
        (
            IdentityProviderUnavailable("read timeout", timed_out=True),
            ProviderOperation.login,
            AuthErrorCode.TIMEOUT,
            "The authentication service is not responding. Please try again",
        ),
    ],
)
def test_translate_provider_error(error, operation, code, message):
    translated = translate_provider_error(error, operation)
    assert translated.code is code
    assert translated.message == message


def test_credential_rules_do_not_leak_into_other_operations():
    error = IdentityProviderError("Invalid login credentials", status_code=400)
    assert translate_provider_error(error, ProviderOperation.signup).code is AuthErrorCode.SIGNUP_FAILED
