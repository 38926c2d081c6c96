"""HTTP routes for sign-in, signup, session and profile workflows."""

from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from storefront_schemas import Account as AccountSchema

from ..domain.account import Account
from ..domain.contracts import CUSTOMER_AUDIENCE, LoginInput, PasswordResetInput, ProfileUpdate, SignupInput
from ..domain.errors import AuthError, AuthErrorCode
from ..domain.guard import AccessGuard
from ..domain.service import AuthenticationService, LoginResult
from ..identity.errors import RATE_LIMITED_MESSAGE
from ..security.rate_limiter import attempt_key
from .deps import (
    REFRESH_COOKIE,
    AttemptLimiter,
    AuthState,
    account_schema,
    auth_error_response,
    clear_session_cookies,
    get_access_token,
    get_admin_auth,
    get_attempt_limiter,
    get_guard,
    get_shop_auth,
    guard_http_error,
    require_account,
    set_session_cookies,
    status_for,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


class ProfileUpdateRequest(BaseModel):
    """Owner-editable profile fields; omitted fields are left unchanged."""

    full_name: str | None = None
    phone: str | None = None
    avatar_url: str | None = None
    date_of_birth: str | None = None
    gender: str | None = None


class AccessResponse(BaseModel):
    allowed: bool
    degraded: bool = False


def _state_response(state: AuthState, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=state.model_dump(mode="json"))


def _rate_limited(limiter: AttemptLimiter, key: str) -> JSONResponse | None:
    if limiter.allow(key):
        return None
    logger.warning("credential attempts throttled for %s", key)
    response = _state_response(
        AuthState(error=RATE_LIMITED_MESSAGE, code=AuthErrorCode.UNKNOWN_ERROR),
        status.HTTP_429_TOO_MANY_REQUESTS,
    )
    response.headers["Retry-After"] = str(limiter.retry_after(key))
    return response


def _signed_in(result: LoginResult, service: AuthenticationService, message: str) -> JSONResponse:
    response = _state_response(AuthState(message=message, email=result.account.email))
    set_session_cookies(response, result.session, service.policy)
    return response


def _login(service: AuthenticationService, limiter: AttemptLimiter, email: str, password: str) -> JSONResponse:
    throttled = _rate_limited(limiter, attempt_key(f"{service.policy.name}:login", email))
    if throttled is not None:
        return throttled
    try:
        result = service.login(LoginInput(email=email, password=password))
    except AuthError as exc:
        return auth_error_response(exc)
    return _signed_in(result, service, "Login successful")


def _logout(service: AuthenticationService, token: str | None) -> JSONResponse:
    try:
        service.sign_out(token)
    except AuthError as exc:
        return auth_error_response(exc)
    response = _state_response(AuthState(message="Logged out"))
    clear_session_cookies(response)
    return response


def _refresh(service: AuthenticationService, request: Request) -> JSONResponse:
    try:
        result = service.refresh_session(request.cookies.get(REFRESH_COOKIE))
    except AuthError as exc:
        response = auth_error_response(exc)
        clear_session_cookies(response)
        return response
    return _signed_in(result, service, "Session refreshed")


@router.post("/admin/login", response_model=AuthState)
def admin_login(
    email: str = Form(default=""),
    password: str = Form(default=""),
    service: AuthenticationService = Depends(get_admin_auth),
    limiter: AttemptLimiter = Depends(get_attempt_limiter),
) -> JSONResponse:
    """Sign in to the admin console; only active staff accounts are admitted."""
    return _login(service, limiter, email, password)


@router.post("/admin/logout", response_model=AuthState)
def admin_logout(
    token: str | None = Depends(get_access_token),
    service: AuthenticationService = Depends(get_admin_auth),
) -> JSONResponse:
    return _logout(service, token)


@router.post("/admin/session/refresh", response_model=AuthState)
def admin_refresh(request: Request, service: AuthenticationService = Depends(get_admin_auth)) -> JSONResponse:
    return _refresh(service, request)


@router.post("/shop/login", response_model=AuthState)
def shop_login(
    email: str = Form(default=""),
    password: str = Form(default=""),
    service: AuthenticationService = Depends(get_shop_auth),
    limiter: AttemptLimiter = Depends(get_attempt_limiter),
) -> JSONResponse:
    """Sign in to the shop."""
    return _login(service, limiter, email, password)


@router.post("/shop/logout", response_model=AuthState)
def shop_logout(
    token: str | None = Depends(get_access_token),
    service: AuthenticationService = Depends(get_shop_auth),
) -> JSONResponse:
    return _logout(service, token)


@router.post("/shop/session/refresh", response_model=AuthState)
def shop_refresh(request: Request, service: AuthenticationService = Depends(get_shop_auth)) -> JSONResponse:
    return _refresh(service, request)


@router.post("/shop/signup", response_model=AuthState)
def shop_signup(
    email: str = Form(default=""),
    password: str = Form(default=""),
    full_name: str = Form(default=""),
    phone: str = Form(default=""),
    service: AuthenticationService = Depends(get_shop_auth),
    limiter: AttemptLimiter = Depends(get_attempt_limiter),
) -> JSONResponse:
    """Register a customer account.

    When the identity provider holds the account for email confirmation no
    session cookie is issued and ``requires_confirmation`` is set.
    """
    throttled = _rate_limited(limiter, attempt_key("customer:signup", email))
    if throttled is not None:
        return throttled
    try:
        result = service.signup(
            SignupInput(email=email, password=password, full_name=full_name, phone=phone)
        )
    except AuthError as exc:
        return auth_error_response(exc)

    if result.requires_confirmation or result.session is None:
        return _state_response(
            AuthState(
                message="Please check your email and click the confirmation link to complete your registration.",
                requires_confirmation=True,
                email=result.account.email,
            )
        )
    response = _state_response(AuthState(message="Signup successful", email=result.account.email))
    set_session_cookies(response, result.session, service.policy)
    return response


@router.post("/shop/verify-email", response_model=AuthState)
def shop_verify_email(
    token_hash: str = Form(default=""),
    service: AuthenticationService = Depends(get_shop_auth),
) -> JSONResponse:
    try:
        result = service.verify_email(token_hash)
    except AuthError as exc:
        return auth_error_response(exc)
    return _signed_in(result, service, "Email confirmed successfully")


@router.post("/shop/password-reset", response_model=AuthState)
def shop_password_reset(
    email: str = Form(default=""),
    service: AuthenticationService = Depends(get_shop_auth),
    limiter: AttemptLimiter = Depends(get_attempt_limiter),
) -> JSONResponse:
    """Send a password reset link to ``email``."""
    throttled = _rate_limited(limiter, attempt_key("customer:password-reset", email))
    if throttled is not None:
        return throttled
    try:
        service.send_password_reset_email(email)
    except AuthError as exc:
        return auth_error_response(exc)
    return _state_response(AuthState(message="Password reset email sent successfully", email=email.strip()))


@router.post("/shop/password", response_model=AuthState)
def shop_update_password(
    password: str = Form(default=""),
    confirm_password: str = Form(default=""),
    token: str | None = Depends(get_access_token),
    service: AuthenticationService = Depends(get_shop_auth),
) -> JSONResponse:
    """Set a new password for the session opened by a reset link."""
    try:
        service.reset_password(token, PasswordResetInput(password=password, confirm_password=confirm_password))
    except AuthError as exc:
        return auth_error_response(exc)
    return _state_response(AuthState(message="Password updated successfully"))


@router.get("/me", response_model=AccountSchema)
def get_me(account: Account = Depends(require_account)) -> AccountSchema:
    return account_schema(account)


@router.patch("/me", response_model=AccountSchema)
def update_me(
    payload: ProfileUpdateRequest,
    account: Account = Depends(require_account),
    service: AuthenticationService = Depends(get_shop_auth),
) -> AccountSchema:
    """Update the caller's own profile fields."""
    try:
        updated = service.update_profile(account, ProfileUpdate(**payload.model_dump()))
    except AuthError as exc:
        raise HTTPException(status_code=status_for(exc), detail=exc.message) from exc
    return account_schema(updated)


@router.get("/shop/access", response_model=AccessResponse)
def shop_access(
    path: str = Query(..., min_length=1),
    token: str | None = Depends(get_access_token),
    guard: AccessGuard = Depends(get_guard),
) -> AccessResponse:
    """Decide whether a shop page may be rendered for the caller.

    Only account pages (history, wishlist, checkout) need a session. Failures
    redirect to the shop sign-in page with the requested path preserved.
    """
    if not any(path.startswith(prefix) for prefix in CUSTOMER_AUDIENCE.protected_prefixes):
        return AccessResponse(allowed=True)

    redirect_path = f"{CUSTOMER_AUDIENCE.login_path}?redirect={quote(path, safe='/')}"
    result = guard.verify_customer_access(token, redirect_path=redirect_path)
    if not result.success:
        raise guard_http_error(result)
    return AccessResponse(allowed=True, degraded=result.degraded)
