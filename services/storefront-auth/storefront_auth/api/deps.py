"""Shared FastAPI dependencies and response helpers for the storefront auth API."""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from storefront_schemas import Account as AccountSchema
from storefront_schemas import AccountRole

from ..config import Settings, get_settings
from ..domain.account import Account
from ..domain.administration import AccountAdministrationService
from ..domain.audit import AuditTrail
from ..domain.contracts import AudiencePolicy
from ..domain.errors import AuthError, AuthErrorCode
from ..domain.guard import AccessGuard, GuardResult
from ..domain.service import AuthenticationService
from ..identity.provider import ProviderSession
from ..security.rate_limiter import SlidingWindowAttemptLimiter
from ..security.redis_rate_limiter import RedisAttemptLimiter

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "sb-access-token"
REFRESH_COOKIE = "sb-refresh-token"

AttemptLimiter = SlidingWindowAttemptLimiter | RedisAttemptLimiter

_STATUS_BY_CODE: dict[AuthErrorCode, int] = {
    AuthErrorCode.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    AuthErrorCode.ACCOUNT_INACTIVE: status.HTTP_403_FORBIDDEN,
    AuthErrorCode.ACCOUNT_NOT_CONFIRMED: status.HTTP_403_FORBIDDEN,
    AuthErrorCode.UNAUTHORIZED_ROLE: status.HTTP_403_FORBIDDEN,
    AuthErrorCode.ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    AuthErrorCode.SESSION_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    AuthErrorCode.SESSION_INVALID: status.HTTP_401_UNAUTHORIZED,
    AuthErrorCode.LOGIN_FAILED: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.SIGNUP_FAILED: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.LOGOUT_FAILED: status.HTTP_502_BAD_GATEWAY,
    AuthErrorCode.PASSWORD_RESET_FAILED: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    AuthErrorCode.UNKNOWN_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class AuthState(BaseModel):
    """Result object returned by every credential endpoint."""

    error: str | None = None
    message: str | None = None
    code: AuthErrorCode | None = None
    requires_confirmation: bool = False
    email: str | None = None


optional_bearer = HTTPBearer(auto_error=False)


def get_access_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer),
) -> str | None:
    """Read the session credential from the Authorization header or the session cookie."""
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(ACCESS_COOKIE)


def get_admin_auth(request: Request) -> AuthenticationService:
    service: AuthenticationService = request.app.state.admin_auth
    return service


def get_shop_auth(request: Request) -> AuthenticationService:
    service: AuthenticationService = request.app.state.shop_auth
    return service


def get_guard(request: Request) -> AccessGuard:
    guard: AccessGuard = request.app.state.access_guard
    return guard


def get_administration(request: Request) -> AccountAdministrationService:
    service: AccountAdministrationService = request.app.state.administration
    return service


def get_audit_trail(request: Request) -> AuditTrail:
    audit: AuditTrail = request.app.state.audit_trail
    return audit


def get_attempt_limiter(request: Request) -> AttemptLimiter:
    limiter: AttemptLimiter = request.app.state.attempt_limiter
    return limiter


def build_attempt_limiter(settings: Settings | None = None) -> AttemptLimiter:
    """Instantiate the configured limiter backend, preferring Redis when available."""
    settings = settings or get_settings()
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            client.ping()
            logger.info("attempt limiter configured for redis backend at %s", settings.redis_url)
            return RedisAttemptLimiter(
                client,
                max_attempts=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )
        except Exception as exc:  # pragma: no cover - depends on a live redis
            logger.warning("redis attempt limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("attempt limiter using in-memory backend")
    return SlidingWindowAttemptLimiter(
        max_attempts=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


def require_admin(
    token: str | None = Depends(get_access_token),
    guard: AccessGuard = Depends(get_guard),
) -> GuardResult:
    """Admit only active admin-tier accounts; failures carry the redirect target."""
    result = guard.verify_admin_access(token)
    if not result.success:
        raise guard_http_error(result)
    return result


def require_account(
    token: str | None = Depends(get_access_token),
    guard: AccessGuard = Depends(get_guard),
) -> Account:
    try:
        return guard.resolve_account(token)
    except AuthError as exc:
        raise HTTPException(status_code=status_for(exc), detail=exc.message) from exc


def status_for(exc: AuthError) -> int:
    if exc.not_found:
        return status.HTTP_404_NOT_FOUND
    return _STATUS_BY_CODE[exc.code]


def auth_error_response(exc: AuthError) -> JSONResponse:
    state = AuthState(error=exc.message, code=exc.code)
    return JSONResponse(status_code=status_for(exc), content=state.model_dump(mode="json"))


def guard_http_error(result: GuardResult) -> HTTPException:
    status_code = status.HTTP_403_FORBIDDEN if result.is_authenticated else status.HTTP_401_UNAUTHORIZED
    return HTTPException(
        status_code=status_code,
        detail={
            "error": result.error,
            "code": result.code.value if result.code else None,
            "redirect_url": result.redirect_url,
        },
    )


def set_session_cookies(response: JSONResponse, session: ProviderSession, policy: AudiencePolicy) -> None:
    settings = get_settings()
    max_age = int(policy.session_lifetime.total_seconds())
    for name, value in ((ACCESS_COOKIE, session.access_token), (REFRESH_COOKIE, session.refresh_token)):
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            httponly=True,
            secure=settings.session_cookie_secure,
            samesite="lax",
        )


def clear_session_cookies(response: JSONResponse) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)


def account_schema(account: Account) -> AccountSchema:
    return AccountSchema(
        account_id=account.account_id,
        email=account.email,
        role=AccountRole(account.role.value),
        is_active=account.is_active,
        full_name=account.full_name,
        phone=account.phone,
        created_at=account.created_at,
    )
