"""Route and action admission for the admin console and the shop."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging

from ..identity.errors import ProviderOperation, translate_provider_error
from ..identity.provider import IdentityProvider, IdentityProviderError, IdentityProviderUnavailable
from ..metrics import GUARD_FAIL_OPEN
from ..repository import AccountRepository
from ..security.tokens import read_session_claims
from .account import Account
from .contracts import ADMIN_AUDIENCE, CUSTOMER_AUDIENCE, AudiencePolicy
from .errors import AuthError, AuthErrorCode
from .roles import Role, at_least, is_admin_tier, roles_at_least

logger = logging.getLogger(__name__)

ROUTE_DENIED_REDIRECT = "/admin/dashboard"

# Checked in order; the first matching prefix decides, so stricter rules come first.
ROUTE_RULES: tuple[tuple[tuple[str, ...], Role], ...] = (
    (("/admin/users", "/admin/roles", "/admin/agents"), Role.chief_admin),
    (("/admin/audit-log", "/admin/sales-log"), Role.admin),
)
DEFAULT_ROUTE_ROLE = Role.agent


class Action(str, Enum):
    promote_user = "promote_user"
    demote_user = "demote_user"
    delete_user = "delete_user"
    manage_agents = "manage_agents"
    view_users = "view_users"
    toggle_user_status = "toggle_user_status"
    create_product = "create_product"
    update_product = "update_product"
    delete_product = "delete_product"
    view_orders = "view_orders"
    update_order = "update_order"
    view_dashboard = "view_dashboard"
    view_audit_logs = "view_audit_logs"
    view_sales_logs = "view_sales_logs"


ACTION_MINIMUM_ROLE: dict[Action, Role] = {
    Action.promote_user: Role.chief_admin,
    Action.demote_user: Role.chief_admin,
    Action.delete_user: Role.chief_admin,
    Action.manage_agents: Role.chief_admin,
    Action.view_users: Role.chief_admin,
    Action.toggle_user_status: Role.chief_admin,
    Action.create_product: Role.agent,
    Action.update_product: Role.agent,
    Action.delete_product: Role.agent,
    Action.view_orders: Role.agent,
    Action.update_order: Role.agent,
    Action.view_dashboard: Role.agent,
    Action.view_audit_logs: Role.admin,
    Action.view_sales_logs: Role.admin,
}


class GuardDenial(str, Enum):
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    PROFILE_NOT_FOUND = "PROFILE_NOT_FOUND"
    UNAUTHORIZED_ROLE = "UNAUTHORIZED_ROLE"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
    SERVICE_ERROR = "SERVICE_ERROR"


@dataclass(slots=True)
class RoleCheckResult:
    has_role: bool
    user_role: Role | None
    required_roles: list[Role] = field(default_factory=list)


@dataclass(slots=True)
class GuardResult:
    """Outcome of a guard check.

    Failures always carry ``redirect_url`` so the HTTP layer can answer
    without re-deriving policy. ``degraded`` marks a fail-open admission
    where no account could be resolved.
    """

    success: bool
    is_authenticated: bool
    account: Account | None = None
    is_admin: bool = False
    is_chief_admin: bool = False
    denial: GuardDenial | None = None
    code: AuthErrorCode | None = None
    error: str | None = None
    redirect_url: str | None = None
    degraded: bool = False


@dataclass(slots=True)
class AdminPermissions:
    role: Role
    can_manage_users: bool
    can_manage_products: bool
    can_manage_orders: bool
    can_view_audit_logs: bool
    can_view_sales_logs: bool
    can_manage_agents: bool


def can(account: Account | None, action: Action | str) -> bool:
    """Return whether ``account`` may perform ``action``; unknown actions are refused."""
    if account is None:
        return False
    try:
        minimum = ACTION_MINIMUM_ROLE[Action(action)]
    except ValueError:
        return False
    return at_least(account.role, minimum)


def can_access_route(account: Account | None, path: str) -> RoleCheckResult:
    role = account.role if account is not None else None
    if role is not None and at_least(role, Role.chief_admin):
        return RoleCheckResult(has_role=True, user_role=role, required_roles=[])

    required = DEFAULT_ROUTE_ROLE
    for prefixes, minimum in ROUTE_RULES:
        if any(path.startswith(prefix) for prefix in prefixes):
            required = minimum
            break

    admitted = role is not None and is_admin_tier(role) and at_least(role, required)
    return RoleCheckResult(has_role=admitted, user_role=role, required_roles=roles_at_least(required))


def permissions_for(account: Account) -> AdminPermissions:
    return AdminPermissions(
        role=account.role,
        can_manage_users=can(account, Action.promote_user),
        can_manage_products=can(account, Action.create_product),
        can_manage_orders=can(account, Action.update_order),
        can_view_audit_logs=can(account, Action.view_audit_logs),
        can_view_sales_logs=can(account, Action.view_sales_logs),
        can_manage_agents=can(account, Action.manage_agents),
    )


class _Denied(Exception):
    def __init__(self, denial: GuardDenial, code: AuthErrorCode, message: str) -> None:
        super().__init__(message)
        self.denial = denial
        self.code = code
        self.message = message


class AccessGuard:
    """Resolves a session credential to an account and admits or denies it.

    The guard holds no state between requests; every check receives the
    credential explicitly.
    """

    def __init__(self, provider: IdentityProvider, repository: AccountRepository) -> None:
        self._provider = provider
        self._repository = repository

    def verify_admin_access(self, access_token: str | None) -> GuardResult:
        return self._verify(access_token, ADMIN_AUDIENCE, ADMIN_AUDIENCE.login_path)

    def verify_customer_access(self, access_token: str | None, redirect_path: str | None = None) -> GuardResult:
        return self._verify(
            access_token,
            CUSTOMER_AUDIENCE,
            redirect_path or CUSTOMER_AUDIENCE.login_path,
        )

    def resolve_account(self, access_token: str | None) -> Account:
        """Return the active account behind ``access_token`` or raise ``AuthError``."""
        try:
            account = self._resolve(access_token)
        except _Denied as exc:
            raise AuthError(exc.code, exc.message) from exc
        except IdentityProviderUnavailable as exc:
            logger.warning("session lookup failed at identity provider: %s", exc)
            raise translate_provider_error(exc, ProviderOperation.session) from exc
        except IdentityProviderError as exc:
            logger.warning("session lookup failed at identity provider: %s", exc.message)
            raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "Authentication service error") from exc
        if not account.is_active:
            raise AuthError(AuthErrorCode.ACCOUNT_INACTIVE, "Account is inactive")
        return account

    def _verify(self, access_token: str | None, policy: AudiencePolicy, login_redirect: str) -> GuardResult:
        try:
            account = self._resolve(access_token)
        except _Denied as exc:
            return self._deny(exc, login_redirect)
        except Exception:
            return self._on_backend_failure(policy, login_redirect)

        if not at_least(account.role, policy.minimum_role):
            return GuardResult(
                success=False,
                is_authenticated=True,
                denial=GuardDenial.UNAUTHORIZED_ROLE,
                code=AuthErrorCode.UNAUTHORIZED_ROLE,
                error="Unauthorized",
                redirect_url=policy.denied_path,
            )

        if not account.is_active:
            self._force_sign_out(access_token, account)
            return GuardResult(
                success=False,
                is_authenticated=True,
                denial=GuardDenial.ACCOUNT_INACTIVE,
                code=AuthErrorCode.ACCOUNT_INACTIVE,
                error="Account is inactive",
                redirect_url=login_redirect,
            )

        return GuardResult(
            success=True,
            is_authenticated=True,
            account=account,
            is_admin=account.is_admin,
            is_chief_admin=account.is_chief_admin,
        )

    def _resolve(self, access_token: str | None) -> Account:
        if not access_token:
            raise _Denied(GuardDenial.NOT_AUTHENTICATED, AuthErrorCode.SESSION_INVALID, "Not authenticated")
        try:
            claims = read_session_claims(access_token)
        except AuthError as exc:
            raise _Denied(GuardDenial.NOT_AUTHENTICATED, exc.code, exc.message) from exc

        try:
            user = self._provider.get_user(access_token)
        except IdentityProviderError as exc:
            if exc.status_code is None or exc.status_code >= 500:
                raise
            logger.info("session rejected by identity provider: %s", exc.message)
            translated = translate_provider_error(exc, ProviderOperation.session)
            raise _Denied(GuardDenial.NOT_AUTHENTICATED, translated.code, translated.message) from exc
        if user.user_id != claims.subject:
            raise _Denied(GuardDenial.NOT_AUTHENTICATED, AuthErrorCode.SESSION_INVALID, "Not authenticated")

        account = self._repository.get_account(user.user_id)
        if account is None:
            raise _Denied(GuardDenial.PROFILE_NOT_FOUND, AuthErrorCode.UNKNOWN_ERROR, "Profile not found")
        return account

    def _deny(self, exc: _Denied, redirect_url: str) -> GuardResult:
        return GuardResult(
            success=False,
            is_authenticated=exc.denial is not GuardDenial.NOT_AUTHENTICATED,
            denial=exc.denial,
            code=exc.code,
            error=exc.message,
            redirect_url=redirect_url,
        )

    def _on_backend_failure(self, policy: AudiencePolicy, redirect_url: str) -> GuardResult:
        if policy.fail_open:
            logger.warning("%s guard failing open after backend error", policy.name, exc_info=True)
            GUARD_FAIL_OPEN.inc()
            return GuardResult(success=True, is_authenticated=True, degraded=True)
        logger.exception("%s guard check failed", policy.name)
        return GuardResult(
            success=False,
            is_authenticated=False,
            denial=GuardDenial.SERVICE_ERROR,
            code=AuthErrorCode.UNKNOWN_ERROR,
            error="Authentication service error",
            redirect_url=redirect_url,
        )

    def _force_sign_out(self, access_token: str | None, account: Account) -> None:
        if not access_token:
            return
        try:
            self._provider.sign_out(access_token)
        except Exception:
            logger.warning("could not revoke session of inactive account %s", account.account_id, exc_info=True)
