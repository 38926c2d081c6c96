"""HTTP routes for the admin console: permissions, route checks and user management."""

from __future__ import annotations

from datetime import datetime
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel

from storefront_schemas import Account as AccountSchema
from storefront_schemas import AccountRole, AdminPermissions, AuditEntry, AuditPage

from ..domain.administration import AccountAdministrationService
from ..domain.audit import AuditAction, AuditTrail
from ..domain.errors import AuthError, AuthErrorCode
from ..domain.guard import ROUTE_DENIED_REDIRECT, Action, GuardResult, can, can_access_route, permissions_for
from .deps import account_schema, get_administration, get_audit_trail, require_admin, status_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin")


class AdminProfileResponse(BaseModel):
    account: AccountSchema
    is_admin: bool
    is_chief_admin: bool


class RouteAccessResponse(BaseModel):
    allowed: bool
    user_role: AccountRole | None = None
    required_roles: list[AccountRole]


class PromoteRequest(BaseModel):
    role: AccountRole


def _http_error(exc: AuthError) -> HTTPException:
    return HTTPException(status_code=status_for(exc), detail=exc.message)


@router.get("/me", response_model=AdminProfileResponse)
def admin_me(guard: GuardResult = Depends(require_admin)) -> AdminProfileResponse:
    return AdminProfileResponse(
        account=account_schema(guard.account),
        is_admin=guard.is_admin,
        is_chief_admin=guard.is_chief_admin,
    )


@router.get("/permissions", response_model=AdminPermissions)
def admin_permissions(guard: GuardResult = Depends(require_admin)) -> AdminPermissions:
    permissions = permissions_for(guard.account)
    return AdminPermissions(
        role=AccountRole(permissions.role.value),
        can_manage_users=permissions.can_manage_users,
        can_manage_products=permissions.can_manage_products,
        can_manage_orders=permissions.can_manage_orders,
        can_view_audit_logs=permissions.can_view_audit_logs,
        can_view_sales_logs=permissions.can_view_sales_logs,
        can_manage_agents=permissions.can_manage_agents,
    )


@router.get("/access", response_model=RouteAccessResponse)
def admin_route_access(
    path: str = Query(..., min_length=1),
    guard: GuardResult = Depends(require_admin),
    audit: AuditTrail = Depends(get_audit_trail),
) -> RouteAccessResponse:
    """Check whether the caller's role may open the admin page at ``path``.

    Admitted page views are written to the activity log. Denials redirect to
    the dashboard, which every staff role may open.
    """
    check = can_access_route(guard.account, path)
    required = [AccountRole(role.value) for role in check.required_roles]
    if not check.has_role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "Unauthorized",
                "code": AuthErrorCode.ACCESS_DENIED.value,
                "redirect_url": ROUTE_DENIED_REDIRECT,
                "required_roles": [role.value for role in required],
            },
        )

    audit.record(
        actor_id=guard.account.account_id,
        action=AuditAction.page_access,
        resource_type="page",
        changes={"path": path},
    )
    return RouteAccessResponse(
        allowed=True,
        user_role=AccountRole(check.user_role.value),
        required_roles=required,
    )


@router.get("/users", response_model=list[AccountSchema])
def list_users(
    guard: GuardResult = Depends(require_admin),
    service: AccountAdministrationService = Depends(get_administration),
) -> list[AccountSchema]:
    try:
        accounts = service.list_accounts(guard.account)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return [account_schema(account) for account in accounts]


@router.get("/agents", response_model=list[AccountSchema])
def list_agents(
    guard: GuardResult = Depends(require_admin),
    service: AccountAdministrationService = Depends(get_administration),
) -> list[AccountSchema]:
    try:
        accounts = service.list_agents(guard.account)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return [account_schema(account) for account in accounts]


@router.post("/users/{account_id}/promote", response_model=AccountSchema)
def promote_user(
    account_id: str,
    payload: PromoteRequest,
    guard: GuardResult = Depends(require_admin),
    service: AccountAdministrationService = Depends(get_administration),
) -> AccountSchema:
    """Change a user's role; promoting to ``customer`` demotes the user."""
    try:
        account = service.promote(guard.account, account_id, payload.role.value)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return account_schema(account)


@router.post("/users/{account_id}/demote", response_model=AccountSchema)
def demote_user(
    account_id: str,
    guard: GuardResult = Depends(require_admin),
    service: AccountAdministrationService = Depends(get_administration),
) -> AccountSchema:
    try:
        account = service.demote(guard.account, account_id)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return account_schema(account)


@router.post("/users/{account_id}/toggle-status", response_model=AccountSchema)
def toggle_user_status(
    account_id: str,
    guard: GuardResult = Depends(require_admin),
    service: AccountAdministrationService = Depends(get_administration),
) -> AccountSchema:
    """Deactivate an active user or reactivate an inactive one."""
    try:
        account = service.toggle_status(guard.account, account_id)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return account_schema(account)


@router.delete("/users/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    account_id: str,
    guard: GuardResult = Depends(require_admin),
    service: AccountAdministrationService = Depends(get_administration),
) -> Response:
    try:
        service.delete_account(guard.account, account_id)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/audit/logs", response_model=AuditPage)
def list_audit_logs(
    actor_id: str | None = Query(default=None),
    action: str | None = Query(default=None),
    created_after: datetime | None = Query(default=None),
    created_before: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    cursor: str | None = Query(default=None),
    guard: GuardResult = Depends(require_admin),
    audit: AuditTrail = Depends(get_audit_trail),
) -> AuditPage:
    """Return paginated activity log entries, newest first."""
    if not can(guard.account, Action.view_audit_logs):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    try:
        records, next_cursor = audit.list_entries(
            actor_id=actor_id,
            action=action,
            created_after=created_after,
            created_before=created_before,
            limit=limit,
            cursor=cursor,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    items = [
        AuditEntry(
            audit_id=record.audit_id,
            actor_id=record.actor_id,
            action=record.action,
            resource_type=record.resource_type,
            resource_id=record.resource_id,
            changes=record.changes,
            created_at=record.created_at,
        )
        for record in records
    ]
    return AuditPage(items=items, next_cursor=next_cursor)
