"""Chief-admin account management: role changes, activation and deletion."""

from __future__ import annotations

from dataclasses import replace
import logging
import time

from ..identity.provider import IdentityProvider, IdentityProviderError, IdentityProviderUnavailable
from ..repository import AccountRepository
from .account import Account, StaffExtension
from .audit import AuditAction, AuditTrail
from .errors import AuthError, AuthErrorCode
from .guard import Action, can
from .roles import Role, is_admin_tier, parse_role

logger = logging.getLogger(__name__)


def new_staff_extension(account_id: str, role: Role) -> StaffExtension:
    """Default staff record created when an account is promoted off ``customer``."""
    return StaffExtension(
        account_id=account_id,
        staff_id=f"STAFF-{int(time.time() * 1000)}",
        department="Team",
        position="Support Agent" if role is Role.agent else "Administrator",
        is_active=True,
    )


class AccountAdministrationService:
    """Lifecycle transitions that only a chief admin may trigger.

    Demotion and deletion change the profile and the staff record in one
    transaction. Promotion writes them separately; a failed staff insert
    after a role update is not rolled back, and duplicate staff records are
    ignored so repeated promotions are harmless.
    """

    def __init__(self, provider: IdentityProvider, repository: AccountRepository, audit: AuditTrail) -> None:
        self._provider = provider
        self._repository = repository
        self._audit = audit

    def list_accounts(self, actor: Account) -> list[Account]:
        self._require(actor, Action.view_users, "Only chief admin can view users")
        return self._repository.list_accounts()

    def list_agents(self, actor: Account) -> list[Account]:
        self._require(actor, Action.manage_agents, "Only chief admin can manage agents")
        return self._repository.list_accounts(role=Role.agent)

    def promote(self, actor: Account, target_id: str, new_role: Role | str) -> Account:
        """Give ``target_id`` a new role and make sure it has a staff record.

        Promoting to ``customer`` is handled as a demotion so the staff record
        is removed.
        """
        self._require(actor, Action.promote_user, "Only chief admin can promote users")
        role = parse_role(new_role)
        if not is_admin_tier(role):
            return self.demote(actor, target_id)

        target = self._load(target_id)
        if not self._repository.update_role(target_id, role):
            raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "User not found", not_found=True)
        if not self._repository.create_staff_extension(new_staff_extension(target_id, role)):
            logger.info("staff record for %s already present", target_id)

        self._audit.record(
            actor_id=actor.account_id,
            action=AuditAction.user_promoted,
            resource_type="user",
            resource_id=target_id,
            changes={"old_role": target.role.value, "new_role": role.value},
        )
        return replace(target, role=role)

    def demote(self, actor: Account, target_id: str) -> Account:
        """Return ``target_id`` to ``customer`` and drop its staff record."""
        self._require(actor, Action.demote_user, "Only chief admin can demote users")
        target = self._load(target_id)
        try:
            demoted = self._repository.demote_to_customer(target_id)
        except Exception as exc:
            logger.error("demotion of %s not stored: %s", target_id, exc)
            raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "Failed to demote user") from exc
        if not demoted:
            raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "User not found", not_found=True)

        self._audit.record(
            actor_id=actor.account_id,
            action=AuditAction.user_demoted,
            resource_type="user",
            resource_id=target_id,
            changes={"old_role": target.role.value, "new_role": Role.customer.value},
        )
        return replace(target, role=Role.customer)

    def toggle_status(self, actor: Account, target_id: str) -> Account:
        """Deactivate an active account or reactivate an inactive one.

        Deactivation is stored first and then banned at the identity provider,
        which revokes every session the account holds. Guards reload the
        account on each request, so a failed ban still locks the account out.
        Reactivation lifts the ban first so a stored ``is_active`` never points
        at an identity that cannot sign in.
        """
        self._require(actor, Action.toggle_user_status, "Only chief admin can toggle user status")
        target = self._load(target_id)
        activate = not target.is_active

        if activate:
            try:
                self._provider.set_banned(target_id, False)
            except (IdentityProviderError, IdentityProviderUnavailable) as exc:
                logger.error("could not lift identity ban for %s: %s", target_id, exc)
                raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "Failed to reactivate user") from exc
            self._set_active(target_id, True)
        else:
            self._set_active(target_id, False)
            try:
                self._provider.set_banned(target_id, True)
            except (IdentityProviderError, IdentityProviderUnavailable) as exc:
                logger.error("could not revoke sessions of deactivated account %s: %s", target_id, exc)

        self._audit.record(
            actor_id=actor.account_id,
            action=AuditAction.user_activated if activate else AuditAction.user_deactivated,
            resource_type="user",
            resource_id=target_id,
            changes={"is_active": activate},
        )
        return replace(target, is_active=activate)

    def delete_account(self, actor: Account, target_id: str) -> None:
        """Permanently remove the staff record, the profile and the identity."""
        self._require(actor, Action.delete_user, "Only chief admin can delete users")
        target = self._load(target_id)
        try:
            self._repository.delete_account(target_id)
        except Exception as exc:
            logger.error("profile of %s not deleted: %s", target_id, exc)
            raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "Failed to delete user") from exc
        try:
            self._provider.delete_user(target_id)
        except IdentityProviderError as exc:
            if exc.status_code != 404:
                logger.error("identity record of %s not deleted: %s", target_id, exc)
                raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "Failed to delete user") from exc
        except IdentityProviderUnavailable as exc:
            logger.error("identity record of %s not deleted: %s", target_id, exc)
            raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "Failed to delete user") from exc

        self._audit.record(
            actor_id=actor.account_id,
            action=AuditAction.user_deleted,
            resource_type="user",
            resource_id=target_id,
            changes={"email": target.email, "role": target.role.value},
        )

    def _require(self, actor: Account, action: Action, message: str) -> None:
        if not actor.is_active or not can(actor, action):
            raise AuthError(AuthErrorCode.ACCESS_DENIED, message)

    def _load(self, target_id: str) -> Account:
        target = self._repository.get_account(target_id)
        if target is None:
            raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "User not found", not_found=True)
        return target

    def _set_active(self, target_id: str, is_active: bool) -> None:
        if not self._repository.set_active(target_id, is_active):
            raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "User not found", not_found=True)
