from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from storefront_auth.api import admin, routes
from storefront_auth.config import get_settings
from storefront_auth.domain.account import Account, StaffExtension
from storefront_auth.domain.administration import AccountAdministrationService
from storefront_auth.domain.audit import AuditTrail
from storefront_auth.domain.contracts import ADMIN_AUDIENCE, CUSTOMER_AUDIENCE
from storefront_auth.domain.guard import AccessGuard
from storefront_auth.domain.roles import Role
from storefront_auth.domain.service import AuthenticationService
from storefront_auth.identity.provider import (
    IdentityProviderError,
    ProviderSession,
    ProviderUser,
    SignUpOutcome,
)
from storefront_auth.repository import AuditLogRecord
from storefront_auth.security.rate_limiter import SlidingWindowAttemptLimiter

DEFAULT_PASSWORD = "secret123"


class FakeRepository:
    """In-memory repository mimicking the Postgres-backed behaviors."""

    def __init__(self) -> None:
        self.accounts: dict[str, Account] = {}
        self.staff: dict[str, StaffExtension] = {}
        self.audit_log: list[AuditLogRecord] = []
        self.fail_reads = False
        self.fail_audit_writes = False
        self.fail_staff_deletes = False
        self._audit_seq = 0
        self._epoch = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def add(self, account: Account) -> Account:
        self.accounts[account.account_id] = account
        return account

    def get_account(self, account_id: str) -> Account | None:
        if self.fail_reads:
            raise RuntimeError("connection refused")
        account = self.accounts.get(account_id)
        return replace(account) if account else None

    def upsert_customer(
        self,
        *,
        account_id: str,
        email: str,
        full_name: str,
        phone: str,
        is_active: bool,
    ) -> Account:
        if any(other.email == email and other.account_id != account_id for other in self.accounts.values()):
            raise RuntimeError('duplicate key value violates unique constraint "profiles_email_key"')
        now = datetime.now(timezone.utc)
        existing = self.accounts.get(account_id)
        if any(other.email == email and other.account_id != account_id for other in self.accounts.values()):
            raise RuntimeError("duplicate key value violates unique constraint \"profiles_email_key\"")
        account = Account(
            account_id=account_id,
            email=email,
            role=Role.customer,
            is_active=is_active,
            full_name=full_name,
            phone=phone,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self.accounts[account_id] = account
        return replace(account)

    def set_active(self, account_id: str, is_active: bool) -> bool:
        account = self.accounts.get(account_id)
        if account is None:
            return False
        account.is_active = is_active
        return True

    def update_role(self, account_id: str, role: Role) -> bool:
        account = self.accounts.get(account_id)
        if account is None:
            return False
        account.role = role
        return True

    def update_profile(self, account_id: str, changes: dict[str, Any]) -> Account | None:
        account = self.accounts.get(account_id)
        if account is None:
            return None
        for name in ("full_name", "phone"):
            if name in changes:
                setattr(account, name, changes[name])
        return replace(account)

    def delete_account(self, account_id: str) -> bool:
        if self.fail_staff_deletes and account_id in self.staff:
            raise RuntimeError("violates foreign key constraint on admin_activity_logs")
        self.staff.pop(account_id, None)
        return self.accounts.pop(account_id, None) is not None

    def list_accounts(self, role: Role | None = None) -> list[Account]:
        return [
            replace(account)
            for account in self.accounts.values()
            if role is None or account.role is role
        ]

    def create_staff_extension(self, staff: StaffExtension) -> bool:
        if staff.account_id in self.staff:
            return False
        self.staff[staff.account_id] = staff
        return True

    def demote_to_customer(self, account_id: str) -> bool:
        account = self.accounts.get(account_id)
        if account is None:
            return False
        if self.fail_staff_deletes and account_id in self.staff:
            raise RuntimeError("violates foreign key constraint on admin_activity_logs")
        account.role = Role.customer
        self.staff.pop(account_id, None)
        return True

    def touch_last_login(self, account_id: str, at: datetime) -> None:
        staff = self.staff.get(account_id)
        if staff is not None:
            staff.last_login_at = at

    def write_audit_entry(
        self,
        *,
        actor_id: str,
        action: str,
        resource_type: str | None,
        resource_id: str | None,
        changes: dict[str, Any] | None = None,
    ) -> None:
        if self.fail_audit_writes:
            raise RuntimeError("audit table unavailable")
        self._audit_seq += 1
        self.audit_log.append(
            AuditLogRecord(
                audit_id=str(uuid.uuid4()),
                actor_id=actor_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                changes=changes or {},
                created_at=self._epoch + timedelta(seconds=self._audit_seq),
            )
        )

    def list_audit_entries(
        self,
        *,
        actor_id: str | None = None,
        action: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: tuple[datetime, str] | None = None,
    ):
        results = list(self.audit_log)
        if actor_id:
            results = [record for record in results if record.actor_id == actor_id]
        if action:
            results = [record for record in results if record.action == action]
        if created_after:
            results = [record for record in results if record.created_at >= created_after]
        if created_before:
            results = [record for record in results if record.created_at <= created_before]
        results.sort(key=lambda r: (r.created_at, r.audit_id), reverse=True)
        if cursor:
            results = [record for record in results if (record.created_at, record.audit_id) < cursor]
        slice_ = results[:limit]
        next_cursor = None
        if len(results) > limit:
            last = slice_[-1]
            next_cursor = (last.created_at, last.audit_id)
        return slice_, next_cursor

    def actions(self) -> list[str]:
        return [record.action for record in self.audit_log]


@dataclass
class FakeIdentity:
    user_id: str
    email: str
    password: str
    metadata: dict[str, Any] = field(default_factory=dict)
    confirmed: bool = True
    banned: bool = False


class FakeIdentityProvider:
    """In-memory identity provider issuing real HS256 session tokens.

    Sessions are tracked so that sign-out, bans and deletion invalidate them
    the way the hosted provider does. ``failures`` maps a method name to an
    exception raised on its next calls.
    """

    def __init__(self, *, require_confirmation: bool = False) -> None:
        self.require_confirmation = require_confirmation
        self.identities: dict[str, FakeIdentity] = {}
        self.sessions: dict[str, str] = {}
        self.refresh_tokens: dict[str, str] = {}
        self.confirmation_tokens: dict[str, str] = {}
        self.reset_requests: list[tuple[str, str]] = []
        self.failures: dict[str, Exception] = {}
        self.calls: list[str] = []

    def register(self, email: str, password: str = DEFAULT_PASSWORD, *, confirmed: bool = True) -> FakeIdentity:
        identity = FakeIdentity(user_id=str(uuid.uuid4()), email=email, password=password, confirmed=confirmed)
        self.identities[identity.user_id] = identity
        return identity

    def live_sessions(self, user_id: str) -> list[str]:
        return [token for token, owner in self.sessions.items() if owner == user_id]

    def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        self._enter("sign_in_with_password")
        identity = self._by_email(email)
        if identity is None or identity.password != password:
            raise IdentityProviderError("Invalid login credentials", status_code=400, error_code="invalid_credentials")
        if not identity.confirmed:
            raise IdentityProviderError("Email not confirmed", status_code=400, error_code="email_not_confirmed")
        if identity.banned:
            raise IdentityProviderError("User is banned", status_code=400, error_code="user_banned")
        return self._open_session(identity)

    def sign_up(self, email: str, password: str, metadata: dict[str, Any], redirect_to: str) -> SignUpOutcome:
        self._enter("sign_up")
        if self._by_email(email) is not None:
            if self.require_confirmation:
                # Hosted providers hide existing emails behind a fresh, unsaved user.
                placeholder = ProviderUser(
                    user_id=str(uuid.uuid4()), email=email, metadata=dict(metadata), has_identity=False
                )
                return SignUpOutcome(user=placeholder, session=None)
            raise IdentityProviderError("User already registered", status_code=422, error_code="user_already_exists")
        identity = self.register(email, password, confirmed=not self.require_confirmation)
        identity.metadata = dict(metadata)
        if self.require_confirmation:
            self.confirmation_tokens[f"confirm-{identity.user_id}"] = identity.user_id
            return SignUpOutcome(user=self._user(identity), session=None)
        session = self._open_session(identity)
        return SignUpOutcome(user=session.user, session=session)

    def verify_otp(self, token_hash: str, otp_type: str) -> ProviderSession | None:
        self._enter("verify_otp")
        user_id = self.confirmation_tokens.pop(token_hash, None)
        if user_id is None:
            raise IdentityProviderError("Email link is invalid or has expired", status_code=403, error_code="otp_expired")
        identity = self.identities[user_id]
        identity.confirmed = True
        return self._open_session(identity)

    def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        self._enter("reset_password_for_email")
        self.reset_requests.append((email, redirect_to))

    def update_user(self, access_token: str, *, password: str) -> ProviderUser:
        self._enter("update_user")
        identity = self._session_identity(access_token)
        identity.password = password
        return self._user(identity)

    def sign_out(self, access_token: str) -> None:
        self._enter("sign_out")
        if self.sessions.pop(access_token, None) is None:
            raise IdentityProviderError("Session not found", status_code=404, error_code="session_not_found")

    def get_user(self, access_token: str) -> ProviderUser:
        self._enter("get_user")
        return self._user(self._session_identity(access_token))

    def refresh_session(self, refresh_token: str) -> ProviderSession:
        self._enter("refresh_session")
        user_id = self.refresh_tokens.pop(refresh_token, None)
        if user_id is None or user_id not in self.identities:
            raise IdentityProviderError(
                "Invalid Refresh Token: Refresh Token Not Found",
                status_code=400,
                error_code="refresh_token_not_found",
            )
        return self._open_session(self.identities[user_id])

    def set_banned(self, user_id: str, banned: bool) -> None:
        self._enter("set_banned")
        identity = self.identities.get(user_id)
        if identity is None:
            raise IdentityProviderError("User not found", status_code=404, error_code="user_not_found")
        identity.banned = banned
        if banned:
            self._revoke_all(user_id)

    def delete_user(self, user_id: str) -> None:
        self._enter("delete_user")
        if self.identities.pop(user_id, None) is None:
            raise IdentityProviderError("User not found", status_code=404, error_code="user_not_found")
        self._revoke_all(user_id)

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    def _by_email(self, email: str) -> FakeIdentity | None:
        for identity in self.identities.values():
            if identity.email.lower() == email.lower():
                return identity
        return None

    def _session_identity(self, access_token: str) -> FakeIdentity:
        user_id = self.sessions.get(access_token)
        identity = self.identities.get(user_id) if user_id else None
        if identity is None or identity.banned:
            raise IdentityProviderError("Session not found", status_code=403, error_code="session_not_found")
        return identity

    def _open_session(self, identity: FakeIdentity) -> ProviderSession:
        access_token = mint_token(identity.user_id)
        refresh_token = uuid.uuid4().hex
        self.sessions[access_token] = identity.user_id
        self.refresh_tokens[refresh_token] = identity.user_id
        return ProviderSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=3600,
            user=self._user(identity),
        )

    def _revoke_all(self, user_id: str) -> None:
        for token in self.live_sessions(user_id):
            del self.sessions[token]
        for token, owner in list(self.refresh_tokens.items()):
            if owner == user_id:
                del self.refresh_tokens[token]

    def _user(self, identity: FakeIdentity) -> ProviderUser:
        return ProviderUser(
            user_id=identity.user_id,
            email=identity.email,
            metadata=dict(identity.metadata),
            email_confirmed=identity.confirmed,
        )


def mint_token(user_id: str, *, expires_in: int = 3600, secret: str | None = None) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "aud": settings.identity_jwt_audience,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
        "session_id": str(uuid.uuid4()),
    }
    return jwt.encode(payload, secret or settings.identity_jwt_secret, algorithm="HS256")


@dataclass
class Backend:
    """Every service wired against the same fakes."""

    repository: FakeRepository
    provider: FakeIdentityProvider
    audit: AuditTrail
    admin_auth: AuthenticationService
    shop_auth: AuthenticationService
    guard: AccessGuard
    administration: AccountAdministrationService

    def create_account(
        self,
        email: str,
        role: Role = Role.customer,
        *,
        is_active: bool = True,
        password: str = DEFAULT_PASSWORD,
    ) -> Account:
        identity = self.provider.register(email, password)
        return self.repository.add(
            Account(
                account_id=identity.user_id,
                email=email,
                role=role,
                is_active=is_active,
                full_name=email.split("@")[0].title(),
                created_at=datetime.now(timezone.utc),
            )
        )

    def session_for(self, account: Account, password: str = DEFAULT_PASSWORD) -> ProviderSession:
        return self.provider.sign_in_with_password(account.email, password)


@pytest.fixture
def backend() -> Backend:
    repository = FakeRepository()
    provider = FakeIdentityProvider()
    audit = AuditTrail(repository)
    settings = get_settings()
    return Backend(
        repository=repository,
        provider=provider,
        audit=audit,
        admin_auth=AuthenticationService(provider, repository, audit, ADMIN_AUDIENCE, settings),
        shop_auth=AuthenticationService(provider, repository, audit, CUSTOMER_AUDIENCE, settings),
        guard=AccessGuard(provider, repository),
        administration=AccountAdministrationService(provider, repository, audit),
    )


@pytest.fixture
def api_client(backend: Backend):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    app.include_router(routes.router)
    app.include_router(admin.router)
    app.state.admin_auth = backend.admin_auth
    app.state.shop_auth = backend.shop_auth
    app.state.access_guard = backend.guard
    app.state.administration = backend.administration
    app.state.audit_trail = backend.audit
    app.state.attempt_limiter = SlidingWindowAttemptLimiter(max_attempts=3, window_seconds=60)

    with TestClient(app) as client:
        yield client, backend
