"""Authentication service orchestrating the identity provider, profiles and auditing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import re

from ..config import Settings, get_settings
from ..identity.errors import ProviderOperation, translate_provider_error
from ..identity.provider import (
    IdentityProvider,
    IdentityProviderError,
    IdentityProviderUnavailable,
    ProviderSession,
)
from ..metrics import LOGIN_ATTEMPTS
from ..repository import AccountRepository
from .account import Account
from .audit import AuditAction, AuditTrail
from .contracts import AudiencePolicy, LoginInput, PasswordResetInput, ProfileUpdate, SignupInput
from .errors import AuthError, AuthErrorCode
from .roles import Role, at_least, is_admin_tier

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_PROVIDER_FAILURES = (IdentityProviderError, IdentityProviderUnavailable)


@dataclass(slots=True)
class LoginResult:
    """An admitted account together with the provider session it now holds."""

    account: Account
    session: ProviderSession


@dataclass(slots=True)
class SignupResult:
    account: Account
    requires_confirmation: bool
    session: ProviderSession | None = None


class AuthenticationService:
    """Credential workflows for one audience (admin console or shop).

    Every failure is raised as :class:`AuthError`. Validation runs before the
    identity provider is contacted, and a login that authenticates but does
    not satisfy the audience policy has its fresh session revoked before the
    error is raised.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        repository: AccountRepository,
        audit: AuditTrail,
        policy: AudiencePolicy,
        settings: Settings | None = None,
    ) -> None:
        self._provider = provider
        self._repository = repository
        self._audit = audit
        self._policy = policy
        self._settings = settings or get_settings()

    @property
    def policy(self) -> AudiencePolicy:
        return self._policy

    def login(self, payload: LoginInput) -> LoginResult:
        """Authenticate ``payload`` and admit the account under this audience policy."""
        try:
            result = self._login(payload)
        except AuthError as exc:
            LOGIN_ATTEMPTS.labels(audience=self._policy.name, outcome=exc.code.value).inc()
            raise
        LOGIN_ATTEMPTS.labels(audience=self._policy.name, outcome="SUCCESS").inc()
        return result

    def _login(self, payload: LoginInput) -> LoginResult:
        email = (payload.email or "").strip()
        if not email or not payload.password:
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, "Email and password are required")

        try:
            session = self._provider.sign_in_with_password(email, payload.password)
        except _PROVIDER_FAILURES as exc:
            logger.warning("%s login rejected by identity provider: %s", self._policy.name, exc)
            raise translate_provider_error(exc, ProviderOperation.login) from exc

        account = self._admit(session)

        if is_admin_tier(self._policy.minimum_role):
            self._record_staff_login(account)
        return LoginResult(account=account, session=session)

    def refresh_session(self, refresh_token: str | None) -> LoginResult:
        """Exchange a refresh token and re-apply the audience policy to the account."""
        if not refresh_token:
            raise AuthError(AuthErrorCode.SESSION_INVALID, "Not authenticated")
        try:
            session = self._provider.refresh_session(refresh_token)
        except _PROVIDER_FAILURES as exc:
            logger.info("%s session refresh rejected: %s", self._policy.name, exc)
            raise translate_provider_error(exc, ProviderOperation.refresh) from exc
        return LoginResult(account=self._admit(session), session=session)

    def signup(self, payload: SignupInput) -> SignupResult:
        """Register a customer identity.

        The role sent to the provider and written to the profile is always
        ``customer``; promotion is a separate chief-admin operation.
        """
        self._validate_signup(payload)
        email = payload.email.strip()
        full_name = payload.full_name.strip()
        phone = payload.phone.strip()

        try:
            outcome = self._provider.sign_up(
                email,
                payload.password,
                {"full_name": full_name, "phone": phone, "role": Role.customer.value},
                redirect_to=f"{self._settings.site_url}/shop/auth/confirm",
            )
        except _PROVIDER_FAILURES as exc:
            logger.warning("signup rejected by identity provider: %s", exc)
            raise translate_provider_error(exc, ProviderOperation.signup) from exc

        requires_confirmation = outcome.session is None
        if not outcome.user.has_identity:
            logger.info("signup for an already registered email answered as pending confirmation")
            pending = Account(
                account_id=outcome.user.user_id,
                email=email,
                role=Role.customer,
                is_active=False,
                full_name=full_name,
                phone=phone,
            )
            return SignupResult(account=pending, requires_confirmation=True)

        try:
            account = self._repository.upsert_customer(
                account_id=outcome.user.user_id,
                email=outcome.user.email or email,
                full_name=full_name,
                phone=phone,
                is_active=not requires_confirmation,
            )
        except Exception as exc:
            logger.error("profile for new identity %s not stored: %s", outcome.user.user_id, exc)
            raise AuthError(AuthErrorCode.SIGNUP_FAILED, "Failed to create account") from exc
        logger.info("customer %s signed up (confirmation required: %s)", account.account_id, requires_confirmation)
        return SignupResult(
            account=account,
            requires_confirmation=requires_confirmation,
            session=outcome.session,
        )

    def verify_email(self, token_hash: str | None) -> LoginResult:
        """Redeem an email confirmation token and activate the pending account."""
        if not token_hash:
            raise AuthError(AuthErrorCode.ACCOUNT_NOT_CONFIRMED, "Invalid confirmation link")
        try:
            session = self._provider.verify_otp(token_hash, "email")
        except _PROVIDER_FAILURES as exc:
            logger.info("email confirmation rejected: %s", exc)
            raise translate_provider_error(exc, ProviderOperation.verify_email) from exc
        if session is None:
            raise AuthError(AuthErrorCode.ACCOUNT_NOT_CONFIRMED, "Invalid confirmation link")

        account_id = session.user.user_id
        if not self._repository.set_active(account_id, True):
            raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "User profile not found")
        account = self._repository.get_account(account_id)
        if account is None:
            raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "User profile not found")
        return LoginResult(account=account, session=session)

    def send_password_reset_email(self, email: str | None) -> None:
        email = (email or "").strip()
        if not EMAIL_PATTERN.match(email):
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, "Please enter a valid email address")
        try:
            self._provider.reset_password_for_email(
                email, redirect_to=f"{self._settings.site_url}/shop/auth/reset-password"
            )
        except _PROVIDER_FAILURES as exc:
            logger.warning("password reset email failed: %s", exc)
            raise translate_provider_error(exc, ProviderOperation.password_reset) from exc

    def reset_password(self, access_token: str | None, payload: PasswordResetInput) -> None:
        """Set a new password for the session holder (the reset link signs the user in)."""
        password = payload.password or ""
        if password != (payload.confirm_password or ""):
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, "Passwords do not match")
        self._check_password(password)
        if not access_token:
            raise AuthError(AuthErrorCode.SESSION_INVALID, "Not authenticated")
        try:
            self._provider.update_user(access_token, password=password)
        except _PROVIDER_FAILURES as exc:
            logger.warning("password update failed: %s", exc)
            raise translate_provider_error(exc, ProviderOperation.password_reset) from exc

    def sign_out(self, access_token: str | None) -> None:
        """Revoke the session; signing out twice, or without a session, succeeds."""
        if not access_token:
            return
        try:
            self._provider.sign_out(access_token)
        except IdentityProviderError as exc:
            if exc.status_code in (401, 403, 404):
                return
            logger.warning("sign out failed: %s", exc)
            raise translate_provider_error(exc, ProviderOperation.sign_out) from exc
        except IdentityProviderUnavailable as exc:
            logger.warning("sign out failed: %s", exc)
            raise translate_provider_error(exc, ProviderOperation.sign_out) from exc

    def update_profile(self, account: Account, changes: ProfileUpdate) -> Account:
        """Apply owner-editable profile fields to ``account``."""
        values = {name: value.strip() for name, value in changes.changes().items()}
        full_name = values.get("full_name")
        if full_name is not None and len(full_name) < self._settings.full_name_min_length:
            raise AuthError(
                AuthErrorCode.INVALID_CREDENTIALS,
                f"Full name must be at least {self._settings.full_name_min_length} characters",
            )
        updated = self._repository.update_profile(account.account_id, values)
        if updated is None:
            raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "User profile not found")
        return updated

    def _admit(self, session: ProviderSession) -> Account:
        account = self._repository.get_account(session.user.user_id)
        if account is None:
            self._revoke(session)
            raise AuthError(AuthErrorCode.UNKNOWN_ERROR, "User profile not found")

        if not at_least(account.role, self._policy.minimum_role):
            self._revoke(session)
            raise AuthError(AuthErrorCode.UNAUTHORIZED_ROLE, "Access denied. Admin privileges required.")

        if not account.is_active:
            self._revoke(session)
            contact = "administrator" if is_admin_tier(self._policy.minimum_role) else "support"
            raise AuthError(AuthErrorCode.ACCOUNT_INACTIVE, f"Account is inactive. Contact {contact}.")
        return account

    def _revoke(self, session: ProviderSession) -> None:
        try:
            self._provider.sign_out(session.access_token)
        except Exception:
            logger.error("could not revoke rejected session for %s", session.user.user_id, exc_info=True)

    def _record_staff_login(self, account: Account) -> None:
        try:
            self._repository.touch_last_login(account.account_id, datetime.now(timezone.utc))
        except Exception:
            logger.warning("last login update failed for %s", account.account_id, exc_info=True)
        self._audit.record(
            actor_id=account.account_id,
            action=AuditAction.admin_login,
            resource_type="auth",
            changes={"action": "Admin logged in"},
        )

    def _validate_signup(self, payload: SignupInput) -> None:
        if not all((payload.email, payload.password, payload.full_name, payload.phone)):
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, "All fields are required")
        if not EMAIL_PATTERN.match(payload.email.strip()):
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, "Please enter a valid email address")
        self._check_password(payload.password)
        if len(payload.full_name.strip()) < self._settings.full_name_min_length:
            raise AuthError(
                AuthErrorCode.INVALID_CREDENTIALS,
                f"Full name must be at least {self._settings.full_name_min_length} characters",
            )

    def _check_password(self, password: str) -> None:
        if len(password) < self._settings.password_min_length:
            raise AuthError(
                AuthErrorCode.INVALID_CREDENTIALS,
                f"Password must be at least {self._settings.password_min_length} characters",
            )
