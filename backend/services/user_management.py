"""User management service - registration, login, profile and account administration.

Users and credentials are stored separately. Credential records are keyed
by the normalized email and carry the owning user's id:

    {"id": email, "revision": n, "user_id": ..., "credentials": {...}}

Lockout counters are re-applied on conflict (see ``update_with_retry``);
profile and account changes fail visibly when the stored revision moved.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict

from config import Settings, get_settings
from errors import (
    LockoutError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from models.base import utcnow
from models.user import SubscriptionTier, User, UserPermissions, UserRole
from models.user_credentials import AuthProvider, UserCredentials
from services.auth_service import AuthService
from services.interfaces import (
    AdminAction,
    IAuditLogger,
    IEmailService,
    IPasswordHasher,
    SecurityEvent,
    UserEvent,
    parse_request,
)
from services.snapshot_store import Snapshot, SnapshotStore, update_with_retry

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")
STALE_PASSWORD_AGE = timedelta(days=90)


class UserRegistrationRequest(BaseModel):
    email: str
    provider: AuthProvider = AuthProvider.EMAIL
    display_name: str | None = None
    password: str | None = None
    provider_id: str | None = None
    photo_url: str | None = None
    accepted_terms: bool = False
    marketing_opt_in: bool = False


class UserUpdateRequest(BaseModel):
    display_name: str | None = None
    photo_url: str | None = None
    preferences: dict[str, Any] | None = None


class PasswordChangeRequest(BaseModel):
    user_id: str
    current_password: str
    new_password: str


class PasswordValidation(BaseModel):
    is_valid: bool
    errors: list[str] = []
    strength: int


class SessionData(BaseModel):
    session_id: str
    user_id: str
    email: str
    role: UserRole
    permissions: UserPermissions
    access_token: str
    expires_at: datetime


class AuthenticationResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: User
    session: SessionData
    warning: str | None = None


class SecurityVulnerability(BaseModel):
    type: str  # weak_password, unverified_email, no_2fa
    severity: str
    description: str
    affected_users: int
    recommendation: str


class SecurityRecommendation(BaseModel):
    action: str
    priority: str
    impact: str
    estimated_time: str


class SecurityAuditResult(BaseModel):
    security_score: int
    vulnerabilities: list[SecurityVulnerability] = []
    recommendations: list[SecurityRecommendation] = []
    last_audit: datetime


def validate_password(password: str) -> PasswordValidation:
    """Check the password policy and score its strength (0-100)."""
    errors = []
    has_upper = bool(re.search(r"[A-Z]", password))
    has_lower = bool(re.search(r"[a-z]", password))
    has_digit = bool(re.search(r"[0-9]", password))
    has_special = bool(SPECIAL_CHARACTERS.search(password))

    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not has_upper:
        errors.append("Password must contain at least one uppercase letter")
    if not has_lower:
        errors.append("Password must contain at least one lowercase letter")
    if not has_digit:
        errors.append("Password must contain at least one number")
    if not has_special:
        errors.append("Password must contain at least one special character")

    strength = 0
    if len(password) >= 8:
        strength += 20
    if len(password) >= 12:
        strength += 10
    if len(password) >= 16:
        strength += 10
    strength += 15 * sum((has_upper, has_lower, has_digit, has_special))

    return PasswordValidation(is_valid=not errors, errors=errors, strength=min(strength, 100))


class UserManagementService:
    """User lifecycle, authentication and admin actions."""

    def __init__(
        self,
        password_hasher: IPasswordHasher,
        email_service: IEmailService,
        audit_logger: IAuditLogger,
        user_store: SnapshotStore,
        credential_store: SnapshotStore,
        settings: Settings | None = None,
    ):
        self.password_hasher = password_hasher
        self.email_service = email_service
        self.audit_logger = audit_logger
        self.user_store = user_store
        self.credential_store = credential_store
        self.settings = settings or get_settings()

    # --- Registration and login ---

    async def register_user(self, request: UserRegistrationRequest | dict[str, Any]) -> User:
        request = parse_request(UserRegistrationRequest, request)
        email = request.email.strip().lower()

        errors = []
        if not email:
            errors.append("Email is required")
        elif not User.is_valid_email(email):
            errors.append("Invalid email format")
        if not request.accepted_terms:
            errors.append("Terms and conditions must be accepted")
        if request.provider == AuthProvider.EMAIL and request.password:
            errors.extend(validate_password(request.password).errors)
        if errors:
            raise ValidationError(f"Registration validation failed: {', '.join(errors)}", errors=errors)

        if await self.credential_store.get(email) is not None:
            raise StateConflictError("User with this email already exists", email=email)

        if request.provider == AuthProvider.EMAIL:
            if not request.password:
                raise ValidationError("Password is required for email registration")
            password_hash = await self.password_hasher.hash(request.password)
            credentials = UserCredentials.create_email_credentials(email, password_hash)
        else:
            if not request.provider_id:
                raise ValidationError("Provider ID is required for social registration")
            credentials = UserCredentials.create_social_credentials(email, request.provider)

        user = User.create(
            email=email,
            display_name=request.display_name,
            photo_url=request.photo_url,
            email_verified=credentials.is_verified,
        )

        # The credential record keys on email, so it claims the address first.
        await self.credential_store.save(
            {"id": email, "revision": 1, "user_id": user.id, "credentials": credentials.to_persistence()},
            expected_revision=None,
        )
        await self.user_store.save(user.to_persistence(), expected_revision=None)

        if not credentials.is_verified:
            await self.email_service.send_verification_email(user.email, user.id)

        await self.audit_logger.log_user_event(UserEvent(
            user_id=user.id,
            action="user_registered",
            details={
                "email": user.email,
                "provider": request.provider.value,
                "email_verified": credentials.is_verified,
                "marketing_opt_in": request.marketing_opt_in,
            },
        ))
        logger.info(f"Registered user {user.id} via {request.provider.value}")
        return user

    async def authenticate_user(self, email: str, password: str) -> AuthenticationResult:
        """Verify a login and open a session.

        Wrong passwords count toward the lockout; a locked or unverified
        credential is rejected before the password is checked.
        """
        email = email.strip().lower()
        record = await self.credential_store.get(email)
        if record is None:
            logger.warning(f"Login attempt for unknown email {email}")
            raise PermissionDeniedError("Invalid email or password")
        credentials = UserCredentials.from_persistence(record["credentials"])

        decision = credentials.can_attempt_login()
        if not decision.can_authenticate:
            await self.audit_logger.log_security_event(SecurityEvent(
                user_id=record["user_id"],
                email=email,
                action="login_denied",
                reason=decision.reason,
            ))
            if decision.retry_at is not None:
                raise LockoutError(decision.reason or "Account is locked", retry_at=decision.retry_at)
            raise StateConflictError(decision.reason or "Login not allowed", email=email)

        if credentials.provider == AuthProvider.EMAIL:
            valid = await self.password_hasher.verify(password, credentials.password_hash or "")
            if not valid:
                await self._record_failed_login(email, record["user_id"])
                raise PermissionDeniedError("Invalid email or password")

        user = await self._get_user(record["user_id"])
        loaded_revision = user.revision
        user.authenticate()
        await self.user_store.save(user.to_persistence(), expected_revision=loaded_revision)

        await update_with_retry(
            self.credential_store,
            email,
            lambda r: self._apply_credentials(r, UserCredentials.record_successful_auth),
            self.settings.save_retry_attempts,
        )

        session = self._create_session(user)
        await self.audit_logger.log_user_event(UserEvent(
            user_id=user.id,
            action="user_login",
            details={
                "email": user.email,
                "provider": credentials.provider.value,
                "session_id": session.session_id,
            },
        ))
        logger.info(f"User {user.id} logged in")
        return AuthenticationResult(user=user, session=session, warning=decision.warning)

    # --- Profile ---

    async def update_user_profile(
        self, user_id: str, updates: UserUpdateRequest | dict[str, Any]
    ) -> User:
        updates = parse_request(UserUpdateRequest, updates)
        user = await self._get_user(user_id)
        loaded_revision = user.revision

        changed = updates.model_dump(exclude_none=True)
        if updates.display_name is not None:
            user.update_display_name(updates.display_name)
        if updates.photo_url is not None:
            user.update_photo_url(updates.photo_url)
        if updates.preferences:
            user.update_preferences(updates.preferences)

        await self.user_store.save(user.to_persistence(), expected_revision=loaded_revision)
        await self.audit_logger.log_user_event(UserEvent(
            user_id=user.id,
            action="profile_updated",
            details={"updated_fields": sorted(changed)},
        ))
        return user

    async def verify_email(self, user_id: str) -> User:
        user = await self._get_user(user_id)
        loaded_revision = user.revision
        record = await self._get_credential_record(user.email)
        credentials = UserCredentials.from_persistence(record["credentials"])

        user.verify_email()
        await self.user_store.save(user.to_persistence(), expected_revision=loaded_revision)
        if not credentials.is_verified:
            await self._save_credentials(record, credentials.mark_verified())

        await self.audit_logger.log_user_event(UserEvent(user_id=user.id, action="email_verified"))
        return user

    # --- Passwords and two-factor ---

    async def change_password(self, request: PasswordChangeRequest | dict[str, Any]) -> None:
        request = parse_request(PasswordChangeRequest, request)
        user = await self._get_user(request.user_id)
        record = await self._get_credential_record(user.email)
        credentials = UserCredentials.from_persistence(record["credentials"])

        if credentials.provider != AuthProvider.EMAIL:
            raise StateConflictError("Cannot change password for social login accounts")

        valid = await self.password_hasher.verify(request.current_password, credentials.password_hash or "")
        if not valid:
            await self.audit_logger.log_security_event(SecurityEvent(
                user_id=user.id,
                action="password_change_failed",
                reason="invalid_current_password",
            ))
            raise PermissionDeniedError("Current password is incorrect")

        validation = validate_password(request.new_password)
        if not validation.is_valid:
            raise ValidationError(
                f"Password validation failed: {', '.join(validation.errors)}",
                errors=validation.errors,
            )

        new_hash = await self.password_hasher.hash(request.new_password)
        await self._save_credentials(record, credentials.update_password(new_hash))
        await self.audit_logger.log_security_event(SecurityEvent(
            user_id=user.id,
            action="password_changed",
            details={"strength": validation.strength},
        ))

    async def request_password_reset(self, email: str) -> None:
        """Email a reset token. Unknown addresses are ignored so callers cannot discover accounts."""
        email = email.strip().lower()
        record = await self.credential_store.get(email)
        if record is None:
            logger.info(f"Password reset requested for unknown email {email}")
            return

        credentials = UserCredentials.from_persistence(record["credentials"])
        if credentials.provider != AuthProvider.EMAIL:
            raise StateConflictError("Cannot reset password for social login accounts")

        token = AuthService.create_password_reset_token(record["user_id"], email)
        await self.email_service.send_password_reset_email(email, token)
        await self.audit_logger.log_security_event(SecurityEvent(
            user_id=record["user_id"],
            email=email,
            action="password_reset_requested",
        ))

    async def enable_two_factor(self, user_id: str) -> UserCredentials:
        return await self._set_two_factor(user_id, enabled=True)

    async def disable_two_factor(self, user_id: str) -> UserCredentials:
        return await self._set_two_factor(user_id, enabled=False)

    # --- Subscription ---

    async def upgrade_subscription(self, user_id: str, new_tier: SubscriptionTier) -> User:
        user = await self._get_user(user_id)
        loaded_revision = user.revision
        from_tier = user.subscription

        user.upgrade_subscription(new_tier)
        await self.user_store.save(user.to_persistence(), expected_revision=loaded_revision)
        await self.audit_logger.log_user_event(UserEvent(
            user_id=user.id,
            action="subscription_upgraded",
            details={"from_tier": from_tier.value, "to_tier": user.subscription.value},
        ))
        logger.info(f"User {user.id} upgraded from {from_tier.value} to {user.subscription.value}")
        return user

    # --- Administration ---

    async def block_user(self, target_user_id: str, admin_user_id: str, reason: str) -> User:
        await self._get_admin(admin_user_id)
        target = await self._get_user(target_user_id)
        loaded_revision = target.revision

        target.block(admin_user_id, reason)
        await self.user_store.save(target.to_persistence(), expected_revision=loaded_revision)
        await self.audit_logger.log_admin_action(AdminAction(
            admin_id=admin_user_id,
            action="user_blocked",
            target_user_id=target_user_id,
            reason=reason,
        ))
        return target

    async def unblock_user(self, target_user_id: str, admin_user_id: str) -> User:
        await self._get_admin(admin_user_id)
        target = await self._get_user(target_user_id)
        loaded_revision = target.revision

        target.unblock()
        await self.user_store.save(target.to_persistence(), expected_revision=loaded_revision)
        await self.audit_logger.log_admin_action(AdminAction(
            admin_id=admin_user_id,
            action="user_unblocked",
            target_user_id=target_user_id,
        ))
        return target

    async def promote_user(self, target_user_id: str, admin_user_id: str) -> User:
        admin = await self._get_admin(admin_user_id)
        target = await self._get_user(target_user_id)
        if not target.can_be_managed_by(admin):
            raise PermissionDeniedError("Admins cannot change their own role", user_id=admin_user_id)
        loaded_revision = target.revision

        target.promote_to_admin(admin_user_id)
        await self.user_store.save(target.to_persistence(), expected_revision=loaded_revision)
        await self.audit_logger.log_admin_action(AdminAction(
            admin_id=admin_user_id,
            action="user_promoted",
            target_user_id=target_user_id,
        ))
        return target

    async def demote_user(self, target_user_id: str, admin_user_id: str) -> User:
        admin = await self._get_admin(admin_user_id)
        target = await self._get_user(target_user_id)
        if not target.can_be_managed_by(admin):
            raise PermissionDeniedError("Admins cannot change their own role", user_id=admin_user_id)
        loaded_revision = target.revision

        target.demote_from_admin()
        await self.user_store.save(target.to_persistence(), expected_revision=loaded_revision)
        await self.audit_logger.log_admin_action(AdminAction(
            admin_id=admin_user_id,
            action="user_demoted",
            target_user_id=target_user_id,
        ))
        return target

    async def perform_security_audit(self) -> SecurityAuditResult:
        users = [User.from_persistence(s) for s in await self.user_store.list_all()]
        credentials = [
            UserCredentials.from_persistence(r["credentials"])
            for r in await self.credential_store.list_all()
        ]
        now = utcnow()
        email_credentials = [c for c in credentials if c.provider == AuthProvider.EMAIL]

        # No stored password contents; an old password stands in for a weak one
        stale_passwords = sum(
            1 for c in email_credentials
            if c.password_changed_at is None or now - c.password_changed_at > STALE_PASSWORD_AGE
        )
        unverified = sum(1 for u in users if not u.email_verified)
        without_2fa = sum(1 for c in email_credentials if not c.two_factor_enabled)

        vulnerabilities = []
        if stale_passwords:
            vulnerabilities.append(SecurityVulnerability(
                type="weak_password",
                severity="medium",
                description=f"{stale_passwords} users have not changed their password in 90 days",
                affected_users=stale_passwords,
                recommendation="Encourage users to update their passwords",
            ))
        if unverified:
            vulnerabilities.append(SecurityVulnerability(
                type="unverified_email",
                severity="low",
                description=f"{unverified} users have unverified emails",
                affected_users=unverified,
                recommendation="Send verification reminders",
            ))
        if without_2fa:
            vulnerabilities.append(SecurityVulnerability(
                type="no_2fa",
                severity="medium",
                description=f"{without_2fa} users without two-factor authentication",
                affected_users=without_2fa,
                recommendation="Promote 2FA adoption",
            ))

        recommendations = []
        if vulnerabilities:
            recommendations = [
                SecurityRecommendation(
                    action="Implement password strength requirements",
                    priority="high",
                    impact="Improved account security",
                    estimated_time="2 hours",
                ),
                SecurityRecommendation(
                    action="Send security awareness emails",
                    priority="medium",
                    impact="Increased user security awareness",
                    estimated_time="1 hour",
                ),
            ]

        affected = sum(v.affected_users for v in vulnerabilities)
        score = max(0.0, 100 - affected / len(users) * 100) if users else 100.0
        return SecurityAuditResult(
            security_score=round(score),
            vulnerabilities=vulnerabilities,
            recommendations=recommendations,
            last_audit=now,
        )

    # --- Internals ---

    async def _record_failed_login(self, email: str, user_id: str) -> None:
        updated = await update_with_retry(
            self.credential_store,
            email,
            lambda r: self._apply_credentials(r, UserCredentials.record_failed_auth),
            self.settings.save_retry_attempts,
        )
        credentials = UserCredentials.from_persistence(updated["credentials"])
        await self.audit_logger.log_security_event(SecurityEvent(
            user_id=user_id,
            email=email,
            action="login_failed",
            reason="invalid_password",
            details={"failed_attempts": credentials.failed_attempts},
        ))
        if credentials.is_locked():
            logger.warning(f"Locked {email} until {credentials.locked_until.isoformat()}")
            await self.audit_logger.log_security_event(SecurityEvent(
                user_id=user_id,
                email=email,
                action="account_locked",
                details={"locked_until": credentials.locked_until.isoformat()},
            ))
        else:
            logger.warning(f"Failed login for {email} ({credentials.failed_attempts} attempts)")

    async def _set_two_factor(self, user_id: str, enabled: bool) -> UserCredentials:
        user = await self._get_user(user_id)
        record = await self._get_credential_record(user.email)
        credentials = UserCredentials.from_persistence(record["credentials"])

        updated = credentials.enable_two_factor() if enabled else credentials.disable_two_factor()
        await self._save_credentials(record, updated)
        await self.audit_logger.log_security_event(SecurityEvent(
            user_id=user.id,
            action="two_factor_enabled" if enabled else "two_factor_disabled",
        ))
        return updated

    def _create_session(self, user: User) -> SessionData:
        session_id = uuid4().hex
        return SessionData(
            session_id=session_id,
            user_id=user.id,
            email=user.email,
            role=user.role,
            permissions=user.get_permissions(),
            access_token=AuthService.create_access_token(
                user.id, user.email, user.role.value, session_id
            ),
            expires_at=utcnow() + timedelta(hours=self.settings.session_expire_hours),
        )

    @staticmethod
    def _apply_credentials(record: Snapshot, change) -> Snapshot:
        credentials = change(UserCredentials.from_persistence(record["credentials"]))
        return record | {"revision": record["revision"] + 1, "credentials": credentials.to_persistence()}

    async def _save_credentials(self, record: Snapshot, credentials: UserCredentials) -> None:
        await self.credential_store.save(
            record | {"revision": record["revision"] + 1, "credentials": credentials.to_persistence()},
            expected_revision=record["revision"],
        )

    async def _get_credential_record(self, email: str) -> Snapshot:
        record = await self.credential_store.get(email)
        if record is None:
            raise NotFoundError("Credentials not found", email=email)
        return record

    async def _get_user(self, user_id: str) -> User:
        snapshot = await self.user_store.get(user_id)
        if snapshot is None:
            raise NotFoundError("User not found", user_id=user_id)
        return User.from_persistence(snapshot)

    async def _get_admin(self, admin_user_id: str) -> User:
        admin = await self.user_store.get(admin_user_id)
        if admin is None:
            raise PermissionDeniedError("Insufficient permissions to manage users", user_id=admin_user_id)
        user = User.from_persistence(admin)
        if not user.has_permission("can_manage_users"):
            raise PermissionDeniedError("Insufficient permissions to manage users", user_id=admin_user_id)
        return user
