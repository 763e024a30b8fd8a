"""UserCredentials value object - authentication identity and lockout state.

Every state change returns a new instance; the original is never modified.
"""

import enum
from datetime import datetime, timedelta
from typing import Any, Self

from pydantic import BaseModel, ConfigDict

from errors import LockoutError, StateConflictError, ValidationError
from models.base import utcnow

MAX_FAILED_ATTEMPTS = 5
LOCKOUT_DURATION = timedelta(minutes=30)
WARNING_THRESHOLD = 3
RECENT_PASSWORD_CHANGE = timedelta(days=30)


class AuthProvider(str, enum.Enum):
    EMAIL = "email"
    GOOGLE = "google"
    FACEBOOK = "facebook"
    GITHUB = "github"
    APPLE = "apple"


class SecurityLevel(str, enum.Enum):
    VERY_LOW = "very-low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class LoginDecision(BaseModel):
    can_authenticate: bool
    reason: str | None = None
    retry_at: datetime | None = None
    warning: str | None = None


class SecurityScore(BaseModel):
    score: int
    level: SecurityLevel
    factors: list[str] = []


class UserCredentials(BaseModel):
    """Credentials for one user's auth identity.

    Locked while ``locked_until`` is in the future. Two-factor
    authentication is only available for the email provider.
    """

    model_config = ConfigDict(frozen=True)

    email: str
    provider: AuthProvider
    password_hash: str | None = None
    is_verified: bool = False
    two_factor_enabled: bool = False
    failed_attempts: int = 0
    locked_until: datetime | None = None
    last_login_at: datetime | None = None
    password_changed_at: datetime | None = None

    @classmethod
    def create_email_credentials(cls, email: str, password_hash: str) -> Self:
        if not password_hash:
            raise ValidationError("Password hash is required for email credentials")
        return cls(
            email=email.strip().lower(),
            provider=AuthProvider.EMAIL,
            password_hash=password_hash,
            password_changed_at=utcnow(),
        )

    @classmethod
    def create_social_credentials(cls, email: str, provider: AuthProvider) -> Self:
        provider = AuthProvider(provider)
        if provider == AuthProvider.EMAIL:
            raise ValidationError("Use email credentials for the email provider")
        # Social providers verify the address themselves
        return cls(email=email.strip().lower(), provider=provider, is_verified=True)

    # --- Lockout state machine ---

    def is_locked(self, now: datetime | None = None) -> bool:
        return self.locked_until is not None and (now or utcnow()) < self.locked_until

    def lock_expired(self, now: datetime | None = None) -> bool:
        return self.locked_until is not None and not self.is_locked(now)

    def record_failed_auth(self) -> Self:
        # A lapsed lock starts a fresh count.
        if self.lock_expired():
            attempts, locked_until = 1, None
        else:
            attempts, locked_until = self.failed_attempts + 1, self.locked_until
        if attempts >= MAX_FAILED_ATTEMPTS:
            locked_until = utcnow() + LOCKOUT_DURATION
        return self._replace(failed_attempts=attempts, locked_until=locked_until)

    def record_successful_auth(self) -> Self:
        if self.is_locked():
            raise LockoutError(
                "Account is temporarily locked",
                retry_at=self.locked_until,
                email=self.email,
            )
        return self._replace(failed_attempts=0, locked_until=None, last_login_at=utcnow())

    def can_attempt_login(self) -> LoginDecision:
        if self.is_locked():
            return LoginDecision(
                can_authenticate=False,
                reason="Account is temporarily locked due to too many failed attempts",
                retry_at=self.locked_until,
            )
        if not self.is_verified:
            return LoginDecision(can_authenticate=False, reason="Email not verified")
        if self.failed_attempts >= WARNING_THRESHOLD and not self.lock_expired():
            remaining = max(0, MAX_FAILED_ATTEMPTS - self.failed_attempts)
            return LoginDecision(
                can_authenticate=True,
                warning=f"{remaining} attempts remaining before account lockout",
            )
        return LoginDecision(can_authenticate=True)

    # --- Account changes ---

    def mark_verified(self) -> Self:
        return self._replace(is_verified=True)

    def update_password(self, password_hash: str) -> Self:
        if self.provider != AuthProvider.EMAIL:
            raise StateConflictError("Password can only be set for email credentials")
        if not password_hash:
            raise ValidationError("Password hash is required")
        return self._replace(
            password_hash=password_hash,
            password_changed_at=utcnow(),
            failed_attempts=0,
            locked_until=None,
        )

    def enable_two_factor(self) -> Self:
        if self.provider != AuthProvider.EMAIL:
            raise StateConflictError("Two-factor authentication is only available for email accounts")
        if self.two_factor_enabled:
            raise StateConflictError("Two-factor authentication is already enabled")
        return self._replace(two_factor_enabled=True)

    def disable_two_factor(self) -> Self:
        if self.provider != AuthProvider.EMAIL:
            raise StateConflictError("Two-factor authentication is only available for email accounts")
        if not self.two_factor_enabled:
            raise StateConflictError("Two-factor authentication is not enabled")
        return self._replace(two_factor_enabled=False)

    # --- Scoring ---

    def get_security_score(self, now: datetime | None = None) -> SecurityScore:
        now = now or utcnow()
        score = 0
        factors = []

        if self.is_verified:
            score += 30
            factors.append("email_verified")
        if self.two_factor_enabled:
            score += 40
            factors.append("two_factor_enabled")
        if self.provider != AuthProvider.EMAIL:
            score += 20
            factors.append("social_provider")
        if self.password_changed_at and now - self.password_changed_at <= RECENT_PASSWORD_CHANGE:
            score += 10
            factors.append("recent_password_change")
        if self.failed_attempts == 0:
            score += 10
            factors.append("no_failed_attempts")

        score = min(score, 100)
        if score >= 80:
            level = SecurityLevel.HIGH
        elif score >= 60:
            level = SecurityLevel.MEDIUM
        elif score >= 40:
            level = SecurityLevel.LOW
        else:
            level = SecurityLevel.VERY_LOW
        return SecurityScore(score=score, level=level, factors=factors)

    # --- Persistence ---

    def to_persistence(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_persistence(cls, snapshot: dict[str, Any]) -> Self:
        return cls.model_validate(snapshot)

    def _replace(self, **changes: Any) -> Self:
        return self.model_copy(update=changes)
