"""User aggregate - identity and authorization context."""

import enum
import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from config import get_settings
from errors import PermissionDeniedError, PolicyError, StateConflictError, ValidationError
from models.base import Aggregate, AggregateState, parse_model, utcnow

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DISPLAY_NAME_RANGE = (2, 50)


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    USER = "user"


class SubscriptionTier(str, enum.Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


# Upgrade order; downgrades are not supported
TIER_RANK = {
    SubscriptionTier.FREE: 0,
    SubscriptionTier.PRO: 1,
    SubscriptionTier.ENTERPRISE: 2,
}

# Subscription-gated actions and the tiers allowed to perform them
SUBSCRIPTION_GATES: dict[str, set[SubscriptionTier]] = {
    "ai_generation": {SubscriptionTier.FREE, SubscriptionTier.PRO, SubscriptionTier.ENTERPRISE},
    "export": {SubscriptionTier.PRO, SubscriptionTier.ENTERPRISE},
    "collaboration": {SubscriptionTier.ENTERPRISE},
    "analytics": {SubscriptionTier.PRO, SubscriptionTier.ENTERPRISE},
}


class UserPermissions(BaseModel):
    can_create_projects: bool = True
    can_edit_own_projects: bool = True
    can_delete_own_projects: bool = True
    can_share_projects: bool = True
    can_export_scripts: bool = True
    can_use_ai_features: bool = True
    can_manage_users: bool = False
    can_view_all_projects: bool = False
    can_moderate_content: bool = False
    can_access_analytics: bool = False
    can_manage_system_settings: bool = False
    can_access_beta_features: bool = False


ADMIN_PERMISSION_UPDATES = {
    "can_manage_users": True,
    "can_view_all_projects": True,
    "can_moderate_content": True,
    "can_access_analytics": True,
    "can_manage_system_settings": True,
    "can_access_beta_features": True,
}


class UserPreferences(BaseModel):
    language: str = Field(default_factory=lambda: get_settings().default_language)
    theme: str = "system"
    email_notifications: bool = True
    default_platform: str | None = None
    timezone: str = "UTC"


class AdminMetadata(BaseModel):
    promoted_by: str | None = None
    promoted_at: datetime | None = None
    blocked_by: str | None = None
    blocked_at: datetime | None = None
    block_reason: str | None = None


class UserState(AggregateState):
    email: str
    display_name: str | None = None
    photo_url: str | None = None
    role: UserRole = UserRole.USER
    is_active: bool = True
    is_blocked: bool = False
    email_verified: bool = False
    subscription: SubscriptionTier = SubscriptionTier.FREE
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    admin_metadata: AdminMetadata | None = None
    last_login_at: datetime | None = None
    last_active_at: datetime | None = None


class User(Aggregate):
    """Platform account. Subscription only moves up, admins cannot be blocked."""

    state_model = UserState
    _state: UserState

    @classmethod
    def create(
        cls,
        *,
        email: str,
        display_name: str | None = None,
        photo_url: str | None = None,
        role: UserRole | None = None,
        email_verified: bool = False,
        subscription: SubscriptionTier = SubscriptionTier.FREE,
        preferences: dict[str, Any] | None = None,
    ) -> "User":
        email = email.strip().lower()
        if not cls.is_valid_email(email):
            raise ValidationError("Invalid email format", email=email)
        if display_name is not None:
            display_name = cls._validate_display_name(display_name)
        if role is None:
            role = UserRole.ADMIN if cls.is_admin_email(email) else UserRole.USER

        return cls(UserState(
            email=email,
            display_name=display_name,
            photo_url=photo_url,
            role=UserRole(role),
            email_verified=email_verified,
            subscription=SubscriptionTier(subscription),
            preferences=parse_model(UserPreferences, preferences or {}),
        ))

    # --- Getters ---

    @property
    def email(self) -> str:
        return self._state.email

    @property
    def display_name(self) -> str | None:
        return self._state.display_name

    @property
    def photo_url(self) -> str | None:
        return self._state.photo_url

    @property
    def role(self) -> UserRole:
        return self._state.role

    @property
    def is_active(self) -> bool:
        return self._state.is_active

    @property
    def is_blocked(self) -> bool:
        return self._state.is_blocked

    @property
    def email_verified(self) -> bool:
        return self._state.email_verified

    @property
    def subscription(self) -> SubscriptionTier:
        return self._state.subscription

    @property
    def preferences(self) -> UserPreferences:
        return self._state.preferences.model_copy()

    @property
    def admin_metadata(self) -> AdminMetadata | None:
        meta = self._state.admin_metadata
        return meta.model_copy() if meta else None

    @property
    def last_login_at(self) -> datetime | None:
        return self._state.last_login_at

    @property
    def last_active_at(self) -> datetime | None:
        return self._state.last_active_at

    @property
    def is_admin(self) -> bool:
        return self._state.role == UserRole.ADMIN

    # --- Authentication ---

    def authenticate(self) -> None:
        if self._state.is_blocked:
            raise PermissionDeniedError("User account is blocked", user_id=self.id)
        if not self._state.is_active:
            raise StateConflictError("User account is inactive", user_id=self.id)
        if not self._state.email_verified:
            raise StateConflictError("Email must be verified before login", user_id=self.id)

        now = utcnow()
        self._state.last_login_at = now
        self._state.last_active_at = now
        self._touch()

    def verify_email(self) -> None:
        if self._state.email_verified:
            raise StateConflictError("Email is already verified")
        self._state.email_verified = True
        self._touch()

    # --- Profile ---

    def update_display_name(self, display_name: str) -> None:
        self._state.display_name = self._validate_display_name(display_name)
        self._touch()

    def update_photo_url(self, photo_url: str | None) -> None:
        self._state.photo_url = photo_url
        self._touch()

    def update_preferences(self, updates: dict[str, Any]) -> None:
        unknown = set(updates) - set(UserPreferences.model_fields)
        if unknown:
            raise ValidationError(f"Unknown preferences: {', '.join(sorted(unknown))}")
        merged = self._state.preferences.model_dump() | updates
        self._state.preferences = parse_model(UserPreferences, merged)
        self._touch()

    # --- Account status ---

    def block(self, blocked_by: str, reason: str | None = None) -> None:
        if self.is_admin:
            raise PermissionDeniedError("Cannot block admin users", user_id=self.id)
        if self._state.is_blocked:
            raise StateConflictError("User is already blocked", user_id=self.id)

        meta = self._state.admin_metadata or AdminMetadata()
        meta.blocked_by = blocked_by
        meta.blocked_at = utcnow()
        meta.block_reason = reason
        self._state.admin_metadata = meta
        self._state.is_blocked = True
        self._touch()

    def unblock(self) -> None:
        if not self._state.is_blocked:
            raise StateConflictError("User is not blocked", user_id=self.id)

        if self._state.admin_metadata:
            self._state.admin_metadata.blocked_by = None
            self._state.admin_metadata.blocked_at = None
            self._state.admin_metadata.block_reason = None
        self._state.is_blocked = False
        self._touch()

    def deactivate(self) -> None:
        if not self._state.is_active:
            raise StateConflictError("User is already inactive", user_id=self.id)
        self._state.is_active = False
        self._touch()

    def reactivate(self) -> None:
        if self._state.is_active:
            raise StateConflictError("User is already active", user_id=self.id)
        self._state.is_active = True
        self._touch()

    # --- Roles and subscription ---

    def promote_to_admin(self, promoted_by: str) -> None:
        if self.is_admin:
            raise StateConflictError("User is already an admin", user_id=self.id)

        meta = self._state.admin_metadata or AdminMetadata()
        meta.promoted_by = promoted_by
        meta.promoted_at = utcnow()
        self._state.admin_metadata = meta
        self._state.role = UserRole.ADMIN
        self._touch()

    def demote_from_admin(self) -> None:
        if not self.is_admin:
            raise StateConflictError("User is not an admin", user_id=self.id)

        if self._state.admin_metadata:
            self._state.admin_metadata.promoted_by = None
            self._state.admin_metadata.promoted_at = None
        self._state.role = UserRole.USER
        self._touch()

    def upgrade_subscription(self, new_tier: SubscriptionTier) -> None:
        new_tier = SubscriptionTier(new_tier)
        if TIER_RANK[new_tier] <= TIER_RANK[self._state.subscription]:
            raise PolicyError(
                f"Cannot change subscription from {self._state.subscription.value} to {new_tier.value}",
                current=self._state.subscription.value,
                requested=new_tier.value,
            )
        self._state.subscription = new_tier
        self._touch()

    # --- Authorization ---

    def get_permissions(self) -> UserPermissions:
        permissions = UserPermissions()
        if self.is_admin:
            permissions = permissions.model_copy(update=ADMIN_PERMISSION_UPDATES)
        if self._state.subscription in (SubscriptionTier.PRO, SubscriptionTier.ENTERPRISE):
            permissions = permissions.model_copy(update={"can_access_beta_features": True})
        return permissions

    def has_permission(self, permission: str) -> bool:
        if permission not in UserPermissions.model_fields:
            raise ValidationError(f"Unknown permission: {permission}")
        return getattr(self.get_permissions(), permission)

    def can_perform_action_by_subscription(self, action: str) -> bool:
        allowed = SUBSCRIPTION_GATES.get(action)
        if allowed is None:
            raise ValidationError(f"Unknown subscription action: {action}")
        return self._state.subscription in allowed

    def can_be_managed_by(self, actor: "User") -> bool:
        return actor.is_admin and actor.id != self.id

    # --- Helpers ---

    @staticmethod
    def is_valid_email(email: str) -> bool:
        return bool(EMAIL_PATTERN.match(email or ""))

    @staticmethod
    def is_admin_email(email: str) -> bool:
        return email.strip().lower() in get_settings().admin_emails

    @staticmethod
    def _validate_display_name(display_name: str) -> str:
        name = display_name.strip()
        low, high = DISPLAY_NAME_RANGE
        if not low <= len(name) <= high:
            raise ValidationError(f"Display name must be between {low} and {high} characters")
        return name
