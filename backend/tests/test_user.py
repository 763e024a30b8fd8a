"""Tests for the User aggregate."""

import json

import pytest

import models.user
from config import Settings
from errors import PermissionDeniedError, PolicyError, StateConflictError, ValidationError
from models.user import SubscriptionTier, User, UserRole


@pytest.fixture
def admin_emails(monkeypatch):
    settings = Settings(admin_emails="Boss@Example.com, ops@example.com")
    monkeypatch.setattr(models.user, "get_settings", lambda: settings)
    return settings


class TestCreate:
    def test_email_is_normalized(self):
        user = User.create(email="  Ana@Example.COM ")
        assert user.email == "ana@example.com"
        assert user.role == UserRole.USER
        assert user.subscription == SubscriptionTier.FREE
        assert user.is_active and not user.is_blocked

    @pytest.mark.parametrize("email", ["", "no-at-sign", "a@b", "a b@c.com"])
    def test_invalid_email(self, email):
        with pytest.raises(ValidationError):
            User.create(email=email)

    @pytest.mark.parametrize("name", ["A", "x" * 51])
    def test_display_name_bounds(self, name):
        with pytest.raises(ValidationError):
            User.create(email="a@b.com", display_name=name)

    def test_configured_admin_email_starts_as_admin(self, admin_emails):
        assert User.create(email="boss@example.com").is_admin
        assert User.create(email="OPS@example.com").is_admin
        assert not User.create(email="someone@example.com").is_admin

    def test_explicit_role_wins(self, admin_emails):
        assert User.create(email="boss@example.com", role=UserRole.USER).role == UserRole.USER


class TestAuthentication:
    def test_authenticate_stamps_login(self, verified_user):
        verified_user.authenticate()
        assert verified_user.last_login_at is not None
        assert verified_user.last_active_at == verified_user.last_login_at

    def test_unverified_user_cannot_log_in(self):
        user = User.create(email="new@example.com")
        with pytest.raises(StateConflictError):
            user.authenticate()

    def test_blocked_user_cannot_log_in(self, verified_user, admin_user):
        verified_user.block(admin_user.id, "spam")
        with pytest.raises(PermissionDeniedError):
            verified_user.authenticate()

    def test_inactive_user_cannot_log_in(self, verified_user):
        verified_user.deactivate()
        with pytest.raises(StateConflictError):
            verified_user.authenticate()

    def test_verify_email_once(self):
        user = User.create(email="new@example.com")
        user.verify_email()
        assert user.email_verified
        with pytest.raises(StateConflictError):
            user.verify_email()


class TestProfile:
    def test_update_display_name(self, verified_user):
        verified_user.update_display_name("  Ana Souza ")
        assert verified_user.display_name == "Ana Souza"

    def test_preferences_merge(self, verified_user):
        verified_user.update_preferences({"theme": "dark"})
        preferences = verified_user.preferences
        assert preferences.theme == "dark"
        assert preferences.language == "pt-BR"

    def test_unknown_preference(self, verified_user):
        with pytest.raises(ValidationError):
            verified_user.update_preferences({"font": "comic"})

    def test_malformed_preference(self, verified_user):
        with pytest.raises(ValidationError):
            verified_user.update_preferences({"email_notifications": "maybe"})
        assert verified_user.preferences.email_notifications is True


class TestAccountStatus:
    def test_block_records_admin_metadata(self, verified_user, admin_user):
        verified_user.block(admin_user.id, "abuse")
        meta = verified_user.admin_metadata
        assert verified_user.is_blocked
        assert meta.blocked_by == admin_user.id
        assert meta.block_reason == "abuse"
        assert meta.blocked_at is not None

        with pytest.raises(StateConflictError):
            verified_user.block(admin_user.id)

    def test_unblock_clears_metadata(self, verified_user, admin_user):
        verified_user.block(admin_user.id, "abuse")
        verified_user.unblock()
        assert not verified_user.is_blocked
        assert verified_user.admin_metadata.blocked_by is None

        with pytest.raises(StateConflictError):
            verified_user.unblock()

    def test_admins_cannot_be_blocked(self, admin_user):
        with pytest.raises(PermissionDeniedError):
            admin_user.block("someone")

    def test_deactivate_and_reactivate(self, verified_user):
        verified_user.deactivate()
        with pytest.raises(StateConflictError):
            verified_user.deactivate()
        verified_user.reactivate()
        assert verified_user.is_active
        with pytest.raises(StateConflictError):
            verified_user.reactivate()


class TestRoles:
    def test_promote_and_demote(self, verified_user, admin_user):
        verified_user.promote_to_admin(admin_user.id)
        assert verified_user.is_admin
        assert verified_user.admin_metadata.promoted_by == admin_user.id
        with pytest.raises(StateConflictError):
            verified_user.promote_to_admin(admin_user.id)

        verified_user.demote_from_admin()
        assert verified_user.role == UserRole.USER
        assert verified_user.admin_metadata.promoted_at is None
        with pytest.raises(StateConflictError):
            verified_user.demote_from_admin()

    def test_can_be_managed_by(self, verified_user, admin_user):
        assert verified_user.can_be_managed_by(admin_user)
        assert not admin_user.can_be_managed_by(admin_user)
        assert not admin_user.can_be_managed_by(verified_user)


class TestSubscription:
    def test_upgrade_path(self, verified_user):
        verified_user.upgrade_subscription(SubscriptionTier.PRO)
        verified_user.upgrade_subscription(SubscriptionTier.ENTERPRISE)
        assert verified_user.subscription == SubscriptionTier.ENTERPRISE

    @pytest.mark.parametrize("tier", [SubscriptionTier.FREE, SubscriptionTier.PRO])
    def test_downgrade_or_same_tier_is_rejected(self, pro_user, tier):
        revision = pro_user.revision
        with pytest.raises(PolicyError) as exc_info:
            pro_user.upgrade_subscription(tier)
        assert exc_info.value.context["current"] == "pro"
        assert pro_user.revision == revision

    def test_gated_actions(self, verified_user, pro_user):
        assert verified_user.can_perform_action_by_subscription("ai_generation")
        assert not verified_user.can_perform_action_by_subscription("export")
        assert pro_user.can_perform_action_by_subscription("analytics")
        assert not pro_user.can_perform_action_by_subscription("collaboration")

        with pytest.raises(ValidationError):
            verified_user.can_perform_action_by_subscription("teleport")


class TestPermissions:
    def test_regular_user(self, verified_user):
        permissions = verified_user.get_permissions()
        assert permissions.can_use_ai_features
        assert not permissions.can_manage_users
        assert not permissions.can_access_beta_features

    def test_paid_tier_gets_beta_features(self, pro_user):
        assert pro_user.has_permission("can_access_beta_features")
        assert not pro_user.has_permission("can_manage_users")

    def test_admin_gets_management_rights(self, admin_user):
        assert admin_user.has_permission("can_manage_users")
        assert admin_user.has_permission("can_manage_system_settings")

    def test_unknown_permission(self, verified_user):
        with pytest.raises(ValidationError):
            verified_user.has_permission("can_fly")


class TestPersistence:
    def test_round_trip_through_json(self, verified_user, admin_user):
        verified_user.block(admin_user.id, "spam")
        verified_user.update_preferences({"default_platform": "youtube"})

        restored = User.from_persistence(json.loads(json.dumps(verified_user.to_persistence())))
        assert restored == verified_user
        assert restored.admin_metadata == verified_user.admin_metadata
