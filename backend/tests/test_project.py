"""Tests for the Project aggregate and collaborator permissions."""

import json
from datetime import timedelta

import pytest

from errors import (
    NotFoundError,
    PermissionDeniedError,
    PolicyError,
    StateConflictError,
    ValidationError,
)
from models.base import utcnow
from models.project import (
    MAX_TAGS,
    CollaboratorStatus,
    Project,
    ProjectRole,
    ProjectStatus,
    ProjectVisibility,
    get_default_permissions_for_role,
)
from models.user import SubscriptionTier

OWNER = "owner-1"


@pytest.fixture
def project():
    return Project.create(name="Launch campaign", owner_id=OWNER, description="Q3 scripts")


def add_active(project: Project, user_id: str, role: ProjectRole = ProjectRole.EDITOR, **kwargs) -> None:
    project.invite_collaborator(user_id=user_id, role=role, invited_by=OWNER, **kwargs)
    project.accept_invitation(user_id)


class TestCreate:
    def test_defaults(self, project):
        assert project.status == ProjectStatus.ACTIVE
        assert project.visibility == ProjectVisibility.PRIVATE
        assert project.settings.max_collaborators == 10
        assert project.settings.auto_save_interval == 30
        assert project.metadata.version == 1
        assert project.collaborators == []

    def test_settings_overrides_are_validated(self):
        project = Project.create(name="P", owner_id=OWNER, settings={"max_collaborators": 3})
        assert project.settings.max_collaborators == 3

        with pytest.raises(ValidationError):
            Project.create(name="P", owner_id=OWNER, settings={"auto_save_interval": 5})

    def test_past_deadline_is_rejected(self):
        with pytest.raises(ValidationError):
            Project.create(name="P", owner_id=OWNER, deadline=utcnow() - timedelta(days=1))

    def test_name_rules(self):
        with pytest.raises(ValidationError):
            Project.create(name="  ", owner_id=OWNER)
        assert Project.is_valid_name("abc")
        assert not Project.is_valid_name(" ab ")


class TestPermissions:
    def test_role_defaults_are_pure(self, project):
        add_active(project, "editor-a")
        add_active(project, "editor-b")

        a = project.get_collaborator("editor-a")
        b = project.get_collaborator("editor-b")
        assert a.permissions == b.permissions
        assert a.permissions == get_default_permissions_for_role(ProjectRole.EDITOR)

    def test_roles_are_nested(self):
        def granted(role):
            return {k for k, v in get_default_permissions_for_role(role).model_dump().items() if v}

        viewer = granted(ProjectRole.VIEWER)
        editor = granted(ProjectRole.EDITOR)
        admin = granted(ProjectRole.ADMIN)
        owner = granted(ProjectRole.OWNER)
        assert viewer < editor < admin < owner
        assert len(owner) == 8

    def test_defaults_are_fresh_copies(self):
        perms = get_default_permissions_for_role(ProjectRole.VIEWER)
        perms.can_delete_scripts = True
        assert get_default_permissions_for_role(ProjectRole.VIEWER).can_delete_scripts is False

    def test_custom_permissions_override_role(self, project):
        add_active(project, "viewer-1", ProjectRole.VIEWER, custom_permissions={"can_create_scripts": True})
        project.add_script("script-1", "viewer-1")
        assert project.scripts == ["script-1"]

    def test_unknown_custom_permission_is_rejected(self, project):
        with pytest.raises(ValidationError):
            project.invite_collaborator(
                user_id="u", role=ProjectRole.VIEWER, invited_by=OWNER,
                custom_permissions={"can_fly": True},
            )


class TestScripts:
    def test_owner_adds_and_removes_scripts(self, project):
        project.add_script("s1", OWNER)
        project.add_script("s2", OWNER)
        assert project.metadata.total_scripts == 2

        project.remove_script("s1", OWNER)
        assert project.scripts == ["s2"]
        assert project.metadata.total_scripts == 1

    def test_duplicate_script_is_rejected(self, project):
        project.add_script("s1", OWNER)
        with pytest.raises(StateConflictError):
            project.add_script("s1", OWNER)

    def test_viewer_cannot_add_scripts(self, project):
        add_active(project, "viewer-1", ProjectRole.VIEWER)
        with pytest.raises(PermissionDeniedError):
            project.add_script("s1", "viewer-1")

    def test_pending_editor_has_no_rights(self, project):
        project.invite_collaborator(user_id="editor-1", role=ProjectRole.EDITOR, invited_by=OWNER)
        with pytest.raises(PermissionDeniedError):
            project.add_script("s1", "editor-1")

    def test_editor_cannot_delete_scripts(self, project):
        add_active(project, "editor-1")
        project.add_script("s1", "editor-1")
        with pytest.raises(PermissionDeniedError):
            project.remove_script("s1", "editor-1")

    def test_script_cap(self, project):
        for i in range(100):
            project.add_script(f"s{i}", OWNER)
        with pytest.raises(ValidationError):
            project.add_script("s100", OWNER)

    def test_removing_unknown_script(self, project):
        with pytest.raises(NotFoundError):
            project.remove_script("missing", OWNER)


class TestInvitations:
    def test_invite_and_accept(self, project):
        project.invite_collaborator(user_id="u1", role=ProjectRole.EDITOR, invited_by=OWNER)
        assert project.get_collaborator("u1").status == CollaboratorStatus.PENDING

        project.accept_invitation("u1")
        collaborator = project.get_collaborator("u1")
        assert collaborator.status == CollaboratorStatus.ACTIVE
        assert collaborator.joined_at is not None
        assert collaborator.last_active_at is not None

    def test_accept_twice_fails(self, project):
        add_active(project, "u1")
        with pytest.raises(StateConflictError):
            project.accept_invitation("u1")

    def test_owner_cannot_be_invited(self, project):
        with pytest.raises(ValidationError):
            project.invite_collaborator(user_id=OWNER, role=ProjectRole.ADMIN, invited_by=OWNER)

    def test_existing_collaborator_cannot_be_reinvited(self, project):
        add_active(project, "u1")
        with pytest.raises(StateConflictError):
            project.invite_collaborator(user_id="u1", role=ProjectRole.VIEWER, invited_by=OWNER)

    def test_editor_cannot_invite(self, project):
        add_active(project, "editor-1")
        with pytest.raises(PermissionDeniedError):
            project.invite_collaborator(user_id="u2", role=ProjectRole.VIEWER, invited_by="editor-1")

    def test_admin_can_invite(self, project):
        add_active(project, "admin-1", ProjectRole.ADMIN)
        project.invite_collaborator(user_id="u2", role=ProjectRole.VIEWER, invited_by="admin-1")
        assert project.get_collaborator("u2").invited_by == "admin-1"

    def test_eleventh_collaborator_is_rejected(self, project):
        for i in range(10):
            project.invite_collaborator(user_id=f"u{i}", role=ProjectRole.VIEWER, invited_by=OWNER)

        with pytest.raises(PolicyError):
            project.invite_collaborator(user_id="u10", role=ProjectRole.ADMIN, invited_by=OWNER)
        assert len(project.collaborators) == 10

    def test_removed_collaborator_can_be_reinvited(self, project):
        add_active(project, "u1")
        project.remove_collaborator("u1", OWNER)
        project.invite_collaborator(user_id="u1", role=ProjectRole.VIEWER, invited_by=OWNER)

        collaborator = project.get_collaborator("u1")
        assert collaborator.status == CollaboratorStatus.PENDING
        assert collaborator.role == ProjectRole.VIEWER
        assert len(project.collaborators) == 1


class TestRemoval:
    def test_collaborator_can_leave(self, project):
        add_active(project, "u1", ProjectRole.VIEWER)
        project.remove_collaborator("u1", "u1")
        assert project.get_collaborator("u1").status == CollaboratorStatus.REMOVED

    def test_editor_cannot_remove_others(self, project):
        add_active(project, "u1")
        add_active(project, "u2")
        with pytest.raises(PermissionDeniedError):
            project.remove_collaborator("u2", "u1")

    def test_admin_can_remove_others(self, project):
        add_active(project, "admin-1", ProjectRole.ADMIN)
        add_active(project, "u2")
        project.remove_collaborator("u2", "admin-1")
        assert project.get_collaborator("u2").status == CollaboratorStatus.REMOVED

    def test_removing_twice_fails(self, project):
        add_active(project, "u1")
        project.remove_collaborator("u1", OWNER)
        with pytest.raises(NotFoundError):
            project.remove_collaborator("u1", OWNER)


class TestRoleChanges:
    def test_role_change_resets_permissions(self, project):
        add_active(project, "u1", ProjectRole.VIEWER, custom_permissions={"can_export_project": True})
        project.update_collaborator_role("u1", ProjectRole.EDITOR, OWNER)

        collaborator = project.get_collaborator("u1")
        assert collaborator.role == ProjectRole.EDITOR
        assert collaborator.permissions == get_default_permissions_for_role(ProjectRole.EDITOR)

    def test_only_owner_changes_roles(self, project):
        add_active(project, "admin-1", ProjectRole.ADMIN)
        add_active(project, "u1")
        with pytest.raises(PermissionDeniedError):
            project.update_collaborator_role("u1", ProjectRole.VIEWER, "admin-1")

    def test_pending_collaborator_role_cannot_change(self, project):
        project.invite_collaborator(user_id="u1", role=ProjectRole.VIEWER, invited_by=OWNER)
        with pytest.raises(StateConflictError):
            project.update_collaborator_role("u1", ProjectRole.EDITOR, OWNER)

    def test_owner_role_cannot_be_granted(self, project):
        add_active(project, "u1")
        with pytest.raises(ValidationError):
            project.update_collaborator_role("u1", ProjectRole.OWNER, OWNER)


class TestSettings:
    @pytest.mark.parametrize("settings", [
        {"max_collaborators": 0},
        {"max_collaborators": 51},
        {"auto_save_interval": 9},
        {"auto_save_interval": 301},
        {"unknown_key": True},
        {"max_collaborators": "ten"},
        {"auto_save_interval": None},
        {"notification_settings": "off"},
    ])
    def test_invalid_settings(self, project, settings):
        before = project.settings
        with pytest.raises(ValidationError):
            project.update_settings(settings, OWNER)
        assert project.settings == before

    def test_malformed_create_settings(self):
        with pytest.raises(ValidationError):
            Project.create(name="P", owner_id=OWNER, settings={"max_collaborators": "ten"})

    def test_limit_cannot_drop_below_active_collaborators(self, project):
        add_active(project, "u1")
        add_active(project, "u2")
        with pytest.raises(ValidationError):
            project.update_settings({"max_collaborators": 1}, OWNER)

        project.update_settings({"max_collaborators": 2, "auto_save_interval": 60}, OWNER)
        assert project.settings.max_collaborators == 2
        assert project.settings.auto_save_interval == 60

    def test_editor_cannot_manage_settings(self, project):
        add_active(project, "u1")
        with pytest.raises(PermissionDeniedError):
            project.update_settings({"allow_comments": False}, "u1")


class TestDetails:
    def test_update_name_bumps_metadata_version(self, project):
        project.update_name("Renamed", OWNER)
        assert project.name == "Renamed"
        assert project.metadata.version == 2
        assert project.metadata.last_modified_by == OWNER

    def test_active_editor_can_edit_details(self, project):
        add_active(project, "u1")
        project.update_description("New description", "u1")
        assert project.description == "New description"

    def test_description_length(self, project):
        with pytest.raises(ValidationError):
            project.update_description("x" * 1001, OWNER)

    def test_tags(self, project):
        for i in range(MAX_TAGS):
            project.add_tag(f"tag{i}", OWNER)
        project.add_tag("TAG1", OWNER)
        with pytest.raises(ValidationError):
            project.add_tag("extra", OWNER)

        project.remove_tag("tag0", OWNER)
        assert len(project.tags) == MAX_TAGS - 1

    def test_favorite_requires_view_access(self, project):
        project.mark_as_favorite(OWNER)
        assert project.is_favorite
        project.unmark_as_favorite(OWNER)
        assert not project.is_favorite

        with pytest.raises(PermissionDeniedError):
            project.mark_as_favorite("stranger")

    def test_update_metadata(self, project):
        project.update_metadata({"total_words": 500, "category": "marketing"}, OWNER)
        assert project.metadata.total_words == 500
        with pytest.raises(ValidationError):
            project.update_metadata({"bogus": 1}, OWNER)
        with pytest.raises(ValidationError):
            project.update_metadata({"total_words": "many"}, OWNER)


class TestLifecycle:
    def test_archive_stamps_archive_time(self, project):
        project.update_status(ProjectStatus.ARCHIVED, OWNER)
        assert project.status == ProjectStatus.ARCHIVED
        assert project.archive_at is not None

    def test_deleted_is_absorbing(self, project):
        project.update_status(ProjectStatus.DELETED, OWNER)
        for status in ProjectStatus:
            with pytest.raises(StateConflictError):
                project.update_status(status, OWNER)
        assert project.status == ProjectStatus.DELETED
        with pytest.raises(StateConflictError):
            project.add_script("s1", OWNER)
        with pytest.raises(StateConflictError):
            project.update_name("New", OWNER)
        assert not project.can_be_edited_by(OWNER)

    def test_deadline(self, project):
        deadline = utcnow() + timedelta(days=7)
        project.set_deadline(deadline, OWNER)
        assert project.deadline == deadline
        assert project.get_analytics().is_overdue is False

        with pytest.raises(ValidationError):
            project.set_deadline(utcnow() - timedelta(seconds=1), OWNER)

        project.remove_deadline(OWNER)
        assert project.deadline is None

    def test_analytics_completion_rate(self, project):
        add_active(project, "u1")
        assert project.get_analytics().completion_rate == 50
        assert project.get_analytics().active_collaborators == 1

        project.update_status(ProjectStatus.COMPLETED, OWNER)
        assert project.get_analytics().completion_rate == 100

        project.update_status(ProjectStatus.PAUSED, OWNER)
        assert project.get_analytics().completion_rate == 0


class TestAccess:
    def test_public_projects_are_viewable_by_anyone(self):
        project = Project.create(name="Open", owner_id=OWNER, visibility=ProjectVisibility.PUBLIC)
        assert project.can_be_viewed_by("anyone")
        assert not project.can_be_edited_by("anyone")

    def test_private_project_needs_active_collaborator(self, project):
        project.invite_collaborator(user_id="u1", role=ProjectRole.VIEWER, invited_by=OWNER)
        assert not project.can_be_viewed_by("u1")

        project.accept_invitation("u1")
        assert project.can_be_viewed_by("u1")
        assert not project.can_be_edited_by("u1")

    def test_visibility_options_by_subscription(self):
        assert Project.get_visibility_options(SubscriptionTier.FREE) == [ProjectVisibility.PRIVATE]
        assert Project.get_visibility_options(SubscriptionTier.PRO) == [
            ProjectVisibility.PRIVATE, ProjectVisibility.TEAM,
        ]
        assert len(Project.get_visibility_options(SubscriptionTier.ENTERPRISE)) == 3


class TestPersistence:
    def test_round_trip_through_json(self, project):
        add_active(project, "u1", ProjectRole.ADMIN)
        project.add_script("s1", OWNER)
        project.add_tag("launch", OWNER)
        project.set_deadline(utcnow() + timedelta(days=3), OWNER)

        restored = Project.from_persistence(json.loads(json.dumps(project.to_persistence())))

        assert restored == project
        assert restored.collaborators == project.collaborators
        assert restored.settings == project.settings
        assert restored.deadline == project.deadline
