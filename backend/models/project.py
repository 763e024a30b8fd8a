"""Project aggregate - a container of scripts shared with collaborators."""

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from errors import (
    NotFoundError,
    PermissionDeniedError,
    PolicyError,
    StateConflictError,
    ValidationError,
)
from models.base import Aggregate, AggregateState, normalize_tag, parse_model, utcnow
from models.user import SubscriptionTier

MAX_NAME_LENGTH = 100
MIN_NAME_LENGTH = 3
MAX_DESCRIPTION_LENGTH = 1000
MAX_SCRIPTS = 100
MAX_TAGS = 20
COLLABORATOR_LIMIT_RANGE = (1, 50)
AUTO_SAVE_RANGE = (10, 300)  # seconds


class ProjectStatus(str, enum.Enum):
    """Project lifecycle status. DELETED is terminal."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    DELETED = "deleted"


class ProjectVisibility(str, enum.Enum):
    PRIVATE = "private"
    TEAM = "team"
    PUBLIC = "public"


class ProjectRole(str, enum.Enum):
    """Role a collaborator holds within a project."""
    VIEWER = "viewer"
    EDITOR = "editor"
    ADMIN = "admin"
    OWNER = "owner"


class CollaboratorStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    REMOVED = "removed"


class ProjectPermissions(BaseModel):
    can_view_scripts: bool = False
    can_edit_scripts: bool = False
    can_create_scripts: bool = False
    can_delete_scripts: bool = False
    can_invite_users: bool = False
    can_manage_settings: bool = False
    can_export_project: bool = False
    can_archive_project: bool = False


# owner > admin > editor > viewer
ROLE_PERMISSIONS: dict[ProjectRole, ProjectPermissions] = {
    ProjectRole.OWNER: ProjectPermissions(
        can_view_scripts=True,
        can_edit_scripts=True,
        can_create_scripts=True,
        can_delete_scripts=True,
        can_invite_users=True,
        can_manage_settings=True,
        can_export_project=True,
        can_archive_project=True,
    ),
    ProjectRole.ADMIN: ProjectPermissions(
        can_view_scripts=True,
        can_edit_scripts=True,
        can_create_scripts=True,
        can_delete_scripts=True,
        can_invite_users=True,
        can_manage_settings=True,
        can_export_project=True,
    ),
    ProjectRole.EDITOR: ProjectPermissions(
        can_view_scripts=True,
        can_edit_scripts=True,
        can_create_scripts=True,
        can_export_project=True,
    ),
    ProjectRole.VIEWER: ProjectPermissions(
        can_view_scripts=True,
    ),
}


def get_default_permissions_for_role(role: ProjectRole) -> ProjectPermissions:
    """Fresh copy of the fixed permission set for a role."""
    return ROLE_PERMISSIONS[ProjectRole(role)].model_copy()


class ProjectCollaborator(BaseModel):
    user_id: str
    role: ProjectRole
    permissions: ProjectPermissions
    invited_by: str
    status: CollaboratorStatus = CollaboratorStatus.PENDING
    invited_at: datetime = Field(default_factory=utcnow)
    joined_at: datetime | None = None
    last_active_at: datetime | None = None


class NotificationSettings(BaseModel):
    email_notifications: bool = True
    new_collaborator: bool = True
    script_changes: bool = True
    comments: bool = True
    deadline_reminders: bool = True
    weekly_digest: bool = False


class ProjectSettings(BaseModel):
    allow_public_viewing: bool = False
    allow_comments: bool = True
    allow_suggestions: bool = True
    allow_real_time_editing: bool = True
    default_script_template: str | None = None
    auto_save_interval: int = 30
    max_collaborators: int = 10
    require_approval_for_changes: bool = False
    enable_version_history: bool = True
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)


class ProjectMetadata(BaseModel):
    total_scripts: int = 0
    total_words: int = 0
    total_duration: int = 0
    last_modified_by: str | None = None
    version: int = 1
    platform: list[str] = []
    category: str | None = None
    business_goals: list[str] = []
    target_audience: list[str] = []


class ProjectAnalytics(BaseModel):
    total_scripts: int
    total_words: int
    total_duration: int
    active_collaborators: int
    last_activity: datetime
    completion_rate: int
    is_overdue: bool


class ProjectState(AggregateState):
    name: str
    description: str = ""
    owner_id: str
    status: ProjectStatus = ProjectStatus.ACTIVE
    visibility: ProjectVisibility = ProjectVisibility.PRIVATE
    scripts: list[str] = []
    collaborators: list[ProjectCollaborator] = []
    settings: ProjectSettings = Field(default_factory=ProjectSettings)
    metadata: ProjectMetadata = Field(default_factory=ProjectMetadata)
    tags: list[str] = []
    folder_id: str | None = None
    is_favorite: bool = False
    last_accessed_at: datetime = Field(default_factory=utcnow)
    deadline: datetime | None = None
    archive_at: datetime | None = None


class Project(Aggregate):
    """Project owned by one user and shared with invited collaborators.

    The owner is never stored as a collaborator row. Every mutator takes
    the acting user's id and resolves rights from ownership or from an
    active collaborator's permission set.
    """

    state_model = ProjectState
    _state: ProjectState

    @classmethod
    def create(
        cls,
        *,
        name: str,
        owner_id: str,
        description: str = "",
        visibility: ProjectVisibility = ProjectVisibility.PRIVATE,
        settings: dict[str, Any] | None = None,
        tags: list[str] | None = None,
        folder_id: str | None = None,
        deadline: datetime | None = None,
    ) -> "Project":
        if not owner_id:
            raise ValidationError("Owner id is required")
        clean_name = cls._validate_name(name)
        clean_description = cls._validate_description(description)

        project_settings = ProjectSettings()
        if settings:
            project_settings = cls._validate_settings(
                settings, project_settings, active_collaborators=0
            )

        clean_tags: list[str] = []
        for tag in tags or []:
            normalized = normalize_tag(tag)
            if normalized and normalized not in clean_tags:
                clean_tags.append(normalized)
        if len(clean_tags) > MAX_TAGS:
            raise ValidationError(f"Cannot add more than {MAX_TAGS} tags")

        if deadline is not None and deadline <= utcnow():
            raise ValidationError("Deadline must be in the future")

        return cls(ProjectState(
            name=clean_name,
            description=clean_description,
            owner_id=owner_id,
            visibility=ProjectVisibility(visibility),
            settings=project_settings,
            tags=clean_tags,
            folder_id=folder_id,
            deadline=deadline,
        ))

    # --- Getters ---

    @property
    def name(self) -> str:
        return self._state.name

    @property
    def description(self) -> str:
        return self._state.description

    @property
    def owner_id(self) -> str:
        return self._state.owner_id

    @property
    def status(self) -> ProjectStatus:
        return self._state.status

    @property
    def visibility(self) -> ProjectVisibility:
        return self._state.visibility

    @property
    def scripts(self) -> list[str]:
        return list(self._state.scripts)

    @property
    def collaborators(self) -> list[ProjectCollaborator]:
        return [c.model_copy(deep=True) for c in self._state.collaborators]

    @property
    def settings(self) -> ProjectSettings:
        return self._state.settings.model_copy(deep=True)

    @property
    def metadata(self) -> ProjectMetadata:
        return self._state.metadata.model_copy(deep=True)

    @property
    def tags(self) -> list[str]:
        return list(self._state.tags)

    @property
    def folder_id(self) -> str | None:
        return self._state.folder_id

    @property
    def is_favorite(self) -> bool:
        return self._state.is_favorite

    @property
    def last_accessed_at(self) -> datetime:
        return self._state.last_accessed_at

    @property
    def deadline(self) -> datetime | None:
        return self._state.deadline

    @property
    def archive_at(self) -> datetime | None:
        return self._state.archive_at

    def get_collaborator(self, user_id: str) -> ProjectCollaborator | None:
        collaborator = self._find_collaborator(user_id)
        return collaborator.model_copy(deep=True) if collaborator else None

    # --- Details ---

    def update_name(self, new_name: str, user_id: str) -> None:
        self._ensure_can_edit(user_id)
        self._state.name = self._validate_name(new_name)
        self._state.metadata.last_modified_by = user_id
        self._state.metadata.version += 1
        self._touch()

    def update_description(self, new_description: str, user_id: str) -> None:
        self._ensure_can_edit(user_id)
        self._state.description = self._validate_description(new_description)
        self._state.metadata.last_modified_by = user_id
        self._touch()

    def update_metadata(self, updates: dict[str, Any], user_id: str) -> None:
        """Merge aggregate counters and descriptive metadata."""
        self._ensure_can_edit(user_id)
        unknown = set(updates) - set(ProjectMetadata.model_fields)
        if unknown:
            raise ValidationError(f"Unknown metadata fields: {', '.join(sorted(unknown))}")
        merged = self._state.metadata.model_dump() | updates | {"last_modified_by": user_id}
        self._state.metadata = parse_model(ProjectMetadata, merged)
        self._touch()

    # --- Scripts ---

    def add_script(self, script_id: str, user_id: str) -> None:
        self._ensure_not_deleted()
        self._ensure_permission(user_id, "can_create_scripts", "create scripts")
        if script_id in self._state.scripts:
            raise StateConflictError("Script is already in this project", script_id=script_id)
        if len(self._state.scripts) >= MAX_SCRIPTS:
            raise ValidationError(f"Cannot add more than {MAX_SCRIPTS} scripts to a project")

        self._state.scripts.append(script_id)
        self._state.metadata.total_scripts = len(self._state.scripts)
        self._state.metadata.last_modified_by = user_id
        self._mark_access(user_id)
        self._touch()

    def remove_script(self, script_id: str, user_id: str) -> None:
        self._ensure_not_deleted()
        self._ensure_permission(user_id, "can_delete_scripts", "delete scripts")
        if script_id not in self._state.scripts:
            raise NotFoundError("Script not found in project", script_id=script_id)

        self._state.scripts.remove(script_id)
        self._state.metadata.total_scripts = len(self._state.scripts)
        self._state.metadata.last_modified_by = user_id
        self._touch()

    # --- Collaboration ---

    def invite_collaborator(
        self,
        *,
        user_id: str,
        role: ProjectRole,
        invited_by: str,
        custom_permissions: dict[str, bool] | None = None,
    ) -> None:
        """Add a pending collaborator with role defaults or custom permissions."""
        self._ensure_not_deleted()
        self._ensure_permission(invited_by, "can_invite_users", "invite users")
        role = ProjectRole(role)

        if user_id == self._state.owner_id:
            raise ValidationError("Cannot invite project owner as collaborator")
        if role == ProjectRole.OWNER:
            raise ValidationError("Owner role cannot be granted to a collaborator")

        existing = self._find_collaborator(user_id)
        if existing and existing.status != CollaboratorStatus.REMOVED:
            raise StateConflictError("User is already a collaborator", user_id=user_id)

        limit = self._state.settings.max_collaborators
        if self._count_collaborators() >= limit:
            raise PolicyError(f"Cannot exceed maximum of {limit} collaborators", limit=limit)

        permissions = get_default_permissions_for_role(role)
        if custom_permissions:
            unknown = set(custom_permissions) - set(ProjectPermissions.model_fields)
            if unknown:
                raise ValidationError(f"Unknown permissions: {', '.join(sorted(unknown))}")
            permissions = permissions.model_copy(update=custom_permissions)

        collaborator = ProjectCollaborator(
            user_id=user_id,
            role=role,
            permissions=permissions,
            invited_by=invited_by,
        )
        if existing:
            self._state.collaborators.remove(existing)
        self._state.collaborators.append(collaborator)
        self._touch()

    def accept_invitation(self, user_id: str) -> None:
        collaborator = self._find_collaborator(user_id)
        if collaborator is None:
            raise NotFoundError("Collaboration invitation not found", user_id=user_id)
        if collaborator.status != CollaboratorStatus.PENDING:
            raise StateConflictError("Invitation is not pending", status=collaborator.status.value)

        now = utcnow()
        collaborator.status = CollaboratorStatus.ACTIVE
        collaborator.joined_at = now
        collaborator.last_active_at = now
        self._touch()

    def remove_collaborator(self, target_user_id: str, requesting_user_id: str) -> None:
        """Owner removes anyone; a collaborator may always remove themself."""
        if requesting_user_id not in (self._state.owner_id, target_user_id):
            self._ensure_permission(requesting_user_id, "can_manage_settings", "manage settings")

        collaborator = self._find_collaborator(target_user_id)
        if collaborator is None or collaborator.status == CollaboratorStatus.REMOVED:
            raise NotFoundError("Collaborator not found", user_id=target_user_id)

        collaborator.status = CollaboratorStatus.REMOVED
        self._touch()

    def update_collaborator_role(
        self, target_user_id: str, new_role: ProjectRole, requesting_user_id: str
    ) -> None:
        """Owner-only. Resets the collaborator's permissions to the new role's defaults."""
        self._ensure_is_owner(requesting_user_id)
        new_role = ProjectRole(new_role)
        if new_role == ProjectRole.OWNER:
            raise ValidationError("Owner role cannot be granted to a collaborator")

        collaborator = self._find_collaborator(target_user_id)
        if collaborator is None:
            raise NotFoundError("Collaborator not found", user_id=target_user_id)
        if collaborator.status != CollaboratorStatus.ACTIVE:
            raise StateConflictError("Cannot update role of inactive collaborator")

        collaborator.role = new_role
        collaborator.permissions = get_default_permissions_for_role(new_role)
        self._touch()

    # --- Settings ---

    def update_settings(self, new_settings: dict[str, Any], user_id: str) -> None:
        self._ensure_permission(user_id, "can_manage_settings", "manage settings")
        active = sum(
            1 for c in self._state.collaborators if c.status == CollaboratorStatus.ACTIVE
        )
        self._state.settings = self._validate_settings(
            new_settings, self._state.settings, active_collaborators=active
        )
        self._state.metadata.last_modified_by = user_id
        self._touch()

    # --- Tags and favorites ---

    def add_tag(self, tag: str, user_id: str) -> None:
        self._ensure_can_edit(user_id)
        normalized = normalize_tag(tag)
        if not normalized:
            raise ValidationError("Tag cannot be empty")
        if normalized in self._state.tags:
            return
        if len(self._state.tags) >= MAX_TAGS:
            raise ValidationError(f"Cannot add more than {MAX_TAGS} tags")

        self._state.tags.append(normalized)
        self._touch()

    def remove_tag(self, tag: str, user_id: str) -> None:
        self._ensure_can_edit(user_id)
        normalized = normalize_tag(tag)
        if normalized in self._state.tags:
            self._state.tags.remove(normalized)
            self._touch()

    def mark_as_favorite(self, user_id: str) -> None:
        self._ensure_can_view(user_id)
        self._state.is_favorite = True
        self._mark_access(user_id)
        self._state.revision += 1

    def unmark_as_favorite(self, user_id: str) -> None:
        self._ensure_can_view(user_id)
        self._state.is_favorite = False
        self._mark_access(user_id)
        self._state.revision += 1

    # --- Lifecycle ---

    def update_status(self, new_status: ProjectStatus, user_id: str) -> None:
        self._ensure_permission(user_id, "can_manage_settings", "manage settings")
        new_status = ProjectStatus(new_status)
        if self._state.status == ProjectStatus.DELETED:
            raise StateConflictError("Cannot change status of deleted project")

        self._state.status = new_status
        self._state.metadata.last_modified_by = user_id
        if new_status == ProjectStatus.ARCHIVED:
            self._state.archive_at = utcnow()
        self._touch()

    def set_deadline(self, deadline: datetime, user_id: str) -> None:
        self._ensure_permission(user_id, "can_manage_settings", "manage settings")
        if deadline <= utcnow():
            raise ValidationError("Deadline must be in the future")

        self._state.deadline = deadline
        self._touch()

    def remove_deadline(self, user_id: str) -> None:
        self._ensure_permission(user_id, "can_manage_settings", "manage settings")
        self._state.deadline = None
        self._touch()

    def update_last_access(self, user_id: str) -> None:
        self._mark_access(user_id)
        self._state.revision += 1

    # --- Access rules ---

    def can_be_viewed_by(self, user_id: str) -> bool:
        if self._state.owner_id == user_id:
            return True
        if self._state.status == ProjectStatus.DELETED:
            return False
        if self._state.visibility == ProjectVisibility.PUBLIC:
            return True
        return self._has_active_permission(user_id, "can_view_scripts")

    def can_be_edited_by(self, user_id: str) -> bool:
        if self._state.status == ProjectStatus.DELETED:
            return False
        if self._state.owner_id == user_id:
            return True
        return self._has_active_permission(user_id, "can_edit_scripts")

    def get_analytics(self) -> ProjectAnalytics:
        active = sum(
            1 for c in self._state.collaborators if c.status == CollaboratorStatus.ACTIVE
        )
        if self._state.status == ProjectStatus.COMPLETED:
            completion_rate = 100
        elif self._state.status == ProjectStatus.ACTIVE:
            completion_rate = 50
        else:
            completion_rate = 0

        return ProjectAnalytics(
            total_scripts=self._state.metadata.total_scripts,
            total_words=self._state.metadata.total_words,
            total_duration=self._state.metadata.total_duration,
            active_collaborators=active,
            last_activity=self._state.last_accessed_at,
            completion_rate=completion_rate,
            is_overdue=self._state.deadline is not None and utcnow() > self._state.deadline,
        )

    @staticmethod
    def get_default_permissions_for_role(role: ProjectRole) -> ProjectPermissions:
        return get_default_permissions_for_role(role)

    @staticmethod
    def is_valid_name(name: str) -> bool:
        return MIN_NAME_LENGTH <= len(name.strip()) <= MAX_NAME_LENGTH

    @staticmethod
    def get_visibility_options(subscription: SubscriptionTier) -> list[ProjectVisibility]:
        subscription = SubscriptionTier(subscription)
        options = [ProjectVisibility.PRIVATE]
        if subscription in (SubscriptionTier.PRO, SubscriptionTier.ENTERPRISE):
            options.append(ProjectVisibility.TEAM)
        if subscription == SubscriptionTier.ENTERPRISE:
            options.append(ProjectVisibility.PUBLIC)
        return options

    # --- Internals ---

    def _find_collaborator(self, user_id: str) -> ProjectCollaborator | None:
        return next((c for c in self._state.collaborators if c.user_id == user_id), None)

    def _count_collaborators(self) -> int:
        return sum(1 for c in self._state.collaborators if c.status != CollaboratorStatus.REMOVED)

    def _has_active_permission(self, user_id: str, permission: str) -> bool:
        collaborator = self._find_collaborator(user_id)
        return (
            collaborator is not None
            and collaborator.status == CollaboratorStatus.ACTIVE
            and getattr(collaborator.permissions, permission)
        )

    def _mark_access(self, user_id: str) -> None:
        now = utcnow()
        self._state.last_accessed_at = now
        collaborator = self._find_collaborator(user_id)
        if collaborator:
            collaborator.last_active_at = now

    def _ensure_is_owner(self, user_id: str) -> None:
        if self._state.owner_id != user_id:
            raise PermissionDeniedError("Only project owner can perform this action", user_id=user_id)

    def _ensure_not_deleted(self) -> None:
        if self._state.status == ProjectStatus.DELETED:
            raise StateConflictError("Project is deleted", project_id=self.id)

    def _ensure_can_view(self, user_id: str) -> None:
        if not self.can_be_viewed_by(user_id):
            raise PermissionDeniedError("User does not have permission to view this project", user_id=user_id)

    def _ensure_can_edit(self, user_id: str) -> None:
        if self._state.status == ProjectStatus.DELETED:
            raise StateConflictError("Project is deleted", project_id=self.id)
        if not self.can_be_edited_by(user_id):
            raise PermissionDeniedError("User does not have permission to edit this project", user_id=user_id)

    def _ensure_permission(self, user_id: str, permission: str, action: str) -> None:
        if self._state.owner_id == user_id:
            return
        if not self._has_active_permission(user_id, permission):
            raise PermissionDeniedError(
                f"User does not have permission to {action}",
                user_id=user_id,
                permission=permission,
            )

    @staticmethod
    def _validate_name(name: str) -> str:
        if not name or not name.strip():
            raise ValidationError("Project name cannot be empty")
        if len(name.strip()) > MAX_NAME_LENGTH:
            raise ValidationError(f"Project name cannot exceed {MAX_NAME_LENGTH} characters")
        return name.strip()

    @staticmethod
    def _validate_description(description: str) -> str:
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Project description cannot exceed {MAX_DESCRIPTION_LENGTH} characters"
            )
        return description.strip()

    @staticmethod
    def _validate_settings(
        new_settings: dict[str, Any], current: ProjectSettings, active_collaborators: int
    ) -> ProjectSettings:
        unknown = set(new_settings) - set(ProjectSettings.model_fields)
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        merged = parse_model(ProjectSettings, current.model_dump() | new_settings)

        if "max_collaborators" in new_settings:
            max_collaborators = merged.max_collaborators
            low, high = COLLABORATOR_LIMIT_RANGE
            if not low <= max_collaborators <= high:
                raise ValidationError(f"Max collaborators must be between {low} and {high}")
            if max_collaborators < active_collaborators:
                raise ValidationError("Cannot set max collaborators below current active count")

        if "auto_save_interval" in new_settings:
            low, high = AUTO_SAVE_RANGE
            if not low <= merged.auto_save_interval <= high:
                raise ValidationError(f"Auto save interval must be between {low} and {high} seconds")
        return merged
