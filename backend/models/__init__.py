"""Domain models: aggregates and value objects."""

# Aggregates
from models.script import Platform, Script, ScriptFormat, ScriptStatus
from models.project import (
    CollaboratorStatus,
    Project,
    ProjectCollaborator,
    ProjectPermissions,
    ProjectRole,
    ProjectStatus,
    ProjectVisibility,
)
from models.template import PlaceholderType, Template, TemplateCategory, TemplateDifficulty
from models.user import SubscriptionTier, User, UserRole

# Value objects
from models.script_content import ScriptContent
from models.template_metadata import TemplateMetadata
from models.user_credentials import AuthProvider, UserCredentials

__all__ = [
    # Aggregates
    "Script",
    "Platform",
    "ScriptFormat",
    "ScriptStatus",
    "Project",
    "ProjectCollaborator",
    "ProjectPermissions",
    "ProjectRole",
    "ProjectStatus",
    "ProjectVisibility",
    "CollaboratorStatus",
    "Template",
    "TemplateCategory",
    "TemplateDifficulty",
    "PlaceholderType",
    "User",
    "UserRole",
    "SubscriptionTier",
    # Value objects
    "ScriptContent",
    "TemplateMetadata",
    "UserCredentials",
    "AuthProvider",
]
