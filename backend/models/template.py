"""Template aggregate - reusable script structure with typed placeholders."""

import enum
import re
from datetime import date, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from config import get_settings
from errors import NotFoundError, PermissionDeniedError, StateConflictError, ValidationError
from models.base import Aggregate, AggregateState, normalize_tag, parse_model, utcnow
from models.script import Platform, ScriptFormat
from models.user import SubscriptionTier

MAX_TITLE_LENGTH = 150
MAX_DESCRIPTION_LENGTH = 500
MAX_SECTIONS = 20
MAX_PLACEHOLDERS = 50
MAX_TAGS = 20

# Popularity weights
USAGE_CAP = 1000
RECENCY_FULL_DAYS = 7
RECENCY_ZERO_DAYS = 90
RECENCY_MAX_POINTS = 50

# Verification thresholds
MIN_VERIFICATION_RATING = 4.0
MIN_VERIFICATION_USAGE = 10

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
URL_PATTERN = re.compile(r"^https?://\S+$")


class TemplateCategory(str, enum.Enum):
    TUTORIAL = "tutorial"
    MARKETING = "marketing"
    ENTERTAINMENT = "entertainment"
    EDUCATIONAL = "educational"
    NEWS = "news"
    REVIEW = "review"
    STORYTELLING = "storytelling"
    BUSINESS = "business"


class TemplateDifficulty(str, enum.Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class PlaceholderType(str, enum.Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    SELECT = "select"
    MULTISELECT = "multiselect"
    DATE = "date"
    URL = "url"
    EMAIL = "email"


class TemplateDuration(BaseModel):
    min: int = 0
    max: int = 0


class TemplateSection(BaseModel):
    id: str = Field(default_factory=lambda: f"section_{uuid4().hex}")
    title: str = ""
    description: str | None = None
    content: str
    order: int = 0
    duration: int = 0
    is_required: bool = False
    suggestions: list[str] = []


class PlaceholderValidation(BaseModel):
    required: bool = False
    min_length: int | None = None
    max_length: int | None = None
    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    custom_message: str | None = None


class TemplatePlaceholder(BaseModel):
    id: str
    name: str
    description: str = ""
    type: PlaceholderType = PlaceholderType.TEXT
    default_value: str | None = None
    options: list[str] | None = None
    validation: PlaceholderValidation = Field(default_factory=PlaceholderValidation)


class TemplateAuthor(BaseModel):
    id: str
    name: str
    verified: bool = False
    avatar: str | None = None


class TemplateInfo(BaseModel):
    version: int = 1
    language: str = Field(default_factory=lambda: get_settings().default_language)
    target_audience: list[str] = []
    business_goals: list[str] = []
    seo_optimized: bool = False
    accessibility_compliant: bool = False
    conversion_optimized: bool = False


class StructureReport(BaseModel):
    is_valid: bool
    errors: list[str] = []


class TemplateAnalytics(BaseModel):
    total_usage: int
    rating: float
    rating_count: int
    popularity: int
    conversion_rate: float
    last_used: datetime | None = None


class TemplateState(AggregateState):
    title: str
    description: str
    category: TemplateCategory
    platform: list[Platform] = []
    format: list[ScriptFormat] = []
    difficulty: TemplateDifficulty = TemplateDifficulty.BEGINNER
    structure: list[TemplateSection] = []
    placeholders: list[TemplatePlaceholder] = []
    examples: list[str] = []
    tags: list[str] = []
    duration: TemplateDuration = Field(default_factory=TemplateDuration)
    popularity: int = 0
    usage: int = 0
    rating: float = 0.0
    rating_count: int = 0
    author: TemplateAuthor
    is_premium: bool = False
    is_public: bool = False
    is_system: bool = False
    is_verified: bool = False
    metadata: TemplateInfo = Field(default_factory=TemplateInfo)
    last_used_at: datetime | None = None


class Template(Aggregate):
    """Reusable structure of ordered sections with ``{{placeholder}}`` tokens.

    Editing operations take the acting user's id and are reserved to the
    author of a non-system template. Structural edits bump
    ``metadata.version``.
    """

    state_model = TemplateState
    _state: TemplateState

    @classmethod
    def create(
        cls,
        *,
        title: str,
        description: str,
        category: TemplateCategory,
        author_id: str,
        author_name: str,
        structure: list[dict[str, Any]] | None = None,
        placeholders: list[dict[str, Any]] | None = None,
        platform: list[Platform] | None = None,
        format: list[ScriptFormat] | None = None,
        difficulty: TemplateDifficulty = TemplateDifficulty.BEGINNER,
        examples: list[str] | None = None,
        tags: list[str] | None = None,
        duration: dict[str, int] | None = None,
        is_premium: bool = False,
        is_public: bool = False,
    ) -> "Template":
        if not author_id:
            raise ValidationError("Author id is required")
        clean_title = cls._validate_title(title)
        clean_description = cls._validate_description(description)

        sections = [parse_model(TemplateSection, s) for s in structure or []]
        if len(sections) > MAX_SECTIONS:
            raise ValidationError(f"Cannot add more than {MAX_SECTIONS} sections to a template")
        for index, section in enumerate(sections, start=1):
            section.order = index

        parsed_placeholders = [parse_model(TemplatePlaceholder, p) for p in placeholders or []]
        if len(parsed_placeholders) > MAX_PLACEHOLDERS:
            raise ValidationError(f"Cannot add more than {MAX_PLACEHOLDERS} placeholders to a template")
        ids = [p.id for p in parsed_placeholders]
        if len(ids) != len(set(ids)):
            raise ValidationError("Placeholder ID already exists")

        clean_tags: list[str] = []
        for tag in tags or []:
            normalized = normalize_tag(tag)
            if normalized and normalized not in clean_tags:
                clean_tags.append(normalized)
        if len(clean_tags) > MAX_TAGS:
            raise ValidationError(f"Cannot add more than {MAX_TAGS} tags")

        return cls(TemplateState(
            title=clean_title,
            description=clean_description,
            category=TemplateCategory(category),
            platform=[Platform(p) for p in platform or []],
            format=[ScriptFormat(f) for f in format or []],
            difficulty=TemplateDifficulty(difficulty),
            structure=sections,
            placeholders=parsed_placeholders,
            examples=list(examples or []),
            tags=clean_tags,
            duration=parse_model(TemplateDuration, duration or {}),
            author=TemplateAuthor(id=author_id, name=author_name),
            is_premium=is_premium,
            is_public=is_public,
        ))

    # --- Getters ---

    @property
    def title(self) -> str:
        return self._state.title

    @property
    def description(self) -> str:
        return self._state.description

    @property
    def category(self) -> TemplateCategory:
        return self._state.category

    @property
    def platform(self) -> list[Platform]:
        return list(self._state.platform)

    @property
    def format(self) -> list[ScriptFormat]:
        return list(self._state.format)

    @property
    def difficulty(self) -> TemplateDifficulty:
        return self._state.difficulty

    @property
    def structure(self) -> list[TemplateSection]:
        return [s.model_copy(deep=True) for s in self._state.structure]

    @property
    def placeholders(self) -> list[TemplatePlaceholder]:
        return [p.model_copy(deep=True) for p in self._state.placeholders]

    @property
    def examples(self) -> list[str]:
        return list(self._state.examples)

    @property
    def tags(self) -> list[str]:
        return list(self._state.tags)

    @property
    def duration(self) -> TemplateDuration:
        return self._state.duration.model_copy()

    @property
    def popularity(self) -> int:
        return self._state.popularity

    @property
    def usage(self) -> int:
        return self._state.usage

    @property
    def rating(self) -> float:
        return self._state.rating

    @property
    def rating_count(self) -> int:
        return self._state.rating_count

    @property
    def author(self) -> TemplateAuthor:
        return self._state.author.model_copy()

    @property
    def is_premium(self) -> bool:
        return self._state.is_premium

    @property
    def is_public(self) -> bool:
        return self._state.is_public

    @property
    def is_system(self) -> bool:
        return self._state.is_system

    @property
    def is_verified(self) -> bool:
        return self._state.is_verified

    @property
    def metadata(self) -> TemplateInfo:
        return self._state.metadata.model_copy(deep=True)

    @property
    def last_used_at(self) -> datetime | None:
        return self._state.last_used_at

    # --- Details ---

    def update_title(self, new_title: str, user_id: str) -> None:
        self._ensure_can_edit(user_id)
        self._state.title = self._validate_title(new_title)
        self._bump_version()

    def update_description(self, new_description: str, user_id: str) -> None:
        self._ensure_can_edit(user_id)
        self._state.description = self._validate_description(new_description)
        self._bump_version()

    # --- Sections ---

    def add_section(self, section: dict[str, Any], user_id: str) -> TemplateSection:
        self._ensure_can_edit(user_id)
        if len(self._state.structure) >= MAX_SECTIONS:
            raise ValidationError(f"Cannot add more than {MAX_SECTIONS} sections to a template")

        fields = {k: v for k, v in section.items() if k not in ("id", "order")}
        new_section = parse_model(TemplateSection, fields)
        new_section.order = len(self._state.structure) + 1
        self._state.structure.append(new_section)
        self._bump_version()
        return new_section.model_copy(deep=True)

    def update_section(self, section_id: str, updates: dict[str, Any], user_id: str) -> None:
        self._ensure_can_edit(user_id)
        index = self._section_index(section_id)
        if "id" in updates:
            raise ValidationError("Section id cannot be changed")
        if "order" in updates:
            raise ValidationError("Section order is managed by the template")

        current = self._state.structure[index]
        updated = parse_model(TemplateSection, current.model_dump() | updates)
        if current.is_required and not updated.is_required and self._required_count() == 1:
            raise ValidationError("Cannot remove the only required section")

        self._state.structure[index] = updated
        self._bump_version()

    def remove_section(self, section_id: str, user_id: str) -> None:
        self._ensure_can_edit(user_id)
        index = self._section_index(section_id)
        if self._state.structure[index].is_required and self._required_count() == 1:
            raise ValidationError("Cannot remove the only required section")

        del self._state.structure[index]
        for order, section in enumerate(self._state.structure, start=1):
            section.order = order
        self._bump_version()

    # --- Placeholders ---

    def add_placeholder(self, placeholder: dict[str, Any], user_id: str) -> None:
        self._ensure_can_edit(user_id)
        if len(self._state.placeholders) >= MAX_PLACEHOLDERS:
            raise ValidationError(f"Cannot add more than {MAX_PLACEHOLDERS} placeholders to a template")

        new_placeholder = parse_model(TemplatePlaceholder, placeholder)
        if self._find_placeholder(new_placeholder.id) is not None:
            raise ValidationError("Placeholder ID already exists", placeholder_id=new_placeholder.id)

        self._state.placeholders.append(new_placeholder)
        self._bump_version()

    def update_placeholder(self, placeholder_id: str, updates: dict[str, Any], user_id: str) -> None:
        self._ensure_can_edit(user_id)
        current = self._find_placeholder(placeholder_id)
        if current is None:
            raise NotFoundError("Placeholder not found", placeholder_id=placeholder_id)
        if "id" in updates:
            raise ValidationError("Placeholder id cannot be changed")

        updated = parse_model(TemplatePlaceholder, current.model_dump() | updates)
        index = self._state.placeholders.index(current)
        self._state.placeholders[index] = updated
        self._bump_version()

    def remove_placeholder(self, placeholder_id: str, user_id: str) -> None:
        self._ensure_can_edit(user_id)
        current = self._find_placeholder(placeholder_id)
        if current is None:
            raise NotFoundError("Placeholder not found", placeholder_id=placeholder_id)

        token = f"{{{{{placeholder_id}}}}}"
        if any(token in section.content for section in self._state.structure):
            raise StateConflictError(
                "Cannot remove placeholder that is used in template content",
                placeholder_id=placeholder_id,
            )

        self._state.placeholders.remove(current)
        self._bump_version()

    # --- Tags ---

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

    # --- Lifecycle ---

    def publish(self, user_id: str) -> None:
        self._ensure_can_edit(user_id)
        if self._state.is_public:
            raise StateConflictError("Template is already published")
        self._validate_for_publication()

        self._state.is_public = True
        self._touch()

    def unpublish(self, user_id: str) -> None:
        self._ensure_can_edit(user_id)
        if not self._state.is_public:
            raise StateConflictError("Template is not published")

        self._state.is_public = False
        self._touch()

    def verify(self) -> None:
        self._validate_for_publication()
        if not self._state.examples:
            raise ValidationError("Examples are required for verification")
        if self._state.rating < MIN_VERIFICATION_RATING:
            raise ValidationError(
                f"Minimum rating of {MIN_VERIFICATION_RATING} is required for verification"
            )
        if self._state.usage < MIN_VERIFICATION_USAGE:
            raise ValidationError(
                f"Minimum {MIN_VERIFICATION_USAGE} uses are required for verification"
            )

        self._state.is_verified = True
        self._touch()

    def unverify(self) -> None:
        self._state.is_verified = False
        self._touch()

    def mark_as_system(self) -> None:
        self._state.is_system = True
        self._state.is_verified = True
        self._state.author.verified = True
        self._touch()

    # --- Usage and rating ---

    def record_usage(self) -> None:
        self._state.usage += 1
        self._state.last_used_at = utcnow()
        self._update_popularity()
        self._touch()

    def add_rating(self, rating: float) -> None:
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5", rating=rating)

        total = self._state.rating * self._state.rating_count
        self._state.rating_count += 1
        self._state.rating = (total + rating) / self._state.rating_count
        self._update_popularity()
        self._touch()

    def calculate_popularity(self, now: datetime | None = None) -> int:
        """``min(usage, 1000) / 10 + rating * 20 + recency``, rounded."""
        usage_score = min(self._state.usage, USAGE_CAP) / 10
        rating_score = self._state.rating * 20
        return round(usage_score + rating_score + self._recency_score(now or utcnow()))

    # --- Rendering ---

    def process_with_values(self, values: dict[str, Any]) -> str:
        """Render sections in order with every ``{{id}}`` token substituted.

        Missing required placeholders are reported together before any
        per-value validation runs. Sections are joined by a blank line.
        """
        missing = [
            p.name for p in self._state.placeholders
            if p.validation.required and self._is_blank(values.get(p.id))
        ]
        if missing:
            raise ValidationError(
                f"Missing required placeholders: {', '.join(missing)}",
                missing=missing,
            )

        resolved: dict[str, Any] = {}
        for placeholder in self._state.placeholders:
            value = values.get(placeholder.id)
            if self._is_blank(value):
                if placeholder.default_value is not None:
                    resolved[placeholder.id] = placeholder.default_value
                continue
            self._validate_placeholder_value(placeholder, value)
            resolved[placeholder.id] = value

        # Values without a declared placeholder are still substituted
        for key, value in values.items():
            resolved.setdefault(key, value)

        rendered = []
        for section in sorted(self._state.structure, key=lambda s: s.order):
            rendered.append(self._replace_placeholders(section.content, resolved))
        return "\n\n".join(rendered).strip()

    # --- Access rules ---

    def can_be_used_by(self, user_id: str, subscription: SubscriptionTier) -> bool:
        if self._state.author.id == user_id:
            return True
        if self._state.is_premium and SubscriptionTier(subscription) == SubscriptionTier.FREE:
            return False
        return self._state.is_public

    def can_be_edited_by(self, user_id: str) -> bool:
        return self._state.author.id == user_id and not self._state.is_system

    def get_analytics(self) -> TemplateAnalytics:
        usage = self._state.usage
        conversion_rate = usage / (usage + 1000) * 100 if usage > 0 else 0.0
        return TemplateAnalytics(
            total_usage=usage,
            rating=self._state.rating,
            rating_count=self._state.rating_count,
            popularity=self._state.popularity,
            conversion_rate=conversion_rate,
            last_used=self._state.last_used_at,
        )

    @staticmethod
    def validate_structure(structure: list[TemplateSection]) -> StructureReport:
        errors = []
        if not structure:
            errors.append("Template must have at least one section")
        if not any(s.is_required for s in structure):
            errors.append("Template must have at least one required section")
        orders = [s.order for s in structure]
        if len(orders) != len(set(orders)):
            errors.append("Template sections must have unique order values")
        if any(not s.content.strip() for s in structure):
            errors.append("All template sections must have content")
        return StructureReport(is_valid=not errors, errors=errors)

    # --- Internals ---

    def _bump_version(self) -> None:
        self._state.metadata.version += 1
        self._touch()

    def _update_popularity(self) -> None:
        self._state.popularity = self.calculate_popularity()

    def _recency_score(self, now: datetime) -> int:
        if self._state.last_used_at is None:
            return 0
        days = (now - self._state.last_used_at).total_seconds() / 86400
        if days <= RECENCY_FULL_DAYS:
            return RECENCY_MAX_POINTS
        if days >= RECENCY_ZERO_DAYS:
            return 0
        span = RECENCY_ZERO_DAYS - RECENCY_FULL_DAYS
        return round(RECENCY_MAX_POINTS * (1 - (days - RECENCY_FULL_DAYS) / span))

    def _section_index(self, section_id: str) -> int:
        for index, section in enumerate(self._state.structure):
            if section.id == section_id:
                return index
        raise NotFoundError("Section not found", section_id=section_id)

    def _required_count(self) -> int:
        return sum(1 for s in self._state.structure if s.is_required)

    def _find_placeholder(self, placeholder_id: str) -> TemplatePlaceholder | None:
        return next((p for p in self._state.placeholders if p.id == placeholder_id), None)

    def _ensure_can_edit(self, user_id: str) -> None:
        if not self.can_be_edited_by(user_id):
            raise PermissionDeniedError("User cannot edit this template", user_id=user_id)

    def _validate_for_publication(self) -> None:
        if not self._state.title.strip():
            raise ValidationError("Title is required for publication")
        if not self._state.description.strip():
            raise ValidationError("Description is required for publication")
        if not self._state.structure:
            raise ValidationError("At least one section is required for publication")
        if not self._required_count():
            raise ValidationError("At least one required section is needed for publication")
        if not self._state.placeholders:
            raise ValidationError("At least one placeholder is required for publication")
        if not self._state.tags:
            raise ValidationError("At least one tag is required for publication")

    @staticmethod
    def _is_blank(value: Any) -> bool:
        if value is None:
            return True
        if isinstance(value, str):
            return not value.strip()
        if isinstance(value, (list, tuple)):
            return not value
        return False

    @staticmethod
    def _validate_placeholder_value(placeholder: TemplatePlaceholder, value: Any) -> None:
        rules = placeholder.validation
        name = placeholder.name
        kind = placeholder.type

        if kind in (PlaceholderType.TEXT, PlaceholderType.TEXTAREA):
            text = str(value)
            if rules.min_length is not None and len(text) < rules.min_length:
                raise ValidationError(f"{name} must be at least {rules.min_length} characters")
            if rules.max_length is not None and len(text) > rules.max_length:
                raise ValidationError(f"{name} cannot exceed {rules.max_length} characters")

        elif kind == PlaceholderType.NUMBER:
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{name} must be a valid number") from None
            if rules.min is not None and number < rules.min:
                raise ValidationError(f"{name} must be at least {rules.min:g}")
            if rules.max is not None and number > rules.max:
                raise ValidationError(f"{name} cannot exceed {rules.max:g}")

        elif kind == PlaceholderType.SELECT and placeholder.options:
            if value not in placeholder.options:
                raise ValidationError(f"{name} must be one of: {', '.join(placeholder.options)}")

        elif kind == PlaceholderType.MULTISELECT and placeholder.options:
            chosen = value if isinstance(value, (list, tuple)) else [value]
            invalid = [v for v in chosen if v not in placeholder.options]
            if invalid:
                raise ValidationError(f"{name} must be one of: {', '.join(placeholder.options)}")

        elif kind == PlaceholderType.DATE:
            if not isinstance(value, (date, datetime)):
                try:
                    date.fromisoformat(str(value))
                except ValueError:
                    raise ValidationError(f"{name} must be a valid date") from None

        elif kind == PlaceholderType.URL:
            if not URL_PATTERN.match(str(value)):
                raise ValidationError(f"{name} must be a valid URL")

        elif kind == PlaceholderType.EMAIL:
            if not EMAIL_PATTERN.match(str(value)):
                raise ValidationError(f"{name} must be a valid email")

        if rules.pattern and not re.search(rules.pattern, str(value)):
            raise ValidationError(rules.custom_message or f"{name} format is invalid")

    @staticmethod
    def _replace_placeholders(content: str, values: dict[str, Any]) -> str:
        for key, value in values.items():
            if isinstance(value, (list, tuple)):
                value = ", ".join(str(v) for v in value)
            elif isinstance(value, (date, datetime)):
                value = value.isoformat()
            content = content.replace(f"{{{{{key}}}}}", str(value))
        return content

    @staticmethod
    def _validate_title(title: str) -> str:
        if not title or not title.strip():
            raise ValidationError("Template title cannot be empty")
        if len(title.strip()) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Template title cannot exceed {MAX_TITLE_LENGTH} characters")
        return title.strip()

    @staticmethod
    def _validate_description(description: str) -> str:
        if not description or not description.strip():
            raise ValidationError("Template description cannot be empty")
        if len(description.strip()) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Template description cannot exceed {MAX_DESCRIPTION_LENGTH} characters"
            )
        return description.strip()
