"""Script aggregate - a unit of authored short-form media content."""

import enum
import math
import re
from collections import Counter
from datetime import datetime

from pydantic import BaseModel, Field

from config import get_settings
from errors import StateConflictError, ValidationError
from models.base import Aggregate, AggregateState, normalize_tag, utcnow

settings = get_settings()

MAX_TITLE_LENGTH = 100
MAX_TAGS = 10
MIN_SHAREABLE_LENGTH = 50  # trimmed characters needed to publish or share
MAX_KEYWORDS = 10


class Platform(str, enum.Enum):
    """Target platforms a script can be written for."""
    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    LINKEDIN = "linkedin"
    TWITTER = "twitter"
    PODCAST = "podcast"
    FACEBOOK = "facebook"


class ScriptFormat(str, enum.Enum):
    """Format category of a script."""
    TUTORIAL = "tutorial"
    REVIEW = "review"
    ENTERTAINMENT = "entertainment"
    EDUCATIONAL = "educational"
    MARKETING = "marketing"
    NEWS = "news"
    STORYTELLING = "storytelling"


class ScriptStatus(str, enum.Enum):
    """Script lifecycle status. DELETED is terminal."""
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    DELETED = "deleted"


# Speaking rate used for duration estimates
DEFAULT_WORDS_PER_MINUTE = 150
WORDS_PER_MINUTE: dict[Platform, int] = {
    Platform.TIKTOK: 180,     # Short-form, faster delivery
    Platform.INSTAGRAM: 180,
    Platform.PODCAST: 130,    # Conversational
    Platform.LINKEDIN: 140,   # Professional, slightly slower
}


class DurationRange(BaseModel):
    min: int
    max: int


class PlatformConstraints(BaseModel):
    """Duration bounds (seconds) and preferred formats for a platform."""
    max_duration: int
    recommended_length: DurationRange
    preferred_formats: list[ScriptFormat]


DEFAULT_CONSTRAINTS = PlatformConstraints(
    max_duration=1800,
    recommended_length=DurationRange(min=60, max=600),
    preferred_formats=[ScriptFormat.TUTORIAL, ScriptFormat.REVIEW, ScriptFormat.EDUCATIONAL],
)

PLATFORM_CONSTRAINTS: dict[Platform, PlatformConstraints] = {
    Platform.YOUTUBE: PlatformConstraints(
        max_duration=3600,
        recommended_length=DurationRange(min=300, max=1200),
        preferred_formats=[
            ScriptFormat.TUTORIAL,
            ScriptFormat.REVIEW,
            ScriptFormat.ENTERTAINMENT,
            ScriptFormat.EDUCATIONAL,
        ],
    ),
    Platform.INSTAGRAM: PlatformConstraints(
        max_duration=60,
        recommended_length=DurationRange(min=15, max=60),
        preferred_formats=[ScriptFormat.ENTERTAINMENT, ScriptFormat.MARKETING, ScriptFormat.STORYTELLING],
    ),
    Platform.TIKTOK: PlatformConstraints(
        max_duration=180,
        recommended_length=DurationRange(min=15, max=60),
        preferred_formats=[ScriptFormat.ENTERTAINMENT, ScriptFormat.EDUCATIONAL, ScriptFormat.TUTORIAL],
    ),
    Platform.LINKEDIN: PlatformConstraints(
        max_duration=600,
        recommended_length=DurationRange(min=60, max=300),
        preferred_formats=[ScriptFormat.EDUCATIONAL, ScriptFormat.NEWS, ScriptFormat.MARKETING],
    ),
    Platform.PODCAST: PlatformConstraints(
        max_duration=7200,
        recommended_length=DurationRange(min=900, max=3600),
        preferred_formats=[
            ScriptFormat.EDUCATIONAL,
            ScriptFormat.ENTERTAINMENT,
            ScriptFormat.NEWS,
            ScriptFormat.STORYTELLING,
        ],
    ),
}


class PlatformValidation(BaseModel):
    """Soft validation report: warnings never block an operation."""
    is_valid: bool
    warnings: list[str] = []
    suggestions: list[str] = []


class ScriptMetadata(BaseModel):
    from_template: str | None = None
    template_title: str | None = None
    processed_at: datetime | None = None
    ai_generated: bool = False
    quality_score: float | None = None
    readability_score: float | None = None
    engagement_prediction: float | None = None
    keywords: list[str] = []


class ScriptState(AggregateState):
    owner_id: str
    title: str
    content: str
    platform: Platform
    format: ScriptFormat
    objective: str = ""
    target_audience: str = ""
    tone: str = ""
    duration: int = 0
    tags: list[str] = []
    is_public: bool = False
    status: ScriptStatus = ScriptStatus.DRAFT
    version: int = 1
    word_count: int = 0
    estimated_duration: int = 0
    view_count: int = 0
    edit_count: int = 0
    is_shared: bool = False
    share_link: str | None = None
    shared_at: datetime | None = None
    original_prompt: str | None = None
    ai_model_used: str | None = None
    generation_time: float | None = None
    metadata: ScriptMetadata = Field(default_factory=ScriptMetadata)
    last_edited_at: datetime | None = None


class Script(Aggregate):
    """Authored script. Never physically deleted, only soft-deleted."""

    state_model = ScriptState
    _state: ScriptState

    @classmethod
    def create(
        cls,
        *,
        owner_id: str,
        title: str,
        content: str,
        platform: Platform,
        format: ScriptFormat,
        objective: str = "",
        target_audience: str = "",
        tone: str = "",
        tags: list[str] | None = None,
        original_prompt: str | None = None,
        ai_model_used: str | None = None,
        generation_time: float | None = None,
        from_template: str | None = None,
        template_title: str | None = None,
    ) -> "Script":
        """Create a new draft script at version 1."""
        if not owner_id:
            raise ValidationError("Owner id is required")
        clean_title = cls._validate_title(title)
        clean_tags = cls._validate_tags(tags or [])
        platform = Platform(platform)
        content = content or ""

        estimated = cls.estimate_duration(content, platform)
        return cls(ScriptState(
            owner_id=owner_id,
            title=clean_title,
            content=content,
            platform=platform,
            format=ScriptFormat(format),
            objective=objective,
            target_audience=target_audience,
            tone=tone,
            duration=estimated,
            tags=clean_tags,
            word_count=cls.calculate_word_count(content),
            estimated_duration=estimated,
            original_prompt=original_prompt,
            ai_model_used=ai_model_used,
            generation_time=generation_time,
            metadata=ScriptMetadata(
                from_template=from_template,
                template_title=template_title,
                processed_at=utcnow() if from_template else None,
                ai_generated=bool(ai_model_used),
                keywords=cls.extract_keywords(content),
            ),
        ))

    # --- Getters ---

    @property
    def owner_id(self) -> str:
        return self._state.owner_id

    @property
    def title(self) -> str:
        return self._state.title

    @property
    def content(self) -> str:
        return self._state.content

    @property
    def platform(self) -> Platform:
        return self._state.platform

    @property
    def format(self) -> ScriptFormat:
        return self._state.format

    @property
    def objective(self) -> str:
        return self._state.objective

    @property
    def target_audience(self) -> str:
        return self._state.target_audience

    @property
    def tone(self) -> str:
        return self._state.tone

    @property
    def duration(self) -> int:
        return self._state.duration

    @property
    def tags(self) -> list[str]:
        return list(self._state.tags)

    @property
    def is_public(self) -> bool:
        return self._state.is_public

    @property
    def status(self) -> ScriptStatus:
        return self._state.status

    @property
    def version(self) -> int:
        return self._state.version

    @property
    def word_count(self) -> int:
        return self._state.word_count

    @property
    def estimated_duration(self) -> int:
        return self._state.estimated_duration

    @property
    def view_count(self) -> int:
        return self._state.view_count

    @property
    def edit_count(self) -> int:
        return self._state.edit_count

    @property
    def is_shared(self) -> bool:
        return self._state.is_shared

    @property
    def share_link(self) -> str | None:
        return self._state.share_link

    @property
    def shared_at(self) -> datetime | None:
        return self._state.shared_at

    @property
    def original_prompt(self) -> str | None:
        return self._state.original_prompt

    @property
    def ai_model_used(self) -> str | None:
        return self._state.ai_model_used

    @property
    def generation_time(self) -> float | None:
        return self._state.generation_time

    @property
    def metadata(self) -> ScriptMetadata:
        return self._state.metadata.model_copy(deep=True)

    @property
    def last_edited_at(self) -> datetime | None:
        return self._state.last_edited_at

    @property
    def is_deleted(self) -> bool:
        return self._state.status == ScriptStatus.DELETED

    # --- Mutators ---

    def update_content(self, new_content: str) -> None:
        """Replace content, recompute derived metrics and bump the version."""
        self._ensure_not_deleted("edit")
        if not new_content or not new_content.strip():
            raise ValidationError("Script content cannot be empty")

        self._state.content = new_content
        self._state.word_count = self.calculate_word_count(new_content)
        self._state.estimated_duration = self.estimate_duration(new_content, self._state.platform)
        self._state.metadata.keywords = self.extract_keywords(new_content)
        self._state.edit_count += 1
        self._state.version += 1
        self._state.last_edited_at = utcnow()
        self._touch()

    def update_title(self, new_title: str) -> None:
        self._ensure_not_deleted("rename")
        self._state.title = self._validate_title(new_title)
        self._touch()

    def add_tag(self, tag: str) -> None:
        """Add a normalized tag. Adding an existing tag is a no-op."""
        self._ensure_not_deleted("tag")
        normalized = normalize_tag(tag)
        if not normalized:
            raise ValidationError("Tag cannot be empty")
        if normalized in self._state.tags:
            return
        if len(self._state.tags) >= MAX_TAGS:
            raise ValidationError(f"Cannot add more than {MAX_TAGS} tags", limit=MAX_TAGS)

        self._state.tags.append(normalized)
        self._touch()

    def remove_tag(self, tag: str) -> None:
        normalized = normalize_tag(tag)
        if normalized in self._state.tags:
            self._state.tags.remove(normalized)
            self._touch()

    def publish(self) -> None:
        self._ensure_not_deleted("publish")
        if self._state.status == ScriptStatus.PUBLISHED:
            raise StateConflictError("Script is already published", script_id=self.id)
        if len(self._state.content.strip()) < MIN_SHAREABLE_LENGTH:
            raise ValidationError(
                f"Script content is too short to publish (minimum {MIN_SHAREABLE_LENGTH} characters)"
            )

        self._state.status = ScriptStatus.PUBLISHED
        self._state.is_public = True
        self._touch()

    def archive(self) -> None:
        self._ensure_not_deleted("archive")
        if self._state.status == ScriptStatus.ARCHIVED:
            raise StateConflictError("Script is already archived", script_id=self.id)

        self._state.status = ScriptStatus.ARCHIVED
        self._state.is_public = False
        self._touch()

    def mark_as_deleted(self) -> None:
        """Soft delete. Terminal: also strips all sharing state."""
        if self.is_deleted:
            raise StateConflictError("Script is already deleted", script_id=self.id)

        self._state.status = ScriptStatus.DELETED
        self._state.is_public = False
        self._state.is_shared = False
        self._state.share_link = None
        self._state.shared_at = None
        self._touch()

    def share(self) -> None:
        self._ensure_not_deleted("share")
        if len(self._state.content.strip()) < MIN_SHAREABLE_LENGTH:
            raise ValidationError("Script content is too short to share")

        self._state.is_shared = True
        self._state.share_link = self._generate_share_link()
        self._state.shared_at = utcnow()
        self._touch()

    def unshare(self) -> None:
        self._state.is_shared = False
        self._state.share_link = None
        self._state.shared_at = None
        self._touch()

    def increment_view_count(self) -> None:
        self._state.view_count += 1
        self._state.revision += 1

    def update_quality_score(self, score: float) -> None:
        self._state.metadata.quality_score = self._validate_score(score, "Quality score")
        self._touch()

    def update_readability_score(self, score: float) -> None:
        self._state.metadata.readability_score = self._validate_score(score, "Readability score")
        self._touch()

    def update_engagement_prediction(self, prediction: float) -> None:
        self._state.metadata.engagement_prediction = self._validate_score(
            prediction, "Engagement prediction"
        )
        self._touch()

    # --- Access rules ---

    def can_be_edited_by(self, user_id: str) -> bool:
        return self._state.owner_id == user_id and not self.is_deleted

    def can_be_viewed_by(self, user_id: str) -> bool:
        if self._state.owner_id == user_id:
            return True
        if self._state.is_public and self._state.status == ScriptStatus.PUBLISHED:
            return True
        return self._state.is_shared and not self.is_deleted

    # --- Platform rules ---

    def get_platform_constraints(self) -> PlatformConstraints:
        return self.constraints_for(self._state.platform)

    def validate_against_platform(self) -> PlatformValidation:
        return self.validate_for_platform(self._state.content, self._state.platform)

    @staticmethod
    def constraints_for(platform: Platform) -> PlatformConstraints:
        return PLATFORM_CONSTRAINTS.get(Platform(platform), DEFAULT_CONSTRAINTS).model_copy(deep=True)

    @classmethod
    def validate_for_platform(cls, content: str, platform: Platform) -> PlatformValidation:
        """Compare the estimated duration against the platform's bounds."""
        platform = Platform(platform)
        duration = cls.estimate_duration(content, platform)
        constraints = cls.constraints_for(platform)
        warnings: list[str] = []
        suggestions: list[str] = []

        if duration > constraints.max_duration:
            warnings.append(
                f"Content is too long for {platform.value} ({duration}s > {constraints.max_duration}s)"
            )
            suggestions.append("Consider splitting into multiple parts or reducing content")

        if duration < constraints.recommended_length.min:
            warnings.append(
                f"Content might be too short for {platform.value} "
                f"({duration}s < {constraints.recommended_length.min}s)"
            )
            suggestions.append("Consider adding more details or examples")

        if duration > constraints.recommended_length.max:
            warnings.append(
                f"Content might be too long for optimal engagement "
                f"({duration}s > {constraints.recommended_length.max}s)"
            )
            suggestions.append("Consider focusing on key points for better retention")

        return PlatformValidation(is_valid=not warnings, warnings=warnings, suggestions=suggestions)

    # --- Text metrics ---

    @staticmethod
    def calculate_word_count(content: str) -> int:
        return len(content.split())

    @classmethod
    def estimate_duration(cls, content: str, platform: Platform) -> int:
        """Spoken duration in seconds at the platform's speaking rate."""
        words_per_minute = WORDS_PER_MINUTE.get(Platform(platform), DEFAULT_WORDS_PER_MINUTE)
        return math.ceil(cls.calculate_word_count(content) * 60 / words_per_minute)

    @staticmethod
    def extract_keywords(content: str) -> list[str]:
        """Top words longer than three characters, most frequent first."""
        words = [
            word for word in re.sub(r"[^\w\s]", " ", content.lower()).split()
            if len(word) > 3
        ]
        return [word for word, _ in Counter(words).most_common(MAX_KEYWORDS)]

    # --- Internals ---

    def _ensure_not_deleted(self, action: str) -> None:
        if self.is_deleted:
            raise StateConflictError(f"Cannot {action} a deleted script", script_id=self.id)

    def _generate_share_link(self) -> str:
        return f"{settings.share_base_url.rstrip('/')}/{self.id}"

    @staticmethod
    def _validate_title(title: str) -> str:
        if not title or not title.strip():
            raise ValidationError("Script title cannot be empty")
        if len(title.strip()) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Script title cannot exceed {MAX_TITLE_LENGTH} characters")
        return title.strip()

    @staticmethod
    def _validate_tags(tags: list[str]) -> list[str]:
        normalized: list[str] = []
        for tag in tags:
            clean = normalize_tag(tag)
            if clean and clean not in normalized:
                normalized.append(clean)
        if len(normalized) > MAX_TAGS:
            raise ValidationError(f"Cannot add more than {MAX_TAGS} tags", limit=MAX_TAGS)
        return normalized

    @staticmethod
    def _validate_score(score: float, label: str) -> float:
        if score < 0 or score > 100:
            raise ValidationError(f"{label} must be between 0 and 100", value=score)
        return score
