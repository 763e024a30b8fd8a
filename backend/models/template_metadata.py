"""TemplateMetadata value object - template targeting, compatibility and quality."""

import enum
from datetime import datetime
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import get_settings
from errors import ValidationError
from models.base import normalize_tag, utcnow
from models.script import Platform
from models.template import TemplateCategory, TemplateDifficulty

MAX_KEYWORDS = 20
MAX_AUDIENCES = 10
USAGE_TIME_RANGE = (1, 480)  # minutes


class SkillLevel(str, enum.Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


SKILL_ORDER = list(SkillLevel)


class CompatibilityLevel(str, enum.Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class QualityLevel(str, enum.Enum):
    PREMIUM = "premium"
    STANDARD = "standard"
    BASIC = "basic"
    NEEDS_IMPROVEMENT = "needs-improvement"


class OptimizationType(str, enum.Enum):
    SEO = "seo"
    ACCESSIBILITY = "accessibility"
    CONVERSION = "conversion"


OPTIMIZATION_FLAGS = {
    OptimizationType.SEO: "seo_optimized",
    OptimizationType.ACCESSIBILITY: "accessibility_compliant",
    OptimizationType.CONVERSION: "conversion_optimized",
}


class TemplateRequirements(BaseModel):
    platform: Platform | None = None
    skill_level: SkillLevel | None = None
    target_audience: str | None = None
    business_goal: str | None = None
    industry: str | None = None


class CompatibilityScore(BaseModel):
    score: int
    level: CompatibilityLevel
    factors: list[str] = []
    estimated_setup_time: int  # minutes


class QualityAssessment(BaseModel):
    score: int
    level: QualityLevel
    strengths: list[str] = []
    improvement_areas: list[str] = []
    last_assessed: datetime = Field(default_factory=utcnow)


def _band(score: float, levels: tuple) -> Any:
    high, mid, low, bottom = levels
    if score >= 80:
        return high
    if score >= 60:
        return mid
    if score >= 40:
        return low
    return bottom


class TemplateMetadata(BaseModel):
    """Immutable description of who and what a template is for."""

    model_config = ConfigDict(frozen=True)

    category: TemplateCategory
    platforms: tuple[Platform, ...]
    difficulty: TemplateDifficulty
    language: str = Field(default_factory=lambda: get_settings().default_language, min_length=1)
    target_audience: tuple[str, ...] = ()
    business_goals: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    estimated_usage_time: int = 10
    required_skill_level: SkillLevel | None = None
    industry_focus: tuple[str, ...] = ()
    seo_optimized: bool = False
    accessibility_compliant: bool = False
    conversion_optimized: bool = False
    last_optimized: datetime | None = None

    @field_validator("platforms")
    @classmethod
    def require_platform(cls, v):
        if not v:
            raise ValueError("At least one platform is required")
        return v

    @field_validator("estimated_usage_time")
    @classmethod
    def usage_time_in_range(cls, v):
        low, high = USAGE_TIME_RANGE
        if not low <= v <= high:
            raise ValueError(f"Estimated usage time must be between {low} and {high} minutes")
        return v

    @property
    def skill_level(self) -> SkillLevel:
        """Required skill, defaulting to the template difficulty."""
        return self.required_skill_level or SkillLevel(self.difficulty.value)

    # --- Matching ---

    def is_suitable_for_platform(self, platform: Platform) -> bool:
        return Platform(platform) in self.platforms

    def matches_skill_level(self, user_skill_level: SkillLevel) -> bool:
        return SKILL_ORDER.index(SkillLevel(user_skill_level)) >= SKILL_ORDER.index(self.skill_level)

    def targets_audience(self, audience: str) -> bool:
        return self._any_contains(self.target_audience, audience)

    def supports_business_goal(self, goal: str) -> bool:
        return self._any_contains(self.business_goals, goal)

    def get_compatibility_score(self, requirements: TemplateRequirements) -> CompatibilityScore:
        score = 0
        factors = []

        if requirements.platform and self.is_suitable_for_platform(requirements.platform):
            score += 40
            factors.append(f"Compatible with {requirements.platform.value}")
        if requirements.skill_level and self.matches_skill_level(requirements.skill_level):
            score += 20
            factors.append(f"Matches {requirements.skill_level.value} skill level")
        if requirements.target_audience and self.targets_audience(requirements.target_audience):
            score += 20
            factors.append("Matches target audience")
        if requirements.business_goal and self.supports_business_goal(requirements.business_goal):
            score += 10
            factors.append("Supports business goal")
        if requirements.industry and self._any_contains(self.industry_focus, requirements.industry):
            score += 5
            factors.append("Industry focused")
        if self.seo_optimized:
            score += 5
            factors.append("SEO optimized")

        score = min(score, 100)
        return CompatibilityScore(
            score=score,
            level=_band(score, tuple(CompatibilityLevel)),
            factors=factors,
            estimated_setup_time=self._setup_time(requirements.skill_level),
        )

    def get_quality_assessment(self) -> QualityAssessment:
        score = 0.0
        strengths = []
        improvements = []

        for flag, strength, improvement in (
            (self.seo_optimized, "SEO optimized", "Add SEO optimization"),
            (self.accessibility_compliant, "Accessibility compliant", "Improve accessibility compliance"),
            (self.conversion_optimized, "Conversion optimized", "Add conversion optimization"),
        ):
            if flag:
                score += 25
                strengths.append(strength)
            else:
                improvements.append(improvement)

        coverage = len(set(self.platforms)) / len(Platform)
        score += coverage * 15
        if coverage > 0.5:
            strengths.append("Good platform coverage")
        else:
            improvements.append("Expand platform support")

        if len(self.keywords) >= 5:
            score += 10
            strengths.append("Good keyword coverage")
        else:
            improvements.append("Add more relevant keywords")

        return QualityAssessment(
            score=round(score),
            level=_band(score, tuple(QualityLevel)),
            strengths=strengths,
            improvement_areas=improvements,
        )

    # --- Copies ---

    def with_optimization(self, optimization: OptimizationType) -> Self:
        flag = OPTIMIZATION_FLAGS[OptimizationType(optimization)]
        return self.model_copy(update={flag: True, "last_optimized": utcnow()})

    def with_keyword(self, keyword: str) -> Self:
        normalized = normalize_tag(keyword)
        if not normalized:
            raise ValidationError("Keyword cannot be empty")
        if normalized in self.keywords:
            return self
        if len(self.keywords) >= MAX_KEYWORDS:
            raise ValidationError(f"Cannot add more than {MAX_KEYWORDS} keywords")
        return self.model_copy(update={"keywords": (*self.keywords, normalized)})

    def with_target_audience(self, audience: str) -> Self:
        normalized = audience.strip()
        if not normalized:
            raise ValidationError("Target audience cannot be empty")
        if normalized in self.target_audience:
            return self
        if len(self.target_audience) >= MAX_AUDIENCES:
            raise ValidationError(f"Cannot add more than {MAX_AUDIENCES} target audiences")
        return self.model_copy(update={"target_audience": (*self.target_audience, normalized)})

    def for_platform(self, platform: Platform) -> Self:
        platform = Platform(platform)
        if platform in self.platforms:
            return self
        return self.model_copy(update={"platforms": (*self.platforms, platform)})

    def equivalent_to(self, other: "TemplateMetadata") -> bool:
        """Same category, difficulty, language and platform set."""
        return (
            self.category == other.category
            and set(self.platforms) == set(other.platforms)
            and self.difficulty == other.difficulty
            and self.language == other.language
        )

    # --- Persistence ---

    def to_persistence(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_persistence(cls, snapshot: dict[str, Any]) -> Self:
        return cls.model_validate(snapshot)

    def _setup_time(self, skill_level: SkillLevel | None) -> int:
        minutes = float(self.estimated_usage_time)
        if skill_level:
            user_rank = SKILL_ORDER.index(skill_level)
            required_rank = SKILL_ORDER.index(self.skill_level)
            if user_rank < required_rank:
                minutes *= 1.5
            elif user_rank > required_rank:
                minutes *= 0.8
        return round(minutes)

    @staticmethod
    def _any_contains(values: tuple[str, ...], needle: str) -> bool:
        needle = needle.lower()
        return any(needle in value.lower() for value in values)
