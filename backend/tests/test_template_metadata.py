"""Tests for the TemplateMetadata value object."""

import pytest
from pydantic import ValidationError as SchemaError

from errors import ValidationError
from models.script import Platform
from models.template import TemplateCategory, TemplateDifficulty
from models.template_metadata import (
    MAX_KEYWORDS,
    CompatibilityLevel,
    OptimizationType,
    QualityLevel,
    SkillLevel,
    TemplateMetadata,
    TemplateRequirements,
)


@pytest.fixture
def metadata():
    return TemplateMetadata(
        category=TemplateCategory.BUSINESS,
        platforms=(Platform.YOUTUBE,),
        difficulty=TemplateDifficulty.INTERMEDIATE,
        target_audience=("Business owners",),
        business_goals=("lead generation",),
        estimated_usage_time=20,
        seo_optimized=True,
    )


class TestConstruction:
    def test_platform_is_required(self):
        with pytest.raises(SchemaError):
            TemplateMetadata(
                category=TemplateCategory.NEWS,
                platforms=(),
                difficulty=TemplateDifficulty.BEGINNER,
            )

    @pytest.mark.parametrize("minutes", [0, 481])
    def test_usage_time_range(self, minutes):
        with pytest.raises(SchemaError):
            TemplateMetadata(
                category=TemplateCategory.NEWS,
                platforms=(Platform.YOUTUBE,),
                difficulty=TemplateDifficulty.BEGINNER,
                estimated_usage_time=minutes,
            )

    def test_skill_level_defaults_to_difficulty(self, metadata):
        assert metadata.skill_level == SkillLevel.INTERMEDIATE
        expert = metadata.model_copy(update={"required_skill_level": SkillLevel.EXPERT})
        assert expert.skill_level == SkillLevel.EXPERT


class TestCompatibility:
    def test_score_for_partial_match(self, metadata):
        result = metadata.get_compatibility_score(TemplateRequirements(
            platform=Platform.YOUTUBE,
            skill_level=SkillLevel.BEGINNER,
            target_audience="business",
            business_goal="lead",
        ))

        assert result.score == 75
        assert result.level == CompatibilityLevel.GOOD
        assert result.estimated_setup_time == 30
        assert "Matches target audience" in result.factors

    def test_skilled_user_sets_up_faster(self, metadata):
        result = metadata.get_compatibility_score(TemplateRequirements(skill_level=SkillLevel.EXPERT))
        assert result.estimated_setup_time == 16
        assert result.score == 25

    def test_no_requirements(self, metadata):
        result = metadata.get_compatibility_score(TemplateRequirements())
        assert result.score == 5
        assert result.level == CompatibilityLevel.POOR
        assert result.estimated_setup_time == 20

    def test_matching_helpers(self, metadata):
        assert metadata.is_suitable_for_platform(Platform.YOUTUBE)
        assert not metadata.is_suitable_for_platform(Platform.TIKTOK)
        assert metadata.matches_skill_level(SkillLevel.ADVANCED)
        assert not metadata.matches_skill_level(SkillLevel.BEGINNER)
        assert metadata.targets_audience("OWNERS")
        assert not metadata.supports_business_goal("retention")


class TestQuality:
    def test_sparse_metadata_needs_improvement(self, metadata):
        assessment = metadata.get_quality_assessment()
        assert assessment.score == 27
        assert assessment.level == QualityLevel.NEEDS_IMPROVEMENT
        assert assessment.strengths == ["SEO optimized"]
        assert "Expand platform support" in assessment.improvement_areas

    def test_fully_optimized_metadata_is_premium(self, metadata):
        rich = metadata.with_optimization(OptimizationType.ACCESSIBILITY).with_optimization(
            OptimizationType.CONVERSION
        )
        for platform in (Platform.TIKTOK, Platform.INSTAGRAM, Platform.LINKEDIN):
            rich = rich.for_platform(platform)
        for keyword in ("sales", "leads", "funnel", "crm", "growth"):
            rich = rich.with_keyword(keyword)

        assessment = rich.get_quality_assessment()
        assert assessment.score == 94
        assert assessment.level == QualityLevel.PREMIUM
        assert assessment.improvement_areas == []


class TestCopies:
    def test_with_optimization_stamps_time(self, metadata):
        optimized = metadata.with_optimization(OptimizationType.CONVERSION)
        assert optimized.conversion_optimized
        assert optimized.last_optimized is not None
        assert not metadata.conversion_optimized

    def test_with_keyword_normalizes_and_dedupes(self, metadata):
        updated = metadata.with_keyword("  Sales ")
        assert updated.keywords == ("sales",)
        assert updated.with_keyword("SALES") is updated

    def test_keyword_limit(self, metadata):
        for i in range(MAX_KEYWORDS):
            metadata = metadata.with_keyword(f"k{i}")
        with pytest.raises(ValidationError):
            metadata.with_keyword("overflow")

    def test_empty_values_are_rejected(self, metadata):
        with pytest.raises(ValidationError):
            metadata.with_keyword("  ")
        with pytest.raises(ValidationError):
            metadata.with_target_audience("")

    def test_with_target_audience(self, metadata):
        updated = metadata.with_target_audience("Marketers")
        assert updated.target_audience == ("Business owners", "Marketers")

    def test_for_existing_platform_returns_self(self, metadata):
        assert metadata.for_platform(Platform.YOUTUBE) is metadata


class TestEquality:
    def test_equivalence_ignores_order_and_extras(self, metadata):
        other = TemplateMetadata(
            category=TemplateCategory.BUSINESS,
            platforms=(Platform.YOUTUBE,),
            difficulty=TemplateDifficulty.INTERMEDIATE,
        )
        assert metadata.equivalent_to(other)
        assert metadata != other

        two = metadata.for_platform(Platform.TIKTOK)
        reordered = other.model_copy(update={"platforms": (Platform.TIKTOK, Platform.YOUTUBE)})
        assert two.equivalent_to(reordered)

    def test_different_category(self, metadata):
        other = metadata.model_copy(update={"category": TemplateCategory.NEWS})
        assert not metadata.equivalent_to(other)

    def test_persistence_round_trip(self, metadata):
        assert TemplateMetadata.from_persistence(metadata.to_persistence()) == metadata
