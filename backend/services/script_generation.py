"""Script generation service - AI-assisted and template-based script creation.

Every use case follows the same order: validate the request, resolve the
actor's rights, call the external collaborators one at a time, build or
mutate the Script aggregate, then persist its snapshot. Nothing is saved
before all checks and external calls have succeeded.
"""

import enum
import logging
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from errors import NotFoundError, PermissionDeniedError, PolicyError, ValidationError
from models.script import MAX_TITLE_LENGTH, Platform, Script, ScriptFormat
from models.script_content import ContentValidation, ScriptContent
from models.template import Template
from models.user import SubscriptionTier, User
from services.interfaces import (
    AIGenerationRequest,
    AIGenerationResult,
    IAIProvider,
    IQualityAssessmentService,
    QualityAssessmentResult,
    QualityCheck,
    parse_request,
)
from services.snapshot_store import SnapshotStore, update_with_retry

logger = logging.getLogger(__name__)

MAX_AUTO_TAGS = 5
MIN_KEYWORDS = 3
LONG_SENTENCE_WORDS = 25

CTA_PHRASES = (
    "inscreva", "siga", "comente", "compartilhe", "clique", "link na bio", "acesse",
    "subscribe", "follow", "comment", "share", "click", "sign up",
)

PLATFORM_GUIDELINES: dict[Platform, str] = {
    Platform.YOUTUBE: (
        "YouTube Guidelines:\n"
        "- Include engaging hook in first 15 seconds\n"
        "- Add clear call-to-action\n"
        "- Structure with intro, main content, conclusion"
    ),
    Platform.INSTAGRAM: (
        "Instagram Guidelines:\n"
        "- Keep concise and visual\n"
        "- Include relevant hashtags\n"
        "- Focus on aesthetic and lifestyle"
    ),
    Platform.TIKTOK: (
        "TikTok Guidelines:\n"
        "- Start with immediate hook\n"
        "- Keep fast-paced and engaging\n"
        "- Include trending elements"
    ),
    Platform.LINKEDIN: (
        "LinkedIn Guidelines:\n"
        "- Maintain professional tone\n"
        "- Focus on value proposition\n"
        "- Include industry insights"
    ),
    Platform.PODCAST: (
        "Podcast Guidelines:\n"
        "- Conversational tone\n"
        "- Include natural transitions\n"
        "- Allow for host interjections"
    ),
}

FORMAT_STRUCTURES: dict[ScriptFormat, str] = {
    ScriptFormat.TUTORIAL: (
        "Tutorial Structure:\n"
        "1. Introduction and what viewers will learn\n"
        "2. Step-by-step instructions\n"
        "3. Common mistakes to avoid\n"
        "4. Summary and next steps"
    ),
    ScriptFormat.REVIEW: (
        "Review Structure:\n"
        "1. Product/service introduction\n"
        "2. Key features and benefits\n"
        "3. Pros and cons\n"
        "4. Final recommendation"
    ),
    ScriptFormat.ENTERTAINMENT: (
        "Entertainment Structure:\n"
        "1. Engaging hook\n"
        "2. Main content with humor/interest\n"
        "3. Climax or punchline\n"
        "4. Memorable ending"
    ),
    ScriptFormat.EDUCATIONAL: (
        "Educational Structure:\n"
        "1. Learning objective\n"
        "2. Context and background\n"
        "3. Main concepts explained\n"
        "4. Practical applications"
    ),
    ScriptFormat.MARKETING: (
        "Marketing Structure:\n"
        "1. Attention-grabbing opening\n"
        "2. Problem identification\n"
        "3. Solution presentation\n"
        "4. Strong call-to-action"
    ),
}

DEFAULT_MAX_TOKENS = 1000
MAX_TOKENS: dict[Platform, int] = {
    Platform.TIKTOK: 300,
    Platform.INSTAGRAM: 500,
    Platform.YOUTUBE: 2000,
    Platform.LINKEDIN: 800,
    Platform.PODCAST: 3000,
    Platform.TWITTER: 200,
    Platform.FACEBOOK: 1000,
}

DEFAULT_TEMPERATURE = 0.5
TEMPERATURES: dict[ScriptFormat, float] = {
    ScriptFormat.TUTORIAL: 0.3,       # More structured
    ScriptFormat.EDUCATIONAL: 0.3,
    ScriptFormat.REVIEW: 0.5,
    ScriptFormat.MARKETING: 0.7,
    ScriptFormat.ENTERTAINMENT: 0.8,  # More creative
    ScriptFormat.STORYTELLING: 0.8,
    ScriptFormat.NEWS: 0.2,
}


class SuggestionType(str, enum.Enum):
    HOOK_IMPROVEMENT = "hook_improvement"
    STRUCTURE_OPTIMIZATION = "structure_optimization"
    CTA_ENHANCEMENT = "cta_enhancement"
    KEYWORD_ADDITION = "keyword_addition"
    TONE_ADJUSTMENT = "tone_adjustment"


class EnhancementType(str, enum.Enum):
    HOOK_IMPROVEMENT = "hook_improvement"
    STRUCTURE_OPTIMIZATION = "structure_optimization"
    CTA_ENHANCEMENT = "cta_enhancement"
    SEO_OPTIMIZATION = "seo_optimization"
    ENGAGEMENT_BOOST = "engagement_boost"


ENHANCEMENT_INSTRUCTIONS: dict[EnhancementType, str] = {
    EnhancementType.HOOK_IMPROVEMENT: (
        "Write a single attention-grabbing opening line for this script. "
        "Return only the new opening line."
    ),
    EnhancementType.STRUCTURE_OPTIMIZATION: (
        "Reorganize this script into a clear introduction, main content and conclusion. "
        "Keep the original message. Return the full rewritten script."
    ),
    EnhancementType.CTA_ENHANCEMENT: (
        "Write a strong closing call-to-action for this script. "
        "Return only the call-to-action."
    ),
    EnhancementType.SEO_OPTIMIZATION: (
        "Rewrite this script to naturally include relevant search keywords "
        "without changing its meaning. Return the full rewritten script."
    ),
    EnhancementType.ENGAGEMENT_BOOST: (
        "Rewrite this script to be more engaging: shorter sentences, direct questions "
        "to the audience and vivid examples. Return the full rewritten script."
    ),
}

# Suggestion already addressed by each enhancement
ENHANCEMENT_COVERS: dict[EnhancementType, SuggestionType] = {
    EnhancementType.HOOK_IMPROVEMENT: SuggestionType.HOOK_IMPROVEMENT,
    EnhancementType.STRUCTURE_OPTIMIZATION: SuggestionType.STRUCTURE_OPTIMIZATION,
    EnhancementType.CTA_ENHANCEMENT: SuggestionType.CTA_ENHANCEMENT,
    EnhancementType.SEO_OPTIMIZATION: SuggestionType.KEYWORD_ADDITION,
    EnhancementType.ENGAGEMENT_BOOST: SuggestionType.TONE_ADJUSTMENT,
}


class ScriptGenerationRequest(BaseModel):
    user_id: str
    title: str
    platform: Platform
    format: ScriptFormat
    objective: str
    target_audience: str
    tone: str
    additional_requirements: str | None = None
    template_id: str | None = None
    custom_prompt: str | None = None

    @field_validator("user_id", "title", "objective", "target_audience", "tone")
    @classmethod
    def required_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class GenerationSuggestion(BaseModel):
    type: SuggestionType
    title: str
    description: str
    impact: str  # "low", "medium" or "high"
    category: str  # "content", "structure", "seo" or "engagement"


class GenerationMetadata(BaseModel):
    ai_model: str
    processing_time: float
    tokens_used: int
    prompt_used: str
    quality_checks: list[QualityCheck] = []
    optimization_applied: list[str] = []


class GenerationResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    script: Script
    metadata: GenerationMetadata
    suggestions: list[GenerationSuggestion] = []
    quality_score: float


class ScriptGenerationService:
    """Coordinates AI generation, template rendering and script enhancement."""

    def __init__(
        self,
        ai_provider: IAIProvider,
        quality_assessor: IQualityAssessmentService,
        user_store: SnapshotStore,
        script_store: SnapshotStore,
        template_store: SnapshotStore,
    ):
        self.ai_provider = ai_provider
        self.quality_assessor = quality_assessor
        self.user_store = user_store
        self.script_store = script_store
        self.template_store = template_store

    # --- Use cases ---

    async def generate_script(
        self, request: ScriptGenerationRequest | dict[str, Any]
    ) -> GenerationResult:
        """Generate, validate, score and persist a new AI-written script."""
        request = parse_request(ScriptGenerationRequest, request)
        user = await self._get_user(request.user_id)
        self._ensure_can_use_ai(user)

        prompt = self.build_generation_prompt(request)
        ai_request = AIGenerationRequest(
            prompt=prompt,
            platform=request.platform,
            format=request.format,
            tone=request.tone,
            target_audience=request.target_audience,
            objective=request.objective,
            max_tokens=self.get_max_tokens_for_platform(request.platform),
            temperature=self.get_temperature_for_format(request.format),
        )
        ai_result = await self._call_provider(ai_request)

        processed = self.process_generated_content(ai_result.content, request.platform)
        content = ScriptContent(content=processed, platform=request.platform)
        validation = content.is_valid_for_platform()
        if not validation.is_valid:
            raise ValidationError(
                f"Generated content is not valid for {request.platform.value}: "
                f"{', '.join(validation.errors)}",
                errors=validation.errors,
            )

        script = Script.create(
            owner_id=user.id,
            title=request.title,
            content=processed,
            platform=request.platform,
            format=request.format,
            objective=request.objective,
            target_audience=request.target_audience,
            tone=request.tone,
            original_prompt=prompt,
            ai_model_used=ai_result.model,
            generation_time=ai_result.processing_time,
            from_template=request.template_id,
        )

        quality = await self.quality_assessor.assess_script(script)
        suggestions = self._validation_suggestions(validation) + self._analyze_content(content)
        applied = self._apply_optimizations(script, content, quality)

        await self.script_store.save(script.to_persistence(), expected_revision=None)
        logger.info(
            f"Generated script {script.id} for user {user.id} "
            f"({request.platform.value}/{request.format.value}, {ai_result.tokens_used} tokens)"
        )

        return GenerationResult(
            script=script,
            metadata=GenerationMetadata(
                ai_model=ai_result.model,
                processing_time=ai_result.processing_time,
                tokens_used=ai_result.tokens_used,
                prompt_used=prompt,
                quality_checks=quality.checks,
                optimization_applied=applied,
            ),
            suggestions=suggestions,
            quality_score=quality.overall,
        )

    async def generate_from_template(
        self,
        template_id: str,
        placeholder_values: dict[str, Any],
        user_id: str,
        platform: Platform | None = None,
        format: ScriptFormat | None = None,
    ) -> GenerationResult:
        """Render a template into a new script and record the template's usage."""
        user = await self._get_user(user_id)
        template = await self._get_template(template_id)
        self._ensure_can_use_template(template, user)

        processed = template.process_with_values(placeholder_values)
        platform = Platform(platform) if platform else self._default_platform(template)
        format = ScriptFormat(format) if format else self._default_format(template)

        script = Script.create(
            owner_id=user.id,
            title=f"Script from {template.title}"[:MAX_TITLE_LENGTH],
            content=processed,
            platform=platform,
            format=format,
            objective=str(placeholder_values.get("objective") or "Generated from template"),
            target_audience=str(placeholder_values.get("target_audience") or "General audience"),
            tone=str(placeholder_values.get("tone") or "Professional"),
            from_template=template.id,
            template_title=template.title,
        )

        quality = await self.quality_assessor.assess_script(script)
        suggestions = self._template_suggestions(template, placeholder_values, platform)
        await self.script_store.save(script.to_persistence(), expected_revision=None)
        await update_with_retry(self.template_store, template.id, self._record_usage)
        logger.info(f"Generated script {script.id} from template {template.id} for user {user.id}")

        return GenerationResult(
            script=script,
            metadata=GenerationMetadata(
                ai_model="template",
                processing_time=0,
                tokens_used=0,
                prompt_used=f"Template: {template.id}",
                quality_checks=quality.checks,
            ),
            suggestions=suggestions,
            quality_score=quality.overall,
        )

    async def enhance_script(
        self, script_id: str, enhancement_type: EnhancementType, user_id: str
    ) -> GenerationResult:
        """Ask the provider for one kind of improvement and merge it into the script.

        The save is checked against the revision that was loaded; a
        concurrent edit makes this fail with ConcurrencyConflictError.
        """
        enhancement_type = EnhancementType(enhancement_type)
        script = await self._get_script(script_id)
        if not script.can_be_edited_by(user_id):
            raise PermissionDeniedError(
                "User does not have permission to edit this script",
                user_id=user_id,
                script_id=script_id,
            )
        loaded_revision = script.revision

        prompt = self.build_enhancement_prompt(script, enhancement_type)
        ai_result = await self._call_provider(AIGenerationRequest(
            prompt=prompt,
            platform=script.platform,
            format=script.format,
            tone=script.tone,
            target_audience=script.target_audience,
            objective=script.objective,
            max_tokens=self.get_max_tokens_for_platform(script.platform),
            temperature=self.get_temperature_for_format(script.format),
        ))

        merged = self.merge_enhancement(script.content, ai_result.content, enhancement_type)
        script.update_content(merged)

        quality = await self.quality_assessor.assess_script(script)
        self._store_scores(script, quality)
        content = ScriptContent(content=script.content, platform=script.platform)
        covered = ENHANCEMENT_COVERS[enhancement_type]
        suggestions = [s for s in self._analyze_content(content) if s.type != covered]

        await self.script_store.save(script.to_persistence(), expected_revision=loaded_revision)
        logger.info(f"Applied {enhancement_type.value} to script {script.id} (version {script.version})")

        return GenerationResult(
            script=script,
            metadata=GenerationMetadata(
                ai_model=ai_result.model,
                processing_time=ai_result.processing_time,
                tokens_used=ai_result.tokens_used,
                prompt_used=prompt,
                quality_checks=quality.checks,
                optimization_applied=[enhancement_type.value],
            ),
            suggestions=suggestions,
            quality_score=quality.overall,
        )

    # --- Prompt building ---

    @staticmethod
    def build_generation_prompt(request: ScriptGenerationRequest) -> str:
        prompt = (
            f"Create a {request.format.value} script for {request.platform.value} "
            f"with the following requirements:\n\n"
            f"Objective: {request.objective}\n"
            f"Target Audience: {request.target_audience}\n"
            f"Tone: {request.tone}\n"
            f"Title: {request.title}"
        )
        if request.additional_requirements:
            prompt += f"\nAdditional Requirements: {request.additional_requirements}"

        guidelines = PLATFORM_GUIDELINES.get(request.platform)
        if guidelines:
            prompt += f"\n\n{guidelines}"
        structure = FORMAT_STRUCTURES.get(request.format)
        if structure:
            prompt += f"\n\n{structure}"

        if request.custom_prompt:
            prompt += f"\n\nCustom Instructions: {request.custom_prompt}"
        return prompt

    @staticmethod
    def build_enhancement_prompt(script: Script, enhancement_type: EnhancementType) -> str:
        return (
            f"{ENHANCEMENT_INSTRUCTIONS[EnhancementType(enhancement_type)]}\n\n"
            f"Platform: {script.platform.value}\n"
            f"Format: {script.format.value}\n"
            f"Tone: {script.tone}\n"
            f"Target Audience: {script.target_audience}\n\n"
            f"Script:\n{script.content}"
        )

    @staticmethod
    def get_max_tokens_for_platform(platform: Platform) -> int:
        return MAX_TOKENS.get(Platform(platform), DEFAULT_MAX_TOKENS)

    @staticmethod
    def get_temperature_for_format(format: ScriptFormat) -> float:
        return TEMPERATURES.get(ScriptFormat(format), DEFAULT_TEMPERATURE)

    # --- Content processing ---

    @staticmethod
    def process_generated_content(content: str, platform: Platform) -> str:
        """Trim provider output and apply platform-specific line breaks."""
        processed = content.strip()
        platform = Platform(platform)

        if platform == Platform.INSTAGRAM:
            # Short paragraphs read better on mobile
            return processed.replace(". ", ".\n\n")
        if platform == Platform.TIKTOK:
            return re.sub(r"([.!?]) ", r"\1\n\n", processed)
        if platform == Platform.YOUTUBE:
            lines = processed.split("\n")
            return "\n".join(
                f"[{index // 3}:00] {line}" if line.strip() and index % 3 == 0 else line
                for index, line in enumerate(lines)
            )
        return processed

    @staticmethod
    def merge_enhancement(original: str, enhancement: str, enhancement_type: EnhancementType) -> str:
        """Hooks go first, CTAs go last, other enhancements replace the body."""
        enhancement = enhancement.strip()
        if not enhancement:
            raise ValidationError("AI provider returned an empty enhancement")

        enhancement_type = EnhancementType(enhancement_type)
        if enhancement_type == EnhancementType.HOOK_IMPROVEMENT:
            return f"{enhancement}\n\n{original.strip()}"
        if enhancement_type == EnhancementType.CTA_ENHANCEMENT:
            return f"{original.strip()}\n\n{enhancement}"
        return enhancement

    # --- Suggestions ---

    @staticmethod
    def _validation_suggestions(validation: ContentValidation) -> list[GenerationSuggestion]:
        return [
            GenerationSuggestion(
                type=SuggestionType.STRUCTURE_OPTIMIZATION,
                title="Content Structure",
                description=suggestion,
                impact="medium",
                category="structure",
            )
            for suggestion in validation.suggestions
        ]

    @staticmethod
    def _analyze_content(content: ScriptContent) -> list[GenerationSuggestion]:
        suggestions = []
        text = content.content.lower()

        if not content.has_hook():
            suggestions.append(GenerationSuggestion(
                type=SuggestionType.HOOK_IMPROVEMENT,
                title="Stronger Opening",
                description="Open with a question or a surprising fact to hold attention",
                impact="high",
                category="engagement",
            ))

        if not any(phrase in text for phrase in CTA_PHRASES):
            suggestions.append(GenerationSuggestion(
                type=SuggestionType.CTA_ENHANCEMENT,
                title="Call to Action",
                description="Tell the audience what to do next (follow, comment, visit a link)",
                impact="high",
                category="engagement",
            ))

        if len(content.extract_keywords()) < MIN_KEYWORDS:
            suggestions.append(GenerationSuggestion(
                type=SuggestionType.KEYWORD_ADDITION,
                title="Keywords",
                description="Mention the main topic terms more explicitly to improve discoverability",
                impact="low",
                category="seo",
            ))

        sentences = [s for s in re.split(r"[.!?]+", content.content) if s.strip()]
        if any(len(s.split()) > LONG_SENTENCE_WORDS for s in sentences):
            suggestions.append(GenerationSuggestion(
                type=SuggestionType.TONE_ADJUSTMENT,
                title="Sentence Length",
                description=f"Split sentences longer than {LONG_SENTENCE_WORDS} words for spoken delivery",
                impact="medium",
                category="content",
            ))

        return suggestions

    @staticmethod
    def _template_suggestions(
        template: Template, values: dict[str, Any], platform: Platform
    ) -> list[GenerationSuggestion]:
        suggestions = []
        unfilled = [
            p.name for p in template.placeholders
            if not p.validation.required and not values.get(p.id) and p.default_value is None
        ]
        if unfilled:
            suggestions.append(GenerationSuggestion(
                type=SuggestionType.STRUCTURE_OPTIMIZATION,
                title="Optional Fields",
                description=f"Fill in optional fields for a richer script: {', '.join(unfilled)}",
                impact="low",
                category="content",
            ))

        if template.platform and platform not in template.platform:
            targets = ", ".join(p.value for p in template.platform)
            suggestions.append(GenerationSuggestion(
                type=SuggestionType.STRUCTURE_OPTIMIZATION,
                title="Platform Mismatch",
                description=f"This template was designed for {targets}; review pacing for {platform.value}",
                impact="medium",
                category="structure",
            ))
        return suggestions

    # --- Optimizations ---

    def _apply_optimizations(
        self, script: Script, content: ScriptContent, quality: QualityAssessmentResult
    ) -> list[str]:
        applied = []

        if not script.tags:
            keywords = content.extract_keywords()[:MAX_AUTO_TAGS]
            for keyword in keywords:
                script.add_tag(keyword)
            if keywords:
                applied.append("keyword_tagging")

        if self._store_scores(script, quality):
            applied.append("quality_scoring")
        return applied

    @staticmethod
    def _store_scores(script: Script, quality: QualityAssessmentResult) -> bool:
        scores = (quality.overall, quality.readability, quality.engagement)
        if not all(0 <= score <= 100 for score in scores):
            logger.warning(f"Ignoring out-of-range quality scores {scores} for script {script.id}")
            return False

        script.update_quality_score(quality.overall)
        script.update_readability_score(quality.readability)
        script.update_engagement_prediction(quality.engagement)
        return True

    # --- Access and loading ---

    @staticmethod
    def _ensure_can_use_ai(user: User) -> None:
        if user.is_blocked or not user.is_active:
            raise PermissionDeniedError("User account is not active", user_id=user.id)
        if not user.has_permission("can_use_ai_features"):
            raise PermissionDeniedError("User does not have permission to use AI features", user_id=user.id)
        if not user.can_perform_action_by_subscription("ai_generation"):
            raise PolicyError(
                "User subscription does not allow AI generation",
                user_id=user.id,
                subscription=user.subscription.value,
            )

    @staticmethod
    def _ensure_can_use_template(template: Template, user: User) -> None:
        if template.can_be_used_by(user.id, user.subscription):
            return
        if template.is_public and template.is_premium and user.subscription == SubscriptionTier.FREE:
            raise PolicyError(
                "Premium templates require a paid subscription",
                template_id=template.id,
                subscription=user.subscription.value,
            )
        raise PermissionDeniedError(
            "User does not have permission to use this template",
            user_id=user.id,
            template_id=template.id,
        )

    @staticmethod
    def _record_usage(snapshot: dict[str, Any]) -> dict[str, Any]:
        template = Template.from_persistence(snapshot)
        template.record_usage()
        return template.to_persistence()

    @staticmethod
    def _default_platform(template: Template) -> Platform:
        return template.platform[0] if template.platform else Platform.YOUTUBE

    @staticmethod
    def _default_format(template: Template) -> ScriptFormat:
        if template.format:
            return template.format[0]
        try:
            return ScriptFormat(template.category.value)
        except ValueError:
            return ScriptFormat.EDUCATIONAL

    async def _call_provider(self, request: AIGenerationRequest) -> AIGenerationResult:
        try:
            return await self.ai_provider.generate_text(request)
        except Exception as e:
            logger.error(f"AI provider failed for {request.platform.value} script: {e}")
            raise

    async def _get_user(self, user_id: str) -> User:
        snapshot = await self.user_store.get(user_id)
        if snapshot is None:
            raise NotFoundError("User not found", user_id=user_id)
        return User.from_persistence(snapshot)

    async def _get_template(self, template_id: str) -> Template:
        snapshot = await self.template_store.get(template_id)
        if snapshot is None:
            raise NotFoundError("Template not found", template_id=template_id)
        return Template.from_persistence(snapshot)

    async def _get_script(self, script_id: str) -> Script:
        snapshot = await self.script_store.get(script_id)
        if snapshot is None:
            raise NotFoundError("Script not found", script_id=script_id)
        return Script.from_persistence(snapshot)
