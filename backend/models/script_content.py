"""ScriptContent value object - immutable script text bound to a platform."""

import enum
import math
import re
from collections import Counter
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import get_settings
from models.script import DEFAULT_WORDS_PER_MINUTE, WORDS_PER_MINUTE, Platform

DEFAULT_SECTION_TITLE = "Conteúdo Principal"
MAX_HEADER_LENGTH = 50
MAX_KEYWORDS = 10

STOP_WORDS = frozenset({
    "que", "para", "com", "por", "uma", "dos", "das", "como", "mais", "mas",
    "foi", "ser", "tem", "são", "não", "sua", "seu", "ela", "ele", "isso",
    "este", "esta", "quando", "onde", "sobre", "depois", "antes", "muito",
    "pode", "fazer", "estar", "cada", "todo", "todos", "algumas", "alguns",
})
HOOK_WORDS = ("você", "sabia", "imagine", "atenção", "incrível", "urgente", "revelado")
CASUAL_WORDS = ("cara", "mano", "galera", "pessoal", "gente")


class SensitiveContentType(str, enum.Enum):
    EMAIL = "email"
    PHONE = "phone"
    CPF = "cpf"
    CREDIT_CARD = "credit_card"


# Scanned in order; a span may match more than one type
SENSITIVE_PATTERNS: list[tuple[SensitiveContentType, re.Pattern[str]]] = [
    (SensitiveContentType.EMAIL, re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")),
    (SensitiveContentType.PHONE, re.compile(r"\(?[0-9]{2}\)?\s?[0-9]{4,5}-?[0-9]{4}")),
    (SensitiveContentType.CPF, re.compile(r"[0-9]{3}\.?[0-9]{3}\.?[0-9]{3}-?[0-9]{2}")),
    (SensitiveContentType.CREDIT_CARD, re.compile(r"[0-9]{4}\s?[0-9]{4}\s?[0-9]{4}\s?[0-9]{4}")),
]


class WordBounds(BaseModel):
    min_words: int
    max_words: int
    max_duration: int  # seconds
    strict_max_words: bool = False


WORD_BOUNDS: dict[Platform, WordBounds] = {
    Platform.TIKTOK: WordBounds(min_words=10, max_words=150, max_duration=180),
    Platform.INSTAGRAM: WordBounds(min_words=10, max_words=100, max_duration=60),
    Platform.YOUTUBE: WordBounds(min_words=100, max_words=3000, max_duration=3600),
    Platform.LINKEDIN: WordBounds(min_words=50, max_words=1000, max_duration=600),
    Platform.PODCAST: WordBounds(min_words=500, max_words=5000, max_duration=7200),
    Platform.TWITTER: WordBounds(min_words=5, max_words=50, max_duration=140, strict_max_words=True),
}
DEFAULT_WORD_BOUNDS = WordBounds(min_words=50, max_words=1000, max_duration=600)


class ContentSection(BaseModel):
    title: str
    content: str = ""
    line_start: int = 0
    word_count: int = 0


class ContentValidation(BaseModel):
    """Hard errors make the content unusable; warnings and suggestions never do."""
    is_valid: bool
    errors: list[str] = []
    warnings: list[str] = []
    suggestions: list[str] = []


class SensitiveFinding(BaseModel):
    type: SensitiveContentType
    content: str
    position: int


class SensitiveContentCheck(BaseModel):
    has_sensitive_content: bool
    findings: list[SensitiveFinding] = []
    recommendation: str


class ScriptContent(BaseModel):
    """Immutable script text for one platform. Equal when all fields are equal."""

    model_config = ConfigDict(frozen=True)

    content: str
    platform: Platform
    language: str = Field(default_factory=lambda: get_settings().default_language, min_length=1)
    encoding: str = Field(default="UTF-8", min_length=1)

    @field_validator("content", mode="before")
    @classmethod
    def content_must_be_text(cls, v):
        if not isinstance(v, str):
            raise ValueError("Content must be a string")
        return v

    # --- Counts ---

    def get_word_count(self) -> int:
        return len(self.content.split())

    def get_character_count(self) -> int:
        """Characters excluding whitespace."""
        return len(re.sub(r"\s", "", self.content))

    def get_line_count(self) -> int:
        return len(self.content.split("\n"))

    def get_estimated_reading_time(self) -> int:
        words_per_minute = WORDS_PER_MINUTE.get(self.platform, DEFAULT_WORDS_PER_MINUTE)
        return math.ceil(self.get_word_count() / words_per_minute * 60)

    # --- Structure ---

    def get_sections(self) -> list[ContentSection]:
        """Split on header lines (markdown, all caps or trailing colon)."""
        sections: list[ContentSection] = []
        current: ContentSection | None = None

        for number, line in enumerate(self.content.split("\n")):
            stripped = line.strip()
            if self._is_header(stripped):
                if current:
                    sections.append(current)
                title = re.sub(r"^#+\s*", "", stripped).replace(":", "")
                current = ContentSection(title=title, line_start=number)
            elif stripped and current:
                current.content = f"{current.content}\n{line}" if current.content else line
            elif stripped:
                current = ContentSection(title=DEFAULT_SECTION_TITLE, content=line, line_start=number)

        if current:
            sections.append(current)
        for section in sections:
            section.word_count = len(section.content.split())
        return sections

    def get_preview(self, word_limit: int = 50) -> str:
        words = self.content.split()
        if len(words) <= word_limit:
            return self.content
        return " ".join(words[:word_limit]) + "..."

    def extract_keywords(self) -> list[str]:
        """Top words by frequency, ignoring short words and common stop words."""
        text = re.sub(r"[^\w\s]", " ", self.content.lower())
        words = [w for w in text.split() if len(w) > 3 and w not in STOP_WORDS]
        return [word for word, _ in Counter(words).most_common(MAX_KEYWORDS)]

    # --- Validation ---

    def get_word_bounds(self) -> WordBounds:
        return WORD_BOUNDS.get(self.platform, DEFAULT_WORD_BOUNDS)

    def is_valid_for_platform(self) -> ContentValidation:
        errors: list[str] = []
        warnings: list[str] = []
        suggestions: list[str] = []

        word_count = self.get_word_count()
        reading_time = self.get_estimated_reading_time()
        bounds = self.get_word_bounds()
        platform = self.platform.value

        if word_count < bounds.min_words:
            errors.append(
                f"Content is too short for {platform} ({word_count} words < {bounds.min_words} words)"
            )
            suggestions.append("Add more content to meet platform requirements")

        if word_count > bounds.max_words:
            if bounds.strict_max_words:
                errors.append(
                    f"Content exceeds {platform} limit ({word_count} words > {bounds.max_words} words)"
                )
            else:
                warnings.append(
                    f"Content might be too long for optimal engagement "
                    f"({word_count} words > {bounds.max_words} words)"
                )
            suggestions.append("Consider splitting content or focusing on key points")

        if reading_time > bounds.max_duration:
            warnings.append(
                f"Content might be too long for {platform} ({reading_time}s > {bounds.max_duration}s)"
            )
            suggestions.append("Consider reducing content length for better retention")

        if self.platform == Platform.TIKTOK and not self.has_hook():
            warnings.append("TikTok content should start with an engaging hook")
            suggestions.append("Add an attention-grabbing opening line")
        elif self.platform == Platform.INSTAGRAM and not self.has_hashtags():
            suggestions.append("Consider adding relevant hashtags for Instagram")
        elif self.platform == Platform.YOUTUBE and len(self.get_sections()) < 3:
            suggestions.append(
                "YouTube videos benefit from clear structure (intro, main content, conclusion)"
            )
        elif self.platform == Platform.LINKEDIN and not self.is_professional_tone():
            warnings.append("LinkedIn content should maintain a professional tone")

        return ContentValidation(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            suggestions=suggestions,
        )

    def has_hook(self) -> bool:
        first_line = self.content.split("\n")[0].strip().lower()
        return any(word in first_line for word in HOOK_WORDS)

    def has_hashtags(self) -> bool:
        return "#" in self.content

    def is_professional_tone(self) -> bool:
        lowered = self.content.lower()
        return not any(word in lowered for word in CASUAL_WORDS)

    def has_sensitive_content(self) -> SensitiveContentCheck:
        findings = [
            SensitiveFinding(type=kind, content=match.group(), position=match.start())
            for kind, pattern in SENSITIVE_PATTERNS
            for match in pattern.finditer(self.content)
        ]
        return SensitiveContentCheck(
            has_sensitive_content=bool(findings),
            findings=findings,
            recommendation=(
                "Remove sensitive information before sharing" if findings
                else "No sensitive content detected"
            ),
        )

    # --- Copies ---

    def with_content(self, new_content: str) -> Self:
        return self.model_validate(self.model_dump() | {"content": new_content})

    def for_platform(self, platform: Platform) -> Self:
        return self.model_validate(self.model_dump() | {"platform": platform})

    @staticmethod
    def _is_header(line: str) -> bool:
        if not line:
            return False
        if line.startswith("#"):
            return True
        if len(line) > MAX_HEADER_LENGTH:
            return False
        if line == line.upper() and any(c.isalpha() for c in line):
            return True
        return line.endswith(":")
