"""Contracts for collaborators implemented outside the domain core.

Services receive these through their constructors. Anything with the
right async methods satisfies them; failures raised by an implementation
reach the caller unchanged.
"""

from datetime import datetime
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, Field

from models.base import parse_model, utcnow
from models.script import Platform, Script, ScriptFormat


# --- AI text generation ---

class AIGenerationRequest(BaseModel):
    prompt: str
    platform: Platform
    format: ScriptFormat
    tone: str = ""
    target_audience: str = ""
    objective: str = ""
    max_tokens: int | None = None
    temperature: float | None = None


class AIGenerationResult(BaseModel):
    content: str
    model: str
    processing_time: float = 0.0  # seconds
    tokens_used: int = 0
    confidence: float = 0.0


class IAIProvider(Protocol):
    async def generate_text(self, request: AIGenerationRequest) -> AIGenerationResult: ...


# --- Quality assessment ---

class QualityCheck(BaseModel):
    check: str
    passed: bool
    score: float
    recommendations: list[str] = []


class QualityAssessmentResult(BaseModel):
    overall: float
    checks: list[QualityCheck] = []
    readability: float = 0.0
    engagement: float = 0.0
    seo_score: float = 0.0


class IQualityAssessmentService(Protocol):
    async def assess_script(self, script: Script) -> QualityAssessmentResult: ...


# --- Accounts ---

class IPasswordHasher(Protocol):
    async def hash(self, password: str) -> str: ...

    async def verify(self, password: str, password_hash: str) -> bool: ...


class IEmailService(Protocol):
    async def send_verification_email(self, email: str, user_id: str) -> None: ...

    async def send_password_reset_email(self, email: str, reset_token: str) -> None: ...


class UserEvent(BaseModel):
    user_id: str
    action: str
    details: dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=utcnow)


class SecurityEvent(BaseModel):
    action: str
    user_id: str | None = None
    email: str | None = None
    reason: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=utcnow)


class AdminAction(BaseModel):
    admin_id: str
    action: str
    target_user_id: str | None = None
    reason: str | None = None
    details: dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=utcnow)


class IAuditLogger(Protocol):
    async def log_user_event(self, event: UserEvent) -> None: ...

    async def log_security_event(self, event: SecurityEvent) -> None: ...

    async def log_admin_action(self, action: AdminAction) -> None: ...


RequestT = TypeVar("RequestT", bound=BaseModel)


def parse_request(model: type[RequestT], payload: RequestT | dict[str, Any]) -> RequestT:
    """Accept a request model or a plain dict; shape errors become ValidationError."""
    if isinstance(payload, model):
        return payload
    return parse_model(model, payload)
