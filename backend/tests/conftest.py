"""Shared fixtures for model and service tests."""

from unittest.mock import AsyncMock

import pytest

from models.script import Platform, Script, ScriptFormat
from models.template import Template, TemplateCategory
from models.user import SubscriptionTier, User, UserRole
from services.interfaces import AIGenerationResult, QualityAssessmentResult, QualityCheck
from services.snapshot_store import InMemorySnapshotStore

LONG_TEXT = (
    "Você sabia que a liderança remota exige novas habilidades? "
    "Equipes distribuídas precisam de comunicação clara, rituais consistentes "
    "e confiança construída no dia a dia. Neste vídeo mostramos três práticas "
    "simples para gestores: reuniões curtas com pauta definida, documentação "
    "acessível para todos e feedback frequente. Comente qual prática você já "
    "usa na sua equipe e compartilhe com colegas que lideram times remotos."
)


class FakePasswordHasher:
    """Reversible hasher so tests can check what was hashed."""

    async def hash(self, password: str) -> str:
        return f"hashed:{password}"

    async def verify(self, password: str, password_hash: str) -> bool:
        return password_hash == f"hashed:{password}"


@pytest.fixture
def long_text():
    return LONG_TEXT


@pytest.fixture
def script(long_text):
    return Script.create(
        owner_id="user-1",
        title="Liderança remota",
        content=long_text,
        platform=Platform.LINKEDIN,
        format=ScriptFormat.EDUCATIONAL,
        objective="Educate managers",
        target_audience="Team leads",
        tone="professional",
    )


@pytest.fixture
def greeting_template():
    return Template.create(
        title="Greeting",
        description="Says hello",
        category=TemplateCategory.MARKETING,
        author_id="author-1",
        author_name="Author",
        structure=[{"title": "Intro", "content": "Hello {{name}}", "is_required": True}],
        placeholders=[{"id": "name", "name": "Name", "validation": {"required": True}}],
        tags=["greeting"],
    )


@pytest.fixture
def verified_user():
    return User.create(email="ana@example.com", display_name="Ana", email_verified=True)


@pytest.fixture
def pro_user():
    return User.create(
        email="pro@example.com",
        email_verified=True,
        subscription=SubscriptionTier.PRO,
    )


@pytest.fixture
def admin_user():
    return User.create(email="admin@example.com", role=UserRole.ADMIN, email_verified=True)


@pytest.fixture
def user_store():
    return InMemorySnapshotStore()


@pytest.fixture
def script_store():
    return InMemorySnapshotStore()


@pytest.fixture
def template_store():
    return InMemorySnapshotStore()


@pytest.fixture
def credential_store():
    return InMemorySnapshotStore()


@pytest.fixture
def ai_provider(long_text):
    provider = AsyncMock()
    provider.generate_text.return_value = AIGenerationResult(
        content=long_text,
        model="test-model",
        processing_time=1.5,
        tokens_used=120,
        confidence=0.9,
    )
    return provider


@pytest.fixture
def quality_assessor():
    assessor = AsyncMock()
    assessor.assess_script.return_value = QualityAssessmentResult(
        overall=80,
        checks=[QualityCheck(check="length", passed=True, score=90)],
        readability=70,
        engagement=65,
        seo_score=50,
    )
    return assessor


@pytest.fixture
def password_hasher():
    return FakePasswordHasher()


@pytest.fixture
def email_service():
    return AsyncMock()


@pytest.fixture
def audit_logger():
    return AsyncMock()
