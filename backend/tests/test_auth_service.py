"""Tests for password hashing and session tokens."""

from datetime import timedelta

import pytest
from jose import jwt

from models.base import utcnow
from services.auth_service import AuthService, BcryptPasswordHasher, settings


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = AuthService.hash_password("Str0ng!pass")
        assert hashed != "Str0ng!pass"
        assert AuthService.verify_password("Str0ng!pass", hashed)
        assert not AuthService.verify_password("wrong", hashed)

    def test_non_bcrypt_hash_does_not_verify(self):
        assert not AuthService.verify_password("anything", "plain-text")

    @pytest.mark.asyncio
    async def test_async_hasher(self):
        hasher = BcryptPasswordHasher()
        hashed = await hasher.hash("Str0ng!pass")
        assert await hasher.verify("Str0ng!pass", hashed)
        assert not await hasher.verify("other", hashed)


class TestTokens:
    def test_access_token_round_trip(self):
        token = AuthService.create_access_token("user-1", "ana@example.com", "user", "session-1")
        data = AuthService.verify_access_token(token)

        assert data.user_id == "user-1"
        assert data.email == "ana@example.com"
        assert data.role == "user"
        assert data.session_id == "session-1"
        assert data.token_type == "access"

    def test_reset_token_is_not_an_access_token(self):
        token = AuthService.create_password_reset_token("user-1", "ana@example.com")
        assert AuthService.verify_access_token(token) is None
        assert AuthService.verify_password_reset_token(token).user_id == "user-1"

    def test_access_token_is_not_a_reset_token(self):
        token = AuthService.create_access_token("user-1", "ana@example.com", "user", "s")
        assert AuthService.verify_password_reset_token(token) is None

    def test_expired_token(self):
        token = jwt.encode(
            {"sub": "user-1", "email": "a@b.com", "type": "access", "exp": utcnow() - timedelta(minutes=1)},
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
        assert AuthService.decode_token(token) is None

    def test_tampered_token(self):
        token = AuthService.create_access_token("user-1", "ana@example.com", "user", "s")
        assert AuthService.decode_token(token + "x") is None

    def test_wrong_secret(self):
        token = jwt.encode({"sub": "user-1", "email": "a@b.com"}, "other-secret", algorithm="HS256")
        assert AuthService.decode_token(token) is None

    def test_token_without_subject(self):
        token = jwt.encode({"email": "a@b.com"}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
        assert AuthService.decode_token(token) is None
