"""Authentication service - password hashing and signed session tokens."""

import asyncio
from datetime import timedelta
from typing import Optional

import bcrypt
from jose import JWTError, jwt
from pydantic import BaseModel

from config import get_settings
from models.base import utcnow

settings = get_settings()

PASSWORD_RESET_EXPIRE = timedelta(hours=1)


class TokenData(BaseModel):
    """Data extracted from JWT token."""
    user_id: str
    email: str
    role: str
    token_type: str  # "access" or "password_reset"
    session_id: str | None = None


class AuthService:
    """Authentication service for password hashing and JWT handling."""

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using bcrypt."""
        password_bytes = password.encode("utf-8")
        salt = bcrypt.gensalt()
        return bcrypt.hashpw(password_bytes, salt).decode("utf-8")

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """Verify a password against its hash."""
        try:
            return bcrypt.checkpw(
                plain_password.encode("utf-8"),
                hashed_password.encode("utf-8")
            )
        except ValueError:
            # Stored value is not a bcrypt hash
            return False

    @staticmethod
    def create_access_token(user_id: str, email: str, role: str, session_id: str) -> str:
        """Sign a session access token valid for ``session_expire_hours``."""
        expire = utcnow() + timedelta(hours=settings.session_expire_hours)
        payload = {
            "sub": user_id,
            "email": email,
            "role": role,
            "sid": session_id,
            "type": "access",
            "exp": expire,
        }
        return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    @staticmethod
    def create_password_reset_token(user_id: str, email: str) -> str:
        expire = utcnow() + PASSWORD_RESET_EXPIRE
        payload = {
            "sub": user_id,
            "email": email,
            "role": "",
            "type": "password_reset",
            "exp": expire,
        }
        return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    @staticmethod
    def decode_token(token: str) -> Optional[TokenData]:
        """Decode and validate a JWT token. Returns None when invalid or expired."""
        try:
            payload = jwt.decode(
                token,
                settings.jwt_secret,
                algorithms=[settings.jwt_algorithm]
            )
        except JWTError:
            return None

        user_id = payload.get("sub")
        email = payload.get("email")
        if user_id is None or email is None:
            return None

        return TokenData(
            user_id=user_id,
            email=email,
            role=payload.get("role") or "",
            token_type=payload.get("type") or "access",
            session_id=payload.get("sid"),
        )

    @staticmethod
    def verify_access_token(token: str) -> Optional[TokenData]:
        token_data = AuthService.decode_token(token)
        if token_data is None or token_data.token_type != "access":
            return None
        return token_data

    @staticmethod
    def verify_password_reset_token(token: str) -> Optional[TokenData]:
        token_data = AuthService.decode_token(token)
        if token_data is None or token_data.token_type != "password_reset":
            return None
        return token_data


class BcryptPasswordHasher:
    """IPasswordHasher running bcrypt off the event loop."""

    async def hash(self, password: str) -> str:
        return await asyncio.to_thread(AuthService.hash_password, password)

    async def verify(self, password: str, password_hash: str) -> bool:
        return await asyncio.to_thread(AuthService.verify_password, password, password_hash)
