"""
Password hashing and JWT issuing/verification.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from kepka.config import Settings
from kepka.errors import AuthError

ACCESS = "access"
REFRESH = "refresh"
RESET = "reset"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Return False on mismatch or an unreadable hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


class TokenService:
    """Issues and decodes signed tokens for one signing key."""

    def __init__(self, settings: Settings):
        self.secret_key = settings.jwt_secret_key
        self.algorithm = settings.jwt_algorithm
        self.lifetimes = {
            ACCESS: timedelta(minutes=settings.access_token_expire_minutes),
            REFRESH: timedelta(days=settings.refresh_token_expire_days),
            RESET: timedelta(minutes=settings.password_reset_expire_minutes),
        }

    def issue(
        self,
        user_id: str,
        token_type: str = ACCESS,
        *,
        expires_delta: Optional[timedelta] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> str:
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or self.lifetimes[token_type])
        claims = dict(extra or {})
        claims.update(
            {
                "sub": user_id,
                "type": token_type,
                "iat": now,
                "exp": expire,
                "jti": uuid.uuid4().hex,
            }
        )
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def issue_pair(self, user_id: str) -> Dict[str, Any]:
        return {
            "access_token": self.issue(user_id, ACCESS),
            "refresh_token": self.issue(user_id, REFRESH),
            "token_type": "bearer",
            "expires_in": int(self.lifetimes[ACCESS].total_seconds()),
        }

    def decode(self, token: str, expected_type: str = ACCESS) -> Dict[str, Any]:
        """Decode ``token`` and check its type; raises AuthError otherwise."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as exc:
            raise AuthError("Invalid or expired token") from exc
        if payload.get("type") != expected_type or not payload.get("sub"):
            raise AuthError("Invalid token type")
        return payload
