"""
Identity boundary for the ClubCTF engine.

Accounts live in the club portal. The engine only verifies the bearer JWT it
issues (``sub`` = user UUID, ``role`` claim) and trusts what it says.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from fastapi import status
from jose import JWTError, jwt

from clubctf.core.config import get_settings

settings = get_settings()


class Role(str, Enum):
    """Portal roles the engine cares about."""

    MEMBER = "member"
    OFFICER = "officer"
    ADMIN = "admin"


PRIVILEGED_ROLES = {Role.OFFICER.value, Role.ADMIN.value}


class AuthError(Exception):
    """Authentication error."""

    def __init__(self, message: str, status_code: int = status.HTTP_401_UNAUTHORIZED):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class Identity:
    """Caller identity as asserted by the portal."""

    user_id: uuid.UUID
    role: str = Role.MEMBER.value

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES


def create_access_token(
    user_id: uuid.UUID,
    role: str = Role.MEMBER.value,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {"sub": str(user_id), "role": role, "exp": expire}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        raise AuthError("Invalid or expired token") from e


def identity_from_token(token: str) -> Identity:
    """
    Build the caller identity from a bearer token.

    Raises:
        AuthError: Token invalid, expired or missing a usable subject
    """
    payload = decode_token(token)
    subject = payload.get("sub")
    if not subject:
        raise AuthError("Invalid token payload")
    try:
        user_id = uuid.UUID(str(subject))
    except ValueError as e:
        raise AuthError("Invalid token subject") from e
    return Identity(user_id=user_id, role=payload.get("role") or Role.MEMBER.value)
