"""
CareNote Backend — Password Hashing & Token Issuer
====================================================

What:  bcrypt password hashing, signed JWT access/refresh tokens, and random
       one-time tokens (email verification, invitation, password reset).
How:   PyJWT with HS256; every token carries `sub` (user id), `type`
       ("access" | "refresh"), `iat` and `exp`.
Who:   AuthService, InvitationService and the `get_current_user` dependency.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import bcrypt
import jwt

from carenote.config import settings
from carenote.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


# ── Passwords ─────────────────────────────────────────────────────────────

def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        logger.warning("Stored password hash could not be parsed")
        return False


def generate_token(nbytes: int = 32) -> str:
    """Random URL-safe token for email links."""
    return secrets.token_hex(nbytes)


def generate_throwaway_password() -> str:
    """Never communicated; invited members set a real one on acceptance."""
    return secrets.token_urlsafe(24)


# ── JWT ───────────────────────────────────────────────────────────────────

def _encode(user_id: uuid.UUID, token_type: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "type": token_type,
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: uuid.UUID) -> str:
    return _encode(user_id, ACCESS_TOKEN, timedelta(minutes=settings.jwt_access_expire_minutes))


def create_refresh_token(user_id: uuid.UUID) -> str:
    return _encode(user_id, REFRESH_TOKEN, timedelta(days=settings.jwt_refresh_expire_days))


def issue_token_pair(user_id: uuid.UUID) -> Dict[str, Any]:
    return {
        "access_token": create_access_token(user_id),
        "refresh_token": create_refresh_token(user_id),
        "token_type": "bearer",
        "expires_in": settings.jwt_access_expire_minutes * 60,
    }


def decode_token(token: str, expected_type: str = ACCESS_TOKEN) -> uuid.UUID:
    """
    Verify a token and return the user id it was issued for.

    Raises:
        AuthenticationError: bad signature, expired, wrong type or malformed subject.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError(message="Token has expired")
    except jwt.PyJWTError as e:
        logger.debug("Token rejected: %s", str(e))
        raise AuthenticationError(message="Invalid token")

    if payload.get("type") != expected_type:
        raise AuthenticationError(message="Invalid token type")

    try:
        return uuid.UUID(payload["sub"])
    except (ValueError, TypeError):
        raise AuthenticationError(message="Invalid token subject")
