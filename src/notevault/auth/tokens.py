"""Access token creation/verification and opaque token helpers.

Learn: Two kinds of credentials:
- Access token: short-lived (15min) JWT. Self-contained — subject, role
  and email_verified flag are inside, so verifying it needs no database
  round trip. Validity = signature + expiry, nothing else.
- Opaque tokens (refresh sessions, email verification): random strings
  handed to the client once. The server only keeps their SHA-256 hash.
"""

import hashlib
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from notevault.config import settings
from notevault.db.models import User
from notevault.errors import TokenExpiredError, TokenInvalidError

ACCESS_TOKEN_TYPE = "access"


@dataclass(frozen=True)
class AccessClaims:
    """Verified contents of an access token."""

    user_id: str
    role: str
    email_verified: bool
    expires_at: datetime
    jti: str


def create_access_token(
    user: User,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed JWT access token for a user."""
    now = datetime.now(timezone.utc)
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "email_verified": user.email_verified,
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": now + expires_delta,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_access_token(token: str) -> AccessClaims:
    """Verify and decode an access token. Pure — no I/O.

    Raises TokenExpiredError (reason EXPIRED) or TokenInvalidError
    (reason INVALID_SIGNATURE or MALFORMED).
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError("Access token has expired.")
    except jwt.InvalidSignatureError:
        raise TokenInvalidError(
            "Access token signature is invalid.", reason="INVALID_SIGNATURE"
        )
    except jwt.InvalidTokenError:
        raise TokenInvalidError("Access token is malformed.", reason="MALFORMED")

    if payload.get("type") != ACCESS_TOKEN_TYPE or "role" not in payload:
        raise TokenInvalidError("Not an access token.", reason="MALFORMED")

    return AccessClaims(
        user_id=payload["sub"],
        role=payload["role"],
        email_verified=bool(payload.get("email_verified", False)),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        jti=payload.get("jti", ""),
    )


def generate_opaque_token() -> str:
    """High-entropy URL-safe token (256 bits)."""
    return secrets.token_urlsafe(32)


def hash_token(raw_token: str) -> str:
    """One-way hash used to store and look up opaque tokens."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()
