"""Verification service — one-time email verification tokens.

Learn: issue() supersedes every still-open token for the user and
creates a fresh one, so only the newest email link works. consume()
claims the token with a conditional UPDATE (used_at IS NULL) and flips
the user to VERIFIED in the same transaction; if two requests race on
one link, exactly one UPDATE matches and the other fails ALREADY_USED.
"""

import uuid
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from notevault.auth.tokens import generate_opaque_token, hash_token
from notevault.config import settings
from notevault.db.models import EmailVerificationToken, User, UserStatus, as_utc, utcnow
from notevault.errors import (
    VerificationTokenExpiredError,
    VerificationTokenNotFoundError,
    VerificationTokenUsedError,
)

logger = structlog.get_logger()


class VerificationService:
    """Issue and consume email verification tokens."""

    def __init__(self, db: AsyncSession, ttl: Optional[timedelta] = None):
        self.db = db
        self.ttl = ttl or timedelta(hours=settings.verification_token_expire_hours)

    async def issue(self, user: User) -> str:
        """Supersede open tokens and create a new one (flushed, not committed)."""
        now = utcnow()
        await self.db.execute(
            update(EmailVerificationToken)
            .where(
                EmailVerificationToken.user_id == user.id,
                EmailVerificationToken.used_at.is_(None),
                EmailVerificationToken.superseded_at.is_(None),
            )
            .values(superseded_at=now)
            .execution_options(synchronize_session=False)
        )

        raw_token = generate_opaque_token()
        token = EmailVerificationToken(
            user_id=user.id,
            token_hash=hash_token(raw_token),
            expires_at=now + self.ttl,
        )
        self.db.add(token)
        await self.db.flush()
        logger.info("verification.issued", user_id=str(user.id), token_id=str(token.id))
        return raw_token

    async def consume(self, raw_token: str) -> uuid.UUID:
        """Consume a token and verify its user. Commits. Returns the user id."""
        token = await self._find(raw_token)
        if token is None:
            raise VerificationTokenNotFoundError()
        if token.used_at is not None:
            raise VerificationTokenUsedError()

        now = utcnow()
        if token.superseded_at is not None:
            raise VerificationTokenExpiredError(
                "Verification link has been replaced by a newer one."
            )
        if as_utc(token.expires_at) <= now:
            raise VerificationTokenExpiredError()

        claimed = await self.db.execute(
            update(EmailVerificationToken)
            .where(
                EmailVerificationToken.id == token.id,
                EmailVerificationToken.used_at.is_(None),
                EmailVerificationToken.superseded_at.is_(None),
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await self.db.rollback()
            raise VerificationTokenUsedError()

        await self.db.execute(
            update(User)
            .where(User.id == token.user_id, User.email_verified_at.is_(None))
            .values(email_verified_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        # DISABLED accounts keep their status; only pending ones flip.
        await self.db.execute(
            update(User)
            .where(
                User.id == token.user_id,
                User.status == UserStatus.PENDING_VERIFICATION.value,
            )
            .values(status=UserStatus.VERIFIED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        logger.info("verification.consumed", user_id=str(token.user_id))
        return token.user_id

    async def open_tokens(self, user_id: uuid.UUID) -> list[EmailVerificationToken]:
        """Unused, unsuperseded, unexpired tokens for a user."""
        result = await self.db.execute(
            select(EmailVerificationToken).where(
                EmailVerificationToken.user_id == user_id,
                EmailVerificationToken.used_at.is_(None),
                EmailVerificationToken.superseded_at.is_(None),
                EmailVerificationToken.expires_at > utcnow(),
            )
        )
        return list(result.scalars().all())

    async def _find(self, raw_token: str) -> Optional[EmailVerificationToken]:
        if not raw_token:
            return None
        result = await self.db.execute(
            select(EmailVerificationToken).where(
                EmailVerificationToken.token_hash == hash_token(raw_token)
            )
        )
        return result.scalars().first()
