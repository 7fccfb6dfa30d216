"""Token service — refresh sessions and access token minting.

Learn: Access tokens are stateless JWTs (see auth/tokens.py). Refresh
tokens are opaque random strings backed by a RefreshSession row that
stores only the token's SHA-256 hash.

Refresh with rotation is one transaction:

    UPDATE refresh_sessions SET revoked_at = now
     WHERE id = :id AND revoked_at IS NULL AND expires_at > now
    INSERT successor session
    COMMIT

The conditional UPDATE is the concurrency guard: when two requests
present the same token at once, exactly one UPDATE matches a row. The
loser sees rowcount 0 and fails with REVOKED; it never observes a
half-applied rotation because revoke + insert commit together.

Presenting a token whose session is already revoked is replay — a
security event that (by default) revokes every session of that user.
"""

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from notevault.audit.actions import OUTCOME_FAILED, REFRESH_TOKEN_REUSE
from notevault.audit.recorder import AuditRecorder
from notevault.auth.tokens import create_access_token, generate_opaque_token, hash_token
from notevault.config import settings
from notevault.db.models import RefreshSession, User, UserStatus, as_utc, utcnow
from notevault.errors import TokenExpiredError, TokenInvalidError, TokenRevokedError

logger = structlog.get_logger()


@dataclass
class RefreshResult:
    access_token: str
    refresh_token: Optional[str]  # None when rotation is disabled
    session: RefreshSession
    user: User


class TokenService:
    """Issue, refresh, and revoke refresh sessions."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        rotation: Optional[bool] = None,
        revoke_all_on_reuse: Optional[bool] = None,
        audit: Optional[AuditRecorder] = None,
    ):
        self.db = db
        self.rotation = settings.refresh_token_rotation if rotation is None else rotation
        self.revoke_all_on_reuse = (
            settings.revoke_all_on_refresh_reuse
            if revoke_all_on_reuse is None
            else revoke_all_on_reuse
        )
        self.audit = audit

    # ─── Issue ──────────────────────────────────────────

    def issue_access_token(self, user: User) -> str:
        return create_access_token(user)

    async def issue_refresh_session(
        self,
        user: User,
        *,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> tuple[str, RefreshSession]:
        """Create a session row (flushed, not committed). Returns the raw token."""
        raw_token = generate_opaque_token()
        session = RefreshSession(
            user_id=user.id,
            token_hash=hash_token(raw_token),
            expires_at=utcnow() + timedelta(days=settings.refresh_token_expire_days),
            user_agent=(user_agent or "")[:255] or None,
            ip_address=ip_address,
        )
        self.db.add(session)
        await self.db.flush()
        return raw_token, session

    # ─── Refresh ────────────────────────────────────────

    async def refresh(
        self,
        raw_token: str,
        *,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> RefreshResult:
        """Exchange a refresh token for a new access token (and successor)."""
        session = await self._find_by_token(raw_token)
        if session is None:
            raise TokenInvalidError("Refresh token not recognized.", reason="NOT_FOUND")

        if session.revoked_at is not None:
            await self._handle_reuse(session)
            raise TokenRevokedError("Refresh token has been revoked.")

        now = utcnow()
        if as_utc(session.expires_at) <= now:
            raise TokenExpiredError("Refresh token has expired.")

        user = await self.db.get(User, session.user_id)
        if user is None or user.status == UserStatus.DISABLED.value:
            await self.revoke(session.id)
            await self.db.commit()
            raise TokenRevokedError("Refresh token has been revoked.")

        session_id = session.id
        values = {"last_used_at": now}
        if self.rotation:
            values["revoked_at"] = now
        claimed = await self.db.execute(
            update(RefreshSession)
            .where(
                RefreshSession.id == session_id,
                RefreshSession.revoked_at.is_(None),
                RefreshSession.expires_at > now,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            # Lost the race to a concurrent refresh (or a logout).
            # rollback() expires loaded rows; only plain values below.
            await self.db.rollback()
            logger.info("auth.refresh_race_lost", session_id=str(session_id))
            raise TokenRevokedError("Refresh token has been revoked.")

        new_raw: Optional[str] = None
        current = session
        if self.rotation:
            new_raw, current = await self.issue_refresh_session(
                user, user_agent=user_agent, ip_address=ip_address
            )
            await self.db.execute(
                update(RefreshSession)
                .where(RefreshSession.id == session.id)
                .values(replaced_by_id=current.id)
                .execution_options(synchronize_session=False)
            )

        await self.db.commit()
        logger.info(
            "auth.refreshed",
            user_id=str(user.id),
            session_id=str(current.id),
            rotated=self.rotation,
        )
        return RefreshResult(
            access_token=self.issue_access_token(user),
            refresh_token=new_raw,
            session=current,
            user=user,
        )

    async def _handle_reuse(self, session: RefreshSession) -> None:
        """A revoked token came back: possible theft. Log, audit, contain."""
        logger.warning(
            "auth.refresh_reuse_detected",
            user_id=str(session.user_id),
            session_id=str(session.id),
            revoke_all=self.revoke_all_on_reuse,
        )
        revoked = 0
        if self.revoke_all_on_reuse:
            revoked = await self.revoke_all_for_user(session.user_id)
            await self.db.commit()
        if self.audit is not None:
            await self.audit.record(
                actor_id=str(session.user_id),
                action=REFRESH_TOKEN_REUSE,
                outcome=OUTCOME_FAILED,
                target_id=str(session.id),
                details={"sessions_revoked": revoked},
            )

    # ─── Revoke ─────────────────────────────────────────

    async def revoke(self, session_id: uuid.UUID) -> bool:
        """Revoke one session (not committed). Idempotent: True if it changed."""
        result = await self.db.execute(
            update(RefreshSession)
            .where(RefreshSession.id == session_id, RefreshSession.revoked_at.is_(None))
            .values(revoked_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def revoke_all_for_user(self, user_id: uuid.UUID) -> int:
        """Revoke every open session of a user (not committed). Returns count."""
        result = await self.db.execute(
            update(RefreshSession)
            .where(RefreshSession.user_id == user_id, RefreshSession.revoked_at.is_(None))
            .values(revoked_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("auth.sessions_revoked", user_id=str(user_id), count=result.rowcount)
        return result.rowcount

    async def revoke_by_token(self, raw_token: str) -> bool:
        """Logout: revoke the session behind a raw token, if any. Idempotent."""
        session = await self._find_by_token(raw_token)
        if session is None:
            return False
        changed = await self.revoke(session.id)
        await self.db.commit()
        return changed

    # ─── Queries ────────────────────────────────────────

    async def _find_by_token(self, raw_token: str) -> Optional[RefreshSession]:
        if not raw_token:
            return None
        result = await self.db.execute(
            select(RefreshSession).where(RefreshSession.token_hash == hash_token(raw_token))
        )
        return result.scalars().first()

    async def active_sessions(self, user_id: uuid.UUID) -> list[RefreshSession]:
        now = utcnow()
        result = await self.db.execute(
            select(RefreshSession)
            .where(
                RefreshSession.user_id == user_id,
                RefreshSession.revoked_at.is_(None),
                RefreshSession.expires_at > now,
            )
            .order_by(RefreshSession.created_at)
        )
        return list(result.scalars().all())
