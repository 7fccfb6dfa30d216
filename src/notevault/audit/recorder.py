"""Audit recorder — append-only trail of privileged actions.

Learn: Every admin-scope authorization decision (allowed or denied) and
every security event becomes one AuditEntry row. Entries are only ever
INSERTed.

Each entry is written in its own short transaction, separate from the
request's session, with a bounded timeout. That keeps denied attempts
recorded even though the request itself fails, and keeps a slow audit
sink from stalling the request indefinitely.

Failure policy (settings.audit_fail_closed):
- True (default): a failed write raises DependencyUnavailableError and
  the privileged action does not run.
- False: the failure is logged and the request proceeds.
"""

import asyncio
import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notevault.db.models import AuditEntry
from notevault.errors import DependencyUnavailableError

logger = structlog.get_logger()


class AuditRecorder:
    """Append-only audit writer backed by the relational store."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        *,
        fail_closed: bool = True,
        timeout: float = 5.0,
        request_id: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.fail_closed = fail_closed
        self.timeout = timeout
        self.request_id = request_id

    async def record(
        self,
        actor_id: Optional[str],
        action: str,
        outcome: str,
        target_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> Optional[AuditEntry]:
        """Append one entry. Returns the entry, or None on best-effort failure."""
        entry = AuditEntry(
            actor_id=uuid.UUID(actor_id) if actor_id else None,
            action=action,
            target_id=target_id,
            outcome=outcome,
            details=details or {},
            request_id=self.request_id,
        )
        try:
            await asyncio.wait_for(self._write(entry), timeout=self.timeout)
        except (SQLAlchemyError, asyncio.TimeoutError) as e:
            logger.error(
                "audit.write_failed",
                action=action,
                outcome=outcome,
                target_id=target_id,
                error=type(e).__name__,
            )
            if self.fail_closed:
                raise DependencyUnavailableError(
                    "Audit log is unavailable; the action was not performed."
                )
            return None

        logger.info(
            "audit.recorded",
            action=action,
            outcome=outcome,
            target_id=target_id,
        )
        return entry

    async def _write(self, entry: AuditEntry) -> None:
        async with self.session_factory() as db:
            db.add(entry)
            await db.commit()


async def read_entries(
    db: AsyncSession,
    *,
    actor_id: Optional[uuid.UUID] = None,
    action: Optional[str] = None,
    after_id: int = 0,
    limit: int = 100,
) -> list[AuditEntry]:
    """Read audit entries in insertion order (for admin tooling and tests)."""
    query = select(AuditEntry).where(AuditEntry.id > after_id)
    if actor_id is not None:
        query = query.where(AuditEntry.actor_id == actor_id)
    if action:
        query = query.where(AuditEntry.action == action)
    result = await db.execute(query.order_by(AuditEntry.id).limit(limit))
    return list(result.scalars().all())
