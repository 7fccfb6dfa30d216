"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Relationships, constraints, and indexes defined here.
Alembic migrations mirror these models.

Key concepts:
- UUID primary keys via the portable sqlalchemy.Uuid type (native uuid on
  PostgreSQL, CHAR(32) on SQLite so tests run without a server)
- Python-side utcnow() defaults so ordering by created_at is precise
- Secrets are never stored raw: refresh and verification tokens keep a
  SHA-256 hash only
- Nothing here is physically deleted: users are disabled, sessions are
  revoked, notes are soft-deleted, audit entries are append-only
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Role(str, enum.Enum):
    """Closed set of roles. Authorization is a table over these values."""

    CLIENT = "client"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    GUEST = "guest"


class UserStatus(str, enum.Enum):
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    VERIFIED = "VERIFIED"
    DISABLED = "DISABLED"


# ══════════════════════════════════════════════════════════════
# Credentials
# ══════════════════════════════════════════════════════════════


class User(Base):
    """An account. Email is stored normalized (stripped, lowercased).

    Learn: status gates authentication — DISABLED blocks login and
    refresh, PENDING_VERIFICATION blocks login with a distinct error.
    Role changes only through the super_admin elevation endpoint.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Role.CLIENT.value
    )  # client, admin, super_admin, guest
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=UserStatus.PENDING_VERIFICATION.value
    )
    email_verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    # Relationships
    refresh_sessions: Mapped[list["RefreshSession"]] = relationship(
        back_populates="user"
    )
    verification_tokens: Mapped[list["EmailVerificationToken"]] = relationship(
        back_populates="user"
    )

    @property
    def email_verified(self) -> bool:
        return self.email_verified_at is not None


class RefreshSession(Base):
    """Server-side record of one issued refresh token.

    Learn: Only the SHA-256 hash of the raw token is stored, so a
    database leak does not yield usable credentials. Rotation sets
    revoked_at on the presented session and points replaced_by_id at
    its successor — both in one transaction.
    """

    __tablename__ = "refresh_sessions"
    __table_args__ = (
        Index("idx_refresh_sessions_user", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    revoked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    replaced_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("refresh_sessions.id"), nullable=True
    )
    user_agent: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="refresh_sessions")


class EmailVerificationToken(Base):
    """Single-use email verification token.

    Learn: Issuing a new token for a user stamps superseded_at on every
    still-open token, so an old email link stops working once a new one
    has been sent.
    """

    __tablename__ = "email_verification_tokens"
    __table_args__ = (
        Index("idx_email_verification_tokens_user", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    superseded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="verification_tokens")


# ══════════════════════════════════════════════════════════════
# Notes
# ══════════════════════════════════════════════════════════════


class Note(Base):
    """A user's note. Soft-deleted via deleted_at."""

    __tablename__ = "notes"
    __table_args__ = (
        Index("idx_notes_owner_created", "created_by", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    created_by: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


# ══════════════════════════════════════════════════════════════
# Audit
# ══════════════════════════════════════════════════════════════


class AuditEntry(Base):
    """Append-only record of a privileged action or security event.

    Learn: Rows are only ever INSERTed. outcome records the
    authorization decision ("allowed" / "denied") or "failed" for
    security events such as refresh-token reuse.
    """

    __tablename__ = "audit_entries"
    __table_args__ = (
        Index("idx_audit_entries_actor", "actor_id"),
        Index("idx_audit_entries_action", "action"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    target_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
