"""User service — the credential store.

Learn: Owns user records: creation at signup, lookups, admin status and
role changes. Emails are normalized (strip + lowercase) on the way in,
so uniqueness is effectively case-insensitive. Users are never deleted;
DISABLED is the terminal "off" switch and it revokes every session.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from notevault.auth.password import hash_password
from notevault.db.engine import retry_read
from notevault.db.models import Role, User, UserStatus, utcnow
from notevault.errors import ConflictError, NotFoundError, ValidationFailedError
from notevault.pagination import after_cursor, decode_cursor, page_of

logger = structlog.get_logger()


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class UserService:
    """Business logic for user records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Creation ───────────────────────────────────────

    async def create_user(
        self,
        email: str,
        password: str,
        *,
        role: Role = Role.CLIENT,
        status: UserStatus = UserStatus.PENDING_VERIFICATION,
    ) -> User:
        """Insert a new user (flushed, not committed).

        Raises ConflictError if the normalized email is taken — either
        found up front or caught from the unique constraint when two
        signups race.
        """
        email = normalize_email(email)
        if await self.get_by_email(email):
            raise ConflictError("Email already registered.", field="email")

        user = User(
            email=email,
            password_hash=hash_password(password),
            role=role.value,
            status=status.value,
            email_verified_at=utcnow() if status == UserStatus.VERIFIED else None,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Email already registered.", field="email")
        return user

    # ─── Lookups ────────────────────────────────────────

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == normalize_email(email))
        )
        return result.scalars().first()

    @retry_read()
    async def get(self, user_id: uuid.UUID) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def get_or_404(self, user_id: uuid.UUID) -> User:
        user = await self.get(user_id)
        if not user:
            raise NotFoundError("User not found.")
        return user

    @retry_read()
    async def list_users(
        self,
        cursor: Optional[str] = None,
        limit: int = 20,
        status: Optional[str] = None,
        role: Optional[str] = None,
    ) -> tuple[list[User], Optional[str]]:
        """List users oldest-first with cursor pagination."""
        query = select(User)
        if cursor:
            query = query.where(
                after_cursor(User.created_at, User.id, decode_cursor(cursor))
            )
        if status:
            query = query.where(User.status == status)
        if role:
            query = query.where(User.role == role)
        query = query.order_by(User.created_at.asc(), User.id.asc()).limit(limit + 1)
        result = await self.db.execute(query)
        return page_of(list(result.scalars().all()), limit)

    # ─── Admin mutations ────────────────────────────────

    async def set_status(self, user: User, status: UserStatus) -> User:
        """Change account status (flushed, not committed).

        Re-enabling must land on the status the email state implies:
        VERIFIED for accounts that verified, PENDING_VERIFICATION for
        accounts that never did.
        """
        current = UserStatus(user.status)
        if status == current:
            return user
        if status == UserStatus.PENDING_VERIFICATION and user.email_verified_at:
            raise ValidationFailedError(
                "Account has already verified its email address.", field="status"
            )
        if status == UserStatus.VERIFIED and user.email_verified_at is None:
            raise ValidationFailedError(
                "Account has not verified its email address.", field="status"
            )

        user.status = status.value
        await self.db.flush()
        logger.info(
            "user.status_changed",
            user_id=str(user.id),
            from_status=current.value,
            to_status=status.value,
        )
        return user

    async def set_role(self, user: User, role: Role) -> User:
        """Change a user's role (flushed, not committed)."""
        previous = user.role
        user.role = role.value
        await self.db.flush()
        logger.info(
            "user.role_changed",
            user_id=str(user.id),
            from_role=previous,
            to_role=role.value,
        )
        return user
