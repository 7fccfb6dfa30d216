"""Admin API — user management and cross-user note access.

Learn: Every handler here is an admin-scoped action. The Authorizer
writes an audit entry for each decision (allowed or denied) *before*
the action runs; with audit_fail_closed, an unwritable audit trail
means the action does not happen at all.

Target roles come from the stored user row, so an admin cannot disable
or revoke another admin by lying about who the target is.
"""

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from notevault.auth.dependencies import Authorizer, get_authorizer
from notevault.auth.policy import Action, Target
from notevault.config import settings
from notevault.db.engine import get_db
from notevault.db.models import Role, User, UserStatus
from notevault.errors import NotFoundError, ValidationFailedError
from notevault.schemas.auth import RevokedCount
from notevault.schemas.envelope import Envelope, Page, ok
from notevault.schemas.note import NoteRead
from notevault.schemas.user import AdminUserRead, UserRoleUpdate, UserStatusUpdate
from notevault.services.note_service import NoteService
from notevault.services.token_service import TokenService
from notevault.services.user_service import UserService

logger = structlog.get_logger()

router = APIRouter(prefix="/admin")


async def _authorized_user(
    authz: Authorizer,
    db: AsyncSession,
    user_id: uuid.UUID,
    action: Action,
    details: Optional[dict] = None,
) -> User:
    """Load the target user and run the policy check against it.

    A missing user is checked as a plain lookup first, so callers
    without an admin role see FORBIDDEN rather than NOT_FOUND.
    """
    user = await UserService(db).get(user_id)
    if user is None:
        await authz.check(
            Action.USER_READ,
            Target(id=str(user_id)),
            details={"requested": action.value, "found": False},
        )
        raise NotFoundError("User not found.")

    await authz.check(
        action,
        Target(id=str(user.id), owner_id=str(user.id), role=user.role),
        details=details,
    )
    return user


async def _admin_view(db: AsyncSession, user: User) -> AdminUserRead:
    sessions = await TokenService(db).active_sessions(user.id)
    view = AdminUserRead.model_validate(user)
    view.active_sessions = len(sessions)
    return view


# ─── Users ──────────────────────────────────────────────


@router.get("/users", response_model=Envelope[Page[AdminUserRead]])
async def list_users(
    request: Request,
    cursor: Optional[str] = Query(None),
    limit: int = Query(settings.page_size_default, ge=1, le=settings.page_size_max),
    status: Optional[UserStatus] = Query(None),
    role: Optional[Role] = Query(None),
    authz: Authorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    await authz.check(Action.USER_LIST)
    users, next_cursor = await UserService(db).list_users(
        cursor=cursor,
        limit=limit,
        status=status.value if status else None,
        role=role.value if role else None,
    )
    return ok(
        request,
        Page[AdminUserRead](
            items=[AdminUserRead.model_validate(u) for u in users],
            next_cursor=next_cursor,
        ),
    )


@router.get("/users/{user_id}", response_model=Envelope[AdminUserRead])
async def get_user(
    request: Request,
    user_id: uuid.UUID,
    authz: Authorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    user = await _authorized_user(authz, db, user_id, Action.USER_READ)
    return ok(request, await _admin_view(db, user))


@router.patch("/users/{user_id}", response_model=Envelope[AdminUserRead])
async def update_user_status(
    request: Request,
    user_id: uuid.UUID,
    body: UserStatusUpdate,
    authz: Authorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    """Change account status. Disabling revokes every refresh session."""
    user = await _authorized_user(
        authz, db, user_id, Action.USER_UPDATE_STATUS,
        details={"status": body.status.value},
    )
    await UserService(db).set_status(user, body.status)
    if body.status == UserStatus.DISABLED:
        await TokenService(db).revoke_all_for_user(user.id)
    await db.commit()
    return ok(request, await _admin_view(db, user), message="User status updated.")


@router.patch("/users/{user_id}/role", response_model=Envelope[AdminUserRead])
async def change_user_role(
    request: Request,
    user_id: uuid.UUID,
    body: UserRoleUpdate,
    authz: Authorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    """super_admin only. New role applies from the target's next access token."""
    user = await _authorized_user(
        authz, db, user_id, Action.USER_CHANGE_ROLE,
        details={"role": body.role.value},
    )
    if str(user.id) == authz.identity.user_id:
        raise ValidationFailedError("You cannot change your own role.", field="role")
    await UserService(db).set_role(user, body.role)
    await db.commit()
    return ok(request, await _admin_view(db, user), message="User role updated.")


@router.post("/users/{user_id}/revoke-sessions", response_model=Envelope[RevokedCount])
async def revoke_user_sessions(
    request: Request,
    user_id: uuid.UUID,
    authz: Authorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    user = await _authorized_user(authz, db, user_id, Action.USER_REVOKE_SESSIONS)
    count = await TokenService(db).revoke_all_for_user(user.id)
    await db.commit()
    logger.info("admin.sessions_revoked", user_id=str(user.id), count=count)
    return ok(request, RevokedCount(revoked=count), message="Sessions revoked.")


# ─── Notes ──────────────────────────────────────────────


@router.get("/notes", response_model=Envelope[Page[NoteRead]])
async def list_any_notes(
    request: Request,
    cursor: Optional[str] = Query(None),
    limit: int = Query(settings.page_size_default, ge=1, le=settings.page_size_max),
    user_id: Optional[uuid.UUID] = Query(None, alias="userId"),
    authz: Authorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    """All live notes, or one user's when userId is given."""
    await authz.check(
        Action.NOTE_LIST_ANY,
        Target(id=str(user_id), owner_id=str(user_id)) if user_id else None,
    )
    notes, next_cursor = await NoteService(db).list_notes(user_id, cursor=cursor, limit=limit)
    return ok(
        request,
        Page[NoteRead](
            items=[NoteRead.model_validate(n) for n in notes],
            next_cursor=next_cursor,
        ),
    )


@router.get("/notes/{note_id}", response_model=Envelope[NoteRead])
async def get_any_note(
    request: Request,
    note_id: uuid.UUID,
    authz: Authorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    svc = NoteService(db)
    note = await svc.get_note(note_id)
    await authz.check(
        Action.NOTE_READ_ANY,
        Target(
            id=str(note_id),
            owner_id=str(note.created_by) if note else None,
        ),
        details=None if note else {"found": False},
    )
    if note is None:
        raise NotFoundError("Note not found.")
    return ok(request, NoteRead.model_validate(note))
