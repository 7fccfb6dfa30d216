"""Notes API — owner-scoped CRUD with cursor pagination.

Learn: Every handler asks the Authorizer before touching a note. The
target's owner always comes from the stored row (note.created_by) or,
for listings, from the userId being listed — never from the note body.
Listing someone else's notes is the admin-scoped NOTE_LIST_ANY action,
so a client gets FORBIDDEN whether or not that user exists. The same
holds by id: a missing note has no owner, so it is denied exactly like
someone else's note.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from notevault.auth.dependencies import Authorizer, get_authorizer
from notevault.auth.policy import Action, Target
from notevault.config import settings
from notevault.db.engine import get_db
from notevault.db.models import Note
from notevault.schemas.envelope import Envelope, Page, ok
from notevault.schemas.note import NoteCreate, NoteRead, NoteUpdate
from notevault.services.note_service import NoteService

router = APIRouter(prefix="/notes")


def _own_target(authz: Authorizer, note_id: Optional[uuid.UUID] = None) -> Target:
    return Target(
        id=str(note_id) if note_id else None,
        owner_id=authz.identity.user_id,
    )


async def _load_note(svc: NoteService, authz: Authorizer, action: Action, note_id: uuid.UUID) -> Note:
    """Fetch a live note the caller may act on, or raise FORBIDDEN."""
    note = await svc.get_note(note_id)
    owner_id = str(note.created_by) if note else None
    await authz.check(action, Target(id=str(note_id), owner_id=owner_id))
    return note


@router.post("", response_model=Envelope[NoteRead], status_code=201)
async def create_note(
    request: Request,
    body: NoteCreate,
    authz: Authorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    await authz.check(Action.NOTE_CREATE, _own_target(authz))
    note = await NoteService(db).create_note(authz.identity.uuid, body.title, body.content)
    return ok(request, NoteRead.model_validate(note), message="Note created.")


@router.get("", response_model=Envelope[Page[NoteRead]])
async def list_notes(
    request: Request,
    cursor: Optional[str] = Query(None),
    limit: int = Query(settings.page_size_default, ge=1, le=settings.page_size_max),
    user_id: Optional[uuid.UUID] = Query(None, alias="userId"),
    authz: Authorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's notes, newest first.

    Passing another user's id in `userId` is an admin-only listing.
    """
    owner_id = user_id or authz.identity.uuid
    if owner_id == authz.identity.uuid:
        await authz.check(Action.NOTE_LIST, _own_target(authz))
    else:
        await authz.check(
            Action.NOTE_LIST_ANY,
            Target(id=str(owner_id), owner_id=str(owner_id)),
        )

    notes, next_cursor = await NoteService(db).list_notes(owner_id, cursor=cursor, limit=limit)
    return ok(
        request,
        Page[NoteRead](
            items=[NoteRead.model_validate(n) for n in notes],
            next_cursor=next_cursor,
        ),
    )


@router.get("/{note_id}", response_model=Envelope[NoteRead])
async def get_note(
    request: Request,
    note_id: uuid.UUID,
    authz: Authorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    note = await _load_note(NoteService(db), authz, Action.NOTE_READ, note_id)
    return ok(request, NoteRead.model_validate(note))


@router.patch("/{note_id}", response_model=Envelope[NoteRead])
async def update_note(
    request: Request,
    note_id: uuid.UUID,
    body: NoteUpdate,
    authz: Authorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    svc = NoteService(db)
    note = await _load_note(svc, authz, Action.NOTE_UPDATE, note_id)
    note = await svc.update_note(note, title=body.title, content=body.content)
    return ok(request, NoteRead.model_validate(note), message="Note updated.")


@router.delete("/{note_id}", response_model=Envelope[None])
async def delete_note(
    request: Request,
    note_id: uuid.UUID,
    authz: Authorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    svc = NoteService(db)
    note = await _load_note(svc, authz, Action.NOTE_DELETE, note_id)
    await svc.delete_note(note)
    return ok(request, message="Note deleted.")
