"""Note service — owner-scoped note storage with soft delete.

Learn: The service does not decide *who* may see a note; routes ask the
authorization engine first, passing the stored owner (note.created_by).
The service just filters soft-deleted rows and paginates newest-first.
"""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from notevault.db.engine import retry_read
from notevault.db.models import Note, utcnow
from notevault.pagination import after_cursor, decode_cursor, page_of


class NoteService:
    """Business logic for notes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_note(self, owner_id: uuid.UUID, title: str, content: str = "") -> Note:
        note = Note(created_by=owner_id, title=title, content=content)
        self.db.add(note)
        await self.db.commit()
        return note

    @retry_read()
    async def get_note(self, note_id: uuid.UUID) -> Optional[Note]:
        """Live (not soft-deleted) note by id."""
        result = await self.db.execute(
            select(Note).where(Note.id == note_id, Note.deleted_at.is_(None))
        )
        return result.scalars().first()

    @retry_read()
    async def list_notes(
        self,
        owner_id: Optional[uuid.UUID] = None,
        cursor: Optional[str] = None,
        limit: int = 20,
    ) -> tuple[list[Note], Optional[str]]:
        """Newest-first page of live notes, optionally for one owner."""
        query = select(Note).where(Note.deleted_at.is_(None))
        if owner_id is not None:
            query = query.where(Note.created_by == owner_id)
        if cursor:
            query = query.where(
                after_cursor(Note.created_at, Note.id, decode_cursor(cursor), descending=True)
            )
        query = query.order_by(Note.created_at.desc(), Note.id.desc()).limit(limit + 1)
        result = await self.db.execute(query)
        return page_of(list(result.scalars().all()), limit)

    async def update_note(
        self,
        note: Note,
        *,
        title: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Note:
        if title is not None:
            note.title = title
        if content is not None:
            note.content = content
        await self.db.commit()
        return note

    async def delete_note(self, note: Note) -> None:
        """Soft delete."""
        note.deleted_at = utcnow()
        await self.db.commit()
