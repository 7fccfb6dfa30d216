"""Opaque cursor pagination.

Learn: A cursor is the (created_at, id) pair of the last item on the
previous page, JSON-encoded and base64url'd so clients treat it as an
opaque string. Listings order by (created_at, id), so replaying a cursor
yields the next page with no duplicates and no gaps even when several
rows share a timestamp.
"""

import base64
import binascii
import json
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, or_

from notevault.db.models import as_utc
from notevault.errors import ValidationFailedError


@dataclass(frozen=True)
class Cursor:
    created_at: datetime
    id: uuid.UUID


def encode_cursor(created_at: datetime, item_id: uuid.UUID) -> str:
    raw = json.dumps({"ts": as_utc(created_at).isoformat(), "id": str(item_id)})
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> Cursor:
    """Decode a cursor. Raises ValidationFailedError on anything malformed."""
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        return Cursor(
            created_at=as_utc(datetime.fromisoformat(data["ts"])),
            id=uuid.UUID(data["id"]),
        )
    except (ValueError, KeyError, TypeError, binascii.Error, UnicodeError):
        raise ValidationFailedError("Invalid pagination cursor.", field="cursor")


def after_cursor(column_ts, column_id, cursor: Cursor, descending: bool = False):
    """WHERE clause selecting rows strictly after the cursor in list order."""
    if descending:
        return or_(
            column_ts < cursor.created_at,
            and_(column_ts == cursor.created_at, column_id < cursor.id),
        )
    return or_(
        column_ts > cursor.created_at,
        and_(column_ts == cursor.created_at, column_id > cursor.id),
    )


def page_of(rows: list, limit: int) -> tuple[list, str | None]:
    """Split an over-fetched (limit + 1) result into items + next cursor."""
    items = rows[:limit]
    next_cursor = None
    if len(rows) > limit and items:
        last = items[-1]
        next_cursor = encode_cursor(last.created_at, last.id)
    return items, next_cursor
