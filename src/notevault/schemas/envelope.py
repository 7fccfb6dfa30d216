"""Response envelope — every response body has this shape.

Learn: {meta: {status, alertType, message, timestamp, requestId},
        data, errors: [{code, message, field?, reason?}]}

Handlers return `ok(request, data, message)`; exception handlers and
middleware use `error_response(...)`. Both read the request id that
RequestIdMiddleware stored on request.state.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from starlette.requests import Request
from starlette.responses import JSONResponse

T = TypeVar("T")


class Meta(BaseModel):
    status: str  # success | error
    alertType: str  # success | info | warning | error
    message: str
    timestamp: datetime
    requestId: str


class ErrorItem(BaseModel):
    code: str
    message: str
    field: Optional[str] = None
    reason: Optional[str] = None


class Envelope(BaseModel, Generic[T]):
    meta: Meta
    data: Optional[T] = None
    errors: list[ErrorItem] = Field(default_factory=list)


class Page(BaseModel, Generic[T]):
    """Cursor-paginated list payload."""
    items: list[T]
    next_cursor: Optional[str] = None


def request_id_of(request: Optional[Request]) -> str:
    if request is not None:
        rid = getattr(request.state, "request_id", None)
        if rid:
            return rid
    return str(uuid.uuid4())


def _meta(request: Optional[Request], status: str, alert_type: str, message: str) -> Meta:
    return Meta(
        status=status,
        alertType=alert_type,
        message=message,
        timestamp=datetime.now(timezone.utc),
        requestId=request_id_of(request),
    )


def ok(
    request: Request,
    data: Any = None,
    message: str = "OK",
    alert_type: str = "success",
) -> Envelope:
    """Success envelope (used as the route's return value)."""
    return Envelope(meta=_meta(request, "success", alert_type, message), data=data)


def error_response(
    request: Optional[Request],
    status_code: int,
    message: str,
    errors: Optional[list[dict]] = None,
    headers: Optional[dict] = None,
    alert_type: str = "error",
) -> JSONResponse:
    """Error envelope as a ready-to-send JSONResponse."""
    body = Envelope(
        meta=_meta(request, "error", alert_type, message),
        data=None,
        errors=[ErrorItem(**e) for e in (errors or [])],
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body),
        headers=headers,
    )
