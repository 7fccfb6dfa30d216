"""Internal trust header check.

Learn: The API sits behind a BFF/reverse proxy that injects a
pre-shared secret header on every request it forwards. Anything that
arrives without it (or with the wrong value) did not come through the
gateway and is rejected with 403 before any business logic runs.

The rejection body is a bare error envelope: it says "Forbidden" and
nothing about why, so probing reveals nothing about internal state.
Probe endpoints (health/ready) are exempt.
"""

import secrets

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from notevault.errors import ErrorCode
from notevault.schemas.envelope import error_response

logger = structlog.get_logger()


class InternalKeyMiddleware(BaseHTTPMiddleware):
    """Reject requests that lack the gateway's shared secret."""

    def __init__(
        self,
        app,
        secret: str,
        header_name: str = "X-Internal-Key",
        exempt_paths: tuple[str, ...] = (),
    ):
        super().__init__(app)
        self.secret = secret
        self.header_name = header_name
        self.exempt_paths = tuple(exempt_paths)

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        presented = request.headers.get(self.header_name, "")
        if not self.secret or not secrets.compare_digest(
            presented.encode("utf-8"), self.secret.encode("utf-8")
        ):
            logger.warning(
                "gateway.internal_key_rejected",
                path=request.url.path,
                header_present=bool(presented),
            )
            return error_response(
                request,
                status_code=403,
                message="Forbidden",
                errors=[{"code": ErrorCode.FORBIDDEN, "message": "Forbidden"}],
            )

        return await call_next(request)
