"""Rate limiting middleware — per client IP, per endpoint class.

Learn: Each request is counted against a key like "ip:{client_ip}:{bucket}"
where bucket is "auth" for the credential endpoints (signup, login,
verify-email, resend, refresh) and "api" for everything else. Auth
endpoints get a stricter limit (10/min) to blunt brute-force and
enumeration. The check runs before routing, so a limited request never
reaches password hashing or any database write.

The limiter store is read from app.state.rate_limiter (in-memory by
default, Redis when configured). Store errors fail open.
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from notevault.errors import ErrorCode
from notevault.schemas.envelope import error_response

logger = structlog.get_logger()

AUTH_PATHS = (
    "/api/v1/auth/signup",
    "/api/v1/auth/login",
    "/api/v1/auth/verify-email",
    "/api/v1/auth/resend-verification",
    "/api/v1/auth/refresh",
)


def endpoint_class(path: str) -> str:
    return "auth" if path.startswith(AUTH_PATHS) else "api"


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limiting per IP per window."""

    def __init__(
        self,
        app,
        default_rpm: int = 100,
        auth_rpm: int = 10,
        window_seconds: int = 60,
    ):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.auth_rpm = auth_rpm
        self.window_seconds = window_seconds

    async def dispatch(self, request: Request, call_next) -> Response:
        limiter = getattr(request.app.state, "rate_limiter", None)
        if limiter is None:
            return await call_next(request)

        bucket = endpoint_class(request.url.path)
        rpm = self.auth_rpm if bucket == "auth" else self.default_rpm
        key = f"ip:{client_ip(request)}:{bucket}"

        try:
            allowed = await limiter.allow(key, rpm, self.window_seconds)
        except Exception as e:
            # Store error: fail open
            logger.warning("ratelimit.store_error", error=str(e))
            return await call_next(request)

        if not allowed:
            logger.info("ratelimit.rejected", bucket=bucket, path=request.url.path)
            return error_response(
                request,
                status_code=429,
                message="Rate limit exceeded. Try again later.",
                errors=[{
                    "code": ErrorCode.RATE_LIMITED,
                    "message": "Rate limit exceeded. Try again later.",
                }],
                headers={"Retry-After": str(self.window_seconds)},
                alert_type="warning",
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        return response
