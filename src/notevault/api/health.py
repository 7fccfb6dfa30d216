"""Health check endpoints.

Learn: /health is liveness — the process is up and serving.
/ready is readiness — the database answers (and Redis, when the rate
limiter uses it). Orchestrators route traffic only to ready instances.
Both are exempt from the internal-key gate.
"""

import structlog
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from notevault import __version__
from notevault.db.engine import get_db
from notevault.errors import ErrorCode
from notevault.redis_client import get_redis, redis_enabled
from notevault.schemas.envelope import Envelope, error_response, ok

logger = structlog.get_logger()

router = APIRouter()


@router.get("/health", response_model=Envelope[dict])
async def health_check(request: Request):
    """Liveness: no dependency checks."""
    return ok(request, {"server": "ok", "version": __version__})


@router.get("/ready", response_model=Envelope[dict])
async def readiness_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Check dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        logger.warning("health.database_unavailable", error=str(e))
        checks["database"] = "error"

    # Check Redis (only when configured)
    if redis_enabled():
        try:
            await get_redis().ping()
            checks["redis"] = "ok"
        except Exception as e:
            logger.warning("health.redis_unavailable", error=str(e))
            checks["redis"] = "error"

    if checks["database"] != "ok":
        return error_response(
            request,
            status_code=503,
            message="Service not ready.",
            errors=[{
                "code": ErrorCode.DEPENDENCY_UNAVAILABLE,
                "message": "Database is unreachable.",
                "field": "database",
            }],
        )

    message = "Ready." if checks.get("redis", "ok") == "ok" else "Ready (degraded)."
    alert = "success" if checks.get("redis", "ok") == "ok" else "warning"
    return ok(request, checks, message=message, alert_type=alert)
