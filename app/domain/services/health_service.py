"""
Health check service - dependency checks (DB, Redis).

Two levels:
- liveness: the process is up (no dependency checks)
- readiness: every dependency the webhook pipeline needs is reachable;
  Redis only counts when it backs the coordination state
"""
from typing import Any

from sqlalchemy import text

from app.core.config import settings
from app.core.logging import get_logger
from app.core.redis_client import get_redis
from app.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# Sanitised errors: no infrastructure details in the response
_ERROR_DB = "error: db_unavailable"
_ERROR_REDIS = "error: redis_unavailable"


async def _check_db() -> str:
    """Lightweight query against the database."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("DB health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_redis() -> str:
    """PING the shared Redis client."""
    try:
        client = await get_redis()
        await client.ping()
        return _CHECK_OK
    except Exception as e:
        logger.warning("Redis health check failed", extra_data={"error": str(e)})
        return _ERROR_REDIS


async def check_readiness() -> dict[str, Any]:
    """
    Readiness of every external dependency.

    Returns the overall status and one entry per dependency:
    - status: "healthy" if everything is ok, otherwise "degraded"
    - db / redis: "ok" or "error: ..."
    """
    checks = {"db": await _check_db()}
    if settings.WEBHOOK_COORDINATION_BACKEND == "redis":
        checks["redis"] = await _check_redis()

    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check: service degraded", extra_data=checks)

    return {"status": overall_status, **checks}
