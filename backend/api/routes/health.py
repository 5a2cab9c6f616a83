"""Health check endpoints.

Provides:
- Basic liveness probe (/health/)
- Dependency check (/health/health): database and the Celery broker
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
from fastapi import APIRouter, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_start_datetime = datetime.now(timezone.utc).isoformat()


@router.get("/", response_model=dict[str, Any])
async def root() -> dict[str, Any]:
    """Liveness probe."""
    settings = get_settings()
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "ok",
        "started_at": _start_datetime,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
    }


@router.get("/health", response_model=dict[str, Any])
async def health_check() -> dict[str, Any]:
    """
    Pings the database and Redis.
    Returns 503 if the database is down; Redis only degrades the status
    because the beat-driven scheduler catches up once the broker is back.
    """
    from db.database import engine

    checks: dict[str, str] = {}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except (SQLAlchemyError, OSError) as e:
        logger.error("Database health check failed: %s", e)
        checks["database"] = "unavailable"

    client = aioredis.from_url(get_settings().REDIS_URL, socket_timeout=2.0)
    try:
        checks["redis"] = "ok" if await client.ping() else "degraded"
    except (RedisError, OSError) as e:
        logger.warning("Redis health check failed: %s", e)
        checks["redis"] = "unavailable"
    finally:
        await client.aclose()

    if checks["database"] == "unavailable":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "checks": checks},
        )

    overall = "healthy" if checks["redis"] == "ok" else "degraded"
    return {"status": overall, **checks}
