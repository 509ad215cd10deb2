"""
Health check endpoints.
"""

from typing import List

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import redis.asyncio as redis
from sqlalchemy import text

import database
from config import settings

router = APIRouter()


async def _database_status() -> str:
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        return f"down: {str(e)}"
    return "up"


async def _redis_status() -> str:
    # Only the RQ backend needs Redis.
    if settings.EXPERTISE_DISPATCH_BACKEND != "rq":
        return "not used"
    try:
        client = redis.from_url(settings.REDIS_URL)
        await client.ping()
        await client.aclose()
    except Exception as e:
        return f"down: {str(e)}"
    return "up"


def _missing_settings() -> List[str]:
    missing = []
    if not (settings.OPENAI_API_KEY or "").strip():
        missing.append("OPENAI_API_KEY")
    return missing


@router.get("/health")
async def health_check():
    """Database, queue and provider configuration status."""
    database_status = await _database_status()
    redis_status = await _redis_status()
    degraded = database_status.startswith("down") or redis_status.startswith("down")
    return {
        "status": "degraded" if degraded else "healthy",
        "api": "up",
        "database": database_status,
        "redis": redis_status,
        "dispatch_backend": settings.EXPERTISE_DISPATCH_BACKEND,
        "openai_api_key": "missing" if _missing_settings() else "configured",
    }


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness probe."""
    missing = _missing_settings()
    if missing:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
