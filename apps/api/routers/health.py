"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import redis.asyncio as redis

from config import get_transcript_worker_config, missing_required_settings, settings
from services.tiers import get_tier_client

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns overall system health status.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown",
        "taddy_api_key": "configured" if settings.TADDY_API_KEY else "missing",
        "deepgram_api_key": "configured" if settings.DEEPGRAM_API_KEY else "missing",
    }

    try:
        from database import engine
        from sqlalchemy import text
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    if settings.TRANSCRIPT_ADVISORY_LOCK and settings.TRANSCRIPT_LOCK_BACKEND.strip().lower() == "redis":
        try:
            r = redis.from_url(settings.REDIS_URL)
            await r.ping()
            await r.aclose()
            health_status["redis"] = "up"
        except Exception as e:
            health_status["redis"] = f"down: {str(e)}"
            health_status["status"] = "degraded"
    else:
        health_status["redis"] = "unused"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Readiness probe: lookup (and fallback, when enabled) credentials present and worker config valid."""
    missing = missing_required_settings()
    try:
        get_transcript_worker_config()
    except ValueError as exc:
        return JSONResponse(status_code=503, content={"ready": False, "config_error": str(exc)})

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


@router.get("/health/lookup")
async def lookup_tier_check():
    """Probe the configured Taddy tier with the developer-details query."""
    try:
        tier_client = get_tier_client(get_transcript_worker_config())
    except ValueError as exc:
        return JSONResponse(status_code=503, content={"status": "down", "error": str(exc)})
    result = await tier_client.health_check()
    if result.get("status") != "up":
        return JSONResponse(status_code=503, content=result)
    return result
