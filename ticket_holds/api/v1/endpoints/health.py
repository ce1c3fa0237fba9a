"""
Health check endpoints
"""

from typing import Any
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
import logging

from ticket_holds.config import settings
from ticket_holds.core import redis as redis_module
from ticket_holds.core.database import DatabaseManager, get_db_manager

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/live")
async def liveness() -> Any:
    """
    Kubernetes liveness probe
    """
    return {"status": "alive", "service": "ticket-holds"}


@router.get("/ready")
async def readiness(db: DatabaseManager = Depends(get_db_manager)) -> Any:
    """
    Kubernetes readiness probe - checks the database and, when configured, redis
    """
    checks = {"database": False, "api": True}

    try:
        async with db.reader() as session:
            result = await session.execute(text("SELECT 1"))
            checks["database"] = result.scalar() == 1
    except Exception as e:
        logger.warning(f"Database readiness check failed: {e}")

    if settings.REDIS_URL:
        checks["redis"] = False
        try:
            if redis_module.redis_client is not None:
                await redis_module.redis_client.ping()
                checks["redis"] = True
        except Exception as e:
            logger.warning(f"Redis readiness check failed: {e}")

    all_healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content={
            "status": "ready" if all_healthy else "not ready",
            "checks": checks,
            "version": settings.APP_VERSION
        }
    )
