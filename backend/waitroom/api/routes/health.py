"""
Operational endpoints: liveness, store probe, Prometheus scrape.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from waitroom.core.config import get_settings
from waitroom.core.logging import get_logger
from waitroom.core.metrics import metrics_endpoint
from waitroom.db.session import get_db
from waitroom.infrastructure.redis_client import get_redis

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


async def probe_database(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("health_database_unavailable", error=str(e))
        return "unavailable"
    finally:
        await db.rollback()
    return "ok"


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Health check for load balancers. Redis being down only degrades notifications."""
    settings = get_settings()
    database = await probe_database(db)
    sweeper = getattr(request.app.state, "sweeper", None)
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "database": database,
        "notifications": "redis" if await get_redis() else "polling",
        "sweeper": "running" if sweeper is not None and sweeper.running else "stopped",
    }


@router.get("/metrics")
async def metrics():
    return metrics_endpoint()


@router.get("/", tags=["Root"])
async def root():
    settings = get_settings()
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
