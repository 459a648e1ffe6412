from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import logger, settings
from app.core.redis import redis_client
from app.db.database import get_db

router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "ok", "service": settings.APP_NAME}


@router.get("/ready")
async def ready(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Readiness DB check failed")
        raise HTTPException(status_code=503, detail="Not ready")

    # Redis only matters when the feed is bridged across workers
    if settings.REDIS_ENABLED and not redis_client.health_check():
        logger.error("Redis health check failed")
        raise HTTPException(status_code=503, detail="Not ready")

    return {"status": "ready"}
