from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException

from app.config import settings
from app.services.accumulation.engine import INSIGHTS_CACHE_KEY
from app.services.ingestion.errors import IngestionError
from app.services.ingestion.runtime import MarketSignalService, get_market_signal_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """Liveness only; never touches the store."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/ready")
async def readiness_check(service: MarketSignalService = Depends(get_market_signal_service)):
    """Ready when the entity store answers; a missing or invalid source registry only degrades."""
    if not await asyncio.to_thread(service.repository.ping):
        logger.error("health.store_unavailable")
        raise HTTPException(status_code=503, detail="Entity store is not available")

    try:
        active_sources = sum(1 for source in service.sources() if source.is_active)
    except IngestionError as exc:
        logger.warning("health.sources_unavailable", extra={"code": exc.code, "path": str(service.sources_path)})
        sources = {"status": "missing" if exc.code == "404_SOURCES_NOT_FOUND" else "invalid", "active": 0}
    else:
        sources = {"status": "loaded", "active": active_sources}

    cache_stats = service.cache.stats()
    return {
        "status": "ready",
        "version": settings.app_version,
        "store": "database" if settings.database_url else "memory",
        "sources": sources,
        "cache": {
            "total_entries": cache_stats["total_entries"],
            "insights_cached": INSIGHTS_CACHE_KEY in cache_stats["keys"],
        },
    }
