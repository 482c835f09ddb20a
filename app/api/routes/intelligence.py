"""API endpoints for collection cycles, accumulated insights and article verification."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from app.models.article import CandidateArticle
from app.models.insights import AccumulatedInsights
from app.models.source import SourcePurpose
from app.services.accumulation.summary import MarketSummary
from app.services.ingestion.errors import IngestionError
from app.services.ingestion.runtime import MarketSignalService, get_market_signal_service

router = APIRouter()
logger = logging.getLogger(__name__)


class CollectResponse(BaseModel):
    articles_added: int
    sources_processed: int
    sources_failed: int
    rejected: int
    skipped: int = 0
    irrelevant: int = 0
    warning: str | None = None


class VerifyArticleRequest(CandidateArticle):
    """Article payload to score for credibility without admitting it."""


class VerifyResponse(BaseModel):
    is_valid: bool
    confidence: float = Field(..., ge=0, le=100, description="Credibility on a 0-100 scale.")
    issues: list[str] = Field(default_factory=list)
    verified_urls: list[str] = Field(default_factory=list)


@router.post("/collect", response_model=CollectResponse)
async def collect(
    *,
    force: bool = Query(False, description="Ignore per-source minimum fetch intervals."),
    purpose: SourcePurpose | None = Query(None, description="Restrict to sources serving this purpose."),
    service: MarketSignalService = Depends(get_market_signal_service),
) -> CollectResponse:
    """Run one collection cycle across the configured sources."""
    try:
        result = await service.collect(purpose=purpose, force=force)
    except IngestionError as exc:
        logger.error("intelligence.collect_failed", extra={"code": exc.code})
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc
    return CollectResponse(**result.as_dict())


@router.get("/insights", response_model=AccumulatedInsights)
async def insights(
    refresh: bool = Query(False, description="Bypass the insight cache and recompute."),
    service: MarketSignalService = Depends(get_market_signal_service),
) -> AccumulatedInsights:
    try:
        return await asyncio.to_thread(service.engine.build_insights, force=refresh)
    except IngestionError as exc:
        logger.error("intelligence.insights_failed", extra={"code": exc.code})
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc


@router.post("/verify", response_model=VerifyResponse)
async def verify(
    payload: VerifyArticleRequest,
    service: MarketSignalService = Depends(get_market_signal_service),
) -> VerifyResponse:
    """Score an article's credibility; nothing is persisted."""
    result = service.verifier.verify(payload)
    return VerifyResponse(
        is_valid=result.is_valid,
        confidence=result.confidence_percent,
        issues=list(result.issues),
        verified_urls=list(result.verified_urls),
    )


@router.get("/market/summary", response_model=MarketSummary)
async def market_summary(
    days: int = Query(30, ge=1, le=365),
    service: MarketSignalService = Depends(get_market_signal_service),
) -> MarketSummary:
    try:
        return await asyncio.to_thread(service.market_summary, days=days)
    except IngestionError as exc:
        logger.error("intelligence.summary_failed", extra={"code": exc.code})
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc


@router.get("/cache/stats")
async def cache_stats(service: MarketSignalService = Depends(get_market_signal_service)) -> dict:
    return service.cache.stats()


def _map_error_code(code: str) -> int:
    if code.startswith("404"):
        return status.HTTP_404_NOT_FOUND
    if code.startswith("422"):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if code == "E_MODE_UNSUPPORTED":
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR
