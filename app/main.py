import logging
import time
from contextlib import asynccontextmanager

try:
    import sentry_sdk
except ModuleNotFoundError:  # Sentry optional in local/test envs
    sentry_sdk = None
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

try:
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration
except ModuleNotFoundError:  # Sentry optional during local dev/tests
    FastApiIntegration = None
    LoggingIntegration = None

from app.api.routes import health, intelligence
from app.config import settings
from app.observability.metrics import metrics
from app.services.ingestion.errors import IngestionError
from app.services.ingestion.runtime import get_market_signal_service

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _init_sentry() -> bool:
    if not (sentry_sdk and FastApiIntegration and LoggingIntegration and settings.sentry_dsn):
        return False
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        integrations=[
            FastApiIntegration(auto_enabling_instrumentations=False),
            LoggingIntegration(level=logging.INFO),
        ],
        traces_sample_rate=0.1,
        environment=settings.environment,
    )
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Warm the market signal service so the source registry problems surface at boot."""
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    if _init_sentry():
        logger.info("Sentry initialized")

    service = get_market_signal_service()
    try:
        active = [source.id for source in service.sources() if source.is_active]
    except IngestionError as exc:
        logger.warning("startup.sources_unavailable", extra={"code": exc.code, "path": str(service.sources_path)})
    else:
        logger.info("startup.sources_loaded", extra={"active_sources": len(active)})

    yield

    removed = service.cache.cleanup_expired()
    logger.info("Shutting down application", extra={"cache_entries_expired": removed})


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Collects AI news, verifies and extracts entities, and serves accumulated market insights.",
    lifespan=lifespan,
    debug=settings.debug,
)

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def record_request(request: Request, call_next):
    """Log each request and time it under ``http.request.latency_ms``."""
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
    tags = {"method": request.method, "status": response.status_code}
    metrics.timing("http.request.latency_ms", elapsed_ms, tags=tags)
    logger.info(
        "http.request",
        extra={"path": request.url.path, "elapsed_ms": elapsed_ms, **tags},
    )
    return response


app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(intelligence.router, prefix="/api", tags=["intelligence"])


@app.get("/")
async def root():
    """Service banner with the main entry points."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.environment,
        "endpoints": ["/api/collect", "/api/insights", "/api/verify", "/api/market/summary", "/health/ready"],
    }
