import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from apps.api.deps import close_codeforces_client
from apps.api.middlewares.metrics import MetricsMiddleware
from apps.api.routers import appeals, cheaters, health, reports, snapshot, verification
from apps.workers.notifier import notifier
from core import close_redis
from core.config import settings
from core.errors import ModerationError

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    logger.info(f"Starting cheater database API ({settings.environment})")
    yield
    # Shutdown
    await close_codeforces_client()
    await notifier.close()
    await close_redis()


app = FastAPI(
    title="CF Cheater Database API",
    description="Moderation API for the Codeforces cheater database",
    version="0.1.0",
    lifespan=lifespan,
)

# Middlewares
app.add_middleware(MetricsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ModerationError)
async def moderation_error_handler(request: Request, exc: ModerationError) -> JSONResponse:
    """Render moderation errors as ``{"type": "error", "text": ...}``."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.text}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_message())


# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(snapshot.router)  # /cheaters.json, before the /cheaters routes
app.include_router(reports.router)  # Already has /reports prefix
app.include_router(cheaters.router)  # Already has /cheaters prefix
app.include_router(appeals.router)  # Already has /appeals prefix
app.include_router(verification.router)  # Already has /verification prefix


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"status": "ok", "service": "cf-cheater-db"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
