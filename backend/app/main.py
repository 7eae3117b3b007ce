"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import run_health_check

# ── Alert engine ──
from backend.app.alerts.service import build_alert_service

# ── API routers ──
from backend.app.api.v1.alerts import router as alert_router

# ── Initialise logging ──
setup_logging()
logger = logging.getLogger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the alert service on startup, close collaborators on shutdown."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    # tests may pre-install a service with stub collaborators
    if getattr(app.state, "alerts", None) is None:
        app.state.alerts = build_alert_service(settings)
    yield
    await app.state.alerts.close()
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Emergency alert lifecycle engine. "
        "Validates and deduplicates citizen reports, computes a priority "
        "score, geocodes free-text locations, generates response plans "
        "with timeout / retry / fallback, and serves a live filterable "
        "index and map of active alerts."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (order matters — outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(alert_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "intake",
            "dedupe",
            "priority-scoring",
            "geocoding",
            "response-planning",
            "live-aggregation",
            "change-feed",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Deep health probe — checks all subsystems."""
    report = await run_health_check(getattr(app.state, "alerts", None))
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness():
    """Kubernetes readiness probe — can we serve traffic?"""
    report = await run_health_check(getattr(app.state, "alerts", None))
    if report.status.value == "unhealthy":
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
