"""
Tender Estimator API v1.0
FastAPI backend for tender estimate pricing: row markup breakdown, group
and KP totals, row editing cascades and per-user coefficient profiles.
"""
import os
import sys
import time
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from tender_estimator.services.logging_config import setup_logging
from tender_estimator.services.middleware import RequestTimingMiddleware, SecurityHeadersMiddleware
from tender_estimator.services.perf_monitor import tracker as perf_tracker

# Load .env file automatically in dev (no-op if python-dotenv not installed or file missing)
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass

from tender_estimator.db import database_configured, init_db

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("tender-api")

APP_VERSION = "1.0.0"

# Record process start time for uptime calculation
_PROCESS_START = time.monotonic()

for var in ["DATABASE_URL", "JWT_SECRET_KEY"]:
    if not os.getenv(var):
        logger.warning(f"MISSING env var: {var} — running in dev mode")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await init_db()
    except Exception as e:
        logger.warning(f"Table init warning (OK if using Alembic): {e}")
    yield


app = FastAPI(
    title="Tender Estimator API",
    version=APP_VERSION,
    description="Markup and KP pricing for construction tender estimates",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS — restricted to allowed origins from env
# ---------------------------------------------------------------------------
_cors_default = "http://localhost:3000,http://localhost:8000"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
)
app.add_middleware(SecurityHeadersMiddleware)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from tender_estimator.api.estimate_routes import router as estimate_router  # noqa: E402
from tender_estimator.api.coefficient_routes import router as coefficient_router  # noqa: E402

app.include_router(estimate_router)
app.include_router(coefficient_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": APP_VERSION,
        "db_configured": database_configured(),
    }


@app.get("/metrics")
async def metrics():
    """
    Calculation throughput, per-operation averages, error counts and
    process memory, sourced from the in-process PerformanceTracker.
    """
    uptime_seconds = round(time.monotonic() - _PROCESS_START, 1)

    memory_mb: float = 0.0
    try:
        import resource  # Unix only
        usage = resource.getrusage(resource.RUSAGE_SELF)
        # ru_maxrss is in kilobytes on Linux, bytes on macOS
        if sys.platform == "darwin":
            memory_mb = round(usage.ru_maxrss / (1024 * 1024), 2)
        else:
            memory_mb = round(usage.ru_maxrss / 1024, 2)
    except ImportError:
        memory_mb = 0.0

    return {
        "uptime_seconds": uptime_seconds,
        "memory_usage_mb": memory_mb,
        **perf_tracker.get_metrics(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("tender_estimator.main:app", host="0.0.0.0", port=8000, reload=True)
