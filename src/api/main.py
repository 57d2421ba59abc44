"""
FastAPI application for the Nexus mastery engine.

Provides REST API for:
- Recording interactions against the mastery ledger
- Nexus scores per node
- Branch unlocks, choices and the topic tree
- Spaced-repetition review forecasts
- Gamification profile (XP, level, streak, badges, boss eligibility)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from config import get_settings
from src.core.errors import EngineError
from src.core.logging_setup import configure_logging
from src.db.database import check_database_health, init_db

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    configure_logging()
    logger.info("Starting nexus mastery service...")
    if settings.store_backend == "sql":
        init_db()
    logger.info(f"Service started on {settings.api_host}:{settings.api_port}")

    yield

    # Shutdown
    logger.info("Shutting down nexus mastery service...")


app = FastAPI(
    title="Nexus Mastery Engine",
    description="""
    Adaptive learning and mastery service.

    ## Features

    - **Mastery Ledger**: Rolling-window mastery levels per student per node
    - **Nexus Score**: 0-100 composite of accuracy, confidence and curriculum fit
    - **Branches**: Prerequisite-gated alternative paths with exclusive choices
    - **Reviews**: Spaced-repetition schedule for mastered nodes
    - **Gamification**: XP, levels, streaks, badges derived from the ledger
    """,
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    if exc.kind.http_status >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc}")
    else:
        logger.debug(f"{request.method} {request.url.path}: {exc.kind.value} {exc}")
    return JSONResponse(status_code=exc.kind.http_status, content=exc.to_dict())


# ========================================
# Health & Status Endpoints
# ========================================


@app.get("/", tags=["Health"])
def root() -> dict[str, str]:
    """Root endpoint returning service info."""
    return {
        "service": "nexus-mastery-engine",
        "version": "0.1.0",
        "status": "ok",
    }


@app.get("/health", tags=["Health"])
def health_check() -> dict[str, Any]:
    """Health check with a database connectivity test when the SQL store is in use."""
    components: dict[str, str] = {"store": settings.store_backend}
    errors = {}

    if settings.store_backend == "sql":
        db_status, db_error = check_database_health()
        components["database"] = db_status
        if db_error:
            errors["database"] = db_error
    else:
        db_status = "ok"

    result: dict[str, Any] = {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "components": components,
    }
    if errors:
        result["errors"] = errors
    return result


# ========================================
# Import and mount routers
# ========================================

from src.api.routers import student_router  # noqa: E402

app.include_router(student_router.router, prefix="/api/students", tags=["Students"])
