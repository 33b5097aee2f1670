"""
sundaypoints.api.main — FastAPI application entry point
========================================================

Run with::

    uvicorn sundaypoints.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from sundaypoints.api.deps import get_config, get_engine  # noqa: E402
from sundaypoints.api.routes.admin import router as admin_router  # noqa: E402
from sundaypoints.api.routes.points import router as points_router  # noqa: E402
from sundaypoints.database.engine import init_db, run_db  # noqa: E402
from sundaypoints.engine.errors import LedgerError  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine, onboard churches."""
    engine = get_engine()
    await run_db(init_db, engine, get_config().onboard_church_ids)
    logger.info("Points API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Points API shutting down")


app = FastAPI(
    title="Sunday School Points API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(points_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


@app.get("/api/health")
def health():
    return {"status": "ok"}
