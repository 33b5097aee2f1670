"""
sundaypoints.database.engine — Database Connection & Async Helper
==================================================================

The ledger services are plain synchronous SQLAlchemy code: every operation
opens a :class:`Session`, does one short read-modify-write, and commits.
Async callers (FastAPI ``async def`` handlers, background consumers) hand
those functions to a worker thread through :func:`run_db` so the event loop
is never blocked.

Usage::

    from sundaypoints.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # Inside an async handler:
    result = await run_db(ledger_service.award_attendance, engine, ...)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine

from sundaypoints.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def create_db_engine(url: str | None = None) -> Engine:
    """Build the ledger's :class:`Engine` from *url* or ``DATABASE_URL``.

    Ledger transactions hold a row lock on one balance for a few
    milliseconds, so a small pool goes a long way.  ``DB_POOL_SIZE`` and
    ``DB_MAX_OVERFLOW`` override the defaults (5 and 10) for busier
    deployments.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and point it at the portal's PostgreSQL."
        )

    engine = create_engine(
        url,
        pool_size=_int_env("DB_POOL_SIZE", 5),
        max_overflow=_int_env("DB_MAX_OVERFLOW", 10),
        pool_pre_ping=True,
        pool_timeout=10,      # a waiting award fails fast instead of queueing
        pool_recycle=3600,
    )
    logger.info(
        "Database engine created → %s (pool=%d)", engine.url.host, engine.pool.size(),
    )
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine, church_ids: list[str] | tuple[str, ...] = ()) -> None:
    """Create the ledger tables and onboard *church_ids*.

    ``alembic upgrade head`` owns the production schema; ``create_all`` is
    for local runs and tests.  Onboarding is idempotent: a church that
    already has a points configuration keeps it.
    """
    Base.metadata.create_all(engine)
    logger.info("Ledger tables verified / created.")

    if church_ids:
        from sundaypoints.database.seed import seed_church_configs

        seed_church_configs(engine, church_ids)


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Await a synchronous ledger/service call on a worker thread."""
    return await asyncio.to_thread(func, *args, **kwargs)
