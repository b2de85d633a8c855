"""
Database engine and session management for the metadata store.

Flow:
  1. The worker entry point builds one engine per process from DATABASE_URL.
  2. MetadataStore opens a short-lived session per operation via
     session_scope(), which commits on success and rolls back on error.
  3. The connection returns to the pool when the scope exits.

SQLite URLs (used by the test-suite with aiosqlite) get a StaticPool so an
in-memory database survives across sessions. Every session then shares one
connection, and closing one session rolls back whatever another has not
committed yet, so callers pass a lock to session_scope() for such engines
(see requires_serial_sessions).
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, nullcontext
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def create_engine(database_url: str, pool_size: int = 5, echo: bool = False) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo,
        )

    return create_async_engine(
        database_url,
        pool_size=pool_size,
        pool_pre_ping=True,          # detect stale connections before use
        pool_recycle=3600,           # recycle connections every hour
        echo=echo,                   # log SQL in dev; disable in prod
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps loaded rows usable after commit
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def requires_serial_sessions(factory: async_sessionmaker[AsyncSession]) -> bool:
    """True when all sessions of this factory share one connection (StaticPool)."""
    bind = factory.kw.get("bind")
    return bind is not None and isinstance(bind.sync_engine.pool, StaticPool)


# ---------------------------------------------------------------------------
# Transaction scope
# ---------------------------------------------------------------------------

@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
    lock: asyncio.Lock | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    One transaction: commits on clean exit, rolls back and re-raises on error.
    With a lock, the whole session (open to close) runs under it.
    """
    async with lock or nullcontext():
        async with factory() as session:
            async with session.begin():
                yield session


# ---------------------------------------------------------------------------
# Health check helper
# ---------------------------------------------------------------------------

async def check_db_health(engine: AsyncEngine) -> dict:
    """Ping the database; used by the worker health probe."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
