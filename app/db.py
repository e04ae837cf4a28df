# app/db.py
from __future__ import annotations

import os
import pathlib
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

logger = logging.getLogger("uvicorn.error")

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


class Base(DeclarativeBase):
    pass


def _ensure_sqlite_dir(dsn: str) -> None:
    # sqlite+aiosqlite:///./data/uploads.db or sqlite+aiosqlite:////code/data/uploads.db
    if not dsn.startswith("sqlite"):
        return
    sep = "///" if "///" in dsn else "//"
    path_part = dsn.split(sep, 1)[1] if sep in dsn else ""
    if not path_part or path_part.startswith(":memory:"):
        return
    try:
        pathlib.Path(path_part).resolve().parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("[DB] Could not ensure SQLite directory exists: %s", e)


def _resolve_dsn() -> str:
    """
    Prefer settings.DATABASE_URL, then env var DATABASE_URL,
    else default to a local SQLite database under ./data/.
    """
    dsn = (
        getattr(settings, "DATABASE_URL", None)
        or os.getenv("DATABASE_URL")
        or "sqlite+aiosqlite:///./data/uploads.db"
    )
    _ensure_sqlite_dir(dsn)
    return dsn


def get_engine() -> AsyncEngine:
    """
    Lazily create a global AsyncEngine and sessionmaker.
    """
    global _engine, _sessionmaker
    if _engine is None:
        dsn = _resolve_dsn()
        _engine = create_async_engine(
            dsn,
            echo=False,
            pool_pre_ping=True,
            future=True,
        )
        _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
        logger.info("[DB] engine initialized for %s", dsn)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """
    Get the global async session factory.
    """
    global _sessionmaker
    if _sessionmaker is None:
        get_engine()
    # _sessionmaker will be set by get_engine()
    return _sessionmaker  # type: ignore[return-value]


async def create_tables(engine: AsyncEngine) -> None:
    # models register themselves on Base.metadata at import time
    from app.models import upload_progress  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """
    Ensure the engine is created and the checkpoint tables exist.
    """
    eng = get_engine()
    try:
        await create_tables(eng)
    except Exception as e:
        logger.error("[DB] initial connect failed: %s", e)
        raise
