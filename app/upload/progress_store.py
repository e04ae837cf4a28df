# app/upload/progress_store.py
# ==========================================================================================
# Apply-run checkpoints, one row per uploaded file content (key
# `upload_progress_<hash>`). Read once when a run starts, written after every
# batch, removed when the run finishes clean. Old rows are swept after a week.
# ==========================================================================================
from __future__ import annotations

import hashlib
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models.upload_progress import UploadProgressRecord
from app.upload.models import UploadProgress

logger = logging.getLogger("uvicorn.error")

KEY_PREFIX = "upload_progress_"


def hash_file(content: bytes) -> str:
    """Content identity of an upload: first 16 hex chars of its SHA-256."""
    return hashlib.sha256(content).hexdigest()[:16]


def progress_key(file_hash: str) -> str:
    return f"{KEY_PREFIX}{file_hash}"


def now_ms() -> int:
    return int(time.time() * 1000)


def _utc(ts: float) -> datetime:
    # naive UTC, as stored by SQLite
    return datetime.fromtimestamp(ts, timezone.utc).replace(tzinfo=None)


class ProgressStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def load(self, file_hash: str) -> Optional[UploadProgress]:
        async with self._sessionmaker() as session:
            rec = await session.get(UploadProgressRecord, progress_key(file_hash))
        if rec is None:
            return None
        try:
            return UploadProgress.model_validate_json(rec.payload)
        except ValueError as e:
            # unreadable checkpoint: start over rather than fail the run
            logger.warning("[PROGRESS] Ignoring corrupt checkpoint %s: %s", rec.key, e)
            return None

    async def save(self, progress: UploadProgress) -> None:
        progress.timestamp = progress.timestamp or now_ms()
        key = progress_key(progress.file_hash)
        async with self._sessionmaker() as session:
            async with session.begin():
                rec = await session.get(UploadProgressRecord, key)
                if rec is None:
                    rec = UploadProgressRecord(key=key, file_hash=progress.file_hash)
                    session.add(rec)
                rec.file_name = progress.file_name or ""
                rec.total_listings = progress.total_listings
                rec.payload = progress.model_dump_json()
                rec.updated_at = _utc(progress.timestamp / 1000)
        logger.debug(
            "[PROGRESS] Saved %s: %s processed, %s failed",
            key, len(progress.processed_listing_ids), len(progress.failed_listings),
        )

    async def clear(self, file_hash: str) -> bool:
        async with self._sessionmaker() as session:
            async with session.begin():
                res = await session.execute(
                    delete(UploadProgressRecord).where(UploadProgressRecord.key == progress_key(file_hash))
                )
        return bool(res.rowcount)

    async def list_all(self) -> List[UploadProgress]:
        async with self._sessionmaker() as session:
            rows = (await session.execute(
                select(UploadProgressRecord).order_by(UploadProgressRecord.updated_at.desc())
            )).scalars().all()
        out: List[UploadProgress] = []
        for rec in rows:
            try:
                out.append(UploadProgress.model_validate_json(rec.payload))
            except ValueError as e:
                logger.warning("[PROGRESS] Skipping corrupt checkpoint %s: %s", rec.key, e)
        return out

    async def cleanup_older_than(self, days: Optional[int] = None) -> int:
        """Delete checkpoints not touched for `days` (default PROGRESS_TTL_DAYS); returns how many."""
        ttl = settings.PROGRESS_TTL_DAYS if days is None else days
        cutoff = _utc(time.time()) - timedelta(days=ttl)
        async with self._sessionmaker() as session:
            async with session.begin():
                res = await session.execute(
                    delete(UploadProgressRecord).where(UploadProgressRecord.updated_at < cutoff)
                )
        removed = res.rowcount or 0
        if removed:
            logger.info(f"[PROGRESS] Removed {removed} checkpoint(s) older than {ttl} days")
        return removed
