# app/upload/backup.py
# Snapshot of every live listing an accepted change will touch (updates and
# deletes; creates have nothing to back up), written in the sheet format
# before apply runs so the previous state can be re-uploaded.
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from app.catalog.catalog_api import prefetch_listings
from app.catalog.models import Listing
from app.config import settings
from app.upload.csv_export import encode_listings
from app.upload.models import PreviewResponse

logger = logging.getLogger("uvicorn.error")

BACKUP_PREFIX = "listings-backup-before-changes"


@dataclass
class BackupResult:
    path: str
    listing_count: int
    content: str


def collect_backup_listing_ids(preview: PreviewResponse, accepted_ids: Iterable[str]) -> List[int]:
    accepted = set(accepted_ids)
    ids: List[int] = []
    for change in preview.changes:
        if change.change_id not in accepted or change.change_type not in ("update", "delete"):
            continue
        if change.listing_id > 0 and change.listing_id not in ids:
            ids.append(change.listing_id)
    return ids


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8", newline="") as f:
        f.write(text)
    os.replace(tmp, path)


async def create_backup(
    preview: PreviewResponse,
    accepted_ids: Iterable[str],
    client,
    backup_dir: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Optional[BackupResult]:
    """Write the backup CSV; None when no accepted change touches a live listing."""
    ids = collect_backup_listing_ids(preview, accepted_ids)
    if not ids:
        logger.info("[BACKUP] Nothing to back up (no accepted updates or deletes)")
        return None

    fetched = await prefetch_listings(client, ids)
    listings: List[Listing] = []
    for lid in ids:
        res = fetched.get(lid)
        if isinstance(res, Listing):
            listings.append(res)
        else:
            logger.warning("[BACKUP] Listing %s could not be fetched and is missing from the backup: %s", lid, res)

    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H%M%S")
    path = Path(backup_dir or settings.BACKUP_DIR) / f"{BACKUP_PREFIX}-{stamp}.csv"
    content = encode_listings(listings)
    _write_atomic(path, content)
    logger.info(f"[BACKUP] {len(listings)}/{len(ids)} listings written to {path}")
    return BackupResult(path=str(path), listing_count=len(listings), content=content)
