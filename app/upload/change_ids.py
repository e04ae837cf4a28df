# app/upload/change_ids.py
# Positional change ids. Preview and apply both decode the same bytes and
# enumerate the resulting listing list, so `change_<n>` always points at the
# n-th decoded listing. Never filter or reorder before numbering.
from __future__ import annotations

import hashlib
import json
from typing import Iterable, List, Sequence, Tuple

from app.upload.models import ProcessedListing

CHANGE_ID_PREFIX = "change_"


def change_id_for(index: int) -> str:
    return f"{CHANGE_ID_PREFIX}{index + 1}"


def assign_change_ids(listings: Sequence[ProcessedListing]) -> List[Tuple[str, ProcessedListing]]:
    return [(change_id_for(i), listing) for i, listing in enumerate(listings)]


def select_accepted(
    listings: Sequence[ProcessedListing],
    accepted_ids: Iterable[str],
) -> List[Tuple[str, ProcessedListing]]:
    """(change_id, listing) pairs whose id was accepted, in file order."""
    accepted = set(accepted_ids)
    return [(cid, listing) for cid, listing in assign_change_ids(listings) if cid in accepted]


def selection_fingerprint(selected: Sequence[Tuple[str, ProcessedListing]]) -> str:
    """Short digest of (change_id, listing_id, title) for the selected set; logged to spot desyncs."""
    digest = hashlib.sha256()
    for cid, listing in selected:
        digest.update(json.dumps([cid, listing.listing_id, listing.title], ensure_ascii=False).encode("utf-8"))
    return digest.hexdigest()[:12]
