# app/upload/apply.py
# ==========================================================================================
# Apply an accepted subset of an upload to the live catalog.
#
# Flow:
#   1) hash the file, load its checkpoint (if any) and seed processed / failed ids
#   2) decode, number (change_<n>), keep accepted ids, drop already-processed ids
#      (creates have no id yet, so they are always attempted again)
#   3) creates present → harvest shop defaults first (fails the run if unavailable)
#   4) prefetch the live listings that will be updated
#   5) no checkpoint yet → an empty one is saved before the first batch
#      batches of APPLY_BATCH_SIZE run concurrently; one failure never stops the
#      batch or the run. After each batch: progress callback + checkpoint save
#   6) clean finish → checkpoint removed; failures left → kept for the next run
#
# Per-listing work returns a ListingOutcome; the batch driver merges those into
# one ApplyAccumulator, which is also what gets checkpointed.
# ==========================================================================================
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from app.catalog.catalog_api import prefetch_listings
from app.catalog.models import Listing
from app.config import settings
from app.models.audit_log import add_audit_entry
from app.upload.change_ids import select_accepted, selection_fingerprint
from app.upload.csv_import import decode_listings
from app.upload.inventory import build_inventory_payload
from app.upload.listing_ops import ShopDefaults, build_create_payload, build_listing_patch, harvest_shop_defaults
from app.upload.models import ApplyResult, FailedListing, ProcessedListing, UploadProgress
from app.upload.progress_store import ProgressStore, hash_file, now_ms

logger = logging.getLogger("uvicorn.error")

ProgressCallback = Callable[[int, int, int], Union[None, Awaitable[None]]]


@dataclass
class ListingOutcome:
    """What happened to one listing. `listing_id` is the created id for creates."""
    change_id: str
    listing_id: int
    ok: bool
    created: bool = False
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class ApplyAccumulator:
    processed_ids: List[int] = field(default_factory=list)
    failed: List[FailedListing] = field(default_factory=list)
    created_ids: List[int] = field(default_factory=list)
    run_processed: int = 0
    run_failed: int = 0
    run_skipped: int = 0

    @classmethod
    def from_checkpoint(cls, progress: Optional[UploadProgress]) -> "ApplyAccumulator":
        if progress is None:
            return cls()
        return cls(
            processed_ids=list(progress.processed_listing_ids),
            failed=[f.model_copy() for f in progress.failed_listings],
        )

    def is_processed(self, listing_id: int) -> bool:
        return bool(listing_id) and listing_id in self.processed_ids

    def _drop_failure(self, listing_id: int, change_id: str) -> None:
        # failed creates carry listing id 0 and are matched by change id
        self.failed = [
            f for f in self.failed
            if not ((listing_id and f.listing_id == listing_id) or (not f.listing_id and f.change_id == change_id))
        ]

    def merge(self, outcome: ListingOutcome) -> None:
        if outcome.skipped:
            self.run_skipped += 1
            return
        self._drop_failure(outcome.listing_id, outcome.change_id)
        if outcome.created and outcome.listing_id:
            self.created_ids.append(outcome.listing_id)
        if outcome.ok:
            self.run_processed += 1
            if outcome.listing_id and outcome.listing_id not in self.processed_ids:
                self.processed_ids.append(outcome.listing_id)
        else:
            self.run_failed += 1
            self.failed.append(FailedListing(
                listing_id=outcome.listing_id,
                error=outcome.error or "unknown error",
                change_id=outcome.change_id,
            ))

    def to_progress(self, file_hash: str, file_name: str, total: int, accepted: Sequence[str]) -> UploadProgress:
        return UploadProgress(
            file_hash=file_hash,
            file_name=file_name,
            total_listings=total,
            processed_listing_ids=list(self.processed_ids),
            failed_listings=list(self.failed),
            timestamp=now_ms(),
            accepted_change_ids=list(accepted),
        )


@dataclass
class ApplyContext:
    client: Any
    shop_id: int
    defaults: Optional[ShopDefaults] = None
    live: Dict[int, Union[Listing, BaseException]] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Per listing
# ---------------------------------------------------------------------------

async def _delete(change_id: str, listing: ProcessedListing, ctx: ApplyContext) -> ListingOutcome:
    if not listing.listing_id:
        logger.warning("[APPLY][DELETE] %s: DELETE without a Listing ID; nothing to do", change_id)
        return ListingOutcome(change_id, 0, ok=True, skipped=True)
    await ctx.client.delete_listing(listing.listing_id)
    add_audit_entry("delete", listing.listing_id, f"{change_id}: listing deleted")
    logger.info(f"[APPLY][DELETE] Listing {listing.listing_id} deleted")
    return ListingOutcome(change_id, listing.listing_id, ok=True)


async def _create(change_id: str, listing: ProcessedListing, ctx: ApplyContext) -> ListingOutcome:
    if ctx.defaults is None:
        return ListingOutcome(change_id, 0, ok=False, error="Shop defaults for new listings are not available")
    body = build_create_payload(listing, ctx.defaults)
    new_id = await ctx.client.create_listing(ctx.shop_id, body.to_payload())
    add_audit_entry("create", new_id, f"{change_id}: '{listing.title}' created")
    logger.info(f"[APPLY][CREATE] '{listing.title}' created as listing {new_id}")

    try:
        payload = build_inventory_payload(listing, None, ctx.defaults.readiness_state_id)
        await ctx.client.update_inventory(new_id, payload.to_payload())
    except Exception as e:
        msg = f"Listing {new_id} was created, but its inventory update failed: {e}"
        logger.error(f"[APPLY][CREATE] {msg}")
        add_audit_entry("inventory_failed", new_id, msg)
        return ListingOutcome(change_id, new_id, ok=False, created=True, error=msg)
    add_audit_entry("inventory", new_id, f"{change_id}: {len(payload.products)} product(s) written")
    return ListingOutcome(change_id, new_id, ok=True, created=True)


async def _update(change_id: str, listing: ProcessedListing, ctx: ApplyContext) -> ListingOutcome:
    lid = listing.listing_id
    existing = ctx.live.get(lid)
    if not isinstance(existing, Listing):
        try:
            existing = await ctx.client.get_listing(lid)
        except Exception as e:
            return ListingOutcome(change_id, lid, ok=False, error=f"Could not fetch listing {lid}: {e}")

    errors: List[str] = []
    patch = build_listing_patch(listing, existing)
    if patch.is_empty():
        logger.debug("[APPLY][UPDATE] Listing %s: no listing-level changes", lid)
    else:
        try:
            await ctx.client.update_listing(ctx.shop_id, lid, patch.to_payload())
            add_audit_entry("update", lid, f"{change_id}: fields {sorted(patch.to_payload())}")
        except Exception as e:
            # keep going: the inventory write is independent of the listing fields
            logger.error(f"[APPLY][UPDATE] Listing {lid} field update failed: {e}")
            errors.append(f"field update failed: {e}")

    try:
        payload = build_inventory_payload(
            listing, existing, ctx.defaults.readiness_state_id if ctx.defaults else None
        )
        await ctx.client.update_inventory(lid, payload.to_payload())
        add_audit_entry("inventory", lid, f"{change_id}: {len(payload.products)} product(s) written")
    except Exception as e:
        logger.error(f"[APPLY][UPDATE] Listing {lid} inventory update failed: {e}")
        errors.append(f"inventory update failed: {e}")

    if errors:
        return ListingOutcome(change_id, lid, ok=False, error=f"Listing {lid}: " + "; ".join(errors))
    return ListingOutcome(change_id, lid, ok=True)


async def process_listing(change_id: str, listing: ProcessedListing, ctx: ApplyContext) -> ListingOutcome:
    """Apply one listing; remote failures come back as a failed outcome, never raised."""
    try:
        if listing.to_delete:
            return await _delete(change_id, listing, ctx)
        if not listing.listing_id:
            return await _create(change_id, listing, ctx)
        return await _update(change_id, listing, ctx)
    except Exception as e:
        logger.error(f"[APPLY] {change_id} (listing {listing.listing_id or 'new'}) failed: {e}")
        add_audit_entry("failed", listing.listing_id, f"{change_id}: {e}")
        label = listing.listing_id or f"'{listing.title}' (new)"
        return ListingOutcome(change_id, listing.listing_id, ok=False, error=f"Listing {label}: {e}")


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

async def _notify(on_progress: Optional[ProgressCallback], processed: int, total: int, failed: int) -> None:
    if on_progress is None:
        return
    res = on_progress(processed, total, failed)
    if asyncio.iscoroutine(res):
        await res


def _chunks(items: Sequence[Tuple[str, ProcessedListing]], size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


async def apply_upload(
    content: bytes,
    accepted_change_ids: Sequence[str],
    client,
    store: ProgressStore,
    *,
    filename: str = "",
    on_progress: Optional[ProgressCallback] = None,
    batch_size: Optional[int] = None,
    prefetch_concurrency: Optional[int] = None,
    batch_delay: Optional[float] = None,
) -> ApplyResult:
    """
    Run (or resume) an apply for the accepted change ids of this file.
    CsvParseError / MissingPrerequisiteError propagate; per-listing failures don't.
    """
    size = max(1, batch_size or settings.APPLY_BATCH_SIZE)
    delay = settings.BATCH_DELAY_SECONDS if batch_delay is None else batch_delay

    file_hash = hash_file(content)
    checkpoint = await store.load(file_hash)
    acc = ApplyAccumulator.from_checkpoint(checkpoint)
    if checkpoint:
        logger.info(
            f"[APPLY] Resuming {file_hash}: {len(acc.processed_ids)} processed, {len(acc.failed)} failed so far"
        )

    listings = decode_listings(content, filename)
    selected = select_accepted(listings, accepted_change_ids)
    accepted = [cid for cid, _ in selected]
    pending = [(cid, l) for cid, l in selected if not acc.is_processed(l.listing_id)]
    logger.info(
        f"[APPLY] {file_hash}: {len(listings)} decoded, {len(selected)} accepted "
        f"(fingerprint {selection_fingerprint(selected)}), {len(pending)} to process"
    )

    shop_id = await client.get_shop_id()
    ctx = ApplyContext(client=client, shop_id=shop_id)

    if any(not l.listing_id and not l.to_delete for _, l in pending):
        ctx.defaults = await harvest_shop_defaults(client, shop_id)

    update_ids = [l.listing_id for _, l in pending if l.listing_id and not l.to_delete]
    if update_ids:
        ctx.live = await prefetch_listings(client, update_ids, prefetch_concurrency)

    total = len(pending)
    if checkpoint is None:
        await store.save(acc.to_progress(file_hash, filename, len(selected), accepted))

    for n, batch in enumerate(_chunks(pending, size)):
        if n and delay:
            await asyncio.sleep(delay)
        results = await asyncio.gather(
            *[process_listing(cid, listing, ctx) for cid, listing in batch],
            return_exceptions=True,
        )
        for (cid, listing), res in zip(batch, results):
            if isinstance(res, BaseException):
                res = ListingOutcome(cid, listing.listing_id, ok=False, error=str(res) or type(res).__name__)
            acc.merge(res)

        await _notify(on_progress, acc.run_processed + acc.run_skipped, total, acc.run_failed)
        await store.save(acc.to_progress(file_hash, filename, len(selected), accepted))
        logger.info(
            f"[APPLY] Batch {n + 1}: {acc.run_processed} processed, {acc.run_failed} failed of {total}"
        )

    cleared = False
    if not acc.failed:
        await store.clear(file_hash)
        cleared = True
    else:
        logger.warning(f"[APPLY] {len(acc.failed)} listing(s) failed; checkpoint {file_hash} kept for a retry run")

    return ApplyResult(
        file_hash=file_hash,
        total=total,
        processed_listing_ids=list(acc.processed_ids),
        created_listing_ids=list(acc.created_ids),
        failed_listings=list(acc.failed),
        skipped=acc.run_skipped,
        resumed=checkpoint is not None,
        checkpoint_cleared=cleared,
    )
