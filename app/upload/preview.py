# app/upload/preview.py
# ==========================================================================================
# Dry-run of an upload: decode the sheet, fetch the live listings it references
# and describe what apply would do, listing by listing. Nothing is written.
#
#   id 0                  → create (every field shown as added)
#   id > 0 + SKU DELETE   → delete (live listing fetched for display)
#   id > 0                → update (field diffs + variation diffs)
#
# Variation diffs come from the same build_inventory_payload apply uses, so a
# variation the sheet leaves out shows up as untouched, not deleted.
# ==========================================================================================
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from app.catalog.catalog_api import prefetch_listings
from app.catalog.models import Listing, Product
from app.upload.change_ids import assign_change_ids
from app.upload.csv_import import decode_listings
from app.upload.errors import InventoryPayloadError
from app.upload.inventory import WireProduct, build_inventory_payload, variation_signature
from app.upload.listing_ops import diff_listing_fields
from app.upload.models import (
    FieldChange,
    PreviewChange,
    PreviewResponse,
    PreviewSummary,
    ProcessedListing,
    ProcessedVariation,
    VariationChange,
)
from app.upload.parsing import decode_html_entities, prices_differ
from app.upload.progress_store import hash_file

logger = logging.getLogger("uvicorn.error")


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == []


def _added(fields: List[FieldChange], name: str, value: Any) -> None:
    if not _is_blank(value):
        fields.append(FieldChange(field=name, before=None, after=value, change_type="added"))


def _property_labels(var: ProcessedVariation) -> List[tuple]:
    out = []
    if var.property_option_1:
        out.append((var.property_name_1 or "property_1", var.property_option_1))
    if var.property_option_2:
        out.append((var.property_name_2 or "property_2", var.property_option_2))
    return out


def _wire_label(p: WireProduct) -> str:
    return " / ".join(", ".join(pv.values) for pv in p.property_values if pv.values) or "(single product)"


def _wire_fields(p: WireProduct, change_type: str) -> List[FieldChange]:
    o = p.offerings[0] if p.offerings else None
    values = [(pv.property_name or str(pv.property_id), ", ".join(pv.values)) for pv in p.property_values]
    values += [("sku", p.sku), ("price", o.price if o else None), ("quantity", o.quantity if o else None)]
    if change_type == "added":
        return [FieldChange(field=k, before=None, after=v, change_type="added") for k, v in values if not _is_blank(v)]
    return [FieldChange(field=k, before=v, after=None, change_type="removed") for k, v in values if not _is_blank(v)]


# ---------------------------------------------------------------------------
# Per change type
# ---------------------------------------------------------------------------

def _create_change(change_id: str, listing: ProcessedListing) -> PreviewChange:
    fields: List[FieldChange] = []
    _added(fields, "title", listing.title)
    _added(fields, "description", listing.description)
    _added(fields, "price", listing.price)
    _added(fields, "quantity", listing.quantity)
    _added(fields, "sku", listing.sku)
    _added(fields, "tags", list(listing.tags))
    _added(fields, "status", listing.status or "draft")
    _added(fields, "currency_code", listing.currency_code)
    _added(fields, "materials", list(listing.materials or []))
    _added(fields, "shipping_profile_id", listing.shipping_profile_id)
    _added(fields, "processing_min", listing.processing_min)
    _added(fields, "processing_max", listing.processing_max)

    variations: List[VariationChange] = []
    for i, var in enumerate(v for v in listing.variations if not v.to_delete):
        vf: List[FieldChange] = []
        for name, option in _property_labels(var):
            _added(vf, name, option)
        _added(vf, "price", var.price)
        _added(vf, "quantity", var.quantity)
        _added(vf, "sku", var.sku)
        variations.append(VariationChange(
            change_id=f"{change_id}_var_{i}",
            variation_id=f"new_{i}",
            change_type="create",
            label=var.label(),
            field_changes=vf,
        ))

    warnings = []
    if not listing.title:
        warnings.append("Title is required to create a listing")
    if not listing.description:
        warnings.append("Description is required to create a listing")
    return PreviewChange(
        change_id=change_id,
        change_type="create",
        listing_id=0,
        title=listing.title,
        field_changes=fields,
        variation_changes=variations,
        warnings=warnings,
    )


def _delete_change(change_id: str, listing: ProcessedListing, fetched: Union[Listing, BaseException, None]) -> PreviewChange:
    if not isinstance(fetched, Listing):
        return PreviewChange(
            change_id=change_id,
            change_type="delete",
            listing_id=listing.listing_id,
            title=listing.title,
            unavailable=True,
            error=str(fetched) if fetched is not None else "Listing was not fetched",
        )
    title = decode_html_entities(fetched.title)
    return PreviewChange(
        change_id=change_id,
        change_type="delete",
        listing_id=listing.listing_id,
        title=title,
        field_changes=[FieldChange(field="listing", before=title, after=None, change_type="removed")],
    )


def _offering_diffs(live: Product, wire: WireProduct) -> List[FieldChange]:
    live_off = live.active_offering()
    wire_off = wire.offerings[0] if wire.offerings else None
    out: List[FieldChange] = []
    if (live.sku or "") != (wire.sku or ""):
        out.append(FieldChange(field="sku", before=live.sku, after=wire.sku))
    if live_off and wire_off:
        before_price = round(live_off.price.as_float(), 2)
        if prices_differ(before_price, wire_off.price):
            out.append(FieldChange(field="price", before=before_price, after=wire_off.price))
        if live_off.quantity != wire_off.quantity:
            out.append(FieldChange(field="quantity", before=live_off.quantity, after=wire_off.quantity))
        if live_off.is_enabled != wire_off.is_enabled:
            out.append(FieldChange(field="is_enabled", before=live_off.is_enabled, after=wire_off.is_enabled))
    return out


def variation_changes(
    change_id: str,
    listing: ProcessedListing,
    existing: Listing,
) -> tuple:
    """(variation changes, warnings) for an update, mirroring the inventory write."""
    try:
        payload = build_inventory_payload(listing, existing)
    except InventoryPayloadError as e:
        return [], [str(e)]

    live_by_sig = {variation_signature(p.property_values): p for p in existing.live_products()}
    changes: List[VariationChange] = []
    for i, wire in enumerate(payload.products):
        vid = f"{change_id}_var_{i}"
        if wire.is_deleted:
            changes.append(VariationChange(
                change_id=vid,
                variation_id=str(wire.product_id),
                change_type="delete",
                label=_wire_label(wire),
                field_changes=_wire_fields(wire, "removed"),
            ))
            continue
        live = live_by_sig.get(variation_signature(wire.property_values))
        if live is None:
            changes.append(VariationChange(
                change_id=vid,
                variation_id=f"new_{i}",
                change_type="create",
                label=_wire_label(wire),
                field_changes=_wire_fields(wire, "added"),
            ))
            continue
        diffs = _offering_diffs(live, wire)
        if diffs:
            changes.append(VariationChange(
                change_id=vid,
                variation_id=str(live.product_id),
                change_type="update",
                label=_wire_label(wire),
                field_changes=diffs,
            ))
    return changes, []


def _update_change(change_id: str, listing: ProcessedListing, fetched: Union[Listing, BaseException, None]) -> Optional[PreviewChange]:
    if not isinstance(fetched, Listing):
        return PreviewChange(
            change_id=change_id,
            change_type="update",
            listing_id=listing.listing_id,
            title=listing.title,
            unavailable=True,
            error=str(fetched) if fetched is not None else "Listing was not fetched",
        )

    fields = [
        FieldChange(field=d.field, before=d.before, after=d.after, change_type="modified")
        for d in diff_listing_fields(listing, fetched)
    ]
    var_changes, warnings = variation_changes(change_id, listing, fetched)

    if not listing.has_variations and not fetched.has_variations:
        # single product: only the SKU isn't already covered by listing-level fields
        sku_changes = [f for vc in var_changes for f in vc.field_changes if f.field == "sku"]
        fields.extend(sku_changes)
        var_changes = []

    if not (fields or var_changes or warnings):
        return None
    return PreviewChange(
        change_id=change_id,
        change_type="update",
        listing_id=listing.listing_id,
        title=listing.title or decode_html_entities(fetched.title),
        field_changes=fields,
        variation_changes=var_changes,
        warnings=warnings,
    )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def _summarize(changes: Sequence[PreviewChange]) -> PreviewSummary:
    return PreviewSummary(
        total_changes=len(changes),
        creates=sum(1 for c in changes if c.change_type == "create"),
        updates=sum(1 for c in changes if c.change_type == "update"),
        deletes=sum(1 for c in changes if c.change_type == "delete"),
        unavailable=sum(1 for c in changes if c.unavailable),
    )


async def preview_listings(
    listings: Sequence[ProcessedListing],
    client,
    *,
    concurrency: Optional[int] = None,
) -> PreviewResponse:
    ids = [l.listing_id for l in listings if l.listing_id]
    fetched: Dict[int, Any] = await prefetch_listings(client, ids, concurrency) if ids else {}

    changes: List[PreviewChange] = []
    for change_id, listing in assign_change_ids(listings):
        if listing.to_delete:
            if not listing.listing_id:
                logger.info("[PREVIEW] %s: DELETE on a row without Listing ID; nothing to delete", change_id)
                continue
            changes.append(_delete_change(change_id, listing, fetched.get(listing.listing_id)))
        elif not listing.listing_id:
            changes.append(_create_change(change_id, listing))
        else:
            change = _update_change(change_id, listing, fetched.get(listing.listing_id))
            if change is not None:
                changes.append(change)

    summary = _summarize(changes)
    logger.info(
        "[PREVIEW] %s listings → %s changes (%s create, %s update, %s delete, %s unavailable)",
        len(listings), summary.total_changes, summary.creates, summary.updates, summary.deletes, summary.unavailable,
    )
    return PreviewResponse(changes=changes, summary=summary)


async def preview_upload(
    content: bytes,
    client,
    filename: Optional[str] = None,
    *,
    concurrency: Optional[int] = None,
) -> PreviewResponse:
    """Decode + preview. CsvParseError propagates to the caller unchanged."""
    listings = decode_listings(content, filename)
    response = await preview_listings(listings, client, concurrency=concurrency)
    response.file_hash = hash_file(content)
    return response
