# app/upload/listing_ops.py
# ==========================================================================================
# Listing-level payload builders.
#
#   diff_listing_fields   field-by-field comparison of a sheet listing against the live one
#   build_listing_patch   PATCH body containing only the differing fields
#   build_create_payload  POST body for a new listing, on top of harvested shop defaults
#
# Preview and apply both go through diff_listing_fields, so what the preview shows
# is exactly what the PATCH will carry.
# ==========================================================================================
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from app.catalog.models import Inventory, Listing
from app.upload.errors import MissingPrerequisiteError
from app.upload.models import ProcessedListing
from app.upload.parsing import (
    decode_html_entities,
    encode_html_entities,
    materials_differ,
    prices_differ,
    tags_differ,
    texts_differ,
)

logger = logging.getLogger("uvicorn.error")

DEFAULT_WHO_MADE = "i_did"
DEFAULT_WHEN_MADE = "2020_2024"
DEFAULT_STATE = "draft"
DEFAULT_QUANTITY = 1
DEFAULT_PRICE = 1.0


@dataclass
class FieldDiff:
    field: str
    before: Any
    after: Any


@dataclass
class ShopDefaults:
    """Values every new listing needs but the sheet doesn't carry."""
    taxonomy_id: int
    shipping_profile_id: Optional[int] = None
    readiness_state_id: Optional[int] = None


class ListingPatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    state: Optional[str] = None
    tags: Optional[List[str]] = None
    quantity: Optional[int] = None
    price: Optional[float] = None
    currency_code: Optional[str] = None
    has_variations: Optional[bool] = None
    materials: Optional[List[str]] = None
    shipping_profile_id: Optional[int] = None
    processing_min: Optional[int] = None
    processing_max: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def is_empty(self) -> bool:
        return not self.to_payload()


class ListingCreate(BaseModel):
    title: str
    description: str
    quantity: int = DEFAULT_QUANTITY
    price: float = DEFAULT_PRICE
    who_made: str = DEFAULT_WHO_MADE
    when_made: str = DEFAULT_WHEN_MADE
    taxonomy_id: int
    state: str = DEFAULT_STATE
    shipping_profile_id: Optional[int] = None
    readiness_state_id: Optional[int] = None
    tags: Optional[List[str]] = None
    materials: Optional[List[str]] = None
    currency_code: Optional[str] = None
    has_variations: Optional[bool] = None
    processing_min: Optional[int] = None
    processing_max: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Diffing
# ---------------------------------------------------------------------------

def diff_listing_fields(listing: ProcessedListing, existing: Listing) -> List[FieldDiff]:
    """
    Listing-level differences (before = live value, after = sheet value).
    Blank sheet cells mean "leave as is". Price / quantity / currency are
    ignored when the live inventory varies them by property.
    """
    inv = existing.inventory or Inventory()
    price_on_prop = bool(inv.price_on_property)
    qty_on_prop = bool(inv.quantity_on_property)
    diffs: List[FieldDiff] = []

    if listing.title and texts_differ(existing.title, listing.title):
        diffs.append(FieldDiff("title", decode_html_entities(existing.title), listing.title))
    if listing.description and texts_differ(existing.description, listing.description):
        diffs.append(FieldDiff("description", decode_html_entities(existing.description), listing.description))
    if listing.status and listing.status != (existing.state or "").lower():
        diffs.append(FieldDiff("status", existing.state, listing.status))
    if tags_differ(existing.tags, listing.tags):
        diffs.append(FieldDiff("tags", list(existing.tags), list(listing.tags)))

    if listing.quantity is not None and not qty_on_prop and listing.quantity != existing.quantity:
        diffs.append(FieldDiff("quantity", existing.quantity, listing.quantity))
    if not price_on_prop:
        current_price = existing.price.as_float()
        if listing.price is not None and prices_differ(current_price, listing.price):
            diffs.append(FieldDiff("price", current_price, listing.price))
        current_ccy = existing.price.currency_code or ""
        if listing.currency_code and listing.currency_code.upper() != current_ccy.upper():
            diffs.append(FieldDiff("currency_code", current_ccy, listing.currency_code))

    if listing.has_variations != bool(existing.has_variations):
        diffs.append(FieldDiff("has_variations", bool(existing.has_variations), listing.has_variations))
    if listing.materials is not None and materials_differ(existing.materials, listing.materials):
        diffs.append(FieldDiff("materials", list(existing.materials), list(listing.materials)))
    for name in ("shipping_profile_id", "processing_min", "processing_max"):
        new = getattr(listing, name)
        old = getattr(existing, name)
        if new is not None and new != old:
            diffs.append(FieldDiff(name, old, new))
    return diffs


def build_listing_patch(listing: ProcessedListing, existing: Listing) -> ListingPatch:
    patch = ListingPatch()
    for d in diff_listing_fields(listing, existing):
        if d.field in ("title", "description"):
            setattr(patch, d.field, encode_html_entities(d.after))
        elif d.field == "status":
            patch.state = d.after
        else:
            setattr(patch, d.field, d.after)
    return patch


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

async def harvest_shop_defaults(client, shop_id: int) -> ShopDefaults:
    """
    Borrow taxonomy / shipping profile / readiness state from one existing
    listing. Without a taxonomy no listing can be created at all.
    """
    sample = await client.get_first_listing(shop_id)
    if sample is None or not sample.taxonomy_id:
        raise MissingPrerequisiteError(
            "Cannot create listings: no existing listing with a taxonomy_id was found in the shop "
            "to copy required defaults from. Create one listing manually first."
        )

    readiness = None
    for product in sample.live_products():
        offering = product.active_offering()
        if offering and offering.readiness_state_id:
            readiness = offering.readiness_state_id
            break
    if readiness is None:
        logger.warning("[CREATE] Listing %s has no readiness_state_id; new inventory goes without one", sample.listing_id)

    defaults = ShopDefaults(
        taxonomy_id=sample.taxonomy_id,
        shipping_profile_id=sample.shipping_profile_id,
        readiness_state_id=readiness,
    )
    logger.info(f"[CREATE] Shop defaults from listing {sample.listing_id}: {defaults}")
    return defaults


def build_create_payload(listing: ProcessedListing, defaults: ShopDefaults) -> ListingCreate:
    if not listing.title:
        raise ValueError("Title is required to create a listing")
    if not listing.description:
        raise ValueError(f"Description is required to create listing '{listing.title}'")
    shipping = listing.shipping_profile_id or defaults.shipping_profile_id
    if not shipping:
        raise ValueError(
            f"No shipping profile for new listing '{listing.title}': set Shipping Profile ID in the sheet"
        )

    body = ListingCreate(
        title=encode_html_entities(listing.title),
        description=encode_html_entities(listing.description),
        taxonomy_id=defaults.taxonomy_id,
        state=listing.status or DEFAULT_STATE,
        shipping_profile_id=shipping,
        readiness_state_id=defaults.readiness_state_id,
    )
    if listing.quantity is not None:
        body.quantity = listing.quantity
    if listing.price is not None:
        body.price = listing.price
    if listing.tags:
        body.tags = list(listing.tags)
    if listing.materials:
        body.materials = list(listing.materials)
    if listing.currency_code:
        body.currency_code = listing.currency_code
    if listing.has_variations:
        body.has_variations = True
    if listing.processing_min is not None:
        body.processing_min = listing.processing_min
    if listing.processing_max is not None:
        body.processing_max = listing.processing_max
    return body
