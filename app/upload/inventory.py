# app/upload/inventory.py
# ==========================================================================================
# Inventory (variation set) reconciliation.
#
# The inventory endpoint replaces the whole product array on every write, while a
# sheet edit is a patch: a row that is left out of the file must not disappear.
# build_inventory_payload therefore merges:
#
#   1) sheet variations → wire products (rows without property values are dropped)
#   2) rows marked DELETE → explicit {product_id, is_deleted: true} entries
#   3) live products the sheet doesn't mention (by signature) → carried forward as-is
#   4) *_on_property arrays → union of the live config and what the sheet varies
#   5) combinations involving a newly introduced option value → disabled placeholders
#
# Signature of a product = sorted (property_id, sorted value_ids); values without
# ids (newly typed options) fall back to their lower-cased text.
# ==========================================================================================
from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from app.catalog.models import Listing, Offering, Product
from app.config import settings
from app.upload.errors import InventoryPayloadError
from app.upload.models import ProcessedListing, ProcessedVariation

logger = logging.getLogger("uvicorn.error")

DEFAULT_QUANTITY = 1

Signature = Tuple[Tuple[int, tuple], ...]


class WireOffering(BaseModel):
    price: float
    quantity: int
    is_enabled: bool = True
    readiness_state_id: Optional[int] = None


class WirePropertyValue(BaseModel):
    property_id: int
    property_name: str = ""
    value_ids: List[int] = Field(default_factory=list)
    values: List[str] = Field(default_factory=list)


class WireProduct(BaseModel):
    sku: str = ""
    property_values: List[WirePropertyValue] = Field(default_factory=list)
    offerings: List[WireOffering] = Field(default_factory=list)
    product_id: Optional[int] = None
    is_deleted: Optional[bool] = None


class InventoryPayload(BaseModel):
    products: List[WireProduct] = Field(default_factory=list)
    price_on_property: List[int] = Field(default_factory=list)
    quantity_on_property: List[int] = Field(default_factory=list)
    sku_on_property: List[int] = Field(default_factory=list)

    def live_products(self) -> List[WireProduct]:
        return [p for p in self.products if not p.is_deleted]

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _value_key(value_ids: Sequence[int], values: Sequence[str]) -> tuple:
    if value_ids:
        return tuple(sorted(value_ids))
    return tuple(("text", v.strip().lower()) for v in values)


def variation_signature(property_values: Iterable[Any]) -> Signature:
    """Order-independent identity of a product (works on live and wire property values)."""
    return tuple(sorted((pv.property_id, _value_key(pv.value_ids, pv.values)) for pv in property_values))


def valid_price(value: Optional[float], fallback: Optional[float] = None, minimum: Optional[float] = None) -> float:
    floor = settings.MIN_LISTING_PRICE if minimum is None else minimum
    if value is not None and value >= floor:
        return round(value, 2)
    if value is not None:
        logger.warning("[INVENTORY] Price %.2f is below the minimum %.2f; keeping the previous price", value, floor)
    if fallback is not None and fallback >= floor:
        return round(fallback, 2)
    return floor


def _offering_to_wire(o: Offering) -> WireOffering:
    return WireOffering(
        price=round(o.price.as_float(), 2),
        quantity=o.quantity,
        is_enabled=o.is_enabled,
        readiness_state_id=o.readiness_state_id,
    )


def _product_to_wire(p: Product) -> WireProduct:
    return WireProduct(
        sku=p.sku or "",
        property_values=[
            WirePropertyValue(
                property_id=pv.property_id,
                property_name=pv.property_name,
                value_ids=list(pv.value_ids),
                values=list(pv.values),
            )
            for pv in p.property_values
        ],
        offerings=[_offering_to_wire(o) for o in p.offerings if not o.is_deleted],
    )


def _deletion_entry(p: Product) -> WireProduct:
    wire = _product_to_wire(p)
    wire.product_id = p.product_id
    wire.is_deleted = True
    return wire


class _PropertyLookup:
    """Property ids / value ids known from the live listing, by name and text."""

    def __init__(self, products: Sequence[Product]):
        self.order: List[int] = [pv.property_id for pv in products[0].property_values] if products else []
        self.by_name: Dict[str, int] = {}
        self.names: Dict[int, str] = {}
        self.value_ids: Dict[Tuple[int, str], List[int]] = {}
        for p in products:
            for pv in p.property_values:
                if pv.property_name:
                    self.by_name.setdefault(pv.property_name.strip().lower(), pv.property_id)
                    self.names.setdefault(pv.property_id, pv.property_name)
                if pv.value_ids:
                    for text in pv.values:
                        self.value_ids.setdefault((pv.property_id, text.strip().lower()), list(pv.value_ids))

    def property_id(self, name: str) -> int:
        return self.by_name.get((name or "").strip().lower(), 0)

    def values_for(self, property_id: int, option: str) -> List[int]:
        return list(self.value_ids.get((property_id, option.strip().lower()), []))

    def sort_key(self, property_id: int) -> int:
        return self.order.index(property_id) if property_id in self.order else len(self.order)


def _sheet_property_values(var: ProcessedVariation, lookup: _PropertyLookup) -> Optional[List[WirePropertyValue]]:
    """Wire property values of a sheet variation; None when an option can't be tied to a property."""
    out: List[WirePropertyValue] = []
    slots = (
        (var.property_name_1, var.property_option_1, var.property_id_1, var.property_option_ids_1),
        (var.property_name_2, var.property_option_2, var.property_id_2, var.property_option_ids_2),
    )
    for name, option, pid, vids in slots:
        if not option:
            continue
        pid = pid or lookup.property_id(name)
        if not pid:
            logger.warning("[INVENTORY] Variation '%s': unknown property '%s' (no Property ID)", var.label(), name)
            return None
        vids = list(vids) or lookup.values_for(pid, option)
        out.append(WirePropertyValue(
            property_id=pid,
            property_name=name or lookup.names.get(pid, ""),
            value_ids=vids,
            values=[option],
        ))
    out.sort(key=lambda pv: lookup.sort_key(pv.property_id))
    return out


def _first_offering(p: Optional[Product]) -> Optional[Offering]:
    return p.active_offering() if p is not None else None


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def _single_product_payload(
    listing: ProcessedListing,
    existing: Optional[Listing],
    default_readiness_state_id: Optional[int],
    min_price: Optional[float],
) -> InventoryPayload:
    live = existing.live_products() if existing else []
    converting = bool(existing) and (existing.has_variations or any(p.property_values for p in live))
    products: List[WireProduct] = []

    base: Optional[Product] = None
    if converting:
        # listing loses its variations: old products go out explicitly
        products.extend(_deletion_entry(p) for p in live)
    elif live:
        base = live[0]
    base_off = _first_offering(base) or _first_offering(live[0] if live else None)

    fallback_price = base_off.price.as_float() if base_off else (existing.price.as_float() if existing else None)
    if listing.quantity is not None:
        quantity = listing.quantity
    elif base_off is not None:
        quantity = base_off.quantity
    else:
        quantity = DEFAULT_QUANTITY

    products.append(WireProduct(
        sku=listing.sku or (base.sku if base else "") or "",
        property_values=[],
        offerings=[WireOffering(
            price=valid_price(listing.price, fallback_price, min_price),
            quantity=quantity,
            is_enabled=True,
            readiness_state_id=(base_off.readiness_state_id if base_off else None) or default_readiness_state_id,
        )],
    ))
    return InventoryPayload(products=products)


def _fill_missing_combinations(
    products: List[WireProduct],
    known_values: Set[Tuple[int, tuple]],
    price: float,
    readiness_state_id: Optional[int],
) -> List[WireProduct]:
    """Disabled placeholders for the grid cells that involve an option value the live listing lacks."""
    live = [p for p in products if not p.is_deleted]
    if not live or len(live[0].property_values) < 2:
        return []
    order = [pv.property_id for pv in live[0].property_values]
    per_prop: Dict[int, Dict[tuple, WirePropertyValue]] = {pid: {} for pid in order}
    for p in live:
        for pv in p.property_values:
            if pv.property_id in per_prop:
                per_prop[pv.property_id].setdefault(_value_key(pv.value_ids, pv.values), pv)

    new_values = {(pid, key) for pid, values in per_prop.items() for key in values} - known_values
    if not new_values:
        return []

    present = {variation_signature(p.property_values) for p in products}
    added: List[WireProduct] = []
    for combo in itertools.product(*[list(per_prop[pid].values()) for pid in order]):
        if not any((pv.property_id, _value_key(pv.value_ids, pv.values)) in new_values for pv in combo):
            continue
        sig = variation_signature(combo)
        if sig in present:
            continue
        present.add(sig)
        added.append(WireProduct(
            sku="",
            property_values=[pv.model_copy() for pv in combo],
            offerings=[WireOffering(price=price, quantity=0, is_enabled=False, readiness_state_id=readiness_state_id)],
        ))
    if added:
        logger.info("[INVENTORY] Added %s disabled placeholder combination(s)", len(added))
    return added


def _validate(listing_id: int, payload: InventoryPayload) -> None:
    live = payload.live_products()
    if not live:
        raise InventoryPayloadError(f"Listing {listing_id}: no products left to write")
    shapes = {tuple(pv.property_id for pv in p.property_values) for p in live}
    if len(shapes) > 1:
        raise InventoryPayloadError(
            f"Listing {listing_id}: variations use different property sets {sorted(shapes)}"
        )


def _ensure_stock(payload: InventoryPayload) -> None:
    enabled = [p for p in payload.live_products() if any(o.is_enabled for o in p.offerings)]
    if any(o.quantity > 0 for p in enabled for o in p.offerings if o.is_enabled):
        return
    if enabled:
        logger.warning("[INVENTORY] Every enabled offering had quantity 0; setting the first one to 1")
        for o in enabled[0].offerings:
            if o.is_enabled:
                o.quantity = 1
                break


def build_inventory_payload(
    listing: ProcessedListing,
    existing: Optional[Listing] = None,
    default_readiness_state_id: Optional[int] = None,
    min_price: Optional[float] = None,
) -> InventoryPayload:
    """
    Full inventory write for one listing. `existing` is the live listing (None
    for a create). Raises InventoryPayloadError when no valid product set results.
    """
    if not listing.has_variations:
        payload = _single_product_payload(listing, existing, default_readiness_state_id, min_price)
        _validate(listing.listing_id, payload)
        return payload

    live = existing.live_products() if existing else []
    inv = existing.inventory if existing and existing.inventory else None
    lookup = _PropertyLookup(live)
    by_sig: Dict[Signature, Product] = {variation_signature(p.property_values): p for p in live}
    by_pid: Dict[int, Product] = {p.product_id: p for p in live if p.product_id}
    first_readiness = next(
        (o.readiness_state_id for p in live for o in p.offerings if o.readiness_state_id), None
    )
    sku_on_prop_live = bool(inv and inv.sku_on_property)

    sheet_products: Dict[Signature, WireProduct] = {}
    deletions: List[WireProduct] = []
    deleted_pids = set()
    deleted_sigs = set()
    price_props, qty_props, sku_props = set(), set(), set()

    for var in listing.variations:
        pvs = _sheet_property_values(var, lookup)

        if var.to_delete:
            target = by_pid.get(var.product_id) if var.product_id else None
            if target is None and pvs:
                target = by_sig.get(variation_signature(pvs))
            if target is None:
                logger.info("[INVENTORY] Variation '%s' marked DELETE is not live; nothing to delete", var.label())
                continue
            if target.product_id not in deleted_pids:
                deleted_pids.add(target.product_id)
                deleted_sigs.add(variation_signature(target.property_values))
                deletions.append(_deletion_entry(target))
            continue

        if not pvs:
            logger.warning("[INVENTORY] Variation '%s' has no property values; skipped", var.label())
            continue

        sig = variation_signature(pvs)
        matched = by_sig.get(sig) or (by_pid.get(var.product_id) if var.product_id else None)
        m_off = _first_offering(matched)
        prop_ids = [pv.property_id for pv in pvs]

        if var.price is not None:
            price = var.price
            price_props.update(prop_ids)
        elif listing.price is not None:
            price = listing.price
        else:
            price = m_off.price.as_float() if m_off else None

        if var.quantity is not None:
            quantity = var.quantity
            qty_props.update(prop_ids)
        elif listing.quantity is not None:
            quantity = listing.quantity
        elif m_off is not None:
            quantity = m_off.quantity
        else:
            quantity = DEFAULT_QUANTITY

        if var.sku:
            sku = var.sku
            if sku_on_prop_live or len({v.sku for v in listing.variations if v.sku}) > 1:
                sku_props.update(prop_ids)
        elif listing.sku and not sku_on_prop_live:
            sku = listing.sku
        else:
            sku = matched.sku if matched else ""

        readiness = (m_off.readiness_state_id if m_off else None) or first_readiness or default_readiness_state_id
        if sig in sheet_products:
            logger.warning("[INVENTORY] Variation '%s' appears twice; the later row wins", var.label())
        sheet_products[sig] = WireProduct(
            sku=sku or "",
            property_values=pvs,
            offerings=[WireOffering(
                price=valid_price(price, m_off.price.as_float() if m_off else listing.price, min_price),
                quantity=quantity,
                is_enabled=m_off.is_enabled if m_off else True,
                readiness_state_id=readiness,
            )],
        )

    products: List[WireProduct] = list(sheet_products.values())

    # carry forward what the sheet doesn't mention
    carried = 0
    for p in live:
        sig = variation_signature(p.property_values)
        if sig in sheet_products or sig in deleted_sigs or p.product_id in deleted_pids:
            continue
        products.append(_product_to_wire(p))
        carried += 1
    products.extend(deletions)

    known_values = {
        (pv.property_id, _value_key(pv.value_ids, pv.values)) for p in live for pv in p.property_values
    }
    placeholder_price = valid_price(listing.price, None, min_price)
    products.extend(_fill_missing_combinations(
        products, known_values, placeholder_price, first_readiness or default_readiness_state_id
    ))

    payload = InventoryPayload(
        products=products,
        price_on_property=sorted(set(inv.price_on_property if inv else []) | price_props),
        quantity_on_property=sorted(set(inv.quantity_on_property if inv else []) | qty_props),
        sku_on_property=sorted(set(inv.sku_on_property if inv else []) | sku_props),
    )
    _validate(listing.listing_id, payload)
    _ensure_stock(payload)
    logger.info(
        "[INVENTORY] Listing %s: %s from sheet, %s carried forward, %s deleted",
        listing.listing_id or "(new)", len(sheet_products), carried, len(deletions),
    )
    return payload
