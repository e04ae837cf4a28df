# app/upload/csv_export.py
# ==========================================================================================
# Listings → sheet text.
#
# One row per live variation (non-deleted product with a live offering), or a
# single row for a listing without variations. Listing-level fields only on
# the first row of each listing. Price / quantity / SKU sit in the listing
# columns unless the inventory says they vary by property, in which case they
# move to the variation columns of every row.
# ==========================================================================================
from __future__ import annotations

import csv
import io
from typing import Iterable, List, Optional

from app.catalog.models import Listing, Offering, Product, PropertyValue
from app.upload.columns import COLUMN_COUNT, COLUMNS, HEADERS, INFO_ROWS, NO_VARIATION_LABEL
from app.upload.parsing import decode_html_entities, format_money


def _price_text(offering: Optional[Offering]) -> str:
    if offering is None:
        return ""
    return format_money(offering.price.as_float())


def _variation_label(props: List[PropertyValue]) -> str:
    labels = [", ".join(p.values) for p in props if p.values]
    return " / ".join(labels) if labels else NO_VARIATION_LABEL


def _ids(values: Iterable[int]) -> str:
    return ",".join(str(v) for v in values)


def _blank_row() -> List[str]:
    return [""] * COLUMN_COUNT


def _fill_listing_fields(row: List[str], listing: Listing) -> None:
    row[COLUMNS["listing_id"]] = str(listing.listing_id)
    row[COLUMNS["title"]] = decode_html_entities(listing.title)
    row[COLUMNS["description"]] = decode_html_entities(listing.description)
    row[COLUMNS["status"]] = listing.state or ""
    row[COLUMNS["tags"]] = ",".join(listing.tags or [])
    row[COLUMNS["materials"]] = ", ".join(listing.materials or [])
    row[COLUMNS["shipping_profile_id"]] = str(listing.shipping_profile_id or "")
    row[COLUMNS["processing_min"]] = str(listing.processing_min or "")
    row[COLUMNS["processing_max"]] = str(listing.processing_max or "")
    row[COLUMNS["currency_code"]] = listing.price.currency_code or ""


def _variation_rows(listing: Listing) -> List[List[str]]:
    inv = listing.inventory
    price_on_prop = bool(inv.price_on_property)
    qty_on_prop = bool(inv.quantity_on_property)
    sku_on_prop = bool(inv.sku_on_property)

    rows: List[List[str]] = []
    for product in inv.products:
        if product.is_deleted:
            continue
        offering = product.active_offering()
        if offering is None:
            continue

        row = _blank_row()
        first = not rows
        if first:
            _fill_listing_fields(row, listing)
            if not price_on_prop:
                row[COLUMNS["price"]] = _price_text(offering)
            if not qty_on_prop:
                row[COLUMNS["quantity"]] = str(offering.quantity)
            if not sku_on_prop:
                row[COLUMNS["sku"]] = product.sku or ""
            if offering.price.currency_code:
                row[COLUMNS["currency_code"]] = offering.price.currency_code

        props = product.property_values
        row[COLUMNS["variation"]] = _variation_label(props)
        if len(props) > 0:
            row[COLUMNS["property_name_1"]] = props[0].property_name
            row[COLUMNS["property_option_1"]] = ", ".join(props[0].values)
            row[COLUMNS["property_id_1"]] = str(props[0].property_id)
            row[COLUMNS["property_option_ids_1"]] = _ids(props[0].value_ids)
        if len(props) > 1:
            row[COLUMNS["property_name_2"]] = props[1].property_name
            row[COLUMNS["property_option_2"]] = ", ".join(props[1].values)
            row[COLUMNS["property_id_2"]] = str(props[1].property_id)
            row[COLUMNS["property_option_ids_2"]] = _ids(props[1].value_ids)

        if price_on_prop:
            row[COLUMNS["variation_price"]] = _price_text(offering)
        if qty_on_prop:
            row[COLUMNS["variation_quantity"]] = str(offering.quantity)
        if sku_on_prop:
            row[COLUMNS["variation_sku"]] = product.sku or ""
        row[COLUMNS["product_id"]] = str(product.product_id or "")
        rows.append(row)
    return rows


def _single_row(listing: Listing) -> List[str]:
    row = _blank_row()
    _fill_listing_fields(row, listing)
    row[COLUMNS["variation"]] = NO_VARIATION_LABEL

    product: Optional[Product] = None
    if listing.inventory:
        live = listing.inventory.live_products()
        product = live[0] if live else None
    offering = product.active_offering() if product else None

    if offering is not None:
        row[COLUMNS["price"]] = _price_text(offering)
        row[COLUMNS["quantity"]] = str(offering.quantity)
        if offering.price.currency_code:
            row[COLUMNS["currency_code"]] = offering.price.currency_code
    else:
        row[COLUMNS["price"]] = format_money(listing.price.as_float())
        row[COLUMNS["quantity"]] = str(listing.quantity)
    row[COLUMNS["sku"]] = (product.sku if product else "") or ""
    return row


def listing_rows(listing: Listing) -> List[List[str]]:
    if listing.has_variations and listing.inventory and listing.inventory.products:
        rows = _variation_rows(listing)
        if rows:
            return rows
    return [_single_row(listing)]


def encode_listings(listings: Iterable[Listing]) -> str:
    """Render listings as CSV text (CRLF, minimal quoting) with advisory rows and the header."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\r\n", quoting=csv.QUOTE_MINIMAL)
    for info in INFO_ROWS:
        writer.writerow([info] + [""] * (COLUMN_COUNT - 1))
    writer.writerow(_blank_row())
    writer.writerow(HEADERS)
    for listing in listings:
        writer.writerows(listing_rows(listing))
    return buf.getvalue()
