# app/upload/csv_import.py
# ==========================================================================================
# Sheet (CSV / XLSX) → ProcessedListing list.
#
# Three steps, each usable on its own:
#   1) read_records   raw bytes → list of string rows (blank rows dropped)
#   2) group_rows     fold parsed rows into row-groups (one per listing)
#   3) group_to_listing  map a row-group to a ProcessedListing
#
# Row-group boundaries: a row opens a new listing when there is no current
# group, when it carries a nonzero Listing ID different from the current one,
# or when it has no ID but a non-blank title different from the current title.
# Everything else folds into the current group as a variation and/or a
# backfill of listing fields that were blank on the opening row.
# ==========================================================================================
from __future__ import annotations

import csv
import io
import logging
import zipfile
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from app.upload.columns import (
    COLUMN_COUNT,
    COLUMNS,
    HEADER_SEARCH_ROWS,
    MIN_RECORDS,
    MIN_ROW_COLUMNS,
)
from app.upload.errors import CsvParseError
from app.upload.models import ProcessedListing, ProcessedVariation
from app.upload.parsing import (
    is_delete_sentinel,
    parse_comma_separated,
    parse_comma_separated_ids,
    parse_id,
    parse_int,
    parse_price,
)

logger = logging.getLogger("uvicorn.error")

_XLSX_MAGIC = b"PK\x03\x04"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0"


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def _is_spreadsheet(content: bytes, filename: Optional[str]) -> bool:
    name = (filename or "").lower()
    return name.endswith((".xlsx", ".xlsm")) or content[:4] == _XLSX_MAGIC


def _read_spreadsheet(content: bytes) -> List[List[str]]:
    try:
        df = pd.read_excel(io.BytesIO(content), header=None, dtype=str, sheet_name=0)
    except (ValueError, KeyError, OSError, zipfile.BadZipFile) as e:
        raise CsvParseError(f"Could not read spreadsheet: {e}") from e
    df = df.fillna("")
    return [[str(c) for c in row] for row in df.values.tolist()]


def _read_csv(content: bytes) -> List[List[str]]:
    text = content.decode("utf-8-sig", errors="replace")
    return [list(r) for r in csv.reader(io.StringIO(text, newline=""))]


def read_records(content: bytes, filename: Optional[str] = None) -> List[List[str]]:
    """Raw rows of the first sheet / the CSV body, without fully blank rows."""
    if (filename or "").lower().endswith(".xls") or content[:4] == _OLE_MAGIC:
        raise CsvParseError("Legacy .xls files are not supported; save the sheet as .xlsx or .csv")
    records = _read_spreadsheet(content) if _is_spreadsheet(content, filename) else _read_csv(content)
    return [r for r in records if any(str(c).strip() for c in r)]


def find_header_row(records: List[List[str]]) -> int:
    """Index of the header row within the first few rows, or -1."""
    for i, rec in enumerate(records[:HEADER_SEARCH_ROWS]):
        first = (rec[0] if rec else "").strip().lower()
        second = (rec[1] if len(rec) > 1 else "").strip().lower()
        if first == "listing id" or second == "title":
            return i
    return -1


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------

@dataclass
class SheetRow:
    """One data row, cells stripped and addressed by column name."""
    number: int
    cells: Dict[str, str]
    listing_id: int = 0

    def get(self, name: str) -> str:
        return self.cells.get(name, "")

    @property
    def title(self) -> str:
        return self.get("title")

    @property
    def has_variation_data(self) -> bool:
        return bool(self.get("property_option_1") or self.get("property_option_2"))

    @property
    def has_listing_identity(self) -> bool:
        return bool(self.listing_id or self.title)


def parse_row(record: List[str], number: int = 0) -> SheetRow:
    padded = list(record) + [""] * (COLUMN_COUNT - len(record))
    cells = {name: str(padded[idx]).strip() for name, idx in COLUMNS.items()}
    return SheetRow(number=number, cells=cells, listing_id=parse_id(cells["listing_id"]) or 0)


# ---------------------------------------------------------------------------
# Grouping (pure fold)
# ---------------------------------------------------------------------------

@dataclass
class RowGroup:
    listing_id: int
    rows: List[SheetRow] = field(default_factory=list)

    @property
    def title(self) -> str:
        for r in self.rows:
            if r.title:
                return r.title
        return ""


def _opens_group(row: SheetRow, current: Optional[RowGroup]) -> bool:
    if current is None:
        return True
    if row.listing_id:
        return row.listing_id != current.listing_id
    return bool(row.title) and row.title != current.title


def _is_stray_variation(row: SheetRow, current: Optional[RowGroup]) -> bool:
    """Variation-only row whose listing isn't the one being accumulated."""
    if row.title or not row.has_variation_data:
        return False
    if row.listing_id:
        return current is None or row.listing_id != current.listing_id
    return current is None


def group_rows(rows: List[SheetRow]) -> List[RowGroup]:
    groups: List[RowGroup] = []
    by_id: Dict[int, RowGroup] = {}
    current: Optional[RowGroup] = None

    for row in rows:
        if _is_stray_variation(row, current):
            earlier = by_id.get(row.listing_id) if row.listing_id else None
            if earlier is None:
                logger.warning(
                    "[CSV] Row %s: variation row for listing %s arrived before its listing row; skipped",
                    row.number, row.listing_id or "(none)",
                )
                continue
            earlier.rows.append(row)
            continue

        if current is None and not row.has_listing_identity:
            logger.warning("[CSV] Row %s has neither a Listing ID nor a title; skipped", row.number)
            continue

        if _opens_group(row, current):
            current = RowGroup(listing_id=row.listing_id, rows=[row])
            groups.append(current)
            if row.listing_id:
                by_id.setdefault(row.listing_id, current)
        else:
            current.rows.append(row)

    return groups


# ---------------------------------------------------------------------------
# Group → listing (pure map)
# ---------------------------------------------------------------------------

def _variation_from_row(row: SheetRow) -> ProcessedVariation:
    sku = row.get("variation_sku")
    to_delete = is_delete_sentinel(sku)
    return ProcessedVariation(
        product_id=parse_id(row.get("product_id")) or 0,
        property_name_1=row.get("property_name_1"),
        property_option_1=row.get("property_option_1"),
        property_name_2=row.get("property_name_2"),
        property_option_2=row.get("property_option_2"),
        sku="" if to_delete else sku,
        price=parse_price(row.get("variation_price")),
        quantity=parse_int(row.get("variation_quantity")),
        property_id_1=parse_id(row.get("property_id_1")) or 0,
        property_option_ids_1=parse_comma_separated_ids(row.get("property_option_ids_1")),
        property_id_2=parse_id(row.get("property_id_2")) or 0,
        property_option_ids_2=parse_comma_separated_ids(row.get("property_option_ids_2")),
        to_delete=to_delete,
    )


def _backfill(listing: ProcessedListing, row: SheetRow) -> None:
    """Copy listing-level cells into fields that are still empty."""
    for name in ("title", "description", "status", "currency_code"):
        if not getattr(listing, name) and row.get(name):
            setattr(listing, name, row.get(name).lower() if name == "status" else row.get(name))
    if not listing.tags and row.get("tags"):
        listing.tags = parse_comma_separated(row.get("tags"))
    if listing.price is None:
        listing.price = parse_price(row.get("price"))
    if listing.quantity is None:
        listing.quantity = parse_int(row.get("quantity"))

    sku = row.get("sku")
    if is_delete_sentinel(sku):
        listing.to_delete = True
    elif sku and not listing.sku:
        listing.sku = sku

    if listing.materials is None and row.get("materials"):
        listing.materials = parse_comma_separated(row.get("materials")) or None
    if listing.shipping_profile_id is None:
        listing.shipping_profile_id = parse_id(row.get("shipping_profile_id"))
    if listing.processing_min is None:
        listing.processing_min = parse_id(row.get("processing_min"))
    if listing.processing_max is None:
        listing.processing_max = parse_id(row.get("processing_max"))


def group_to_listing(group: RowGroup) -> ProcessedListing:
    listing = ProcessedListing(listing_id=group.listing_id)
    for row in group.rows:
        _backfill(listing, row)
        if row.has_variation_data:
            listing.variations.append(_variation_from_row(row))
    listing.has_variations = bool(listing.variations)
    return listing


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def decode_listings(content: bytes, filename: Optional[str] = None) -> List[ProcessedListing]:
    """
    Decode an uploaded sheet into listings, in file order.
    Raises CsvParseError when the file is too short or has no header row.
    """
    records = read_records(content, filename)
    if len(records) < MIN_RECORDS:
        raise CsvParseError("CSV file is too short or invalid")

    header_idx = find_header_row(records)
    if header_idx < 0:
        raise CsvParseError("Could not find header row in CSV")

    rows: List[SheetRow] = []
    for number, rec in enumerate(records[header_idx + 1:], start=1):
        if len(rec) < MIN_ROW_COLUMNS:
            logger.debug("[CSV] Row %s has %s columns (< %s); skipped", number, len(rec), MIN_ROW_COLUMNS)
            continue
        rows.append(parse_row(rec, number))

    listings = [group_to_listing(g) for g in group_rows(rows)]
    logger.info(
        "[CSV] Decoded %s listings (%s variations) from %s data rows",
        len(listings), sum(len(l.variations) for l in listings), len(rows),
    )
    return listings
