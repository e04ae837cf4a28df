# app/upload/parsing.py
# ==========================================================================================
# Cell-level helpers for the listings sheet: tolerant number parsing, comma lists,
# HTML entity handling and the comparison rules shared by preview and apply.
# ==========================================================================================
from __future__ import annotations

import html
import math
import re
from typing import Iterable, List, Optional

from app.upload.columns import DELETE_SENTINEL

_PRICE_JUNK_RE = re.compile(r"[$€£¥₹,\s]")
_LEADING_INT_RE = re.compile(r"^[+-]?\d+")
_WS_RE = re.compile(r"\s+")

PRICE_EPSILON = 0.01


def parse_price(value) -> Optional[float]:
    """
    "$1,234.56" → 1234.56, " 45 " → 45.0, "" / "abc" → None.
    None means "not specified", never zero.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        f = float(value)
        return f if math.isfinite(f) else None
    cleaned = _PRICE_JUNK_RE.sub("", str(value))
    if not cleaned:
        return None
    try:
        f = float(cleaned)
    except ValueError:
        return None
    return f if math.isfinite(f) else None


def parse_int(value) -> Optional[int]:
    """Leading integer of a cell ("12", "12.0", "10 pcs" → 12/12/10); blank or junk → None."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    s = str(value).strip().replace(",", "")
    m = _LEADING_INT_RE.match(s)
    if not m:
        return None
    return int(m.group(0))


def parse_id(value) -> Optional[int]:
    n = parse_int(value)
    return n if n is not None and n > 0 else None


def parse_comma_separated(value, lowercase: bool = False) -> List[str]:
    if not value:
        return []
    items = [p.strip() for p in str(value).split(",")]
    if lowercase:
        items = [p.lower() for p in items]
    return [p for p in items if p]


def parse_comma_separated_ids(value) -> List[int]:
    out: List[int] = []
    for part in parse_comma_separated(value):
        n = parse_id(part)
        if n is not None:
            out.append(n)
    return out


def decode_html_entities(s: Optional[str]) -> str:
    return html.unescape(s or "")


def encode_html_entities(s: Optional[str]) -> str:
    return html.escape(s or "", quote=True)


def normalize_text(s: Optional[str]) -> str:
    """Entity-decode and collapse whitespace, so CRLF vs LF or &amp; vs & are not changes."""
    return _WS_RE.sub(" ", decode_html_entities(s)).strip()


def texts_differ(remote: Optional[str], parsed: Optional[str]) -> bool:
    return normalize_text(remote) != normalize_text(parsed)


def tags_differ(remote: Iterable[str], parsed: Iterable[str]) -> bool:
    # unordered, case-sensitive like the catalog stores them
    return sorted(t.strip() for t in remote or []) != sorted(t.strip() for t in parsed or [])


def materials_differ(remote: Iterable[str], parsed: Iterable[str]) -> bool:
    return [m.strip().lower() for m in remote or []] != [m.strip().lower() for m in parsed or []]


def prices_differ(remote: Optional[float], parsed: Optional[float], epsilon: float = PRICE_EPSILON) -> bool:
    if remote is None or parsed is None:
        return remote is not parsed
    return abs(remote - parsed) > epsilon


def format_money(value: Optional[float]) -> str:
    if value is None:
        return ""
    return f"{value:.2f}"


def is_delete_sentinel(value: Optional[str]) -> bool:
    return (value or "").strip().upper() == DELETE_SENTINEL
