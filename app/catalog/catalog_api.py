#==========================================================================================
# app/catalog/catalog_api.py
# Remote catalog API interface.
# Listing read/create/update/delete plus the full-replace inventory endpoint.
# Every call goes through CatalogClient.request (exponential backoff on
# network errors, 5xx, 429 and 408; other 4xx raise immediately).
#==========================================================================================
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from app.config import settings
from app.catalog.models import Listing
from app.logging_filters import looks_like_html, summarize_html

logger = logging.getLogger("uvicorn.error")

RETRYABLE_STATUS = {408, 429}
PAGE_LIMIT = 100
PAGES_IN_FLIGHT = 5
PAGE_BATCH_DELAY = 0.2


class CatalogApiError(Exception):
    """A catalog call that failed for good (non-retryable or out of retries)."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


def extract_error_message(data: Any, default: str) -> str:
    """Pull a readable message out of an API error body."""
    if isinstance(data, str):
        if looks_like_html(data):
            return summarize_html(data, limit=180)
        return data.strip() or default
    if not isinstance(data, dict):
        return default
    for key in ("error", "message", "error_description"):
        val = data.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    errors = data.get("errors")
    if isinstance(errors, list) and errors:
        parts = []
        for e in errors:
            if isinstance(e, dict):
                parts.append(str(e.get("message") or e.get("error") or e))
            else:
                parts.append(str(e))
        return "; ".join(parts)
    params = data.get("params")
    if isinstance(params, dict) and params:
        return "; ".join(f"{k}: {v}" for k, v in params.items())
    return default


def _is_retryable_status(code: int) -> bool:
    return code >= 500 or code in RETRYABLE_STATUS


def _body(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text


class CatalogClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        *,
        shop_id: Optional[Union[int, str]] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.CATALOG_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.CATALOG_API_KEY
        self.access_token = access_token if access_token is not None else settings.CATALOG_ACCESS_TOKEN
        raw_shop = shop_id if shop_id is not None else settings.CATALOG_SHOP_ID
        self._shop_id: Optional[int] = int(raw_shop) if str(raw_shop or "").strip() else None
        self.max_retries = settings.CATALOG_MAX_RETRIES if max_retries is None else max_retries
        self.retry_base_delay = settings.CATALOG_RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        self.timeout = timeout or settings.CATALOG_TIMEOUT
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send one API call with retry; returns the decoded JSON body (or None)."""
        url = f"{self.base_url}{path}"
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.request(method, url, json=json, params=params, headers=self._headers())
            except httpx.TransportError as e:
                if last:
                    raise CatalogApiError(f"Network error calling {method} {path}: {e}") from e
                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning(f"[CATALOG][RETRY] {method} {path} failed (attempt {attempt + 1}/{attempts}): {e}. Retrying in {delay:.1f}s...")
                await asyncio.sleep(delay)
                continue

            if resp.status_code < 400:
                return _body(resp)

            data = _body(resp)
            message = extract_error_message(data, f"HTTP {resp.status_code}")
            if _is_retryable_status(resp.status_code) and not last:
                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning(
                    "[CATALOG][RETRY] %s %s → %s (attempt %s/%s): %s; retrying in %.1fs",
                    method, path, resp.status_code, attempt + 1, attempts, message, delay,
                )
                await asyncio.sleep(delay)
                continue

            logger.error("[CATALOG] %s %s → %s: %s", method, path, resp.status_code, message)
            raise CatalogApiError(message, status_code=resp.status_code, payload=data)

        raise CatalogApiError(f"{method} {path} exhausted retries")

    # ---- Shop ----

    async def get_shop_id(self) -> int:
        if self._shop_id is None:
            me = await self.request("GET", "/application/users/me") or {}
            shop_id = me.get("shop_id")
            if not shop_id:
                raise CatalogApiError("Authenticated user has no shop")
            self._shop_id = int(shop_id)
            logger.info(f"[CATALOG] Resolved shop_id={self._shop_id}")
        return self._shop_id

    # ---- Listings (read) ----

    async def get_listing(self, listing_id: int) -> Listing:
        data = await self.request("GET", f"/application/listings/{listing_id}", params={"includes": "Inventory"})
        return Listing.model_validate(data)

    async def get_listings_page(
        self,
        shop_id: int,
        *,
        limit: int = PAGE_LIMIT,
        offset: int = 0,
        state: Optional[str] = None,
        includes: str = "Inventory",
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": limit, "offset": offset, "includes": includes}
        if state:
            params["state"] = state
        data = await self.request("GET", f"/application/shops/{shop_id}/listings", params=params) or {}
        return {
            "count": int(data.get("count") or 0),
            "results": [Listing.model_validate(r) for r in (data.get("results") or [])],
        }

    async def fetch_all_listings(
        self,
        shop_id: int,
        *,
        state: Optional[str] = None,
        on_progress: Optional[Callable[[int, int], Union[None, Awaitable[None]]]] = None,
    ) -> List[Listing]:
        """
        Page through every shop listing. The first page tells us the total; the
        remaining pages are fetched a few at a time with a short pause in between.
        """
        first = await self.get_listings_page(shop_id, offset=0, state=state)
        total = first["count"]
        listings: List[Listing] = list(first["results"])
        offsets = list(range(PAGE_LIMIT, total, PAGE_LIMIT))
        for i in range(0, len(offsets), PAGES_IN_FLIGHT):
            chunk = offsets[i:i + PAGES_IN_FLIGHT]
            pages = await asyncio.gather(*[self.get_listings_page(shop_id, offset=o, state=state) for o in chunk])
            for page in pages:
                listings.extend(page["results"])
            if on_progress:
                res = on_progress(len(listings), total)
                if asyncio.iscoroutine(res):
                    await res
            if i + PAGES_IN_FLIGHT < len(offsets):
                await asyncio.sleep(PAGE_BATCH_DELAY)
        logger.info(f"[CATALOG] Fetched {len(listings)}/{total} listings for shop {shop_id} (state={state or 'any'})")
        return listings

    async def get_first_listing(self, shop_id: int) -> Optional[Listing]:
        data = await self.request(
            "GET",
            f"/application/shops/{shop_id}/listings",
            params={"limit": 1, "includes": "Inventory,Shipping"},
        ) or {}
        results = data.get("results") or []
        return Listing.model_validate(results[0]) if results else None

    # ---- Listings (write) ----

    async def create_listing(self, shop_id: int, payload: Dict[str, Any]) -> int:
        data = await self.request("POST", f"/application/shops/{shop_id}/listings", json=payload) or {}
        results = data.get("results") if isinstance(data, dict) else None
        listing_id = (results[0] or {}).get("listing_id") if results else data.get("listing_id")
        if not listing_id:
            raise CatalogApiError("Create listing response carried no listing_id", payload=data)
        return int(listing_id)

    async def update_listing(self, shop_id: int, listing_id: int, payload: Dict[str, Any]) -> Any:
        return await self.request("PATCH", f"/application/shops/{shop_id}/listings/{listing_id}", json=payload)

    async def delete_listing(self, listing_id: int) -> None:
        await self.request("DELETE", f"/application/listings/{listing_id}")

    async def update_inventory(self, listing_id: int, payload: Dict[str, Any]) -> Any:
        return await self.request("PUT", f"/application/listings/{listing_id}/inventory", json=payload)


async def prefetch_listings(
    client,
    listing_ids: List[int],
    concurrency: Optional[int] = None,
) -> Dict[int, Union[Listing, BaseException]]:
    """
    Fetch many listings with a bounded number of requests in flight.
    Each id maps to its Listing or to the exception that fetching it raised.
    """
    limit = max(1, concurrency or settings.PREFETCH_CONCURRENCY)
    sem = asyncio.Semaphore(limit)
    unique = list(dict.fromkeys(i for i in listing_ids if i))

    async def _one(listing_id: int) -> Listing:
        async with sem:
            return await client.get_listing(listing_id)

    results = await asyncio.gather(*[_one(i) for i in unique], return_exceptions=True)
    fetched = dict(zip(unique, results))
    failed = [i for i, r in fetched.items() if isinstance(r, BaseException)]
    if failed:
        logger.warning(f"[CATALOG] Prefetch: {len(failed)}/{len(unique)} listings could not be fetched: {failed[:20]}")
    return fetched
