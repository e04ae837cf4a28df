import asyncio

import httpx
import pytest

from app.catalog.catalog_api import CatalogApiError, CatalogClient, extract_error_message, prefetch_listings

from fakes import FakeCatalog, make_listing

LISTING = {"listing_id": 11, "title": "Mug", "state": "active", "price": {"amount": 1250, "divisor": 100, "currency_code": "USD"}}


def _client(handler, **kw):
    kw.setdefault("max_retries", 3)
    return CatalogClient("https://api.test/v3", "key", "token", shop_id=42,
                         retry_base_delay=0, transport=httpx.MockTransport(handler), **kw)


def _scripted(*responses):
    calls = []

    def handler(request):
        calls.append(request)
        res = responses[min(len(calls), len(responses)) - 1]
        if isinstance(res, Exception):
            raise res
        return res

    return handler, calls


def test_retries_server_errors_then_succeeds():
    handler, calls = _scripted(httpx.Response(503), httpx.Response(502), httpx.Response(200, json=LISTING))
    listing = asyncio.run(_client(handler).get_listing(11))
    assert listing.title == "Mug"
    assert listing.price.as_float() == 12.5
    assert len(calls) == 3
    assert calls[0].url.params["includes"] == "Inventory"
    assert calls[0].headers["x-api-key"] == "key"
    assert calls[0].headers["authorization"] == "Bearer token"


def test_rate_limit_and_timeout_statuses_are_retried():
    handler, calls = _scripted(httpx.Response(429), httpx.Response(408), httpx.Response(200, json={}))
    asyncio.run(_client(handler).update_inventory(11, {"products": []}))
    assert len(calls) == 3
    assert calls[-1].method == "PUT"


def test_client_errors_fail_immediately_with_api_message():
    handler, calls = _scripted(httpx.Response(400, json={"error": "Invalid taxonomy_id"}))
    with pytest.raises(CatalogApiError) as exc:
        asyncio.run(_client(handler).update_listing(42, 11, {"title": "x"}))
    assert len(calls) == 1
    assert exc.value.status_code == 400
    assert exc.value.message == "Invalid taxonomy_id"


def test_gives_up_after_max_retries():
    handler, calls = _scripted(httpx.ConnectError("connection refused"))
    with pytest.raises(CatalogApiError, match="Network error"):
        asyncio.run(_client(handler, max_retries=2).delete_listing(11))
    assert len(calls) == 3

    handler, calls = _scripted(httpx.Response(500, text="<html><body><h1>Bad gateway</h1></body></html>"))
    with pytest.raises(CatalogApiError) as exc:
        asyncio.run(_client(handler, max_retries=1).delete_listing(11))
    assert len(calls) == 2
    assert exc.value.status_code == 500
    assert "<" not in exc.value.message


def test_create_listing_reads_new_id():
    handler, calls = _scripted(httpx.Response(201, json={"results": [{"listing_id": 777}]}))
    assert asyncio.run(_client(handler).create_listing(42, {"title": "New"})) == 777
    assert calls[0].url.path == "/v3/application/shops/42/listings"

    handler, _ = _scripted(httpx.Response(201, json={"listing_id": 778}))
    assert asyncio.run(_client(handler).create_listing(42, {"title": "New"})) == 778

    handler, _ = _scripted(httpx.Response(201, json={}))
    with pytest.raises(CatalogApiError):
        asyncio.run(_client(handler).create_listing(42, {"title": "New"}))


def test_fetch_all_listings_pages_through_results():
    offsets = []

    def handler(request):
        offset = int(request.url.params["offset"])
        offsets.append(offset)
        count = min(100, 250 - offset)
        results = [dict(LISTING, listing_id=offset + i + 1) for i in range(count)]
        return httpx.Response(200, json={"count": 250, "results": results})

    progress = []
    listings = asyncio.run(_client(handler).fetch_all_listings(42, on_progress=lambda n, total: progress.append((n, total))))
    assert len(listings) == 250
    assert sorted(offsets) == [0, 100, 200]
    assert progress == [(250, 250)]


def test_shop_id_resolved_from_current_user():
    handler, calls = _scripted(httpx.Response(200, json={"user_id": 5, "shop_id": 9}))
    client = CatalogClient("https://api.test/v3", "key", "token", shop_id="", retry_base_delay=0,
                           transport=httpx.MockTransport(handler))
    assert asyncio.run(client.get_shop_id()) == 9
    assert asyncio.run(client.get_shop_id()) == 9
    assert len(calls) == 1


def test_error_message_extraction():
    assert extract_error_message({"message": "Nope"}, "d") == "Nope"
    assert extract_error_message({"errors": [{"message": "a"}, "b"]}, "d") == "a; b"
    assert extract_error_message({"params": {"price": "too low"}}, "d") == "price: too low"
    assert extract_error_message(None, "HTTP 500") == "HTTP 500"


def test_prefetch_maps_failures_to_exceptions():
    catalog = FakeCatalog([make_listing(1), make_listing(2)])
    fetched = asyncio.run(prefetch_listings(catalog, [1, 2, 3, 2, 0], concurrency=2))
    assert sorted(fetched) == [1, 2, 3]
    assert fetched[1].listing_id == 1
    assert isinstance(fetched[3], CatalogApiError)
    assert len(catalog.calls_of("get")) == 3
