import asyncio

import pytest

from app.upload.errors import CsvParseError
from app.upload.preview import preview_upload
from app.upload.progress_store import hash_file

from fakes import FakeCatalog, make_listing, make_variation_listing, sheet_bytes, size_product


def _preview(content, catalog):
    return asyncio.run(preview_upload(content, catalog, concurrency=3))


def test_new_listing_previews_as_create_with_added_fields():
    content = sheet_bytes([{"listing_id": 0, "title": "New Mug", "description": "Ceramic", "price": "12.50"}])
    catalog = FakeCatalog()
    preview = _preview(content, catalog)

    (change,) = preview.changes
    assert change.change_id == "change_1"
    assert change.change_type == "create"
    assert change.listing_id == 0
    fields = {f.field: f for f in change.field_changes}
    assert fields["title"].after == "New Mug"
    assert fields["price"].after == 12.5
    assert all(f.change_type == "added" and f.before is None for f in change.field_changes)
    assert preview.summary.creates == 1
    assert preview.file_hash == hash_file(content)
    assert catalog.calls == []


def test_delete_sentinel_previews_as_delete():
    catalog = FakeCatalog([make_listing(555, title="Old Mug")])
    preview = _preview(sheet_bytes([{"listing_id": 555, "sku": "DELETE"}]), catalog)
    (change,) = preview.changes
    assert (change.change_type, change.listing_id, change.title) == ("delete", 555, "Old Mug")
    assert preview.summary.deletes == 1
    assert catalog.calls_of("get") == [("get", 555)]


def test_update_shows_only_changed_fields():
    catalog = FakeCatalog([make_listing(11, title="Blue Mug", value=12.5, qty=5)])
    content = sheet_bytes([{
        "listing_id": 11, "title": "Blue Mug XL", "description": "A blue mug", "status": "active",
        "tags": "mug,blue", "price": "14", "quantity": "5", "sku": "MUG-1",
    }])
    (change,) = _preview(content, catalog).changes
    assert change.change_type == "update"
    diffs = {f.field: (f.before, f.after) for f in change.field_changes}
    assert diffs == {"title": ("Blue Mug", "Blue Mug XL"), "price": (12.5, 14.0)}
    assert change.variation_changes == []


def test_unchanged_listing_is_not_listed():
    catalog = FakeCatalog([make_listing(11)])
    content = sheet_bytes([{
        "listing_id": 11, "title": "Blue Mug", "description": "A blue mug", "status": "active",
        "tags": "blue,mug", "price": "$12.50", "quantity": "5", "sku": "MUG-1",
    }])
    preview = _preview(content, catalog)
    assert preview.changes == []
    assert preview.summary.total_changes == 0


def test_sku_change_on_single_product_listing():
    catalog = FakeCatalog([make_listing(11)])
    content = sheet_bytes([{"listing_id": 11, "tags": "mug,blue", "sku": "MUG-2"}])
    (change,) = _preview(content, catalog).changes
    assert [(f.field, f.before, f.after) for f in change.field_changes] == [("sku", "MUG-1", "MUG-2")]


def test_variation_left_out_of_sheet_is_not_a_delete():
    tee = make_variation_listing(300, [
        size_product(1, "Small", 11, 10.0, 3, "TS-S"),
        size_product(2, "Medium", 12, 11.0, 4, "TS-M"),
    ])
    content = sheet_bytes([{
        "listing_id": 300, "title": "T-Shirt", "tags": "tee", "property_name_1": "Size",
        "property_option_1": "Small", "variation_price": "15", "variation_sku": "TS-S",
        "product_id": 1, "property_id_1": 100, "property_option_ids_1": "11",
    }])
    (change,) = _preview(content, FakeCatalog([tee])).changes
    assert change.field_changes == []
    (var,) = change.variation_changes
    assert var.change_type == "update"
    assert var.variation_id == "1"
    assert [(f.field, f.before, f.after) for f in var.field_changes] == [("price", 10.0, 15.0)]


def test_variation_delete_and_create_are_listed():
    tee = make_variation_listing(300, [
        size_product(1, "Small", 11, 10.0, 3, "TS-S"),
        size_product(2, "Medium", 12, 11.0, 4, "TS-M"),
    ])
    content = sheet_bytes([
        {"listing_id": 300, "title": "T-Shirt", "tags": "tee", "property_name_1": "Size",
         "property_option_1": "Medium", "variation_sku": "DELETE", "product_id": 2},
        {"property_name_1": "Size", "property_option_1": "Large", "variation_price": "12", "variation_sku": "TS-L"},
    ])
    (change,) = _preview(content, FakeCatalog([tee])).changes
    kinds = {v.change_type: v for v in change.variation_changes}
    assert set(kinds) == {"create", "delete"}
    assert kinds["delete"].variation_id == "2"
    assert kinds["create"].label == "Large"


def test_unfetchable_listing_is_marked_unavailable():
    catalog = FakeCatalog([make_listing(11)])
    catalog.fail_get.add(11)
    content = sheet_bytes([
        {"listing_id": 11, "title": "Renamed"},
        {"listing_id": 12, "sku": "DELETE"},
        {"listing_id": 0, "title": "New", "description": "d"},
    ])
    preview = _preview(content, catalog)
    assert [c.change_type for c in preview.changes] == ["update", "delete", "create"]
    assert [c.unavailable for c in preview.changes] == [True, True, False]
    assert "not found" in preview.changes[0].error
    assert preview.summary.unavailable == 2
    assert [c.change_id for c in preview.changes] == ["change_1", "change_2", "change_3"]


def test_change_ids_skip_over_unchanged_listings():
    catalog = FakeCatalog([make_listing(11), make_listing(12)])
    content = sheet_bytes([
        {"listing_id": 11, "tags": "mug,blue"},
        {"listing_id": 12, "title": "Changed", "tags": "mug,blue"},
    ])
    (change,) = _preview(content, catalog).changes
    assert change.change_id == "change_2"


def test_create_warns_about_missing_description():
    (change,) = _preview(sheet_bytes([{"title": "New"}]), FakeCatalog()).changes
    assert change.warnings == ["Description is required to create a listing"]


def test_bad_file_raises_parse_error():
    with pytest.raises(CsvParseError):
        _preview(b"a,b,c\r\n1,2,3\r\n", FakeCatalog())
