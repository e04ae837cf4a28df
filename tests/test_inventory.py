import pytest

from app.upload.errors import InventoryPayloadError
from app.upload.inventory import build_inventory_payload, valid_price, variation_signature
from app.upload.models import ProcessedListing, ProcessedVariation

from fakes import COLOR, SIZE, make_listing, make_variation_listing, offering, size_product


def _tee():
    return make_variation_listing(300, [
        size_product(1, "Small", 11, 10.0, 3, "TS-S"),
        size_product(2, "Medium", 12, 11.0, 4, "TS-M"),
    ])


def _var(option, price=None, qty=None, sku="", **kw):
    return ProcessedVariation(property_name_1="Size", property_option_1=option, price=price, quantity=qty, sku=sku, **kw)


def _by_option(payload):
    return {p.property_values[0].values[0]: p for p in payload.products if not p.is_deleted}


def test_unmentioned_variation_is_carried_forward():
    sheet = ProcessedListing(listing_id=300, has_variations=True, variations=[
        _var("Small", price=15.0, property_id_1=SIZE, property_option_ids_1=[11], product_id=1),
    ])
    payload = build_inventory_payload(sheet, _tee())
    products = _by_option(payload)
    assert set(products) == {"Small", "Medium"}
    assert products["Small"].offerings[0].price == 15.0
    assert products["Medium"].offerings[0].price == 11.0
    assert products["Medium"].offerings[0].quantity == 4
    assert products["Medium"].sku == "TS-M"
    assert payload.price_on_property == [SIZE]


def test_property_ids_resolved_by_name_when_sheet_has_none():
    sheet = ProcessedListing(listing_id=300, has_variations=True, variations=[_var("medium", qty=9)])
    payload = build_inventory_payload(sheet, _tee())
    products = payload.live_products()
    assert len(products) == 2
    medium = [p for p in products if p.property_values[0].value_ids == [12]]
    assert medium[0].offerings[0].quantity == 9
    assert SIZE in payload.quantity_on_property


def test_delete_marked_variation_becomes_deletion_entry():
    sheet = ProcessedListing(listing_id=300, has_variations=True, variations=[
        _var("Medium", to_delete=True, product_id=2),
    ])
    payload = build_inventory_payload(sheet, _tee())
    deleted = [p for p in payload.products if p.is_deleted]
    assert [p.product_id for p in deleted] == [2]
    assert [p.sku for p in payload.live_products()] == ["TS-S"]
    assert payload.to_payload()["products"][-1]["is_deleted"] is True


def test_new_option_is_added_with_listing_price_fallback():
    sheet = ProcessedListing(listing_id=300, has_variations=True, price=13.0, variations=[_var("Large", sku="TS-L")])
    payload = build_inventory_payload(sheet, _tee(), default_readiness_state_id=99)
    large = _by_option(payload)["Large"]
    assert large.offerings[0].price == 13.0
    assert large.offerings[0].quantity == 1
    assert large.offerings[0].readiness_state_id == 7  # first live product's readiness
    assert large.property_values[0].property_id == SIZE
    assert len(payload.live_products()) == 3


def test_variation_without_property_values_is_dropped():
    sheet = ProcessedListing(listing_id=300, has_variations=True, variations=[
        ProcessedVariation(property_name_1="Mystery", property_option_1="X", price=5.0),
    ])
    payload = build_inventory_payload(sheet, _tee())
    assert {p.sku for p in payload.live_products()} == {"TS-S", "TS-M"}


def test_variations_removed_converts_to_single_product():
    sheet = ProcessedListing(listing_id=300, title="T-Shirt", price=20.0, quantity=6, sku="TS")
    payload = build_inventory_payload(sheet, _tee())
    live = payload.live_products()
    assert len(live) == 1
    assert live[0].property_values == []
    assert (live[0].sku, live[0].offerings[0].price, live[0].offerings[0].quantity) == ("TS", 20.0, 6)
    assert sorted(p.product_id for p in payload.products if p.is_deleted) == [1, 2]


def test_single_product_falls_back_to_live_values():
    existing = make_listing(5, value=9.0, qty=3, sku="OLD")
    payload = build_inventory_payload(ProcessedListing(listing_id=5), existing)
    (p,) = payload.products
    assert (p.sku, p.offerings[0].price, p.offerings[0].quantity) == ("OLD", 9.0, 3)
    assert p.product_id is None
    assert "is_deleted" not in payload.to_payload()["products"][0]


def test_new_single_product_defaults():
    payload = build_inventory_payload(ProcessedListing(title="New", price=12.5), None, default_readiness_state_id=7)
    (p,) = payload.products
    assert p.offerings[0].price == 12.5
    assert p.offerings[0].quantity == 1
    assert p.offerings[0].readiness_state_id == 7


def test_zero_quantity_is_kept_but_one_variation_stays_in_stock():
    payload = build_inventory_payload(ProcessedListing(title="New", price=5.0, quantity=0))
    assert payload.products[0].offerings[0].quantity == 0

    sheet = ProcessedListing(listing_id=300, has_variations=True, variations=[_var("Small", qty=0), _var("Medium", qty=0)])
    payload = build_inventory_payload(sheet, _tee())
    quantities = [p.offerings[0].quantity for p in payload.live_products()]
    assert sorted(quantities) == [0, 1]


def test_price_floor():
    assert valid_price(0.05, 3.0, 0.2) == 3.0
    assert valid_price(None, None, 0.2) == 0.2
    assert valid_price(4.444, None, 0.2) == 4.44


def _two_prop(pid, size, size_id, color, color_id):
    p = size_product(pid, size, size_id, 10.0, 2)
    p.property_values.append(p.property_values[0].model_copy(
        update={"property_id": COLOR, "property_name": "Color", "value_ids": [color_id], "values": [color]}))
    return p


def test_missing_two_property_combinations_are_filled_disabled():
    existing = make_variation_listing(400, [_two_prop(1, "S", 11, "Red", 21), _two_prop(2, "M", 12, "Red", 21)])
    sheet = ProcessedListing(listing_id=400, has_variations=True, variations=[
        ProcessedVariation(property_name_1="Size", property_option_1="S", property_name_2="Color",
                           property_option_2="Blue", property_id_1=SIZE, property_id_2=COLOR, price=12.0),
    ])
    payload = build_inventory_payload(sheet, existing)
    live = payload.live_products()
    assert len(live) == 4  # S/Red, M/Red, S/Blue, M/Blue
    placeholder = [p for p in live if not p.offerings[0].is_enabled]
    assert len(placeholder) == 1
    assert [pv.values[0] for pv in placeholder[0].property_values] == ["M", "Blue"]
    assert placeholder[0].offerings[0].quantity == 0


def test_sparse_grid_without_new_values_gets_no_placeholders():
    existing = make_variation_listing(400, [_two_prop(1, "S", 11, "Red", 21), _two_prop(2, "M", 12, "Blue", 22)])
    sheet = ProcessedListing(listing_id=400, has_variations=True, variations=[
        ProcessedVariation(property_name_1="Size", property_option_1="S", property_name_2="Color",
                           property_option_2="Red", property_id_1=SIZE, property_id_2=COLOR, price=14.0),
    ])
    payload = build_inventory_payload(sheet, existing)
    combos = sorted([pv.values[0] for pv in p.property_values] for p in payload.live_products())
    assert combos == [["M", "Blue"], ["S", "Red"]]
    assert all(p.offerings[0].is_enabled for p in payload.live_products())


def test_mixed_property_sets_are_rejected():
    sheet = ProcessedListing(listing_id=300, has_variations=True, variations=[
        ProcessedVariation(property_name_1="Size", property_option_1="XL", property_name_2="Color",
                           property_option_2="Red", property_id_1=SIZE, property_id_2=COLOR),
    ])
    with pytest.raises(InventoryPayloadError, match="different property sets"):
        build_inventory_payload(sheet, _tee())


def test_signature_ignores_property_order():
    a = size_product(1, "S", 11, 1.0, 1)
    b = size_product(1, "S", 11, 1.0, 1)
    color = a.property_values[0].model_copy(update={"property_id": COLOR, "value_ids": [21], "values": ["Red"]})
    a.property_values.append(color)
    b.property_values.insert(0, color)
    assert variation_signature(a.property_values) == variation_signature(b.property_values)


def test_disabled_offering_stays_disabled():
    existing = _tee()
    existing.inventory.products[1].offerings = [offering(11.0, 4, enabled=False)]
    sheet = ProcessedListing(listing_id=300, has_variations=True, variations=[_var("Medium", price=12.0)])
    payload = build_inventory_payload(sheet, existing)
    assert _by_option(payload)["Medium"].offerings[0].is_enabled is False
