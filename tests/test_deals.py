from datetime import timedelta

import pytest

from deals import DealService, is_deal_active, resolve, round_currency
from errors import NotFound, ValidationFailed
from schemas import Deal, DealBody, DealUpdate, Product

from conftest import NOW


def make_deal(**overrides):
    data = {
        "product_id": "p1",
        "discount_percentage": 30,
        "valid_from": NOW - timedelta(hours=1),
        "valid_until": NOW + timedelta(hours=2),
    }
    data.update(overrides)
    return Deal(**data)


def product_model(**overrides):
    data = {"name": "Silk Saree", "price": 1000, "mrp": 1500, "category": "sarees"}
    data.update(overrides)
    return Product(**data)


def test_sale_price_from_live_product_price():
    view = resolve(make_deal(), product_model(), NOW)
    assert view.sale_price == 700
    assert view.original_price == 1500
    assert view.savings == 800
    assert view.is_active


def test_resolution_is_idempotent():
    deal, product = make_deal(discount_percentage=17), product_model(price=1299)
    assert resolve(deal, product, NOW) == resolve(deal, product, NOW)


def test_rounds_half_up_to_whole_units():
    assert round_currency(2.5) == 3
    assert round_currency(849.15) == 849
    assert resolve(make_deal(discount_percentage=50), product_model(price=5), NOW).sale_price == 3


def test_countdown_and_expiry():
    deal = make_deal(valid_until=NOW + timedelta(seconds=90))
    assert resolve(deal, product_model(), NOW).seconds_remaining == 90

    later = NOW + timedelta(seconds=120)
    view = resolve(deal, product_model(), later)
    assert view.seconds_remaining == 0
    assert not view.is_active


def test_activity_bounds_are_inclusive():
    deal = make_deal(valid_from=NOW, valid_until=NOW + timedelta(hours=1))
    assert is_deal_active(deal, NOW)
    assert is_deal_active(deal, NOW + timedelta(hours=1))
    assert not is_deal_active(deal, NOW + timedelta(hours=1, seconds=1))
    assert not is_deal_active(make_deal(is_active=False), NOW)


def insert_deal(database, product_id, **overrides):
    doc = make_deal(product_id=product_id, **overrides).model_dump()
    return str(database["deal"].insert_one(doc).inserted_id)


def test_list_active_joins_live_products(database, clock, make_product):
    first = make_product(name="Wrap Dress", price=1000)
    second = make_product(name="Party Gown", price=2000)
    hidden = make_product(name="Old Top", is_active=False)
    insert_deal(database, second, sort_order=2)
    insert_deal(database, first, sort_order=1)
    insert_deal(database, hidden, sort_order=0)
    insert_deal(database, first, sort_order=3, valid_until=NOW - timedelta(minutes=1))

    views = DealService(database, clock).list_active()
    assert [v.name for v in views] == ["Wrap Dress", "Party Gown"]
    assert [v.sale_price for v in views] == [700, 1400]

    database["product"].update_one({"name": "Wrap Dress"}, {"$set": {"price": 800}})
    assert DealService(database, clock).list_active()[0].sale_price == 560


def test_create_requires_existing_product(database, clock, make_product):
    service = DealService(database, clock)
    with pytest.raises(NotFound):
        service.create(DealBody(product_id="0" * 24, discount_percentage=10,
                                valid_until=NOW + timedelta(days=1)))

    pid = make_product()
    created = service.create(DealBody(product_id=pid, discount_percentage=10,
                                      valid_until=NOW + timedelta(days=1)))
    assert created["valid_from"] == NOW
    assert created["is_active"] is True


def test_update_and_delete_deal(database, clock, make_product):
    service = DealService(database, clock)
    pid = make_product(price=500)
    created = service.create(DealBody(product_id=pid, discount_percentage=10,
                                      valid_until=NOW + timedelta(days=1)))

    updated = service.update(created["id"], DealUpdate(discount_percentage=50, valid_from=None))
    assert updated["discount_percentage"] == 50
    assert updated["valid_from"] == NOW
    assert service.list_active()[0].sale_price == 250

    with pytest.raises(ValidationFailed):
        service.update(created["id"], DealUpdate(valid_until=NOW - timedelta(days=1)))

    service.delete(created["id"])
    assert service.list_active() == []
    with pytest.raises(NotFound):
        service.delete(created["id"])
