from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def database():
    return mongomock.MongoClient(tz_aware=True)["dresshub_test"]


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def make_product(database):
    def _make(**overrides):
        doc = {
            "name": "Anarkali Kurta",
            "description": "Cotton kurta",
            "price": 500.0,
            "mrp": 800.0,
            "discount": 38,
            "category": "ethnic",
            "images": ["https://img.example/kurta.jpg"],
            "sizes": ["S", "M", "L"],
            "colors": ["Red", "Blue"],
            "stock": 10,
            "is_active": True,
            "seller_id": "seller-1",
            "created_at": NOW,
            "updated_at": NOW,
        }
        doc.update(overrides)
        return str(database["product"].insert_one(doc).inserted_id)
    return _make


@pytest.fixture
def make_coupon(database):
    def _make(**overrides):
        doc = {
            "code": "SAVE20",
            "description": "20% off",
            "discount_type": "percentage",
            "discount_value": 20,
            "min_order_amount": 500,
            "max_discount_amount": 200,
            "valid_from": NOW - timedelta(days=1),
            "valid_until": NOW + timedelta(days=1),
            "usage_limit": None,
            "usage_count": 0,
            "is_active": True,
            "created_at": NOW,
        }
        doc.update(overrides)
        return str(database["coupon"].insert_one(doc).inserted_id)
    return _make


@pytest.fixture
def make_address(database):
    def _make(user_id="user-1", **overrides):
        doc = {
            "user_id": user_id,
            "name": "Asha Rao",
            "phone": "9876543210",
            "street": "12 MG Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "pincode": "560001",
            "is_default": True,
            "created_at": NOW,
        }
        doc.update(overrides)
        return str(database["address"].insert_one(doc).inserted_id)
    return _make


@pytest.fixture
def client(database, clock):
    import main

    main.app.dependency_overrides[main.get_db] = lambda: database
    main.app.dependency_overrides[main.get_clock] = lambda: clock
    main.app.dependency_overrides[main.get_gateway] = lambda: None
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()
