import pytest

from coupons import CouponEvaluator
from errors import NotFound, OutOfStock
from notifications import NotificationService
from orders import OrderService
from schemas import CartLine


@pytest.fixture
def notifications(database, clock):
    return NotificationService(database, clock)


@pytest.fixture
def orders(database, clock, notifications):
    return OrderService(database, CouponEvaluator(database, clock), clock, notifications=notifications)


def place(orders, make_product, make_address):
    kurta = make_product(seller_id="seller-1")
    scarf = make_product(name="Scarf", sizes=[], colors=[], seller_id="seller-2")
    lines = [
        CartLine(product_id=kurta, name="Kurta", price=500, mrp=800, size="M", color="Red"),
        CartLine(product_id=scarf, name="Scarf", price=500, mrp=800),
    ]
    return orders.create_order("user-1", lines, make_address())["id"]


def test_new_order_reaches_admin_and_each_seller(notifications, orders, make_product, make_address):
    order_id = place(orders, make_product, make_address)

    admin = notifications.inbox()
    assert len(admin) == 1
    assert admin[0]["type"] == "new_order"
    assert admin[0]["order_id"] == order_id
    assert notifications.unread_count("seller-1") == 1
    assert notifications.unread_count("seller-2") == 1
    assert notifications.inbox("seller-3") == []


def test_status_change_notifies(notifications, orders, make_product, make_address):
    order_id = place(orders, make_product, make_address)
    orders.update_status(order_id, "out_for_delivery")

    updates = [n for n in notifications.inbox("seller-2") if n["type"] == "status_update"]
    assert len(updates) == 1
    assert updates[0]["message"].endswith("is now out for delivery")
    assert notifications.unread_count() == 2


def test_mark_read(notifications, orders, make_product, make_address):
    place(orders, make_product, make_address)
    note = notifications.inbox("seller-1")[0]

    with pytest.raises(NotFound):
        notifications.mark_read(note["id"], "seller-2")
    notifications.mark_read(note["id"], "seller-1")
    assert notifications.unread_count("seller-1") == 0

    assert notifications.mark_all_read() == 1
    assert notifications.unread_count() == 0
    assert notifications.unread_count("seller-2") == 1


def test_failed_order_leaves_no_notifications(database, notifications, orders, make_product, make_address):
    pid = make_product(stock=0)
    line = CartLine(product_id=pid, name="Kurta", price=500, mrp=800, size="M", color="Red")
    with pytest.raises(OutOfStock):
        orders.create_order("user-1", [line], make_address())
    assert database["notification"].count_documents({}) == 0
