import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from coupons import CouponEvaluator
from errors import CouponRejected, NotFound, OutOfStock, PriceChanged, ValidationFailed
from orders import OrderService
from schemas import CartLine


def line(product_id, price=500.0, mrp=800.0, quantity=1, size="M", color="Red"):
    return CartLine(product_id=product_id, name="Item", price=price, mrp=mrp,
                    size=size, color=color, quantity=quantity)


@pytest.fixture
def service(database, clock):
    return OrderService(database, CouponEvaluator(database, clock), clock)


class BrokenInsertMany:
    def __init__(self, collection):
        self.collection = collection

    def insert_many(self, *args, **kwargs):
        raise PyMongoError("write failed")

    def __getattr__(self, name):
        return getattr(self.collection, name)


class BrokenItemsDatabase:
    """Database whose order_item inserts always fail."""

    def __init__(self, database):
        self.database = database

    def __getitem__(self, name):
        collection = self.database[name]
        return BrokenInsertMany(collection) if name == "order_item" else collection


def stock_of(database, pid):
    return database["product"].find_one({"_id": ObjectId(pid)})["stock"]


def test_order_totals_items_and_tracking(database, service, make_product, make_coupon, make_address):
    kurta = make_product(price=500, stock=5)
    scarf = make_product(name="Silk Scarf", price=200, sizes=[], colors=[], seller_id="seller-2")
    make_coupon()
    address = make_address()

    order = service.create_order(
        "user-1",
        [line(kurta, quantity=1, size="M"), line(kurta, quantity=1, size="L"),
         line(scarf, price=200, size=None, color=None)],
        address,
        coupon_code="save20",
    )

    assert order["subtotal"] == 1200
    assert order["discount_amount"] == 200
    assert order["total_amount"] == 1000
    assert order["total_amount"] == order["subtotal"] - order["discount_amount"]
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["expected_delivery"] == "2025-06-08"
    assert order["address"]["city"] == "Bengaluru"

    assert len(order["items"]) == 3
    assert {i["seller_id"] for i in order["items"]} == {"seller-1", "seller-2"}
    assert [(t["status"], t["message"]) for t in order["tracking"]] == [("pending", "Order placed successfully")]

    assert stock_of(database, kurta) == 3
    assert database["coupon"].find_one()["usage_count"] == 1
    usage = database["coupon_usage"].find_one()
    assert usage["order_id"] == order["id"]
    assert usage["discount_amount"] == 200


def test_order_items_keep_prices_from_order_time(database, service, make_product, make_address):
    pid = make_product(price=500, mrp=800)
    order = service.create_order("user-1", [line(pid, quantity=2)], make_address())

    database["product"].update_one({"_id": ObjectId(pid)}, {"$set": {"price": 900, "mrp": 1200}})
    item = service.get_order(order["id"])["items"][0]
    assert (item["price"], item["mrp"], item["quantity"]) == (500, 800, 2)


def test_out_of_stock_leaves_nothing_behind(database, service, make_product, make_coupon, make_address):
    plenty = make_product(stock=10)
    last_one = make_product(name="Last Gown", stock=1)
    make_coupon()

    with pytest.raises(OutOfStock):
        service.create_order("user-1", [line(plenty, quantity=2), line(last_one, quantity=2)],
                             make_address(), coupon_code="SAVE20")

    assert stock_of(database, plenty) == 10
    assert stock_of(database, last_one) == 1
    assert database["order"].count_documents({}) == 0
    assert database["coupon"].find_one()["usage_count"] == 0


def test_lines_of_one_product_share_its_stock(database, service, make_product, make_address):
    pid = make_product(stock=3)
    with pytest.raises(OutOfStock):
        service.create_order("user-1", [line(pid, quantity=2, size="S"), line(pid, quantity=2, size="M")],
                             make_address())
    assert stock_of(database, pid) == 3


def test_coupon_limit_hit_by_concurrent_order(database, service, make_product, make_coupon, make_address):
    pid = make_product(stock=5)
    make_coupon(usage_limit=1)
    service.coupons.redeem = lambda coupon_id: False

    with pytest.raises(CouponRejected) as exc:
        service.create_order("user-1", [line(pid, quantity=2)], make_address(), coupon_code="SAVE20")

    assert exc.value.reason == "usage_limit"
    assert stock_of(database, pid) == 5
    assert database["order"].count_documents({}) == 0


def test_failed_item_insert_rolls_back_order(database, clock, make_product, make_coupon, make_address):
    pid = make_product(stock=5)
    make_coupon()
    broken = BrokenItemsDatabase(database)
    service = OrderService(broken, CouponEvaluator(broken, clock), clock)

    with pytest.raises(PyMongoError):
        service.create_order("user-1", [line(pid, quantity=2)], make_address(), coupon_code="SAVE20")

    assert database["order"].count_documents({}) == 0
    assert database["order_tracking"].count_documents({}) == 0
    assert stock_of(database, pid) == 5
    assert database["coupon"].find_one()["usage_count"] == 0


def test_rejects_bad_input_before_writing(database, service, make_product, make_address):
    pid = make_product()
    address = make_address()

    with pytest.raises(ValidationFailed):
        service.create_order("user-1", [], address)
    with pytest.raises(ValidationFailed):
        service.create_order("user-1", [line(pid, size=None)], address)
    with pytest.raises(NotFound):
        service.create_order("user-2", [line(pid)], address)
    with pytest.raises(PriceChanged):
        service.create_order("user-1", [line(pid)], address, expected_total=450)

    assert database["order"].count_documents({}) == 0
    assert stock_of(database, pid) == 10


def test_inactive_product_cannot_be_ordered(service, make_product, make_address):
    pid = make_product(is_active=False)
    with pytest.raises(NotFound):
        service.create_order("user-1", [line(pid)], make_address())


def test_status_updates_append_tracking(service, make_product, make_address):
    order = service.create_order("user-1", [line(make_product())], make_address())

    service.update_status(order["id"], "shipped", tracking_number="AWB123")
    updated = service.get_order(order["id"])
    assert updated["status"] == "shipped"
    assert updated["tracking_number"] == "AWB123"
    assert [t["status"] for t in updated["tracking"]] == ["pending", "shipped"]
    assert updated["tracking"][-1]["message"] == "Order has been shipped"


def test_get_order_is_scoped_to_owner(service, make_product, make_address):
    order = service.create_order("user-1", [line(make_product())], make_address())
    with pytest.raises(NotFound):
        service.get_order(order["id"], user_id="user-2")


def test_seller_orders_only_show_that_sellers_items(service, make_product, make_address):
    mine = make_product(seller_id="seller-1")
    theirs = make_product(seller_id="seller-2")
    service.create_order("user-1", [line(mine), line(theirs)], make_address())

    orders = service.seller_orders("seller-2")
    assert len(orders) == 1
    assert [i["product_id"] for i in orders[0]["items"]] == [theirs]


def test_can_review_after_delivery(service, make_product, make_address):
    pid = make_product()
    order = service.create_order("user-1", [line(pid)], make_address())
    assert not service.can_review("user-1", pid)

    service.update_status(order["id"], "delivered")
    assert service.can_review("user-1", pid)
    assert not service.can_review("user-2", pid)
