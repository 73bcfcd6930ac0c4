"""
Order placement and order lifecycle.

``create_order`` turns a cart into an order. Mongo gives us atomic updates on
a single document only, so placement runs as a sequence of guarded steps
with an undo for each one:

1. take stock for every product (``stock >= quantity`` is part of the update)
2. take one use of the coupon (``usage_count < usage_limit`` likewise)
3. insert the order, its items, the first tracking event, the coupon usage
   and the back-office notifications

If any step fails, the undos of the finished steps run in reverse order and
the original error is re-raised, so a failed checkout leaves neither an
orphan order nor missing stock behind.
"""
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from pymongo import ReturnDocument

from config import Config
from coupons import CouponEvaluator
from database import now_utc, oid, public
from errors import CouponRejected, NotFound, OutOfStock, PaymentError, PriceChanged, ValidationFailed
from logger import logger
from notifications import NotificationService
from schemas import Address, CartLine, CouponUsage, Order, OrderItem, OrderTracking, Product

TRACKING_LOCATION = "Processing Center"

STATUS_MESSAGES = {
    "pending": "Order is pending confirmation",
    "confirmed": "Order confirmed and being prepared",
    "processing": "Order is being processed",
    "shipped": "Order has been shipped",
    "out_for_delivery": "Order is out for delivery",
    "delivered": "Order has been delivered",
    "cancelled": "Order has been cancelled",
    "returned": "Order has been returned",
}


class OrderService:

    def __init__(self, database, coupons: CouponEvaluator, clock: Callable[[], datetime] = now_utc,
                 delivery_days: int = Config.DELIVERY_DAYS,
                 notifications: Optional[NotificationService] = None):
        self.db = database
        self.coupons = coupons
        self.clock = clock
        self.delivery_days = delivery_days
        self.notifications = notifications

    # ---------------------- Placement ----------------------

    def create_order(self, user_id: str, lines: List[CartLine], address_id: str,
                     coupon_code: Optional[str] = None, expected_total: Optional[float] = None,
                     expected_discount: Optional[float] = None,
                     expected_subtotal: Optional[float] = None) -> Dict[str, Any]:
        if not lines:
            raise ValidationFailed("Your cart is empty")

        address = self._user_address(user_id, address_id)
        items, demand = self._price_lines(lines)

        subtotal = round(sum(item["price"] * item["quantity"] for item in items), 2)
        application = self.coupons.evaluate(coupon_code, subtotal) if coupon_code else None
        discount = application.discount_amount if application else 0.0
        total = round(subtotal - discount, 2)

        check_expected("subtotal", expected_subtotal, subtotal)
        check_expected("discount", expected_discount, discount)
        check_expected("total", expected_total, total)

        undo: List[Callable[[], Any]] = []
        try:
            for product_id, (quantity, name) in demand.items():
                self._take_stock(product_id, quantity, name)
                undo.append(partial(self._restore_stock, product_id, quantity))

            if application:
                if not self.coupons.redeem(application.coupon_id):
                    raise CouponRejected("Coupon usage limit reached", reason="usage_limit")
                undo.append(partial(self.coupons.release, application.coupon_id))

            now = self.clock()
            order = Order(
                user_id=user_id,
                address_id=address_id,
                address=address,
                subtotal=subtotal,
                discount_amount=discount,
                total_amount=total,
                coupon_id=application.coupon_id if application else None,
                coupon_code=application.code if application else None,
                expected_delivery=(now + timedelta(days=self.delivery_days)).date().isoformat(),
            )
            order_doc = {**order.model_dump(), "created_at": now, "updated_at": now}
            order_id = str(self.db["order"].insert_one(order_doc).inserted_id)
            undo.append(partial(self._purge_order, order_id))

            item_docs = [
                {**OrderItem(order_id=order_id, **item).model_dump(), "created_at": now}
                for item in items
            ]
            self.db["order_item"].insert_many(item_docs)
            self._track(order_id, "pending", "Order placed successfully")

            if application:
                usage = CouponUsage(coupon_id=application.coupon_id, user_id=user_id,
                                    order_id=order_id, discount_amount=discount)
                self.db["coupon_usage"].insert_one({**usage.model_dump(), "created_at": now})

            if self.notifications:
                self.notifications.order_placed(order_id, [item["seller_id"] for item in items])
        except Exception:
            self._rollback(undo)
            raise

        logger.info(f"Order {order_id} placed by user {user_id}: {len(items)} lines, "
                    f"subtotal {subtotal}, discount {discount}, total {total}")
        return self.get_order(order_id)

    def _user_address(self, user_id: str, address_id: str) -> Address:
        doc = self.db["address"].find_one({"_id": oid(address_id)})
        if not doc or doc.get("user_id") != user_id:
            raise NotFound("Selected address not found")
        return Address.model_validate(doc)

    def _price_lines(self, lines: List[CartLine]):
        """Snapshot live prices for each line and total the demand per product."""
        items = []
        demand: Dict[str, list] = {}
        for line in lines:
            doc = self.db["product"].find_one({"_id": oid(line.product_id)})
            if not doc or not doc.get("is_active", True):
                raise NotFound(f"{line.name} is no longer available")
            product = Product.model_validate(doc)
            if product.sizes and not line.size:
                raise ValidationFailed(f"Please select a size for {product.name}")
            if product.colors and not line.color:
                raise ValidationFailed(f"Please select a color for {product.name}")

            items.append({
                "product_id": line.product_id,
                "seller_id": product.seller_id,
                "name": product.name,
                "image": product.images[0] if product.images else None,
                "quantity": line.quantity,
                "price": product.price,
                "mrp": product.mrp,
                "selected_size": line.size,
                "selected_color": line.color,
            })
            entry = demand.setdefault(line.product_id, [0, product.name])
            entry[0] += line.quantity
        return items, demand

    def _take_stock(self, product_id: str, quantity: int, name: str) -> None:
        updated = self.db["product"].find_one_and_update(
            {"_id": oid(product_id), "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": self.clock()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            logger.warning(f"Not enough stock of product {product_id} for quantity {quantity}")
            raise OutOfStock(f"Not enough stock for {name}")
        logger.debug(f"Took {quantity} of product {product_id}, {updated['stock']} left")

    def _restore_stock(self, product_id: str, quantity: int) -> None:
        self.db["product"].update_one(
            {"_id": oid(product_id)},
            {"$inc": {"stock": quantity}, "$set": {"updated_at": self.clock()}},
        )

    def _purge_order(self, order_id: str) -> None:
        self.db["notification"].delete_many({"order_id": order_id})
        self.db["coupon_usage"].delete_many({"order_id": order_id})
        self.db["order_tracking"].delete_many({"order_id": order_id})
        self.db["order_item"].delete_many({"order_id": order_id})
        self.db["order"].delete_one({"_id": oid(order_id)})

    def _rollback(self, undo: List[Callable[[], Any]]) -> None:
        logger.warning(f"Order placement failed, undoing {len(undo)} steps")
        for step in reversed(undo):
            try:
                step()
            except Exception:
                logger.exception(f"Undo step {step.func.__name__} failed")

    # ---------------------- Lifecycle ----------------------

    def _track(self, order_id: str, status: str, message: str, location: Optional[str] = None) -> None:
        event = OrderTracking(order_id=order_id, status=status, message=message, location=location)
        self.db["order_tracking"].insert_one({**event.model_dump(), "created_at": self.clock()})

    def update_order_payment(self, order_id: str, payment_id: Optional[str], payment_status: str,
                             reason: Optional[str] = None) -> Dict[str, Any]:
        """Record a gateway outcome on a pending, unpaid order.

        Raises PaymentError with code ``already_paid`` or ``not_payable`` when
        the order moved on in the meantime (paid twice, cancelled by an admin).
        """
        changes = {
            "payment_id": payment_id,
            "payment_status": payment_status,
            "status": "confirmed" if payment_status == "completed" else "pending",
            "payment_failure_reason": reason,
            "updated_at": self.clock(),
        }
        updated = self.db["order"].find_one_and_update(
            {"_id": oid(order_id), "status": "pending", "payment_status": {"$ne": "completed"}},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            current = self.find_order(order_id)
            if current.get("payment_status") == "completed":
                raise PaymentError("Order is already paid", code="already_paid")
            raise PaymentError(f"Order is {current.get('status')} and cannot be paid", code="not_payable")
        if payment_status == "completed":
            self._track(order_id, "confirmed", "Payment confirmed. Order is being processed.", TRACKING_LOCATION)
        logger.info(f"Order {order_id} payment {payment_status} ({payment_id})")
        return public(updated)

    def update_status(self, order_id: str, status: str, tracking_number: Optional[str] = None,
                      location: Optional[str] = None) -> Dict[str, Any]:
        changes: Dict[str, Any] = {"status": status, "updated_at": self.clock()}
        if tracking_number:
            changes["tracking_number"] = tracking_number
        updated = self.db["order"].find_one_and_update(
            {"_id": oid(order_id)}, {"$set": changes}, return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFound("Order not found")
        message = STATUS_MESSAGES.get(status, f"Order status updated to {status}")
        self._track(order_id, status, message, location or TRACKING_LOCATION)
        if self.notifications:
            self.notifications.status_changed(order_id, status, self._seller_ids(order_id))
        logger.info(f"Order {order_id} moved to {status}")
        return public(updated)

    def _seller_ids(self, order_id: str) -> List[str]:
        return [s for s in self.db["order_item"].distinct("seller_id", {"order_id": order_id}) if s]

    # ---------------------- Queries ----------------------

    def find_order(self, order_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        doc = self.db["order"].find_one({"_id": oid(order_id)})
        if not doc or (user_id and doc.get("user_id") != user_id):
            raise NotFound("Order not found")
        return doc

    def get_order(self, order_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        order = public(self.find_order(order_id, user_id))
        order["items"] = [public(i) for i in self.db["order_item"].find({"order_id": order["id"]})]
        order["tracking"] = [
            public(t) for t in self.db["order_tracking"].find({"order_id": order["id"]}).sort("created_at", 1)
        ]
        return order

    def list_orders(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        filt: Dict[str, Any] = {}
        if user_id:
            filt["user_id"] = user_id
        return [public(o) for o in self.db["order"].find(filt).sort("created_at", -1)]

    def seller_orders(self, seller_id: str) -> List[Dict[str, Any]]:
        grouped: Dict[str, list] = {}
        for item in self.db["order_item"].find({"seller_id": seller_id}):
            grouped.setdefault(item["order_id"], []).append(public(item))

        out = []
        for order_id, items in grouped.items():
            order = self.db["order"].find_one({"_id": oid(order_id)})
            if not order:
                continue
            order = public(order)
            order.pop("coupon_id", None)
            order["items"] = items
            out.append(order)
        out.sort(key=lambda o: o["created_at"], reverse=True)
        return out

    def can_review(self, user_id: str, product_id: str) -> bool:
        delivered = [
            str(o["_id"]) for o in self.db["order"].find({"user_id": user_id, "status": "delivered"}, {"_id": 1})
        ]
        if not delivered:
            return False
        return self.db["order_item"].find_one(
            {"product_id": product_id, "order_id": {"$in": delivered}}
        ) is not None


def check_expected(label: str, expected: Optional[float], actual: float) -> None:
    if expected is not None and abs(expected - actual) > 0.01:
        raise PriceChanged(
            f"Order {label} has changed from {expected:g} to {actual:g}, please review your cart"
        )
