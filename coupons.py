"""
Coupon evaluation and redemption.

Evaluation is read-only: it answers "how much would this code take off this
subtotal right now". The usage counter only moves through ``redeem``, which
the order builder calls while placing an order.
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import as_utc, now_utc, oid, public
from errors import CouponRejected, NotFound, ValidationFailed
from logger import logger
from schemas import Coupon, CouponApplication, CouponBody, CouponUpdate


NULLABLE_FIELDS = ("description", "max_discount_amount", "usage_limit")


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def compute_discount(coupon: Coupon, subtotal: float, now: datetime) -> float:
    """Validate ``coupon`` against ``subtotal`` and return the discount.

    Raises CouponRejected with reason ``expired``, ``min_order`` or
    ``usage_limit``. The result is always between 0 and ``subtotal``.
    """
    if subtotal < 0:
        raise ValidationFailed("Order amount cannot be negative")

    now = as_utc(now)
    if now < as_utc(coupon.valid_from):
        raise CouponRejected("Coupon is not active yet", reason="expired")
    if now > as_utc(coupon.valid_until):
        raise CouponRejected("Coupon has expired", reason="expired")

    if subtotal < coupon.min_order_amount:
        raise CouponRejected(
            f"Minimum order amount of ₹{coupon.min_order_amount:g} required",
            reason="min_order",
        )

    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        raise CouponRejected("Coupon usage limit reached", reason="usage_limit")

    if coupon.discount_type == "fixed":
        discount = coupon.discount_value
    else:
        discount = subtotal * coupon.discount_value / 100
        if coupon.max_discount_amount is not None:
            discount = min(discount, coupon.max_discount_amount)

    return round(min(discount, subtotal), 2)


class CouponEvaluator:

    def __init__(self, database, clock: Callable[[], datetime] = now_utc):
        self.collection = database["coupon"]
        self.clock = clock

    def find_active(self, code: str) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"code": normalize_code(code), "is_active": True})

    def evaluate(self, code: str, order_subtotal: float) -> CouponApplication:
        doc = self.find_active(code)
        if not doc:
            logger.warning(f"Coupon lookup failed for code {normalize_code(code)!r}")
            raise CouponRejected("Invalid coupon code", reason="invalid")

        coupon = Coupon.model_validate(doc)
        try:
            discount = compute_discount(coupon, order_subtotal, self.clock())
        except CouponRejected as e:
            logger.warning(f"Coupon {coupon.code} rejected ({e.reason}) for subtotal {order_subtotal}")
            raise

        return CouponApplication(
            coupon_id=str(doc["_id"]),
            code=coupon.code,
            discount_amount=discount,
            message="Coupon applied successfully",
        )

    # ---------------------- Redemption ----------------------

    def redeem(self, coupon_id: str) -> bool:
        """Atomically take one use of the coupon.

        Returns False when the usage limit was reached in the meantime.
        """
        doc = self.collection.find_one({"_id": oid(coupon_id)}, {"usage_limit": 1})
        if not doc:
            return False
        filt: Dict[str, Any] = {"_id": doc["_id"], "is_active": True}
        if doc.get("usage_limit") is not None:
            filt["usage_count"] = {"$lt": doc["usage_limit"]}
        updated = self.collection.find_one_and_update(
            filt,
            {"$inc": {"usage_count": 1}, "$set": {"updated_at": self.clock()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            logger.warning(f"Coupon {coupon_id} could not be redeemed, limit reached")
            return False
        logger.info(f"Coupon {updated['code']} redeemed ({updated['usage_count']} uses)")
        return True

    def release(self, coupon_id: str) -> None:
        self.collection.update_one(
            {"_id": oid(coupon_id), "usage_count": {"$gt": 0}},
            {"$inc": {"usage_count": -1}, "$set": {"updated_at": self.clock()}},
        )

    # ---------------------- Admin ----------------------

    def create(self, body: CouponBody) -> Dict[str, Any]:
        if self.collection.find_one({"code": body.code}):
            raise ValidationFailed(f"Coupon code {body.code} already exists", code="duplicate_code")
        doc = {**body.model_dump(), "usage_count": 0, "created_at": self.clock(), "updated_at": self.clock()}
        try:
            res = self.collection.insert_one(doc)
        except DuplicateKeyError:
            raise ValidationFailed(f"Coupon code {body.code} already exists", code="duplicate_code")
        doc["_id"] = res.inserted_id
        logger.info(f"Coupon {body.code} created")
        return public(doc)

    def update(self, coupon_id: str, body: CouponUpdate) -> Dict[str, Any]:
        existing = self.collection.find_one({"_id": oid(coupon_id)})
        if not existing:
            raise NotFound("Coupon not found")
        changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None or k in NULLABLE_FIELDS}
        merged = {**existing, **changes}
        if as_utc(merged["valid_until"]) <= as_utc(merged["valid_from"]):
            raise ValidationFailed("valid_until must be after valid_from")
        if merged["discount_type"] == "percentage" and merged["discount_value"] > 100:
            raise ValidationFailed("percentage discount cannot exceed 100")
        return public(self.collection.find_one_and_update(
            {"_id": existing["_id"]},
            {"$set": {**changes, "updated_at": self.clock()}},
            return_document=ReturnDocument.AFTER,
        ))

    def delete(self, coupon_id: str) -> None:
        res = self.collection.delete_one({"_id": oid(coupon_id)})
        if not res.deleted_count:
            raise NotFound("Coupon not found")

    def list_all(self) -> List[Dict[str, Any]]:
        return [public(c) for c in self.collection.find({}).sort("created_at", -1)]

    def list_active(self) -> List[Dict[str, Any]]:
        now = as_utc(self.clock())
        return [
            public(c)
            for c in self.collection.find({"is_active": True}).sort("created_at", -1)
            if as_utc(c["valid_until"]) >= now
        ]
