"""
Today's deals: time boxed percentage discounts on a single product.

A deal never stores its own prices. The sale price is always recomputed from
the live product price, and the "original price" shown next to it is the
product's mrp.
"""
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional

from pymongo import ReturnDocument

from database import as_utc, now_utc, oid, public
from errors import NotFound, ValidationFailed
from logger import logger
from schemas import Deal, DealBody, DealUpdate, Product, SalePriceView


def round_currency(amount: float) -> int:
    """Round half up to whole currency units."""
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def is_deal_active(deal: Deal, now: datetime) -> bool:
    now = as_utc(now)
    return deal.is_active and as_utc(deal.valid_from) <= now <= as_utc(deal.valid_until)


def resolve(deal: Deal, product: Product, now: Optional[datetime] = None,
            deal_id: Optional[str] = None, product_id: Optional[str] = None) -> SalePriceView:
    now = as_utc(now or now_utc())
    sale_price = round_currency(product.price * (1 - deal.discount_percentage / 100))
    remaining = (as_utc(deal.valid_until) - now).total_seconds()
    return SalePriceView(
        deal_id=deal_id,
        product_id=product_id or deal.product_id,
        name=product.name,
        image=product.images[0] if product.images else None,
        price=product.price,
        sale_price=sale_price,
        original_price=product.mrp,
        discount_percentage=deal.discount_percentage,
        savings=round(product.mrp - sale_price, 2),
        valid_until=as_utc(deal.valid_until),
        seconds_remaining=max(0, int(remaining)),
        is_active=is_deal_active(deal, now),
    )


class DealService:

    def __init__(self, database, clock: Callable[[], datetime] = now_utc):
        self.deals = database["deal"]
        self.products = database["product"]
        self.clock = clock

    def list_active(self) -> List[SalePriceView]:
        now = self.clock()
        views = []
        for doc in self.deals.find({"is_active": True}).sort("sort_order", 1):
            deal = Deal.model_validate(doc)
            if not is_deal_active(deal, now):
                continue
            product_doc = self.products.find_one({"_id": oid(deal.product_id), "is_active": True})
            if not product_doc:
                continue
            views.append(resolve(deal, Product.model_validate(product_doc), now, deal_id=str(doc["_id"])))
        return views

    def list_all(self) -> List[Dict[str, Any]]:
        return [public(d) for d in self.deals.find({}).sort("sort_order", 1)]

    def create(self, body: DealBody) -> Dict[str, Any]:
        if not self.products.find_one({"_id": oid(body.product_id)}):
            raise NotFound("Product not found")
        now = self.clock()
        doc = body.model_dump()
        doc["valid_from"] = doc["valid_from"] or now
        if as_utc(doc["valid_until"]) <= as_utc(doc["valid_from"]):
            raise ValidationFailed("valid_until must be after valid_from")
        doc.update({"created_at": now, "updated_at": now})
        res = self.deals.insert_one(doc)
        doc["_id"] = res.inserted_id
        logger.info(f"Deal {res.inserted_id} created for product {body.product_id} at {body.discount_percentage}% off")
        return public(doc)

    def update(self, deal_id: str, body: DealUpdate) -> Dict[str, Any]:
        existing = self.deals.find_one({"_id": oid(deal_id)})
        if not existing:
            raise NotFound("Deal not found")
        changes = body.model_dump(exclude_unset=True, exclude_none=True)
        valid_from = changes.get("valid_from") or existing["valid_from"]
        valid_until = changes.get("valid_until") or existing["valid_until"]
        if as_utc(valid_until) <= as_utc(valid_from):
            raise ValidationFailed("valid_until must be after valid_from")
        return public(self.deals.find_one_and_update(
            {"_id": existing["_id"]},
            {"$set": {**changes, "updated_at": self.clock()}},
            return_document=ReturnDocument.AFTER,
        ))

    def delete(self, deal_id: str) -> None:
        res = self.deals.delete_one({"_id": oid(deal_id)})
        if not res.deleted_count:
            raise NotFound("Deal not found")
