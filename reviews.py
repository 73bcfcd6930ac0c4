from datetime import datetime
from typing import Any, Callable, Dict, List

from database import now_utc, oid, public
from errors import NotFound
from logger import logger
from schemas import Review, ReviewBody


class ReviewService:

    def __init__(self, database, clock: Callable[[], datetime] = now_utc):
        self.db = database
        self.clock = clock

    def submit(self, user_id: str, body: ReviewBody) -> Dict[str, Any]:
        if not self.db["product"].find_one({"_id": oid(body.product_id)}):
            raise NotFound("Product not found")

        # verified only when the named order is the reviewer's and contains the product
        verified = False
        if body.order_id:
            order = self.db["order"].find_one({"_id": oid(body.order_id), "user_id": user_id})
            verified = bool(order) and self.db["order_item"].find_one(
                {"order_id": body.order_id, "product_id": body.product_id}
            ) is not None

        review = Review(user_id=user_id, is_verified=verified, **body.model_dump())
        doc = {**review.model_dump(), "created_at": self.clock()}
        doc["_id"] = self.db["review"].insert_one(doc).inserted_id
        logger.info(f"Review {doc['_id']} ({body.rating}/5) on product {body.product_id} by {user_id}")
        return public(doc)

    def for_product(self, product_id: str) -> List[Dict[str, Any]]:
        cursor = self.db["review"].find({"product_id": product_id}).sort("created_at", -1)
        return [public(r) for r in cursor]
