"""
Seller back office.

A seller starts with a username, a shop name and an email. They complete the
shop profile, then ask for verification; an admin verifies the shop and can
switch it off and on again. Products and order items reference sellers by
the seller's id string.
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pymongo import ReturnDocument

from database import create_document, now_utc, oid, public
from errors import NotFound, ValidationFailed
from logger import logger
from schemas import Seller, SellerBody, SellerProfileBody


class SellerService:

    def __init__(self, database, clock: Callable[[], datetime] = now_utc):
        self.db = database
        self.collection = database["seller"]
        self.clock = clock

    def create(self, body: SellerBody) -> Dict[str, Any]:
        if self.collection.find_one({"username": body.username}):
            raise ValidationFailed(f"Username {body.username} is already taken", code="duplicate_username")
        seller_id = create_document(self.db, "seller", Seller(**body.model_dump()), self.clock())
        logger.info(f"Seller {seller_id} created: {body.shop_name}")
        return self.get(seller_id)

    def get(self, seller_id: str) -> Dict[str, Any]:
        doc = self.collection.find_one({"_id": oid(seller_id)})
        if not doc:
            raise NotFound("Seller not found")
        return public(doc)

    def list_all(self) -> List[Dict[str, Any]]:
        return [public(s) for s in self.collection.find({}).sort("created_at", -1)]

    def update_profile(self, seller_id: str, body: SellerProfileBody) -> Dict[str, Any]:
        return self._update(seller_id, {**body.model_dump(), "profile_completed": True})

    def request_verification(self, seller_id: str) -> Dict[str, Any]:
        seller = self.get(seller_id)
        if seller.get("is_verified"):
            raise ValidationFailed("Seller is already verified", code="already_verified")
        if not seller.get("profile_completed"):
            raise ValidationFailed("Complete your shop profile before requesting verification",
                                   code="profile_incomplete")
        logger.info(f"Seller {seller_id} requested verification")
        return self._update(seller_id, {"verification_requested_at": self.clock()})

    def verify(self, seller_id: str, admin_id: Optional[str] = None) -> Dict[str, Any]:
        logger.info(f"Seller {seller_id} verified by {admin_id or 'admin'}")
        return self._update(seller_id, {"is_verified": True, "verified_at": self.clock(), "verified_by": admin_id})

    def set_active(self, seller_id: str, is_active: bool) -> Dict[str, Any]:
        logger.info(f"Seller {seller_id} {'activated' if is_active else 'deactivated'}")
        return self._update(seller_id, {"is_active": is_active})

    def _update(self, seller_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        updated = self.collection.find_one_and_update(
            {"_id": oid(seller_id)},
            {"$set": {**changes, "updated_at": self.clock()}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFound("Seller not found")
        return public(updated)
