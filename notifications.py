"""
Back-office inboxes.

Placing an order or moving it to a new status drops one entry in the admin
inbox (``seller_id`` None) and one in the inbox of every seller with items
in the order.
"""
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from database import now_utc, oid, public
from errors import NotFound
from logger import logger
from schemas import Notification


def short_ref(order_id: str) -> str:
    return order_id[-8:].upper()


class NotificationService:

    def __init__(self, database, clock: Callable[[], datetime] = now_utc):
        self.collection = database["notification"]
        self.clock = clock

    def order_placed(self, order_id: str, seller_ids: Iterable[Optional[str]]) -> None:
        self._fan_out(order_id, seller_ids, "new_order", f"New order #{short_ref(order_id)} received")

    def status_changed(self, order_id: str, status: str, seller_ids: Iterable[Optional[str]]) -> None:
        message = f"Order #{short_ref(order_id)} is now {status.replace('_', ' ')}"
        self._fan_out(order_id, seller_ids, "status_update", message)

    def _fan_out(self, order_id: str, seller_ids: Iterable[Optional[str]], kind: str, message: str) -> None:
        now = self.clock()
        recipients = [None] + sorted({s for s in seller_ids if s})
        docs = [
            {**Notification(order_id=order_id, seller_id=r, type=kind, message=message).model_dump(), "created_at": now}
            for r in recipients
        ]
        self.collection.insert_many(docs)
        logger.debug(f"{kind} for order {order_id} sent to {len(docs)} inboxes")

    def inbox(self, seller_id: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"seller_id": seller_id}).sort("created_at", -1).limit(limit)
        return [public(n) for n in cursor]

    def unread_count(self, seller_id: Optional[str] = None) -> int:
        return self.collection.count_documents({"seller_id": seller_id, "is_read": False})

    def mark_read(self, notification_id: str, seller_id: Optional[str] = None) -> None:
        res = self.collection.update_one(
            {"_id": oid(notification_id), "seller_id": seller_id}, {"$set": {"is_read": True}},
        )
        if not res.matched_count:
            raise NotFound("Notification not found")

    def mark_all_read(self, seller_id: Optional[str] = None) -> int:
        res = self.collection.update_many({"seller_id": seller_id, "is_read": False}, {"$set": {"is_read": True}})
        return res.modified_count
