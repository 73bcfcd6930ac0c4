"""
Shopping cart.

Lines are keyed by (product, size, color): adding the same selection twice
bumps the quantity, a different size or color is its own line. When a store
is attached the whole cart is written back after every change and read again
on ``Cart.load``. Two devices editing the same cart are not merged; the last
write wins.
"""
from typing import Any, Dict, List, Optional

from database import now_utc
from errors import NotFound, ValidationFailed
from logger import logger
from schemas import CartLine, Product, line_key


class MongoCartStore:
    """One document per user in the ``cart`` collection."""

    def __init__(self, database):
        self.collection = database["cart"]

    def load(self, user_id: str) -> List[Dict[str, Any]]:
        doc = self.collection.find_one({"user_id": user_id})
        return doc.get("items", []) if doc else []

    def save(self, user_id: str, items: List[Dict[str, Any]]) -> None:
        self.collection.update_one(
            {"user_id": user_id},
            {"$set": {"items": items, "updated_at": now_utc()}},
            upsert=True,
        )


class Cart:

    def __init__(self, user_id: Optional[str] = None, store: Optional[MongoCartStore] = None,
                 lines: Optional[List[CartLine]] = None):
        self.user_id = user_id
        self.store = store
        self._lines: List[CartLine] = list(lines or [])

    @classmethod
    def load(cls, user_id: str, store: MongoCartStore) -> "Cart":
        lines = []
        for raw in store.load(user_id):
            try:
                lines.append(CartLine.model_validate(raw))
            except ValueError as e:
                logger.warning(f"Dropping unreadable cart line for user {user_id}: {e}")
        return cls(user_id, store, lines)

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines)

    def find(self, key: str) -> Optional[CartLine]:
        for line in self._lines:
            if line.key == key:
                return line
        return None

    # ---------------------- Mutations ----------------------

    def add(self, product: Product, size: Optional[str] = None, color: Optional[str] = None,
            quantity: int = 1) -> CartLine:
        if not product.id:
            raise ValidationFailed("Product has no id")
        if quantity < 1:
            raise ValidationFailed("Quantity must be at least 1")
        if size and product.sizes and size not in product.sizes:
            raise ValidationFailed(f"Size {size} is not available for {product.name}")
        if color and product.colors and color not in product.colors:
            raise ValidationFailed(f"Color {color} is not available for {product.name}")

        existing = self.find(line_key(product.id, size, color))
        if existing:
            existing.quantity += quantity
            line = existing
        else:
            line = CartLine(
                product_id=product.id,
                name=product.name,
                price=product.price,
                mrp=product.mrp,
                image=product.images[0] if product.images else None,
                category=product.category,
                seller_id=product.seller_id,
                size=size,
                color=color,
                quantity=quantity,
            )
            self._lines.append(line)
        self._persist()
        return line

    def set_quantity(self, key: str, quantity: int) -> None:
        line = self.find(key)
        if not line:
            raise NotFound("Item not found in cart")
        if quantity <= 0:
            self._lines.remove(line)
        else:
            line.quantity = quantity
        self._persist()

    def remove(self, key: str) -> None:
        self._lines = [line for line in self._lines if line.key != key]
        self._persist()

    def clear(self) -> None:
        self._lines = []
        self._persist()

    def _persist(self) -> None:
        if self.store is not None and self.user_id:
            self.store.save(self.user_id, [line.model_dump() for line in self._lines])

    # ---------------------- Totals ----------------------

    def subtotal(self) -> float:
        return round(sum(line.price * line.quantity for line in self._lines), 2)

    def total_mrp(self) -> float:
        return round(sum(line.mrp * line.quantity for line in self._lines), 2)

    def savings(self) -> float:
        return round(self.total_mrp() - self.subtotal(), 2)

    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "items": [{**line.model_dump(), "key": line.key} for line in self._lines],
            "subtotal": self.subtotal(),
            "total_mrp": self.total_mrp(),
            "savings": self.savings(),
            "item_count": self.item_count(),
        }
