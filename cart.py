from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from backend import Product


@dataclass
class CartItem:
    product: Product
    quantity: int

    @property
    def line_total(self) -> float:
        return self.product.price * self.quantity


class Cart:
    """Ordered (product, quantity) lines keyed by product id.

    Quantities are always positive; setting one to zero or below drops the line.
    """

    def __init__(self, items: Optional[List[CartItem]] = None):
        self.items: List[CartItem] = list(items or [])

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def _find(self, product_id: str) -> Optional[CartItem]:
        return next((i for i in self.items if i.product.id == product_id), None)

    def add(self, product: Product) -> None:
        existing = self._find(product.id)
        if existing:
            existing.quantity += 1
        else:
            self.items.append(CartItem(product=product, quantity=1))

    def remove(self, product_id: str) -> None:
        self.items = [i for i in self.items if i.product.id != product_id]

    def update_quantity(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove(product_id)
            return
        existing = self._find(product_id)
        if existing:
            existing.quantity = int(quantity)

    def clear(self) -> None:
        self.items = []

    def quantity_of(self, product_id: str) -> int:
        existing = self._find(product_id)
        return existing.quantity if existing else 0

    def total_items(self) -> int:
        return sum(i.quantity for i in self.items)

    def total_price(self) -> float:
        return sum(i.line_total for i in self.items)

    def summary(self) -> Dict[str, Any]:
        return {"count": self.total_items(), "total": self.total_price()}

    # -------------------------
    # Session (de)serialization
    # -------------------------
    def to_session(self) -> List[Dict[str, Any]]:
        return [{"product": i.product.to_dict(), "quantity": i.quantity} for i in self.items]

    @classmethod
    def from_session(cls, raw: Any) -> "Cart":
        if not isinstance(raw, list):
            return cls()
        items: List[CartItem] = []
        seen: set[str] = set()
        for rec in raw:
            if not isinstance(rec, dict) or not isinstance(rec.get("product"), dict):
                continue
            try:
                product = Product.from_row(rec["product"])
                qty = int(rec.get("quantity", 0))
            except (KeyError, TypeError, ValueError):
                continue
            if qty <= 0 or product.id in seen:
                continue
            seen.add(product.id)
            items.append(CartItem(product=product, quantity=qty))
        return cls(items)
