"""
Cart Store

Holds the shopper's selected lines, persists the whole snapshot to local
storage after every mutation and rehydrates it on construction.
"""
import json
import logging
from typing import Callable, List, Optional

from pydantic import TypeAdapter, ValidationError

from schemas import CartLine, Product
from storage import LocalStorage

logger = logging.getLogger(__name__)

MAX_LINE_QUANTITY = 10

_lines_adapter = TypeAdapter(List[CartLine])


def discounted_price(price: float, discount_percent: float) -> float:
    if discount_percent and discount_percent > 0:
        return price * (1 - discount_percent / 100)
    return price


def line_total(line: CartLine) -> float:
    return discounted_price(line.unit_price, line.discount_percent) * line.quantity


def line_from_product(product: Product, quantity: int = 1) -> CartLine:
    return CartLine(
        product_id=product.id,
        name=product.name,
        unit_price=product.price,
        discount_percent=product.discount_percent or 0,
        quantity=quantity,
        image_url=product.images[0] if product.images else None,
        category=product.category,
    )


class CartStore:
    def __init__(
        self,
        storage: LocalStorage,
        key: str = "cart",
        on_item_added: Optional[Callable[[CartLine, int], None]] = None,
    ):
        self.storage = storage
        self.key = key
        self.on_item_added = on_item_added
        self._lines: List[CartLine] = self._load()

    def _load(self) -> List[CartLine]:
        raw = self.storage.get_item(self.key)
        if not raw:
            return []
        try:
            return _lines_adapter.validate_python(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.error(f"Failed to parse cart from local storage, starting empty: {e}")
            return []

    def _save(self) -> None:
        self.storage.set_item(self.key, _lines_adapter.dump_json(self._lines).decode())

    @property
    def lines(self) -> List[CartLine]:
        return [line.model_copy() for line in self._lines]

    @property
    def count(self) -> int:
        return sum(line.quantity for line in self._lines)

    @property
    def total(self) -> float:
        return sum(line_total(line) for line in self._lines)

    def get(self, product_id: str) -> Optional[CartLine]:
        for line in self._lines:
            if line.product_id == product_id:
                return line
        return None

    def add_item(self, product: Product, quantity: int = 1) -> CartLine:
        existing = self.get(product.id)
        if existing is not None:
            existing.quantity += quantity
            line = existing
        else:
            line = line_from_product(product, quantity)
            self._lines.append(line)
        self._save()
        self._notify_added(line, quantity)
        return line

    def _notify_added(self, line: CartLine, quantity: int) -> None:
        if self.on_item_added is None:
            return
        try:
            self.on_item_added(line, quantity)
        except Exception as e:
            # confirmation cue is best effort
            logger.debug(f"Add-to-cart cue failed: {e}")

    def remove_item(self, product_id: str) -> None:
        self._lines = [line for line in self._lines if line.product_id != product_id]
        self._save()

    def set_quantity(self, product_id: str, quantity: int) -> None:
        if quantity < 1:
            return
        line = self.get(product_id)
        if line is None:
            return
        line.quantity = quantity
        self._save()

    def clear(self) -> None:
        self._lines = []
        self._save()

    def snapshot(self) -> dict:
        return {
            "items": [line.model_dump() for line in self._lines],
            "count": self.count,
            "total": round(self.total, 2),
        }
