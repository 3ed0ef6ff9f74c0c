"""
Order placement, order history and the order status timeline.
"""
import logging
from typing import List, Optional

from pydantic import BaseModel
from pymongo.errors import PyMongoError

from cart import discounted_price
from database import create_document, newest_first, serialize, to_object_id
from errors import OrderNotFoundError, OrderPlacementError, PersistenceError
from payments import PaymentReceipt
from schemas import AccountContext, CartLine, Order, OrderItem, ShippingDetails

logger = logging.getLogger(__name__)

ORDERS = "orders"

STATUS_STEPS = [
    ("pending", "Order Placed"),
    ("shipped", "Shipped"),
    ("out-for-delivery", "Out for Delivery"),
    ("delivered", "Delivered"),
]
STATUS_ORDER = [step_id for step_id, _ in STATUS_STEPS]


class TimelineStep(BaseModel):
    id: str
    label: str
    completed: bool
    active: bool


def snapshot_items(lines: List[CartLine]) -> List[OrderItem]:
    """Freeze line prices as they are at the moment of purchase."""
    return [
        OrderItem(
            product_id=line.product_id,
            name=line.name,
            price=line.unit_price,
            discount_percent=line.discount_percent or 0,
            final_price=discounted_price(line.unit_price, line.discount_percent),
            quantity=line.quantity,
            image=line.image_url or "",
        )
        for line in lines
    ]


def place_order(
    db,
    account: AccountContext,
    lines: List[CartLine],
    total: float,
    shipping: ShippingDetails,
    receipt: PaymentReceipt,
) -> Order:
    order = Order(
        user_id=account.uid,
        user_email=shipping.email,
        items=snapshot_items(lines),
        total_amount=round(total, 2),
        shipping_details=shipping,
        status="pending",
        payment_method=receipt.label,
        payment_id=receipt.id,
    )
    data = order.model_dump(exclude={"id", "created_at"})
    try:
        order.id = create_document(db, ORDERS, data)
    except PyMongoError as e:
        logger.error(f"Error placing order for {account.uid}: {e}")
        raise OrderPlacementError()
    logger.info(f"Order placed with ID: {order.id}")
    return order


def _order(doc: dict) -> Order:
    return Order(**serialize(doc))


def list_orders(db, user_id: str) -> List[Order]:
    try:
        docs = list(db[ORDERS].find({"user_id": user_id}))
    except PyMongoError as e:
        logger.error(f"Error fetching orders for {user_id}: {e}")
        raise PersistenceError("Failed to load your orders.")
    # the query has no guaranteed order
    return [_order(doc) for doc in newest_first(docs)]


def get_order(db, order_id: str, user_id: Optional[str] = None) -> Order:
    oid = to_object_id(order_id)
    if oid is None:
        raise OrderNotFoundError()
    try:
        doc = db[ORDERS].find_one({"_id": oid})
    except PyMongoError as e:
        logger.error(f"Error fetching order {order_id}: {e}")
        raise PersistenceError("Failed to load order details.")
    if not doc or (user_id is not None and doc.get("user_id") != user_id):
        raise OrderNotFoundError()
    return _order(doc)


def status_timeline(status: Optional[str]) -> List[TimelineStep]:
    current = (status or "").lower()
    if current == "cancelled":
        return []
    current_index = STATUS_ORDER.index(current) if current in STATUS_ORDER else -1
    return [
        TimelineStep(
            id=step_id,
            label=label,
            completed=index < current_index,
            active=current_index != -1 and index <= current_index,
        )
        for index, (step_id, label) in enumerate(STATUS_STEPS)
    ]
