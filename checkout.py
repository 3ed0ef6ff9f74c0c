"""
Checkout Flow

    collecting_shipping -> awaiting_payment -> placing_order -> succeeded | failed

A session checks out either the cart contents or a single buy-now line,
never both. Item prices and the total are fixed when the session starts.
"""
import asyncio
import logging
from enum import Enum
from typing import Dict, List, Optional

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from cart import CartStore, line_total
from config import config
from errors import CheckoutStateError, EmptyCheckoutError, OrderPlacementError, PaymentError, ValidationFailed
from orders import place_order
from payments import PaymentGateway, PaymentReceipt
from profiles import get_profile
from schemas import AccountContext, CartLine, Order, ShippingDetails

logger = logging.getLogger(__name__)

SHIPPING_FIELDS = ("full_name", "email", "address", "city", "zip_code", "country", "phone")


class CheckoutState(str, Enum):
    COLLECTING_SHIPPING = "collecting_shipping"
    AWAITING_PAYMENT = "awaiting_payment"
    PLACING_ORDER = "placing_order"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CheckoutSession:
    def __init__(
        self,
        db,
        account: AccountContext,
        lines: List[CartLine],
        total: float,
        payments: PaymentGateway,
        cart: Optional[CartStore] = None,
        default_country: str = config.DEFAULT_COUNTRY,
    ):
        self.db = db
        self.account = account
        self.lines = [line.model_copy() for line in lines]
        self.total = total
        self.payments = payments
        self.cart = cart

        self.state = CheckoutState.COLLECTING_SHIPPING
        self.shipping_form: Dict[str, str] = {field: "" for field in SHIPPING_FIELDS}
        self.shipping_form["country"] = default_country
        self.shipping: Optional[ShippingDetails] = None
        self.order: Optional[Order] = None
        self.receipt: Optional[PaymentReceipt] = None
        self.error: Optional[str] = None

        self.active = True
        self.in_flight = False

    @classmethod
    def from_cart(cls, db, account: AccountContext, cart: CartStore, payments: PaymentGateway, **kwargs):
        return cls(db, account, cart.lines, cart.total, payments, cart=cart, **kwargs)

    @classmethod
    def buy_now(cls, db, account: AccountContext, line: CartLine, payments: PaymentGateway, **kwargs):
        return cls(db, account, [line], line_total(line), payments, **kwargs)

    @property
    def is_buy_now(self) -> bool:
        return self.cart is None

    def _require(self, *states: CheckoutState) -> None:
        if not self.active:
            raise CheckoutStateError("This checkout is no longer active.")
        if self.state not in states:
            raise CheckoutStateError(f"Checkout is {self.state.value.replace('_', ' ')}.")

    def prefill_shipping(self) -> Dict[str, str]:
        """Fill the shipping form from the profile, falling back to the account."""
        try:
            profile = get_profile(self.db, self.account.uid)
        except PyMongoError as e:
            logger.error(f"Error fetching user data for checkout: {e}")
            return dict(self.shipping_form)

        if profile is not None:
            full_name = f"{profile.first_name or ''} {profile.last_name or ''}".strip()
            self.shipping_form.update(
                full_name=full_name or self.account.display_name or "",
                email=self.account.email or "",
                phone=profile.phone_number or "",
                address=profile.address or "",
                zip_code=profile.pin_code or "",
                city=profile.city or "",
            )
        else:
            self.shipping_form.update(
                full_name=self.account.display_name or "",
                email=self.account.email or "",
            )
        return dict(self.shipping_form)

    def submit_shipping(self, details: Optional[Dict[str, str]] = None) -> ShippingDetails:
        self._require(CheckoutState.COLLECTING_SHIPPING)
        if not self.lines:
            raise EmptyCheckoutError()

        form = {**self.shipping_form, **{k: v for k, v in (details or {}).items() if k in SHIPPING_FIELDS}}
        self.shipping_form = form
        try:
            shipping = ShippingDetails(**form)
        except ValidationError as e:
            errors = {str(err["loc"][0]): err["msg"] for err in e.errors()}
            raise ValidationFailed(errors=errors)

        self.shipping = shipping
        self.state = CheckoutState.AWAITING_PAYMENT
        return shipping

    def back(self) -> None:
        if self.in_flight:
            raise CheckoutStateError("Your payment is being processed.")
        self._require(CheckoutState.AWAITING_PAYMENT, CheckoutState.FAILED)
        self.state = CheckoutState.COLLECTING_SHIPPING
        self.error = None

    async def pay(self, method, payment_method_id: Optional[str] = None) -> Optional[Order]:
        """Collect payment and place the order.

        Returns None when the session was left while the payment was in
        flight; such a result is dropped without touching the order store
        or the cart. Once a payment has been captured, retrying after a
        failed order write places the order again without collecting.
        """
        if self.in_flight:
            raise CheckoutStateError("Your payment is already being processed.")
        self._require(CheckoutState.AWAITING_PAYMENT, CheckoutState.FAILED)

        self.in_flight = True
        self.error = None
        try:
            receipt = self.receipt
            if receipt is None:
                try:
                    receipt = await self.payments.collect(
                        round(self.total, 2),
                        method,
                        payment_method_id,
                        description=f"Storefront order for {self.account.uid}",
                    )
                except PaymentError as e:
                    if self.active:
                        self.state = CheckoutState.AWAITING_PAYMENT
                        self.error = e.message
                    raise

                if not self.active:
                    logger.warning(f"Discarding payment {receipt.id}: checkout for {self.account.uid} was left")
                    return None
                self.receipt = receipt
            else:
                logger.info(f"Retrying order placement with captured payment {receipt.id}")
            return await asyncio.to_thread(self._place, receipt)
        finally:
            self.in_flight = False

    def _place(self, receipt: PaymentReceipt) -> Order:
        self.state = CheckoutState.PLACING_ORDER
        try:
            order = place_order(self.db, self.account, self.lines, self.total, self.shipping, receipt)
        except OrderPlacementError as e:
            self.state = CheckoutState.FAILED
            self.error = e.message
            raise

        if self.cart is not None:
            self.cart.clear()
        self.order = order
        self.state = CheckoutState.SUCCEEDED
        return order

    def leave(self) -> None:
        self.active = False

    def summary(self) -> dict:
        return {
            "state": self.state.value,
            "buy_now": self.is_buy_now,
            "items": [
                {**line.model_dump(), "line_total": round(line_total(line), 2)}
                for line in self.lines
            ],
            "total": round(self.total, 2),
            "shipping": dict(self.shipping_form),
            "in_flight": self.in_flight,
            "error": self.error,
            "order_id": self.order.id if self.order else None,
        }
