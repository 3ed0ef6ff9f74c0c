"""
Payment collaborator.

Card payments go through a Stripe PaymentIntent confirmed with the
PaymentMethod collected by the hosted card form. Cash on delivery needs no
authorization and resolves after a fixed simulated delay.
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Optional

import stripe
from pydantic import BaseModel

from errors import PaymentError

logger = logging.getLogger(__name__)


class PaymentMethod(str, Enum):
    CARD = "card"
    COD = "cod"


PAYMENT_LABELS = {
    PaymentMethod.CARD: "Stripe",
    PaymentMethod.COD: "Cash on Delivery",
}


class PaymentReceipt(BaseModel):
    id: str
    method: PaymentMethod

    @property
    def label(self) -> str:
        return PAYMENT_LABELS[self.method]


class PaymentGateway:
    def __init__(self, api_key: Optional[str] = None, currency: str = "usd", cod_delay: float = 1.0):
        self.api_key = api_key
        self.currency = currency
        self.cod_delay = cod_delay

    async def collect(
        self,
        amount: float,
        method,
        payment_method_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PaymentReceipt:
        method = PaymentMethod(method)
        if method is PaymentMethod.COD:
            await asyncio.sleep(self.cod_delay)
            return PaymentReceipt(id=f"cod_{int(time.time() * 1000)}", method=method)

        if not payment_method_id:
            raise PaymentError("Please enter your card details.")
        return await asyncio.to_thread(self._charge_card, amount, payment_method_id, description)

    def _charge_card(self, amount: float, payment_method_id: str, description: Optional[str]) -> PaymentReceipt:
        try:
            intent = stripe.PaymentIntent.create(
                amount=int(round(amount * 100)),
                currency=self.currency,
                payment_method=payment_method_id,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                description=description,
                api_key=self.api_key,
            )
        except stripe.CardError as e:
            raise PaymentError(e.user_message or "Your card was declined.")
        except stripe.StripeError as e:
            logger.error(f"Stripe request failed: {e}")
            raise PaymentError()

        if intent.status != "succeeded":
            logger.warning(f"PaymentIntent {intent.id} ended in status {intent.status}")
            raise PaymentError("Your card requires additional authentication. Please try another card.")
        return PaymentReceipt(id=intent.id, method=PaymentMethod.CARD)
