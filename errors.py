"""
Storefront error taxonomy.

validation -> ValidationFailed, business errors reported by the payment
provider -> PaymentError, connectivity/persistence -> PersistenceError,
missing entities -> NotFoundError. Nothing here is retried automatically.
"""
from typing import Dict, Optional


class StorefrontError(Exception):
    message = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationFailed(StorefrontError):
    message = "Please check the highlighted fields."

    def __init__(self, message: Optional[str] = None, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.errors = errors or {}


class EmptyCheckoutError(ValidationFailed):
    message = "Your cart is empty"


class ProfileIncompleteError(ValidationFailed):
    message = "Please complete your profile details (Phone, Address) to continue."


class PaymentError(StorefrontError):
    message = "Payment could not be processed. Please try again."


class PersistenceError(StorefrontError):
    message = "Something went wrong. Please try again."


class OrderPlacementError(PersistenceError):
    message = "Failed to place order. Please try again."


class NotFoundError(StorefrontError):
    message = "Not found."


class OrderNotFoundError(NotFoundError):
    message = "Order not found."


class ProductNotFoundError(NotFoundError):
    message = "Product not found."


class MembershipActivationError(StorefrontError):
    message = "Payment successful but activation failed. Please contact support."

    def __init__(self, payment_id: str, message: Optional[str] = None):
        super().__init__(message)
        self.payment_id = payment_id


class MembershipUnavailableError(StorefrontError):
    message = "This plan is not available."


class CheckoutStateError(StorefrontError):
    message = "Checkout is not ready for this step."


class GeocodingError(StorefrontError):
    message = "Failed to fetch address details."
