"""
Database Schemas for the storefront

Each document model maps to a MongoDB collection:
- Product -> "products", Review -> "reviews"
- Order -> "orders"
- UserProfile -> "users" (document id is the account id)
- MembershipRequest -> "membership_requests"
- Notification -> "notifications"
- Account -> "accounts"
- SupportTicket -> "support_tickets"
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

OrderStatus = Literal["pending", "shipped", "out-for-delivery", "delivered", "cancelled"]
PaymentLabel = Literal["Cash on Delivery", "Stripe"]
MembershipStatus = Literal["none", "active"]


# ---------- Accounts ----------

class Account(BaseModel):
    name: str = Field(..., description="Display name")
    email: EmailStr
    password: str = Field(..., min_length=6)


class AccountContext(BaseModel):
    """The signed-in account every component acts on behalf of."""
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None


# ---------- Catalog ----------

class Product(BaseModel):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    discount_percent: float = Field(0, ge=0, le=100)
    category: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    collection_types: List[str] = Field(default_factory=list)
    collection_type: Optional[str] = Field(None, description="Legacy single collection tag")


class Review(BaseModel):
    product_id: str
    user_id: str
    user_name: str = "Anonymous"
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


# ---------- Cart ----------

class CartLine(BaseModel):
    product_id: str
    name: str
    unit_price: float = Field(..., ge=0)
    discount_percent: float = Field(0, ge=0, le=100)
    quantity: int = Field(1, ge=1)
    image_url: Optional[str] = None
    category: Optional[str] = None


# ---------- Checkout / Orders ----------

class ShippingDetails(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(..., min_length=1)
    email: EmailStr
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float
    discount_percent: float = 0
    final_price: float
    quantity: int = Field(..., ge=1)
    image: str = ""


class Order(BaseModel):
    id: Optional[str] = None
    user_id: str
    user_email: str
    items: List[OrderItem]
    total_amount: float
    shipping_details: ShippingDetails
    status: OrderStatus = "pending"
    payment_method: PaymentLabel
    payment_id: str
    created_at: Optional[datetime] = None


# ---------- Profile / Membership ----------

class ProfileForm(BaseModel):
    first_name: str = ""
    last_name: str = ""
    age: Optional[int] = None
    phone_number: str = ""
    alternative_phone_number: str = ""
    pin_code: str = ""
    address: str = ""
    city: str = ""


class UserProfile(ProfileForm):
    membership_status: MembershipStatus = "none"
    membership_plan: Optional[str] = None
    membership_plan_name: Optional[str] = None
    membership_valid_until: Optional[datetime] = None


class MembershipRequest(BaseModel):
    user_id: str
    user_email: Optional[str] = None
    user_name: str = "Anonymous"
    plan_id: str
    plan_name: str
    status: Literal["pending", "approved"]
    type: Literal["new", "upgrade"]
    payment_id: Optional[str] = None
    amount: float
    created_at: Optional[datetime] = None


class AddressSuggestion(BaseModel):
    address: str
    city: str
    pin_code: str


# ---------- Notifications ----------

class Notification(BaseModel):
    id: str
    user_id: str
    type: str = "system"
    title: str
    message: str
    link: Optional[str] = None
    read: bool = False
    created_at: Optional[datetime] = None


# ---------- Support ----------

SupportSubject = Literal["Order Status", "Return Request", "Product Question", "Other"]


class SupportTicket(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    email: EmailStr
    subject: SupportSubject = "Order Status"
    message: str = Field(..., min_length=1)
    status: Literal["new"] = "new"


# ---------- Request bodies ----------

class AddToCart(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class SetQuantity(BaseModel):
    quantity: int


class BuyNow(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1, le=10)


class StartCheckout(BaseModel):
    buy_now: Optional[BuyNow] = None


class PaymentRequest(BaseModel):
    method: Literal["card", "cod"] = "card"
    payment_method_id: Optional[str] = Field(None, description="Stripe PaymentMethod id for card payments")


class MembershipPurchase(BaseModel):
    payment_method_id: str


class ReviewIn(BaseModel):
    rating: int = Field(5, ge=1, le=5)
    comment: str


class ShippingForm(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
