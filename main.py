import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr

import database
from cart import MAX_LINE_QUANTITY, CartStore, line_from_product
from catalog import PRODUCTS, add_review, get_product, list_products, list_reviews, search_products
from checkout import CheckoutSession
from config import config
from errors import (
    CheckoutStateError,
    EmptyCheckoutError,
    GeocodingError,
    MembershipActivationError,
    MembershipUnavailableError,
    NotFoundError,
    PaymentError,
    PersistenceError,
    ProfileIncompleteError,
    StorefrontError,
    ValidationFailed,
)
from logging_config import get_logger, setup_logging
from membership import MembershipFlow
from notifications import NotificationFeed
from orders import get_order, list_orders, status_timeline
from payments import PaymentGateway
from profiles import get_profile, is_profile_complete, reverse_geocode, save_profile, watch_profile
from schemas import (
    Account,
    AccountContext,
    AddToCart,
    MembershipPurchase,
    PaymentRequest,
    ProfileForm,
    ReviewIn,
    SetQuantity,
    ShippingForm,
    StartCheckout,
    SupportTicket,
)
from storage import LocalStorage
from support import submit_ticket

setup_logging()
logger = get_logger(__name__)

SECRET_KEY = config.SECRET_KEY
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = config.ACCESS_TOKEN_EXPIRE_MINUTES

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login")

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

payments = PaymentGateway(config.STRIPE_SECRET_KEY, config.PAYMENT_CURRENCY, config.COD_DELAY_SECONDS)

# Per-account state, keyed by account id
carts: Dict[str, CartStore] = {}
checkouts: Dict[str, CheckoutSession] = {}
membership_flows: Dict[str, MembershipFlow] = {}


# Errors
ERROR_STATUS = [
    (EmptyCheckoutError, 400),
    (ProfileIncompleteError, 403),
    (ValidationFailed, 422),
    (PaymentError, 402),
    (PersistenceError, 503),
    (NotFoundError, 404),
    (MembershipActivationError, 502),
    (GeocodingError, 502),
    (CheckoutStateError, 409),
    (MembershipUnavailableError, 409),
]


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 400)
    content = {"detail": exc.message}
    if isinstance(exc, ValidationFailed) and exc.errors:
        content["errors"] = exc.errors
    if isinstance(exc, MembershipActivationError):
        content["payment_id"] = exc.payment_id
    return JSONResponse(status_code=status_code, content=content)


# Helpers
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    id: str
    name: str
    email: EmailStr


def get_db():
    if database.db is None:
        raise HTTPException(500, "Database not configured")
    return database.db


def get_payments() -> PaymentGateway:
    return payments


def get_storage() -> LocalStorage:
    return LocalStorage(config.STORAGE_PATH)


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def get_current_user(token: str = Depends(oauth2_scheme), db=Depends(get_db)) -> AccountContext:
    credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    oid = database.to_object_id(user_id)
    account = db["accounts"].find_one({"_id": oid}) if oid else None
    if not account:
        raise credentials_exception
    return AccountContext(uid=str(account["_id"]), email=account.get("email"), display_name=account.get("name"))


def require_complete_profile(db, account: AccountContext) -> None:
    if not is_profile_complete(get_profile(db, account.uid)):
        raise ProfileIncompleteError()


def get_cart(account: AccountContext, storage: LocalStorage) -> CartStore:
    cart = carts.get(account.uid)
    if cart is None:
        cart = CartStore(
            storage,
            key=f"cart:{account.uid}",
            on_item_added=lambda line, qty: logger.info(f"Added to cart: {line.name} x{qty}"),
        )
        carts[account.uid] = cart
    return cart


def event_stream(request: Request, start, error_message: str) -> StreamingResponse:
    """Server-sent events fed by a change subscription running on another thread.

    `start(push, push_error)` subscribes and returns the teardown callable.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def push(payload):
        loop.call_soon_threadsafe(queue.put_nowait, payload)

    def push_error(exc):
        loop.call_soon_threadsafe(queue.put_nowait, {"error": error_message})

    stop = start(push, push_error)

    async def events():
        try:
            while not await request.is_disconnected():
                try:
                    payload = await asyncio.wait_for(queue.get(), timeout=15)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {json.dumps(jsonable_encoder(payload))}\n\n"
        finally:
            await asyncio.to_thread(stop)

    return StreamingResponse(events(), media_type="text/event-stream")


def current_checkout(account: AccountContext) -> CheckoutSession:
    session = checkouts.get(account.uid)
    if session is None:
        raise NotFoundError("No checkout in progress.")
    return session


@app.get("/")
def read_root():
    return {"message": "Storefront backend is running"}


# Auth
@app.post("/api/register", response_model=UserOut)
def register(user: Account, db=Depends(get_db)):
    existing = db["accounts"].find_one({"email": user.email})
    if existing:
        raise HTTPException(400, "Email already registered")
    data = {"name": user.name, "email": user.email, "password_hash": get_password_hash(user.password)}
    user_id = database.create_document(db, "accounts", data)
    return UserOut(id=user_id, name=user.name, email=user.email)


@app.post("/api/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db=Depends(get_db)):
    user = db["accounts"].find_one({"email": form_data.username})
    if not user or not verify_password(form_data.password, user.get("password_hash", "")):
        raise HTTPException(400, "Incorrect email or password")
    access_token = create_access_token({"sub": str(user["_id"])})
    return Token(access_token=access_token)


@app.get("/api/me", response_model=AccountContext)
def me(current: AccountContext = Depends(get_current_user)):
    return current


# Catalog
@app.get("/api/products")
def products_index(collection: Optional[str] = Query(None, description="new-in|drop-preview|..."), db=Depends(get_db)):
    return list_products(db, collection)


@app.get("/api/search")
def search(q: str = "", db=Depends(get_db)):
    return search_products(db, q)


@app.get("/api/products/{product_id}")
def product_detail(product_id: str, db=Depends(get_db)):
    return get_product(db, product_id)


@app.get("/api/products/{product_id}/reviews")
def get_reviews(product_id: str, db=Depends(get_db)):
    return list_reviews(db, product_id)


@app.post("/api/products/{product_id}/reviews")
def post_review(product_id: str, review: ReviewIn, current: AccountContext = Depends(get_current_user), db=Depends(get_db)):
    rid = add_review(db, product_id, current, review.rating, review.comment)
    return {"id": rid}


# Profile
@app.get("/api/profile")
def profile_detail(current: AccountContext = Depends(get_current_user), db=Depends(get_db)):
    profile = get_profile(db, current.uid)
    return {"profile": profile, "complete": is_profile_complete(profile)}


@app.put("/api/profile")
def profile_update(form: ProfileForm, current: AccountContext = Depends(get_current_user), db=Depends(get_db)):
    profile = save_profile(db, current.uid, form)
    return {"profile": profile, "complete": is_profile_complete(profile)}


@app.get("/api/profile/stream")
async def profile_stream(request: Request, current: AccountContext = Depends(get_current_user), db=Depends(get_db)):
    def start(push, push_error):
        subscription = watch_profile(
            db,
            current.uid,
            lambda profile: push({"profile": profile, "complete": is_profile_complete(profile)}),
            push_error,
        )
        return subscription.unsubscribe

    return event_stream(request, start, "Profile updates are unavailable right now.")


@app.get("/api/profile/geocode")
def profile_geocode(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    current: AccountContext = Depends(get_current_user),
):
    return reverse_geocode(latitude, longitude)


# Cart
@app.get("/api/cart")
def cart_detail(current: AccountContext = Depends(get_current_user), storage: LocalStorage = Depends(get_storage)):
    return get_cart(current, storage).snapshot()


@app.post("/api/cart/items")
def cart_add(
    item: AddToCart,
    current: AccountContext = Depends(get_current_user),
    db=Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
):
    require_complete_profile(db, current)
    product = get_product(db, item.product_id)
    cart = get_cart(current, storage)
    existing = cart.get(product.id)
    if (existing.quantity if existing else 0) + item.quantity > MAX_LINE_QUANTITY:
        raise ValidationFailed(f"You can add at most {MAX_LINE_QUANTITY} of this item.", {"quantity": "Too many"})
    cart.add_item(product, item.quantity)
    return cart.snapshot()


@app.patch("/api/cart/items/{product_id}")
def cart_set_quantity(
    product_id: str,
    body: SetQuantity,
    current: AccountContext = Depends(get_current_user),
    storage: LocalStorage = Depends(get_storage),
):
    if body.quantity > MAX_LINE_QUANTITY:
        raise ValidationFailed(f"You can add at most {MAX_LINE_QUANTITY} of this item.", {"quantity": "Too many"})
    cart = get_cart(current, storage)
    cart.set_quantity(product_id, body.quantity)
    return cart.snapshot()


@app.delete("/api/cart/items/{product_id}")
def cart_remove(product_id: str, current: AccountContext = Depends(get_current_user), storage: LocalStorage = Depends(get_storage)):
    cart = get_cart(current, storage)
    cart.remove_item(product_id)
    return cart.snapshot()


@app.delete("/api/cart")
def cart_clear(current: AccountContext = Depends(get_current_user), storage: LocalStorage = Depends(get_storage)):
    cart = get_cart(current, storage)
    cart.clear()
    return cart.snapshot()


# Checkout
@app.post("/api/checkout")
def checkout_start(
    body: StartCheckout,
    current: AccountContext = Depends(get_current_user),
    db=Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    gateway: PaymentGateway = Depends(get_payments),
):
    require_complete_profile(db, current)
    if body.buy_now is not None:
        product = get_product(db, body.buy_now.product_id)
        line = line_from_product(product, body.buy_now.quantity)
        session = CheckoutSession.buy_now(db, current, line, gateway)
    else:
        session = CheckoutSession.from_cart(db, current, get_cart(current, storage), gateway)
    if not session.lines:
        raise EmptyCheckoutError()

    previous = checkouts.get(current.uid)
    if previous is not None:
        previous.leave()
    session.prefill_shipping()
    checkouts[current.uid] = session
    return session.summary()


@app.get("/api/checkout")
def checkout_detail(current: AccountContext = Depends(get_current_user)):
    return current_checkout(current).summary()


@app.put("/api/checkout/shipping")
def checkout_shipping(form: ShippingForm, current: AccountContext = Depends(get_current_user)):
    session = current_checkout(current)
    session.submit_shipping(form.model_dump(exclude_none=True))
    return session.summary()


@app.post("/api/checkout/back")
def checkout_back(current: AccountContext = Depends(get_current_user)):
    session = current_checkout(current)
    session.back()
    return session.summary()


@app.post("/api/checkout/payment")
async def checkout_payment(body: PaymentRequest, current: AccountContext = Depends(get_current_user)):
    session = current_checkout(current)
    order = await session.pay(body.method, body.payment_method_id)
    if order is None:
        raise CheckoutStateError("This checkout is no longer active.")
    return {"order_id": order.id, "status": "received", "checkout": session.summary()}


@app.delete("/api/checkout")
def checkout_leave(current: AccountContext = Depends(get_current_user)):
    session = checkouts.pop(current.uid, None)
    if session is not None:
        session.leave()
    return {"ok": True}


# Orders
@app.get("/api/orders")
def orders_index(current: AccountContext = Depends(get_current_user), db=Depends(get_db)):
    return list_orders(db, current.uid)


@app.get("/api/orders/{order_id}")
def order_detail(order_id: str, current: AccountContext = Depends(get_current_user), db=Depends(get_db)):
    order = get_order(db, order_id, user_id=current.uid)
    return {**order.model_dump(), "timeline": [step.model_dump() for step in status_timeline(order.status)]}


# Membership
@app.get("/api/membership")
def membership_overview(
    current: AccountContext = Depends(get_current_user),
    db=Depends(get_db),
    gateway: PaymentGateway = Depends(get_payments),
):
    return MembershipFlow(db, current, gateway).overview()


@app.post("/api/membership/{plan_id}")
async def membership_purchase(
    plan_id: str,
    body: MembershipPurchase,
    current: AccountContext = Depends(get_current_user),
    db=Depends(get_db),
    gateway: PaymentGateway = Depends(get_payments),
):
    running = membership_flows.get(current.uid)
    if running is not None and running.in_flight:
        raise MembershipUnavailableError("Your payment is already being processed.")
    flow = MembershipFlow(db, current, gateway)
    membership_flows[current.uid] = flow
    try:
        activation = await flow.purchase(plan_id, body.payment_method_id)
    finally:
        if membership_flows.get(current.uid) is flow:
            membership_flows.pop(current.uid)
    if activation is None:
        raise MembershipUnavailableError("This membership purchase is no longer active.")
    return {
        "message": f"Welcome to the {activation.plan_name} Inner Circle!",
        "activation": activation,
    }


@app.delete("/api/membership/payment")
def membership_leave(current: AccountContext = Depends(get_current_user)):
    flow = membership_flows.pop(current.uid, None)
    if flow is not None:
        flow.leave()
    return {"ok": True}


# Notifications
@app.get("/api/notifications")
def notifications_index(current: AccountContext = Depends(get_current_user), db=Depends(get_db)):
    feed = NotificationFeed(db, current)
    items = feed.refresh()
    return {"notifications": items, "unread_count": feed.unread_count}


@app.get("/api/notifications/stream")
async def notifications_stream(request: Request, current: AccountContext = Depends(get_current_user), db=Depends(get_db)):
    feed = NotificationFeed(db, current)

    def start(push, push_error):
        feed.subscribe(lambda items, unread_count: push({"notifications": items, "unread_count": unread_count}), push_error)
        return feed.unsubscribe

    return event_stream(request, start, "Notifications are unavailable right now.")


@app.post("/api/notifications/read-all")
def notifications_read_all(current: AccountContext = Depends(get_current_user), db=Depends(get_db)):
    feed = NotificationFeed(db, current)
    feed.refresh()
    feed.mark_all_read()
    return {"ok": True}


@app.post("/api/notifications/{notification_id}/read")
def notifications_read(notification_id: str, current: AccountContext = Depends(get_current_user), db=Depends(get_db)):
    NotificationFeed(db, current).mark_read(notification_id)
    return {"ok": True}


@app.delete("/api/notifications")
def notifications_clear(current: AccountContext = Depends(get_current_user), db=Depends(get_db)):
    feed = NotificationFeed(db, current)
    feed.refresh()
    feed.clear_all()
    return {"ok": True}


# Support
@app.post("/api/support")
def support_ticket(ticket: SupportTicket, db=Depends(get_db)):
    ticket_id = submit_ticket(db, ticket)
    return {"id": ticket_id, "message": "We've received your request and will get back to you shortly."}


# Seed sample data if empty
@app.post("/api/seed")
def seed(db=Depends(get_db)):
    if db[PRODUCTS].count_documents({}) == 0:
        products = [
            {
                "name": "Oversized Graphic Tee",
                "description": "Heavyweight cotton tee with a washed finish.",
                "price": 45.0,
                "discount_percent": 10,
                "category": "Tops",
                "images": ["/prod-tee-1.jpg", "/prod-tee-2.jpg"],
                "collection_types": ["new-in", "drop-preview"],
            },
            {
                "name": "Black Cotton Shirt",
                "description": "Relaxed fit shirt in brushed black cotton.",
                "price": 60.0,
                "discount_percent": 0,
                "category": "Shirts",
                "images": ["/prod-shirt-1.jpg"],
                "collection_types": ["new-in"],
            },
            {
                "name": "Cargo Utility Pants",
                "description": "Ripstop cargo pants with six pockets.",
                "price": 85.0,
                "discount_percent": 20,
                "category": "Bottoms",
                "images": ["/prod-cargo-1.jpg"],
                "collection_type": "drop-preview",
            },
        ]
        for product in products:
            database.create_document(db, PRODUCTS, product)
    return {"ok": True}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if config.DATABASE_NAME else "❌ Not Set",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            try:
                response["collections"] = database.db.list_collection_names()[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import os

    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
