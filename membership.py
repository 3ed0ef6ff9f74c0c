"""
Membership tiers.

Plans are a fixed catalog. Paying for a plan writes an approved request
record and then activates the plan on the profile; the two writes are not
transactional, so a failure in between is reported as its own error
instead of being rolled back (the payment is already captured).
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel
from pymongo.errors import PyMongoError

from database import create_document, find_newest_first, utcnow
from errors import MembershipActivationError, MembershipUnavailableError, PersistenceError
from payments import PaymentGateway, PaymentMethod, PaymentReceipt
from profiles import PROFILE_COLLECTION, get_profile
from schemas import AccountContext, MembershipRequest, UserProfile

logger = logging.getLogger(__name__)

MEMBERSHIP_REQUESTS = "membership_requests"
VALIDITY = timedelta(days=30)


class Plan(BaseModel):
    id: str
    tier: int
    name: str
    price: float
    features: List[str]

    @property
    def price_label(self) -> str:
        return f"${self.price:.2f}/mo"


PLANS = [
    Plan(
        id="silver",
        tier=1,
        name="Silver",
        price=9.99,
        features=["Early Access to Drops", "Free Standard Shipping", "5% Off All Orders"],
    ),
    Plan(
        id="gold",
        tier=2,
        name="Gold",
        price=19.99,
        features=["Everything in Silver", "Priority Dispatch (12h)", "10% Off All Orders", "Exclusive Gold-Only Items"],
    ),
    Plan(
        id="platinum",
        tier=3,
        name="Platinum",
        price=49.99,
        features=[
            "Everything in Gold",
            "Same-Day Dispatch",
            "20% Off All Orders",
            "Personal Stylist Support",
            "VIP Events Access",
        ],
    ),
]
PLANS_BY_ID = {plan.id: plan for plan in PLANS}


class ActivePlan(BaseModel):
    plan_id: str
    plan_name: str


class ButtonState(BaseModel):
    text: str
    disabled: bool


class Activation(BaseModel):
    plan_id: str
    plan_name: str
    type: str
    payment_id: str
    valid_until: datetime


def active_plan(profile: Optional[UserProfile]) -> Optional[ActivePlan]:
    if profile is None or profile.membership_status != "active" or not profile.membership_plan:
        return None
    plan = PLANS_BY_ID.get(profile.membership_plan)
    return ActivePlan(
        plan_id=profile.membership_plan,
        plan_name=profile.membership_plan_name or (plan.name if plan else "Unknown"),
    )


def find_pending_request(db, user_id: str) -> Optional[MembershipRequest]:
    docs = find_newest_first(db[MEMBERSHIP_REQUESTS], {"user_id": user_id, "status": "pending"})
    return MembershipRequest(**docs[0]) if docs else None


def button_state(plan: Plan, active: Optional[ActivePlan], pending: Optional[MembershipRequest]) -> ButtonState:
    # a pending request for any plan locks every plan
    if pending is not None:
        return ButtonState(text="Request Pending", disabled=True)

    if active is not None:
        if active.plan_id == plan.id:
            return ButtonState(text="Current Plan", disabled=True)
        current = PLANS_BY_ID.get(active.plan_id)
        current_tier = current.tier if current else 0
        if plan.tier > current_tier:
            return ButtonState(text="Upgrade", disabled=False)
        return ButtonState(text="Downgrade Unavailable", disabled=True)

    return ButtonState(text="Request Access", disabled=False)


class MembershipFlow:
    def __init__(self, db, account: AccountContext, payments: PaymentGateway):
        self.db = db
        self.account = account
        self.payments = payments
        self.active = True
        self.in_flight = False

    def _current(self):
        try:
            profile = get_profile(self.db, self.account.uid)
            pending = find_pending_request(self.db, self.account.uid)
        except PyMongoError as e:
            logger.error(f"Error checking membership for {self.account.uid}: {e}")
            raise PersistenceError()
        return active_plan(profile), pending

    def overview(self) -> dict:
        active, pending = self._current()
        return {
            "active_plan": active.model_dump() if active else None,
            "pending_request": pending.model_dump() if pending else None,
            "plans": [
                {
                    **plan.model_dump(),
                    "price_label": plan.price_label,
                    "button": button_state(plan, active, pending).model_dump(),
                }
                for plan in PLANS
            ],
        }

    async def purchase(self, plan_id: str, payment_method_id: str) -> Optional[Activation]:
        plan = PLANS_BY_ID.get(plan_id)
        if plan is None:
            raise MembershipUnavailableError("Unknown membership plan.")
        if self.in_flight:
            raise MembershipUnavailableError("Your payment is already being processed.")

        active, pending = await asyncio.to_thread(self._current)
        if pending is not None:
            raise MembershipUnavailableError(
                f"You already have a pending request for {pending.plan_name}. Please wait for approval."
            )
        state = button_state(plan, active, pending)
        if state.disabled:
            raise MembershipUnavailableError(f"{plan.name}: {state.text}.")

        self.in_flight = True
        try:
            receipt = await self.payments.collect(
                plan.price,
                PaymentMethod.CARD,
                payment_method_id,
                description=f"{plan.name} membership",
            )
        finally:
            self.in_flight = False

        if not self.active:
            logger.warning(f"Discarding membership payment {receipt.id}: {self.account.uid} left before it resolved")
            return None
        return await asyncio.to_thread(self._activate, plan, receipt, "upgrade" if active else "new")

    def _activate(self, plan: Plan, receipt: PaymentReceipt, request_type: str) -> Activation:
        now = utcnow()
        valid_until = now + VALIDITY
        request = MembershipRequest(
            user_id=self.account.uid,
            user_email=self.account.email,
            user_name=self.account.display_name or "Anonymous",
            plan_id=plan.id,
            plan_name=plan.name,
            status="approved",
            type=request_type,
            payment_id=receipt.id,
            amount=plan.price,
            created_at=now,
        )
        try:
            create_document(self.db, MEMBERSHIP_REQUESTS, request)
            self.db[PROFILE_COLLECTION].update_one(
                {"_id": self.account.uid},
                {"$set": {
                    "membership_status": "active",
                    "membership_plan": plan.id,
                    "membership_plan_name": plan.name,
                    "membership_valid_until": valid_until,
                }},
                upsert=True,
            )
        except PyMongoError as e:
            logger.error(f"Payment {receipt.id} captured but membership activation failed for {self.account.uid}: {e}")
            raise MembershipActivationError(receipt.id)

        logger.info(f"{self.account.uid} joined {plan.name} ({request_type})")
        return Activation(
            plan_id=plan.id,
            plan_name=plan.name,
            type=request_type,
            payment_id=receipt.id,
            valid_until=valid_until,
        )

    def leave(self) -> None:
        self.active = False
