"""
User profiles: the `users` collection, profile completeness gate and the
reverse-geocoding helper used to prefill the address form.
"""
import logging
from typing import Callable, Dict, Optional

import requests
from pymongo.errors import PyMongoError

from config import config
from database import utcnow
from errors import GeocodingError, PersistenceError, ValidationFailed
from schemas import AddressSuggestion, ProfileForm, UserProfile
from subscriptions import ChangeSubscription

logger = logging.getLogger(__name__)

PROFILE_COLLECTION = "users"
REQUIRED_FIELDS = ("phone_number", "address", "pin_code", "city")
MIN_AGE = 15


def get_profile(db, user_id: str) -> Optional[UserProfile]:
    doc = db[PROFILE_COLLECTION].find_one({"_id": user_id})
    if not doc:
        return None
    return UserProfile(**doc)


def is_profile_complete(profile: Optional[UserProfile]) -> bool:
    if profile is None:
        return False
    return all((getattr(profile, field) or "").strip() for field in REQUIRED_FIELDS)


def validate_profile(form: ProfileForm) -> Dict[str, str]:
    errors = {}
    if form.age is None or form.age < MIN_AGE:
        errors["age"] = "Age must be 15 or older."
    if not form.pin_code.strip():
        errors["pin_code"] = "Pin Code and Address are required."
    if not form.address.strip():
        errors["address"] = "Pin Code and Address are required."
    return errors


def save_profile(db, user_id: str, form: ProfileForm) -> UserProfile:
    errors = validate_profile(form)
    if errors:
        raise ValidationFailed(next(iter(errors.values())), errors)

    try:
        db[PROFILE_COLLECTION].update_one(
            {"_id": user_id},
            {"$set": {**form.model_dump(), "updated_at": utcnow()}},
            upsert=True,
        )
        return get_profile(db, user_id)
    except PyMongoError as e:
        logger.error(f"Error saving profile for {user_id}: {e}")
        raise PersistenceError("Failed to save profile. Please try again.")


def watch_profile(
    db,
    user_id: str,
    on_change: Callable[[Optional[UserProfile]], None],
    on_error: Optional[Callable[[Exception], None]] = None,
) -> ChangeSubscription:
    return ChangeSubscription(
        db[PROFILE_COLLECTION],
        load_snapshot=lambda: get_profile(db, user_id),
        on_change=on_change,
        on_error=on_error,
        pipeline=[{"$match": {"documentKey._id": user_id}}],
    ).start()


def reverse_geocode(latitude: float, longitude: float) -> AddressSuggestion:
    """Best-effort address, city and postal code for device coordinates."""
    try:
        response = requests.get(
            config.GEOCODE_URL,
            params={"latitude": latitude, "longitude": longitude, "localityLanguage": "en"},
            timeout=config.GEOCODE_TIMEOUT,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Error fetching location for ({latitude}, {longitude}): {e}")
        raise GeocodingError()

    return AddressSuggestion(
        city=data.get("city") or data.get("locality") or "",
        pin_code=data.get("postcode") or "",
        address=f"{data.get('locality') or ''}, {data.get('principalSubdivision') or ''}, {data.get('countryName') or ''}",
    )
