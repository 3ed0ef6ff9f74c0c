import queue

import pytest
import requests

import profiles
from errors import GeocodingError, ValidationFailed
from profiles import get_profile, is_profile_complete, reverse_geocode, save_profile, watch_profile
from schemas import ProfileForm, UserProfile

FORM = ProfileForm(
    first_name="Jane",
    last_name="Doe",
    age=28,
    phone_number="+91 98765 43210",
    pin_code="560001",
    address="12 MG Road",
    city="Bengaluru",
)


def test_completeness_requires_phone_address_pin_and_city():
    assert is_profile_complete(UserProfile(**FORM.model_dump()))
    assert not is_profile_complete(None)
    assert not is_profile_complete(UserProfile(**{**FORM.model_dump(), "city": "  "}))
    assert not is_profile_complete(UserProfile(**{**FORM.model_dump(), "phone_number": ""}))


def test_save_profile_creates_then_merges(db, account):
    db["users"].insert_one({"_id": account.uid, "membership_status": "active", "membership_plan": "gold"})

    saved = save_profile(db, account.uid, FORM)

    assert saved.city == "Bengaluru"
    assert saved.membership_plan == "gold"
    assert is_profile_complete(get_profile(db, account.uid))


@pytest.mark.parametrize("changes, field", [
    ({"age": 14}, "age"),
    ({"age": None}, "age"),
    ({"pin_code": ""}, "pin_code"),
    ({"address": " "}, "address"),
])
def test_save_profile_validation(db, account, changes, field):
    with pytest.raises(ValidationFailed) as exc:
        save_profile(db, account.uid, FORM.model_copy(update=changes))

    assert field in exc.value.errors
    assert get_profile(db, account.uid) is None


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


def test_reverse_geocode_builds_address(monkeypatch):
    seen = {}

    def fake_get(url, params=None, timeout=None):
        seen.update(params)
        return FakeResponse({
            "locality": "Indiranagar",
            "city": "",
            "postcode": "560038",
            "principalSubdivision": "Karnataka",
            "countryName": "India",
        })

    monkeypatch.setattr(profiles.requests, "get", fake_get)
    suggestion = reverse_geocode(12.97, 77.64)

    assert suggestion.city == "Indiranagar"
    assert suggestion.pin_code == "560038"
    assert suggestion.address == "Indiranagar, Karnataka, India"
    assert seen["latitude"] == 12.97


def test_reverse_geocode_failure(monkeypatch):
    def unreachable(url, params=None, timeout=None):
        raise requests.ConnectionError("no route to host")

    monkeypatch.setattr(profiles.requests, "get", unreachable)
    with pytest.raises(GeocodingError):
        reverse_geocode(0, 0)

    monkeypatch.setattr(profiles.requests, "get", lambda url, params=None, timeout=None: FakeResponse({}, 503))
    with pytest.raises(GeocodingError):
        reverse_geocode(0, 0)


class _Stream:
    def __init__(self, events):
        self.events = events
        self.alive = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.alive = False

    def try_next(self):
        try:
            return self.events.get(timeout=0.05)
        except queue.Empty:
            return None


class FakeUsers:
    name = "users"

    def __init__(self, doc):
        self.doc = doc
        self.events = queue.Queue()

    def find_one(self, filter_dict):
        return dict(self.doc) if self.doc else None

    def watch(self, pipeline, **kwargs):
        return _Stream(self.events)


def test_watch_profile_follows_membership_changes(account):
    users = FakeUsers({"_id": account.uid, **FORM.model_dump()})
    seen = queue.Queue()

    subscription = watch_profile({"users": users}, account.uid, seen.put)
    assert seen.get(timeout=2).membership_status == "none"

    users.doc["membership_status"] = "active"
    users.doc["membership_plan"] = "silver"
    users.events.put({"operationType": "update"})
    assert seen.get(timeout=2).membership_plan == "silver"

    subscription.unsubscribe()
    assert not subscription.active
