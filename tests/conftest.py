import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from payments import PaymentGateway, PaymentMethod, PaymentReceipt
from schemas import AccountContext
from storage import LocalStorage


class StubGateway:
    """Payment collaborator that always succeeds with a fixed receipt."""

    def __init__(self, receipt_id="pi_test_123"):
        self.receipt_id = receipt_id
        self.calls = []

    async def collect(self, amount, method, payment_method_id=None, description=None):
        self.calls.append((amount, PaymentMethod(method), payment_method_id))
        return PaymentReceipt(id=self.receipt_id, method=PaymentMethod(method))


@pytest.fixture
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "storage.json"))


@pytest.fixture
def account():
    return AccountContext(uid="user-1", email="jane@example.com", display_name="Jane Doe")


@pytest.fixture
def gateway():
    return PaymentGateway(api_key="sk_test_dummy", cod_delay=0)


@pytest.fixture
def stub_gateway():
    return StubGateway()


@pytest.fixture
def complete_profile(db, account):
    db["users"].insert_one({
        "_id": account.uid,
        "first_name": "Jane",
        "last_name": "Doe",
        "age": 28,
        "phone_number": "+91 98765 43210",
        "address": "12 MG Road",
        "pin_code": "560001",
        "city": "Bengaluru",
    })


@pytest.fixture
def make_product(db):
    def _make(name="Graphic Tee", price=100.0, discount_percent=0, **extra):
        doc = {
            "name": name,
            "price": price,
            "discount_percent": discount_percent,
            "category": extra.pop("category", "Tops"),
            "images": extra.pop("images", [f"/{name.lower().replace(' ', '-')}.jpg"]),
            **extra,
        }
        return str(db["products"].insert_one(doc).inserted_id)
    return _make


def _reset_state():
    main.app.dependency_overrides.clear()
    main.carts.clear()
    main.checkouts.clear()
    main.membership_flows.clear()


@pytest.fixture
def client(db, storage, account, gateway):
    _reset_state()
    main.app.dependency_overrides[main.get_db] = lambda: db
    main.app.dependency_overrides[main.get_storage] = lambda: storage
    main.app.dependency_overrides[main.get_payments] = lambda: gateway
    main.app.dependency_overrides[main.get_current_user] = lambda: account
    with TestClient(main.app) as c:
        yield c
    _reset_state()
