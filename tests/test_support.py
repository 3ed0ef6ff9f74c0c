import pytest
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from errors import PersistenceError
from schemas import SupportTicket
from support import submit_ticket


class _RefusingTickets:
    def insert_one(self, *args, **kwargs):
        raise PyMongoError("not primary")


def test_ticket_is_stored_as_new(db):
    ticket_id = submit_ticket(db, SupportTicket(name=" Jane ", email="jane@example.com", message="Where is my order?"))

    doc = db["support_tickets"].find_one()
    assert str(doc["_id"]) == ticket_id
    assert doc["name"] == "Jane"
    assert doc["subject"] == "Order Status"
    assert doc["status"] == "new"
    assert doc["created_at"] is not None


def test_ticket_requires_name_email_and_message():
    with pytest.raises(ValidationError):
        SupportTicket(name="Jane", email="jane@example.com", message="   ")
    with pytest.raises(ValidationError):
        SupportTicket(name="Jane", email="jane", message="Hi")
    with pytest.raises(ValidationError):
        SupportTicket(name="Jane", email="jane@example.com", subject="Billing", message="Hi")


def test_store_failure_asks_to_retry():
    with pytest.raises(PersistenceError) as exc:
        submit_ticket({"support_tickets": _RefusingTickets()}, SupportTicket(name="Jane", email="jane@example.com", message="Hi"))
    assert exc.value.message == "Failed to send message. Please try again."


def test_support_endpoint(client, db):
    res = client.post("/api/support", json={
        "name": "Jane Doe",
        "email": "jane@example.com",
        "subject": "Return Request",
        "message": "The tee is too small.",
    })
    assert res.status_code == 200
    assert res.json()["message"].startswith("We've received your request")
    assert db["support_tickets"].count_documents({"subject": "Return Request"}) == 1

    assert client.post("/api/support", json={"name": "Jane", "email": "jane@example.com"}).status_code == 422
