import re

import pytest

from orders_service.errors import PersistenceError
from orders_service.status import utcnow
from orders_service.store import OrderStore


def test_create_draft_success(client, checkout, store):
    response = client.post("/orders/draft", json={"razorpay_order_id": "order_TEST001", **checkout})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert re.match(r"^ORD-\d{8}-", data["order_number"])

    order = store.get(data["order_id"])
    assert order.order_number == data["order_number"]
    assert order.payment_status == "pending"
    assert order.status == "pending"
    assert order.total_cents == 150000
    assert order.items_json[0]["title"] == "Linen Kurta"
    assert len(order.history) == 1
    assert "order_TEST001" in order.history.latest.note


def test_subtotal_defaults_to_total(client, checkout, store):
    del checkout["subtotal_cents"]
    response = client.post("/orders/draft", json={"razorpay_order_id": "order_TEST001", **checkout})

    assert response.status_code == 200
    assert store.get(response.json()["order_id"]).subtotal_cents == 150000


@pytest.mark.parametrize("field", ["razorpay_order_id", "email", "address_json", "items_json", "total_cents"])
def test_create_draft_missing_field(client, checkout, field):
    body = {"razorpay_order_id": "order_TEST001", **checkout}
    del body[field]

    response = client.post("/orders/draft", json=body)

    assert response.status_code == 400
    assert response.json()["success"] is False


@pytest.mark.parametrize("override,error", [
    ({"items_json": []}, "Invalid items: must be a non-empty array"),
    ({"total_cents": 0, "subtotal_cents": 0}, "Invalid total: must be a positive number"),
    ({"total_cents": 140000}, "Invalid total: does not match subtotal + shipping + tax - discount"),
    ({"email": "   "}, "Invalid email: must be a non-empty string"),
])
def test_create_draft_rejects_bad_checkout(client, checkout, store, override, error):
    response = client.post("/orders/draft", json={"razorpay_order_id": "order_TEST001", **checkout, **override})

    assert response.status_code == 400
    assert response.json()["error"] == error
    assert store.list_orders() == []


def test_create_draft_rejects_malformed_body(client, checkout):
    response = client.post("/orders/draft", json={"razorpay_order_id": "order_TEST001", **checkout,
                                                  "items_json": [{"title": "No id"}]})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"


def test_totals_include_shipping_tax_and_discount(client, checkout, store):
    checkout.update(subtotal_cents=150000, shipping_cents=5000, tax_cents=2700, discount_cents=10000,
                    total_cents=147700)

    response = client.post("/orders/draft", json={"razorpay_order_id": "order_TEST001", **checkout})

    assert response.status_code == 200


def test_store_failure_aborts_checkout(client, checkout, mocker):
    mocker.patch.object(OrderStore, "insert_draft", side_effect=PersistenceError("Database error", detail="disk full"))

    response = client.post("/orders/draft", json={"razorpay_order_id": "order_TEST001", **checkout})

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Database error", "message": "disk full"}


@pytest.mark.parametrize("payment_status", ["cancelled", "failed"])
def test_update_draft_records_abandoned_attempt(client, create_draft, store, payment_status):
    draft = create_draft()

    response = client.put("/orders/draft", json={"order_id": draft["order_id"], "payment_status": payment_status})

    assert response.status_code == 200
    assert response.json() == {"success": True, "order_id": draft["order_id"], "order_number": draft["order_number"]}
    order = store.get(draft["order_id"])
    assert order.payment_status == payment_status
    assert order.status == "pending"
    assert len(order.history) == 2
    assert order.history.latest.note == f"Payment {payment_status}"


def test_update_draft_uses_client_note(client, create_draft, store):
    draft = create_draft()

    client.put("/orders/draft", json={"order_id": draft["order_id"], "payment_status": "cancelled",
                                      "note": "Customer closed the payment window"})

    assert store.get(draft["order_id"]).history.latest.note == "Customer closed the payment window"


def test_update_draft_cannot_touch_paid_order(client, create_draft, store):
    draft = create_draft()
    store.update_status_appending_history(
        draft["order_id"],
        {"payment_status": "paid", "payment_id": "pay_1", "payment_date": utcnow(), "status": "confirmed"},
    )

    response = client.put("/orders/draft", json={"order_id": draft["order_id"], "payment_status": "failed"})

    assert response.status_code == 409
    assert store.get(draft["order_id"]).payment_status == "paid"


@pytest.mark.parametrize("body,status", [
    ({"payment_status": "failed"}, 400),
    ({"order_id": "x"}, 400),
    ({"order_id": "x", "payment_status": "paid"}, 400),
    ({"order_id": "x", "payment_status": "failed", "status": "confirmed"}, 400),
    ({"order_id": "missing", "payment_status": "failed"}, 404),
])
def test_update_draft_validation(client, body, status):
    response = client.put("/orders/draft", json=body)

    assert response.status_code == status
    assert response.json()["success"] is False
