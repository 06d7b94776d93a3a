import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import orders_service.auth
from orders_service.database import Base
from orders_service.main import app as fastapi_app
from orders_service.order_numbers import OrderNumberGenerator
from orders_service.store import OrderStore

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_orders.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)

KEY_SECRET = "rzp_key_secret_test"
WEBHOOK_SECRET = "rzp_webhook_secret_test"
JWT_SECRET = "jwt_secret_test"


def sign(message, secret):
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign_payment(order_id, payment_id, secret):
    return sign(f"{order_id}|{payment_id}".encode("utf-8"), secret)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def secrets(monkeypatch):
    monkeypatch.setenv("RAZORPAY_KEY_ID", "rzp_test_key_id")
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", KEY_SECRET)
    monkeypatch.setenv("RAZORPAY_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("JWT_SECRET", JWT_SECRET)


@pytest.fixture
def store():
    return OrderStore(TestingSessionLocal)


@pytest.fixture
def generator(store):
    return OrderNumberGenerator(store, sleep=lambda seconds: None)


@pytest.fixture
def raw_client(monkeypatch):
    # Route every request-scoped store to the test database
    monkeypatch.setattr("orders_service.deps.SessionLocal", TestingSessionLocal)
    with TestClient(fastapi_app) as c:
        yield c


@pytest.fixture
def client(raw_client):
    # Bypass the admin gate; test_admin covers it directly
    fastapi_app.dependency_overrides[orders_service.auth.require_admin] = lambda: "admin-user"
    yield raw_client
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def checkout():
    """Cart snapshot for a single ₹1500.00 item."""
    return {
        "email": "asha@example.com",
        "phone": "+919800000000",
        "user_id": "user-1",
        "address_json": {
            "fullName": "Asha Rao",
            "street": "12 MG Road",
            "city": "Bengaluru",
            "state": "KA",
            "pincode": "560001",
            "country": "India",
        },
        "items_json": [
            {"id": "prod-1", "title": "Linen Kurta", "price": 1500.0, "quantity": 1,
             "image": "https://cdn.example.com/kurta.jpg", "variant": "Size: M"},
        ],
        "subtotal_cents": 150000,
        "shipping_cents": 0,
        "tax_cents": 0,
        "discount_cents": 0,
        "total_cents": 150000,
    }


@pytest.fixture
def create_draft(client, checkout):
    def _create(gateway_order_id="order_TEST001"):
        response = client.post("/orders/draft", json={"razorpay_order_id": gateway_order_id, **checkout})
        assert response.status_code == 200, response.text
        return response.json()
    return _create


@pytest.fixture
def verify(client):
    def _verify(gateway_order_id, payment_id, checkout_data=None, signature=None):
        body = {
            "razorpay_order_id": gateway_order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature or sign_payment(gateway_order_id, payment_id, KEY_SECRET),
        }
        if checkout_data is not None:
            body["checkoutData"] = checkout_data
        return client.post("/razorpay/verify", json=body)
    return _verify


def webhook_body(event, payment_id, gateway_order_id, **entity):
    payload = {
        "entity": "event",
        "event": event,
        "payload": {"payment": {"entity": {"id": payment_id, "order_id": gateway_order_id, **entity}}},
    }
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


@pytest.fixture
def post_webhook(client):
    def _post(body, signature=None):
        headers = {"Content-Type": "application/json"}
        if signature is not False:
            headers["X-Razorpay-Signature"] = signature or sign(body, WEBHOOK_SECRET)
        return client.post("/razorpay/webhook", content=body, headers=headers)
    return _post


@pytest.fixture
def send_event(post_webhook):
    def _send(event, payment_id, gateway_order_id, **entity):
        return post_webhook(webhook_body(event, payment_id, gateway_order_id, **entity))
    return _send
