import pytest
from razorpay.errors import BadRequestError, ServerError
from requests.exceptions import ConnectionError as RequestsConnectionError, Timeout

from conftest import KEY_SECRET
from orders_service.errors import ConfigurationError, GatewayError
from orders_service.razorpay_service import create_gateway_order, refund_payment


@pytest.fixture
def razorpay_client(mocker):
    client_cls = mocker.patch("razorpay.Client")
    return client_cls


def test_create_order_endpoint(client, mocker):
    create = mocker.patch(
        "orders_service.routes.create_gateway_order",
        return_value={"id": "order_TEST001", "amount": 150000, "currency": "INR", "status": "created"},
    )

    response = client.post("/razorpay/create-order", json={"amountCents": 150000, "receipt": "cart_42"})

    assert response.status_code == 200
    assert response.json() == {"orderId": "order_TEST001", "amount": 150000, "currency": "INR"}
    create.assert_called_once_with(amount=150000, currency="INR", receipt="cart_42", notes=None)


def test_create_order_accepts_paise_and_defaults_receipt(client, mocker):
    create = mocker.patch(
        "orders_service.routes.create_gateway_order",
        return_value={"id": "order_TEST002", "amount": 49950, "currency": "USD"},
    )

    response = client.post("/razorpay/create-order", json={"amountPaise": 49949.6, "currency": "usd"})

    assert response.status_code == 200
    kwargs = create.call_args.kwargs
    assert kwargs["amount"] == 49950
    assert kwargs["currency"] == "USD"
    assert kwargs["receipt"].startswith("receipt_")


@pytest.mark.parametrize("body,error", [
    ({}, "Amount is required. Provide either amountCents or amountPaise (in paise)"),
    ({"amountCents": 0}, "Amount must be greater than 0"),
    ({"amountPaise": -5}, "Amount must be greater than 0"),
    ({"amountCents": 100, "currency": "   "}, "Currency must be a non-empty string"),
])
def test_create_order_validation(client, mocker, body, error):
    create = mocker.patch("orders_service.routes.create_gateway_order")

    response = client.post("/razorpay/create-order", json=body)

    assert response.status_code == 400
    assert response.json()["error"] == error
    create.assert_not_called()


def test_create_order_without_credentials(client, monkeypatch):
    monkeypatch.delenv("RAZORPAY_KEY_ID")

    response = client.post("/razorpay/create-order", json={"amountCents": 150000})

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "error": "Server configuration error",
        "message": "RAZORPAY_KEY_ID is not set",
    }


def test_gateway_rejection_maps_to_bad_request(client, razorpay_client):
    razorpay_client.return_value.order.create.side_effect = BadRequestError("The amount must be atleast INR 1.00")

    response = client.post("/razorpay/create-order", json={"amountCents": 50})

    assert response.status_code == 400
    assert response.json()["error"] == "Failed to create Razorpay order"
    assert response.json()["message"] == "The amount must be atleast INR 1.00"


def test_create_gateway_order_calls_sdk(razorpay_client):
    razorpay_client.return_value.order.create.return_value = {"id": "order_TEST001"}

    order = create_gateway_order(amount=150000, currency="INR", receipt="cart_42", notes={"cart": "42"})

    assert order == {"id": "order_TEST001"}
    razorpay_client.assert_called_once_with(auth=("rzp_test_key_id", KEY_SECRET))
    razorpay_client.return_value.order.create.assert_called_once_with(
        data={"amount": 150000, "currency": "INR", "receipt": "cart_42", "notes": {"cart": "42"}}
    )


def test_gateway_outage_maps_to_bad_gateway(razorpay_client):
    razorpay_client.return_value.order.create.side_effect = ServerError("upstream timeout")

    with pytest.raises(GatewayError) as excinfo:
        create_gateway_order(amount=100, currency="INR", receipt="r")

    assert excinfo.value.status_code == 502


@pytest.mark.parametrize("failure", [RequestsConnectionError("connection refused"), Timeout("read timed out")])
def test_network_failure_maps_to_bad_gateway(client, razorpay_client, failure):
    razorpay_client.return_value.order.create.side_effect = failure

    response = client.post("/razorpay/create-order", json={"amountCents": 150000})

    assert response.status_code == 502
    assert response.json()["success"] is False
    assert response.json()["error"] == "Failed to create Razorpay order"


def test_refund_network_failure_maps_to_bad_gateway(razorpay_client):
    razorpay_client.return_value.payment.refund.side_effect = RequestsConnectionError("connection reset")

    with pytest.raises(GatewayError) as excinfo:
        refund_payment("pay_TEST001")

    assert excinfo.value.status_code == 502


def test_refund_payment(razorpay_client):
    refund = razorpay_client.return_value.payment.refund
    refund.return_value = {"id": "rfnd_1"}

    assert refund_payment("pay_TEST001") == {"id": "rfnd_1"}
    refund.assert_called_with("pay_TEST001", {})

    refund_payment("pay_TEST001", amount=5000)
    refund.assert_called_with("pay_TEST001", {"amount": 5000})


def test_refund_requires_credentials(razorpay_client, monkeypatch):
    monkeypatch.delenv("RAZORPAY_KEY_SECRET")

    with pytest.raises(ConfigurationError):
        refund_payment("pay_TEST001")
    razorpay_client.assert_not_called()


def test_customer_orders_requires_identity(client):
    response = client.get("/orders")

    assert response.status_code == 400
    assert response.json()["error"] == "Email or user_id parameter is required"


def test_customer_orders_by_user_and_email(client, create_draft, verify, checkout):
    draft = create_draft("order_TEST001")
    verify("order_TEST001", "pay_TEST001", {**checkout, "draft_order_id": draft["order_id"]})

    by_user = client.get("/orders", params={"user_id": "user-1"}).json()["orders"]
    by_email = client.get("/orders", params={"email": "asha@example.com"}).json()["orders"]
    fallback = client.get("/orders", params={"user_id": "user-9", "email": "asha@example.com"}).json()["orders"]
    nobody = client.get("/orders", params={"user_id": "user-9"}).json()["orders"]

    assert [o["order_number"] for o in by_user] == [draft["order_number"]]
    assert by_email == by_user
    assert fallback == by_user
    assert nobody == []
    assert by_user[0]["payment_status"] == "paid"
    assert by_user[0]["items_json"][0]["title"] == "Linen Kurta"
