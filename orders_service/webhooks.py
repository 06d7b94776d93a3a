"""Razorpay webhook processing.

The gateway calls this independently of the browser, so it is what confirms
orders whose checkout tab was closed after paying. Deliveries may arrive in
any order and more than once; every event is applied with a check against the
current row so redelivery is a no-op.
"""
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import structlog

from orders_service.errors import (
    ConfigurationError,
    InvalidRequest,
    InvalidTransition,
    PersistenceError,
    WebhookSignatureError,
)
from orders_service.schemas import OrderRecord
from orders_service.signature import verify_webhook_signature
from orders_service.status import OrderStatus, PaymentStatus, can_transition_payment, utcnow
from orders_service.store import OrderStore

log = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Razorpay-Signature"


@dataclass(frozen=True)
class PaymentEvent:
    name: str
    target: PaymentStatus
    # order already in the state this event implies
    settled: Callable[[OrderRecord], bool]
    settled_message: str
    conflict_message: str
    patch: Callable[[Dict[str, Any]], Dict[str, Any]]
    note: Callable[[Dict[str, Any]], str]
    force_history: bool = False


def _captured_patch(payment: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "payment_status": PaymentStatus.PAID.value,
        "payment_id": payment["id"],
        "payment_date": utcnow(),
        "status": OrderStatus.CONFIRMED.value,
    }


def _failure_reason(payment: Dict[str, Any]) -> str:
    return payment.get("error_description") or payment.get("error_reason") or "Payment failed"


PAYMENT_CAPTURED = PaymentEvent(
    name="payment.captured",
    target=PaymentStatus.PAID,
    settled=lambda order: order.payment_status == PaymentStatus.PAID,
    settled_message="Order already confirmed",
    conflict_message="Order already refunded, ignoring capture",
    patch=_captured_patch,
    note=lambda payment: f"Payment captured via Razorpay webhook (Payment ID: {payment['id']})",
)

PAYMENT_FAILED = PaymentEvent(
    name="payment.failed",
    target=PaymentStatus.FAILED,
    settled=lambda order: order.payment_status == PaymentStatus.FAILED,
    settled_message="Order already marked as failed",
    conflict_message="Order already confirmed, ignoring failure",
    patch=lambda payment: {"payment_status": PaymentStatus.FAILED.value, "status": OrderStatus.PENDING.value},
    note=lambda payment: (
        f"Payment failed via Razorpay webhook: {_failure_reason(payment)} (Payment ID: {payment['id']})"
    ),
    # a failure on a pending draft leaves the status unchanged, so record it explicitly
    force_history=True,
)

EVENTS = {event.name: event for event in (PAYMENT_CAPTURED, PAYMENT_FAILED)}


def _resolve_order(store: OrderStore, payment_id: str, gateway_order_id: Optional[str]) -> Optional[OrderRecord]:
    order = store.find_by_payment_id(payment_id)
    if order is None and gateway_order_id:
        # draft exists but the client never reported the payment id
        order = store.find_by_gateway_order_id(gateway_order_id)
    return order


def _apply(store: OrderStore, event: PaymentEvent, payment: Dict[str, Any]) -> Dict[str, Any]:
    payment_id = payment.get("id")
    if not payment_id:
        raise InvalidRequest("Missing payment_id")
    gateway_order_id = payment.get("order_id")
    context = {"webhook_event": event.name, "payment_id": payment_id, "razorpay_order_id": gateway_order_id}

    order = None
    try:
        order = _resolve_order(store, payment_id, gateway_order_id)
        if order is None:
            log.warning("webhook.order_not_found", **context)
            return {"received": True, "message": "Order not found"}

        if event.settled(order):
            log.info("webhook.already_applied", order_id=order.id, **context)
            return {"received": True, "message": event.settled_message, "order_id": order.id}

        if not can_transition_payment(order.payment_status, event.target):
            log.warning("webhook.stale_event_ignored", order_id=order.id, payment_status=order.payment_status, **context)
            return {"received": True, "message": event.conflict_message, "order_id": order.id}

        updated = store.update_status_appending_history(
            order.id,
            event.patch(payment),
            note=event.note(payment),
            force_history=event.force_history,
        )
    except InvalidTransition:
        # lost a race against a write that settled the payment first
        log.warning("webhook.stale_event_ignored", order_id=order.id if order else None, **context)
        return {"received": True, "message": "Order already settled", "order_id": order.id if order else None}
    except PersistenceError as exc:
        log.error(
            "webhook.persist_failed",
            order_id=order.id if order else None,
            error=exc.message,
            detail=exc.detail,
            **context,
        )
        raise

    log.info(
        "webhook.applied",
        order_id=updated.id,
        order_number=updated.order_number,
        payment_status=updated.payment_status,
        status=updated.status,
        **context,
    )
    return {"received": True, "order_id": updated.id, "order_number": updated.order_number}


def handle_webhook(store: OrderStore, body: bytes, signature: Optional[str], secret: Optional[str]) -> Dict[str, Any]:
    """Authenticate and apply one webhook delivery.

    ``body`` must be the raw request body; the signature covers its exact
    bytes.
    """
    if not secret:
        log.error("webhook.secret_missing")
        raise ConfigurationError("Webhook secret not configured", detail="RAZORPAY_WEBHOOK_SECRET is not set")
    if not signature:
        log.warning("webhook.signature_missing")
        raise WebhookSignatureError("Missing signature")
    if not verify_webhook_signature(body, signature, secret):
        log.warning("webhook.invalid_signature")
        raise WebhookSignatureError("Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise InvalidRequest("Invalid JSON payload")
    if not isinstance(payload, dict) or not payload.get("event") or not payload.get("payload"):
        raise InvalidRequest("Missing event or payload")

    name = payload["event"]
    event = EVENTS.get(name)
    if event is None:
        log.info("webhook.unhandled_event", webhook_event=name)
        return {"received": True}

    event_payload = payload["payload"]
    payment = None
    if isinstance(event_payload, dict) and isinstance(event_payload.get("payment"), dict):
        payment = event_payload["payment"].get("entity")
    if not isinstance(payment, dict):
        raise InvalidRequest("Missing payment entity")

    log.info("webhook.received", webhook_event=name, payment_id=payment.get("id"), razorpay_order_id=payment.get("order_id"))
    return _apply(store, event, payment)
