"""Client-side payment confirmation.

Called from the checkout page's payment-success callback. The signature
proves the callback came from a real payment; after that the order is
reconciled by confirming the draft in place, returning a row already recorded
for this payment, or inserting a confirmed order.
"""
from typing import Optional

import structlog

from orders_service.errors import (
    ConfigurationError,
    DuplicateOrderNumber,
    DuplicatePayment,
    InvalidRequest,
    InvalidSignature,
    InvalidTransition,
    OrderNotFound,
    PersistenceError,
)
from orders_service.order_numbers import OrderNumberGenerator
from orders_service.schemas import OrderRecord, VerifyPaymentRequest
from orders_service.signature import verify_payment_signature
from orders_service.status import OrderStatus, PaymentStatus, utcnow
from orders_service.store import OrderStore, gateway_note

log = structlog.get_logger(__name__)

CONFIRMED_NOTE = "Payment received via Razorpay"


def _required(name: str, value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequest(f"{name} is required and must be a non-empty string")
    return value


def _confirm_draft(
    store: OrderStore,
    draft_order_id: str,
    gateway_order_id: str,
    payment_id: str,
) -> Optional[OrderRecord]:
    """Confirm the draft in place; None means fall through to a fresh insert."""
    try:
        draft = store.get(draft_order_id)
        if gateway_note(gateway_order_id) not in (draft.admin_notes or "").splitlines():
            log.warning(
                "verify.draft_gateway_mismatch",
                draft_order_id=draft_order_id,
                razorpay_order_id=gateway_order_id,
                payment_id=payment_id,
            )
            return None
        if draft.payment_status == PaymentStatus.PAID:
            if draft.payment_id == payment_id:
                return draft
            log.warning(
                "verify.draft_paid_by_other_payment",
                draft_order_id=draft_order_id,
                payment_id=payment_id,
                recorded_payment_id=draft.payment_id,
            )
            return None
        order = store.update_status_appending_history(
            draft.id,
            {
                "payment_status": PaymentStatus.PAID.value,
                "payment_id": payment_id,
                "payment_date": utcnow(),
                "status": OrderStatus.CONFIRMED.value,
            },
            note=CONFIRMED_NOTE,
        )
    except OrderNotFound:
        log.warning("verify.draft_not_found", draft_order_id=draft_order_id, payment_id=payment_id)
        return None
    except (PersistenceError, InvalidTransition) as exc:
        log.warning(
            "verify.draft_update_failed",
            draft_order_id=draft_order_id,
            payment_id=payment_id,
            error=exc.detail or exc.message,
        )
        return None

    log.info("order.confirmed", path="draft", order_id=order.id, order_number=order.order_number, payment_id=payment_id)
    return order


def _reconcile(
    store: OrderStore,
    generator: OrderNumberGenerator,
    request: VerifyPaymentRequest,
) -> Optional[OrderRecord]:
    gateway_order_id = request.razorpay_order_id
    payment_id = request.razorpay_payment_id
    checkout = request.checkoutData

    if checkout is not None and checkout.draft_order_id:
        order = _confirm_draft(store, checkout.draft_order_id, gateway_order_id, payment_id)
        if order is not None:
            return order

    existing = store.find_by_payment_id(payment_id)
    if existing is not None:
        log.info("verify.already_recorded", order_id=existing.id, payment_id=payment_id)
        return existing

    if checkout is None:
        log.info("verify.signature_only", razorpay_order_id=gateway_order_id, payment_id=payment_id)
        return None

    fields = checkout.order_fields()
    try:
        order = generator.allocate(
            lambda number: store.insert_confirmed(number, fields, payment_id, gateway_order_id=gateway_order_id)
        )
    except DuplicatePayment:
        # A concurrent call for the same payment inserted first.
        winner = store.find_by_payment_id(payment_id)
        if winner is None:
            raise
        log.info("verify.duplicate_resolved", order_id=winner.id, payment_id=payment_id)
        return winner

    log.info("order.confirmed", path="insert", order_id=order.id, order_number=order.order_number, payment_id=payment_id)
    return order


def verify_payment(
    store: OrderStore,
    generator: OrderNumberGenerator,
    request: VerifyPaymentRequest,
    secret: Optional[str],
) -> Optional[OrderRecord]:
    """Verify the checkout signature and reconcile the order.

    Returns the confirmed order, or None when the caller sent no checkout
    data and no order exists for the payment yet.
    """
    gateway_order_id = _required("razorpay_order_id", request.razorpay_order_id)
    payment_id = _required("razorpay_payment_id", request.razorpay_payment_id)
    signature = _required("razorpay_signature", request.razorpay_signature)
    if not secret:
        raise ConfigurationError(
            "Server configuration error: Razorpay key secret is not available",
            detail="RAZORPAY_KEY_SECRET is not set",
        )

    if not verify_payment_signature(gateway_order_id, payment_id, signature, secret):
        log.warning("verify.invalid_signature", razorpay_order_id=gateway_order_id, payment_id=payment_id)
        raise InvalidSignature("Invalid payment signature")

    try:
        return _reconcile(store, generator, request)
    except (PersistenceError, DuplicateOrderNumber) as exc:
        # The customer has paid; this needs manual reconciliation.
        log.error(
            "verify.order_persist_failed",
            razorpay_order_id=gateway_order_id,
            payment_id=payment_id,
            draft_order_id=request.checkoutData.draft_order_id if request.checkoutData else None,
            error=exc.message,
            detail=exc.detail,
        )
        raise
