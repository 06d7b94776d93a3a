from typing import Optional

import structlog

from orders_service.errors import InvalidRequest, InvalidTransition, PersistenceError
from orders_service.razorpay_service import refund_payment
from orders_service.schemas import AdminOrderUpdate, OrderRecord
from orders_service.status import OrderStatus, PaymentStatus, check_payment_transition, check_status_transition
from orders_service.store import GATEWAY_NOTE_PREFIX, OrderStore

log = structlog.get_logger(__name__)

ORDER_STATUSES = {s.value for s in OrderStatus}
SHIPMENT_FIELDS = ("tracking_number", "shipping_provider")


def _gateway_marker(notes: Optional[str]) -> Optional[str]:
    for line in (notes or "").splitlines():
        if line.startswith(GATEWAY_NOTE_PREFIX):
            return line
    return None


def _merge_notes(current: Optional[str], new: Optional[str]) -> Optional[str]:
    # The gateway order id line is the webhook's fallback lookup key.
    marker = _gateway_marker(current)
    if marker and (not new or marker not in new):
        return f"{marker}\n{new}" if new else marker
    return new or None


def update_order(
    store: OrderStore,
    order_id: str,
    update: AdminOrderUpdate,
) -> OrderRecord:
    provided = update.model_fields_set
    current = store.get(order_id)
    patch = {}
    notes = []

    if "status" in provided and update.status is not None:
        if update.status not in ORDER_STATUSES:
            raise InvalidRequest(f"Unknown status: {update.status}")
        check_status_transition(current.status, update.status)
        patch["status"] = update.status
        notes.append(f"Status updated to {update.status}")

    shipped = current.status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED)
    for field in SHIPMENT_FIELDS:
        if field not in provided:
            continue
        value = getattr(update, field) or None
        existing = getattr(current, field)
        if shipped and existing and value != existing:
            raise InvalidTransition(f"{field} is already set for a {current.status} order")
        patch[field] = value

    if "admin_notes" in provided:
        patch["admin_notes"] = _merge_notes(current.admin_notes, update.admin_notes)

    refunded = False
    if "payment_status" in provided and update.payment_status is not None:
        if update.payment_status != PaymentStatus.REFUNDED:
            raise InvalidRequest("payment_status can only be set to refunded")
        if current.payment_status != PaymentStatus.REFUNDED:
            check_payment_transition(current.payment_status, PaymentStatus.REFUNDED)
            if not current.payment_id:
                raise InvalidTransition("Order has no payment to refund")
            refund_payment(current.payment_id)
            refunded = True
            patch["payment_status"] = PaymentStatus.REFUNDED.value
            notes.append(f"Payment refunded (Payment ID: {current.payment_id})")

    if not patch:
        return current

    try:
        order = store.update_status_appending_history(
            order_id,
            patch,
            note="; ".join(notes) or None,
            force_history=refunded,
        )
    except PersistenceError as exc:
        if refunded:
            log.error(
                "admin.refund_not_recorded",
                order_id=order_id,
                payment_id=current.payment_id,
                error=exc.message,
                detail=exc.detail,
            )
        raise

    log.info("admin.order_updated", order_id=order_id, fields=sorted(patch), status=order.status)
    return order
