import structlog

from orders_service.errors import InvalidRequest
from orders_service.order_numbers import OrderNumberGenerator
from orders_service.schemas import DraftOrderRequest, DraftOrderUpdate, OrderRecord
from orders_service.status import OrderStatus, PaymentStatus, check_payment_transition, check_status_transition
from orders_service.store import OrderStore

log = structlog.get_logger(__name__)

# Outcomes the checkout page may report for an attempt it observed failing.
CLIENT_PAYMENT_OUTCOMES = {PaymentStatus.CANCELLED.value, PaymentStatus.FAILED.value}
CLIENT_ORDER_STATUSES = {OrderStatus.PENDING.value, OrderStatus.CANCELLED.value}


def create_draft(store: OrderStore, generator: OrderNumberGenerator, request: DraftOrderRequest) -> OrderRecord:
    """Record a pending order before the payment widget opens."""
    gateway_order_id = (request.razorpay_order_id or "").strip()
    if not gateway_order_id:
        raise InvalidRequest(
            "Missing required fields: razorpay_order_id, email, address_json, items_json, and total_cents are required"
        )
    fields = request.order_fields()

    order = generator.allocate(lambda number: store.insert_draft(number, fields, gateway_order_id))
    log.info(
        "order.draft_created",
        order_id=order.id,
        order_number=order.order_number,
        razorpay_order_id=gateway_order_id,
        total_cents=order.total_cents,
    )
    return order


def update_draft(store: OrderStore, request: DraftOrderUpdate) -> OrderRecord:
    if not request.order_id or not request.payment_status:
        raise InvalidRequest("order_id and payment_status are required")
    if request.payment_status not in CLIENT_PAYMENT_OUTCOMES:
        raise InvalidRequest("payment_status must be one of: cancelled, failed")

    status = request.status or OrderStatus.PENDING.value
    if status not in CLIENT_ORDER_STATUSES:
        raise InvalidRequest("status must be one of: pending, cancelled")

    current = store.get(request.order_id)
    check_payment_transition(current.payment_status, request.payment_status)
    check_status_transition(current.status, status)

    order = store.update_status_appending_history(
        current.id,
        {"payment_status": request.payment_status, "status": status},
        note=request.note or f"Payment {request.payment_status}",
        force_history=True,
    )
    log.info(
        "order.draft_updated",
        order_id=order.id,
        payment_status=order.payment_status,
        status=order.status,
    )
    return order
