import time
from typing import Optional

from fastapi import APIRouter, Depends

from orders_service.admin import update_order
from orders_service.auth import require_admin
from orders_service.config import get_settings
from orders_service.deps import get_order_numbers, get_store
from orders_service.drafts import create_draft, update_draft
from orders_service.errors import InvalidRequest
from orders_service.order_numbers import OrderNumberGenerator
from orders_service.razorpay_service import create_gateway_order
from orders_service.schemas import (
    AdminOrderUpdate,
    CreateGatewayOrderRequest,
    DraftOrderRequest,
    DraftOrderUpdate,
    VerifyPaymentRequest,
)
from orders_service.store import OrderStore
from orders_service.verification import verify_payment

router = APIRouter()


@router.post("/razorpay/create-order")
def create_gateway_order_api(request: CreateGatewayOrderRequest):
    amount = request.amountCents if request.amountCents is not None else request.amountPaise
    if amount is None:
        raise InvalidRequest("Amount is required. Provide either amountCents or amountPaise (in paise)")
    if amount <= 0:
        raise InvalidRequest("Amount must be greater than 0")
    currency = request.currency.strip()
    if not currency:
        raise InvalidRequest("Currency must be a non-empty string")

    order = create_gateway_order(
        amount=int(round(amount)),
        currency=currency.upper(),
        receipt=request.receipt or f"receipt_{int(time.time() * 1000)}",
        notes=request.notes,
    )
    return {"orderId": order["id"], "amount": order["amount"], "currency": order["currency"]}


@router.post("/orders/draft")
def create_draft_api(
    request: DraftOrderRequest,
    store: OrderStore = Depends(get_store),
    generator: OrderNumberGenerator = Depends(get_order_numbers),
):
    order = create_draft(store, generator, request)
    return {"success": True, "order_id": order.id, "order_number": order.order_number}


@router.put("/orders/draft")
def update_draft_api(request: DraftOrderUpdate, store: OrderStore = Depends(get_store)):
    order = update_draft(store, request)
    return {"success": True, "order_id": order.id, "order_number": order.order_number}


@router.post("/razorpay/verify")
def verify_payment_api(
    request: VerifyPaymentRequest,
    store: OrderStore = Depends(get_store),
    generator: OrderNumberGenerator = Depends(get_order_numbers),
):
    order = verify_payment(store, generator, request, get_settings().razorpay_key_secret)
    if order is None:
        return {"success": True}
    return {"success": True, "order_id": order.id, "order_number": order.order_number}


@router.get("/orders")
def customer_orders_api(
    email: Optional[str] = None,
    user_id: Optional[str] = None,
    store: OrderStore = Depends(get_store),
):
    if not email and not user_id:
        raise InvalidRequest("Email or user_id parameter is required")
    orders = store.list_customer_orders(email=email, user_id=user_id)
    return {"orders": [o.model_dump(mode="json") for o in orders]}


@router.get("/admin/orders")
def admin_list_orders(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    admin=Depends(require_admin),
    store: OrderStore = Depends(get_store),
):
    orders = store.list_orders(status=status, payment_status=payment_status)
    return {"orders": [o.model_dump(mode="json") for o in orders]}


@router.get("/admin/orders/{order_id}")
def admin_get_order(order_id: str, admin=Depends(require_admin), store: OrderStore = Depends(get_store)):
    return {"order": store.get(order_id).model_dump(mode="json")}


@router.put("/admin/orders/{order_id}")
def admin_update_order(
    order_id: str,
    update: AdminOrderUpdate,
    admin=Depends(require_admin),
    store: OrderStore = Depends(get_store),
):
    order = update_order(store, order_id, update)
    return {"order": order.model_dump(mode="json")}
