from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from orders_service.errors import InvalidRequest
from orders_service.status import StatusHistory


class CartItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Union[str, int]
    title: str
    price: float
    quantity: int = Field(gt=0)
    image: Optional[str] = None
    variant: Optional[str] = None


class CheckoutFields(BaseModel):
    """Customer, address and cart snapshot shared by draft and verify payloads."""

    email: Optional[str] = None
    phone: Optional[str] = None
    user_id: Optional[str] = None
    address_json: Optional[Dict[str, Any]] = None
    items_json: Optional[List[CartItem]] = None
    subtotal_cents: Optional[int] = None
    shipping_cents: int = 0
    tax_cents: int = 0
    discount_cents: int = 0
    total_cents: Optional[int] = None
    customer_notes: Optional[str] = None

    def order_fields(self) -> Dict[str, Any]:
        """Validate the snapshot and return it as order columns."""
        if not self.email or not self.address_json or self.items_json is None or self.total_cents is None:
            raise InvalidRequest(
                "Missing required checkout data: email, address_json, items_json, and total_cents are required"
            )
        if not self.email.strip():
            raise InvalidRequest("Invalid email: must be a non-empty string")
        if len(self.items_json) == 0:
            raise InvalidRequest("Invalid items: must be a non-empty array")
        if self.total_cents <= 0:
            raise InvalidRequest("Invalid total: must be a positive number")
        for name in ("subtotal_cents", "shipping_cents", "tax_cents", "discount_cents"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise InvalidRequest(f"Invalid {name}: must not be negative")

        subtotal = self.subtotal_cents if self.subtotal_cents is not None else self.total_cents
        if self.subtotal_cents is not None:
            expected = subtotal + self.shipping_cents + self.tax_cents - self.discount_cents
            if expected != self.total_cents:
                raise InvalidRequest(
                    "Invalid total: does not match subtotal + shipping + tax - discount",
                    detail=f"expected {expected}, got {self.total_cents}",
                )

        return {
            "user_id": self.user_id or None,
            "email": self.email.strip(),
            "phone": self.phone or None,
            "address_json": self.address_json,
            "items_json": [item.model_dump(exclude_none=True) for item in self.items_json],
            "subtotal_cents": subtotal,
            "shipping_cents": self.shipping_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "customer_notes": self.customer_notes or None,
        }


class DraftOrderRequest(CheckoutFields):
    razorpay_order_id: Optional[str] = None


class DraftOrderUpdate(BaseModel):
    order_id: Optional[str] = None
    payment_status: Optional[str] = None
    status: Optional[str] = None
    note: Optional[str] = None


class CheckoutData(CheckoutFields):
    draft_order_id: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    razorpay_payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    checkoutData: Optional[CheckoutData] = None


class CreateGatewayOrderRequest(BaseModel):
    amountCents: Optional[float] = None
    amountPaise: Optional[float] = None
    currency: str = "INR"
    receipt: Optional[str] = None
    notes: Optional[Dict[str, Any]] = None


class AdminOrderUpdate(BaseModel):
    status: Optional[str] = None
    payment_status: Optional[str] = None
    tracking_number: Optional[str] = None
    shipping_provider: Optional[str] = None
    admin_notes: Optional[str] = None


class OrderRecord(BaseModel):
    """Read-only snapshot of an order row."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    order_number: str
    user_id: Optional[str] = None
    email: str
    phone: Optional[str] = None
    address_json: Dict[str, Any]
    items_json: List[Dict[str, Any]]
    subtotal_cents: int
    shipping_cents: int
    tax_cents: int
    discount_cents: int
    total_cents: int
    payment_method: Optional[str] = None
    payment_status: str
    payment_id: Optional[str] = None
    payment_date: Optional[datetime] = None
    status: str
    status_history: List[Dict[str, Any]]
    tracking_number: Optional[str] = None
    shipping_provider: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    customer_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @property
    def history(self) -> StatusHistory:
        return StatusHistory.from_json(self.status_history)
