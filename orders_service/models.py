import uuid

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from orders_service.database import Base
from orders_service.status import OrderStatus, PaymentStatus, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_new_id)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    phone = Column(String(20), nullable=True)

    address_json = Column(JSON, nullable=False)
    items_json = Column(JSON, nullable=False)       # [{id, title, price, quantity, image, variant}]

    subtotal_cents = Column(Integer, nullable=False)
    shipping_cents = Column(Integer, nullable=False, default=0)
    tax_cents = Column(Integer, nullable=False, default=0)
    discount_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False)

    payment_method = Column(String(50), nullable=True)
    payment_status = Column(String(50), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    payment_id = Column(String(255), unique=True, nullable=True)   # Razorpay payment id, one row per payment
    payment_date = Column(DateTime(timezone=True), nullable=True)

    status = Column(String(50), nullable=False, default=OrderStatus.PENDING.value, index=True)
    status_history = Column(JSON, nullable=False, default=list)

    tracking_number = Column(String(255), nullable=True)
    shipping_provider = Column(String(100), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    customer_notes = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)         # holds "Razorpay Order ID: ..." for drafts

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class UserRole(Base):
    __tablename__ = "user_roles"

    user_id = Column(String(64), primary_key=True)
    role = Column(String(20), nullable=False, default="user")   # admin | user
