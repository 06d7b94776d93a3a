from contextlib import contextmanager
from datetime import datetime, time, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from orders_service.errors import DuplicatePayment, OrderNotFound, OrderNumberTaken, PersistenceError
from orders_service.models import Order, UserRole
from orders_service.schemas import OrderRecord
from orders_service.status import (
    STAMPED_STATUSES,
    OrderStatus,
    PaymentStatus,
    StatusEntry,
    StatusHistory,
    check_payment_transition,
    utcnow,
)

log = structlog.get_logger(__name__)

GATEWAY_NOTE_PREFIX = "Razorpay Order ID: "
PAYMENT_METHOD = "razorpay"


def gateway_note(gateway_order_id: str) -> str:
    return f"{GATEWAY_NOTE_PREFIX}{gateway_order_id}"


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _integrity_error(exc: IntegrityError) -> PersistenceError:
    message = str(exc.orig)
    lowered = message.lower()
    if "payment_id" in lowered:
        return DuplicatePayment("Payment already recorded", detail=message)
    if "order_number" in lowered:
        return OrderNumberTaken("Order number already taken", detail=message)
    return PersistenceError("Database error", detail=message)


class OrderStore:
    """Persistence for order rows.

    Every public method opens its own session and returns detached
    ``OrderRecord`` snapshots. SQLAlchemy errors never leak: they surface as
    ``PersistenceError`` (or one of its unique-violation subclasses) with the
    driver message attached.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    @contextmanager
    def _session(self):
        session = self._session_factory()
        try:
            yield session
        except IntegrityError as exc:
            session.rollback()
            raise _integrity_error(exc) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError("Database error", detail=str(exc)) from exc
        finally:
            session.close()

    @staticmethod
    def _record(order: Optional[Order]) -> Optional[OrderRecord]:
        return OrderRecord.model_validate(order) if order is not None else None

    def _insert(self, order: Order) -> OrderRecord:
        with self._session() as session:
            session.add(order)
            session.commit()
            session.refresh(order)
            return self._record(order)

    def insert_draft(self, order_number: str, fields: Dict[str, Any], gateway_order_id: str) -> OrderRecord:
        entry = StatusEntry.now(
            OrderStatus.PENDING,
            f"Draft order created, awaiting payment (Razorpay Order: {gateway_order_id})",
        )
        return self._insert(Order(
            order_number=order_number,
            payment_method=PAYMENT_METHOD,
            payment_status=PaymentStatus.PENDING.value,
            status=OrderStatus.PENDING.value,
            status_history=StatusHistory([entry]).to_json(),
            admin_notes=gateway_note(gateway_order_id),
            **fields,
        ))

    def insert_confirmed(
        self,
        order_number: str,
        fields: Dict[str, Any],
        payment_id: str,
        gateway_order_id: Optional[str] = None,
        note: str = "Payment received via Razorpay",
    ) -> OrderRecord:
        entry = StatusEntry.now(OrderStatus.CONFIRMED, note)
        return self._insert(Order(
            order_number=order_number,
            payment_method=PAYMENT_METHOD,
            payment_status=PaymentStatus.PAID.value,
            payment_id=payment_id,
            payment_date=utcnow(),
            status=OrderStatus.CONFIRMED.value,
            status_history=StatusHistory([entry]).to_json(),
            admin_notes=gateway_note(gateway_order_id) if gateway_order_id else None,
            **fields,
        ))

    def get(self, order_id: str) -> OrderRecord:
        with self._session() as session:
            order = session.query(Order).filter(Order.id == order_id).first()
            if order is None:
                raise OrderNotFound(order_id)
            return self._record(order)

    def find_by_payment_id(self, payment_id: str) -> Optional[OrderRecord]:
        if not payment_id:
            return None
        with self._session() as session:
            order = session.query(Order).filter(Order.payment_id == payment_id).first()
            return self._record(order)

    def find_by_gateway_order_id(self, gateway_order_id: str) -> Optional[OrderRecord]:
        """Match the gateway order id recorded in the notes at draft time."""
        if not gateway_order_id:
            return None
        pattern = f"%{_like_escape(gateway_note(gateway_order_id))}%"
        with self._session() as session:
            order = (
                session.query(Order)
                .filter(Order.admin_notes.ilike(pattern, escape="\\"))
                .order_by(Order.created_at.asc())
                .first()
            )
            return self._record(order)

    def fetch_status_history(self, order_id: str) -> StatusHistory:
        return self.get(order_id).history

    def update_status_appending_history(
        self,
        order_id: str,
        patch: Dict[str, Any],
        note: Optional[str] = None,
        force_history: bool = False,
    ) -> OrderRecord:
        """Apply ``patch`` and merge the status history in one transaction.

        A history entry is appended only when ``patch["status"]`` differs from
        the stored status, unless ``force_history`` is set. ``shipped_at`` and
        ``delivered_at`` are stamped the first time their status shows up in
        the history and never again. A ``payment_status`` change is checked
        against the locked row, so a paid order cannot be downgraded by a
        writer that read it before it was paid.
        """
        for key in patch:
            if key in ("id", "status_history") or not hasattr(Order, key):
                raise ValueError(f"Cannot patch order column {key!r}")

        with self._session() as session:
            order = (
                session.query(Order)
                .filter(Order.id == order_id)
                .with_for_update()
                .first()
            )
            if order is None:
                raise OrderNotFound(order_id)
            if "payment_status" in patch:
                check_payment_transition(order.payment_status, patch["payment_status"])

            history = StatusHistory.from_json(order.status_history)
            new_status = str(patch.get("status", order.status))
            changed = new_status != order.status
            now = utcnow()

            stamp_column = STAMPED_STATUSES.get(new_status)
            if changed and stamp_column and not history.reached(new_status) and getattr(order, stamp_column) is None:
                setattr(order, stamp_column, now)

            if changed or force_history:
                history = history.append(StatusEntry.now(new_status, note))

            for key, value in patch.items():
                setattr(order, key, value)
            order.status = new_status
            order.status_history = history.to_json()
            order.updated_at = now

            session.commit()
            session.refresh(order)
            log.info(
                "order.updated",
                order_id=order_id,
                status=new_status,
                payment_status=order.payment_status,
                history_appended=changed or force_history,
            )
            return self._record(order)

    def order_number_exists(self, order_number: str) -> bool:
        with self._session() as session:
            return session.query(Order.id).filter(Order.order_number == order_number).first() is not None

    def next_order_number(self) -> str:
        """Sequence function: ORD-YYYYMMDD-NNNNN, numbered per UTC day."""
        today = utcnow().date()
        start = datetime.combine(today, time.min, tzinfo=timezone.utc)
        with self._session() as session:
            count = session.query(Order).filter(Order.created_at >= start).count()
        return f"ORD-{today:%Y%m%d}-{count + 1:05d}"

    def list_orders(self, status: Optional[str] = None, payment_status: Optional[str] = None) -> List[OrderRecord]:
        with self._session() as session:
            query = session.query(Order)
            if status:
                query = query.filter(Order.status == status)
            if payment_status:
                query = query.filter(Order.payment_status == payment_status)
            return [self._record(o) for o in query.order_by(Order.created_at.desc()).all()]

    def list_customer_orders(self, email: Optional[str] = None, user_id: Optional[str] = None) -> List[OrderRecord]:
        with self._session() as session:
            query = session.query(Order).order_by(Order.created_at.desc())
            if user_id:
                orders = query.filter(Order.user_id == user_id).all()
                # orders placed before sign-up only carry the email
                if not orders and email:
                    orders = query.filter(Order.email == email).all()
            else:
                orders = query.filter(Order.email == email).all()
            return [self._record(o) for o in orders]

    def get_role(self, user_id: str) -> Optional[str]:
        with self._session() as session:
            row = session.query(UserRole).filter(UserRole.user_id == user_id).first()
            return row.role if row else None
