from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Tuple

from orders_service.errors import InvalidTransition


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Statuses whose first arrival stamps a timestamp column.
STAMPED_STATUSES = {
    OrderStatus.SHIPPED.value: "shipped_at",
    OrderStatus.DELIVERED.value: "delivered_at",
}


def can_transition_payment(current: str, target: str) -> bool:
    current, target = PaymentStatus(current), PaymentStatus(target)
    if current == target:
        return True
    if current == PaymentStatus.PAID:
        return target == PaymentStatus.REFUNDED
    if current == PaymentStatus.REFUNDED:
        return False
    # A capture after a failed or abandoned attempt still wins.
    return target != PaymentStatus.REFUNDED


def check_payment_transition(current: str, target: str) -> None:
    if not can_transition_payment(current, target):
        raise InvalidTransition(
            "Invalid payment status transition",
            detail=f"payment_status cannot move from {current} to {target}",
        )


def can_transition_status(current: str, target: str) -> bool:
    current, target = OrderStatus(current), OrderStatus(target)
    if current == target:
        return True
    return current not in TERMINAL_ORDER_STATUSES


def check_status_transition(current: str, target: str) -> None:
    if not can_transition_status(current, target):
        raise InvalidTransition(
            "Invalid status transition",
            detail=f"status cannot move from {current} to {target}",
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StatusEntry:
    status: str
    timestamp: str
    note: Optional[str] = None

    @classmethod
    def now(cls, status: str, note: Optional[str] = None) -> "StatusEntry":
        return cls(status=str(OrderStatus(status).value), timestamp=utcnow().isoformat(), note=note)

    @classmethod
    def from_dict(cls, raw: dict) -> "StatusEntry":
        return cls(status=raw.get("status"), timestamp=raw.get("timestamp"), note=raw.get("note"))

    def to_dict(self) -> dict:
        return {"status": self.status, "timestamp": self.timestamp, "note": self.note}


class StatusHistory:
    """Append-only log of status transitions.

    Instances are immutable; ``append`` returns a new log so a history read
    from the database can never be edited in place.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[StatusEntry] = ()):
        self._entries: Tuple[StatusEntry, ...] = tuple(entries)

    @classmethod
    def from_json(cls, raw) -> "StatusHistory":
        if not isinstance(raw, list):
            return cls()
        return cls(StatusEntry.from_dict(item) for item in raw if isinstance(item, dict))

    def to_json(self) -> List[dict]:
        return [entry.to_dict() for entry in self._entries]

    def append(self, entry: StatusEntry) -> "StatusHistory":
        return StatusHistory(self._entries + (entry,))

    def reached(self, status: str) -> bool:
        return any(entry.status == status for entry in self._entries)

    @property
    def latest(self) -> Optional[StatusEntry]:
        return self._entries[-1] if self._entries else None

    def __iter__(self) -> Iterator[StatusEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other) -> bool:
        return isinstance(other, StatusHistory) and self._entries == other._entries

    def __repr__(self) -> str:
        return f"StatusHistory({[e.status for e in self._entries]!r})"
