import random
import time
from typing import Callable, Optional, TypeVar

import structlog

from orders_service.errors import DuplicateOrderNumber, OrderNumberTaken, PersistenceError
from orders_service.status import utcnow

log = structlog.get_logger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 5
BACKOFF_SECONDS = 0.1


class OrderNumberGenerator:
    """Allocates unique ``ORD-YYYYMMDD-...`` order numbers.

    The store's sequence function is tried first. When it is unavailable, or a
    candidate collides with an existing row, a timestamp and random suffix
    based number is built instead, with a wider suffix on every retry.
    """

    def __init__(self, store, max_attempts: int = MAX_ATTEMPTS, backoff: float = BACKOFF_SECONDS,
                 sleep: Callable[[float], None] = time.sleep):
        self._store = store
        self.max_attempts = max_attempts
        self._backoff = backoff
        self._sleep = sleep

    @staticmethod
    def fallback(attempt: int = 1) -> str:
        now = utcnow()
        millis = str(int(now.timestamp() * 1000))
        if attempt <= 1:
            return f"ORD-{now:%Y%m%d}-{millis[-5:]}-{random.randint(0, 999):03d}"
        width = 3 + attempt
        return f"ORD-{now:%Y%m%d}-{millis[-6:]}-{random.randrange(10 ** width):0{width}d}"

    def _candidate(self, attempt: int) -> str:
        if attempt == 1:
            try:
                number: Optional[str] = self._store.next_order_number()
            except PersistenceError as exc:
                log.warning("order_number.sequence_failed", error=exc.detail or exc.message)
                number = None
            if number:
                return number
        return self.fallback(attempt)

    def _wait(self, attempt: int) -> None:
        if attempt < self.max_attempts:
            self._sleep(self._backoff * attempt)

    def allocate(self, insert: Callable[[str], T]) -> T:
        """Run ``insert(order_number)`` with a fresh unique number.

        Retries on a pre-insert collision or on a unique violation reported by
        the insert itself, up to ``max_attempts`` in total.
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self._candidate(attempt)
            if self._store.order_number_exists(candidate):
                log.warning("order_number.collision", order_number=candidate, attempt=attempt)
                self._wait(attempt)
                continue
            try:
                return insert(candidate)
            except OrderNumberTaken:
                log.warning("order_number.taken_on_insert", order_number=candidate, attempt=attempt)
                self._wait(attempt)

        raise DuplicateOrderNumber(
            "Order creation failed: Unable to generate unique order number. Please try again.",
            detail=f"gave up after {self.max_attempts} attempts",
        )
