from fastapi import Depends

from orders_service.database import SessionLocal
from orders_service.order_numbers import OrderNumberGenerator
from orders_service.store import OrderStore


def get_store() -> OrderStore:
    return OrderStore(SessionLocal)


def get_order_numbers(store: OrderStore = Depends(get_store)) -> OrderNumberGenerator:
    return OrderNumberGenerator(store)
