"""
API dependencies for FastAPI dependency injection.

The schedule store is built once per process from settings and always
wrapped in the bounded-call proxy; engine components are cheap and built
per request on top of it. Tests override get_store.
"""
from functools import lru_cache
from typing import Optional

from fastapi import Depends

from booking_engine.lib.settings import settings
from booking_engine.services.availability import AvailabilityCalculator
from booking_engine.services.conflict_guard import ConflictGuard
from booking_engine.services.lifecycle import BookingLifecycle
from booking_engine.services.notification_service import NotificationDispatcher
from booking_engine.services.reviews import ReviewService
from booking_engine.store.bounded import BoundedScheduleStore
from booking_engine.store.memory import InMemoryScheduleStore
from booking_engine.store.sql import SqlScheduleStore


def build_store(backend: Optional[str] = None) -> BoundedScheduleStore:
    backend = (backend or settings.store_backend).lower()
    if backend == "memory":
        inner = InMemoryScheduleStore()
    elif backend == "sql":
        inner = SqlScheduleStore()
    else:
        raise ValueError(f"Unknown store backend: {backend}")
    return BoundedScheduleStore(inner)


@lru_cache()
def get_store() -> BoundedScheduleStore:
    return build_store()


def get_calculator(store=Depends(get_store)) -> AvailabilityCalculator:
    return AvailabilityCalculator(store)


def get_guard(store=Depends(get_store)) -> ConflictGuard:
    return ConflictGuard(store)


def get_dispatcher(store=Depends(get_store)) -> NotificationDispatcher:
    return NotificationDispatcher(store)


def get_lifecycle(
    store=Depends(get_store),
    guard: ConflictGuard = Depends(get_guard),
    calculator: AvailabilityCalculator = Depends(get_calculator),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> BookingLifecycle:
    return BookingLifecycle(store, guard, calculator, dispatcher)


def get_review_service(
    store=Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ReviewService:
    return ReviewService(store, dispatcher)
