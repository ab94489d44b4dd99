"""
Schedule store adapters.
"""
from booking_engine.store.base import ScheduleStore
from booking_engine.store.bounded import BoundedScheduleStore
from booking_engine.store.memory import InMemoryScheduleStore
from booking_engine.store.sql import SqlScheduleStore

__all__ = [
    "ScheduleStore",
    "BoundedScheduleStore",
    "InMemoryScheduleStore",
    "SqlScheduleStore",
]
