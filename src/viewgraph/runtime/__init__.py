"""
Runtime module - store access and scheduling.
"""

from __future__ import annotations

from .scheduler import ComputedFieldScheduler, SchedulerState, seconds_until_next_midnight
from .store import ViewStore, build_distinct_sql, create_store_engine, get_database_url

__all__ = [
    "ViewStore",
    "build_distinct_sql",
    "create_store_engine",
    "get_database_url",
    "ComputedFieldScheduler",
    "SchedulerState",
    "seconds_until_next_midnight",
]
