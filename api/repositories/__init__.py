"""Repository layer for database operations.

Repositories encapsulate all database queries, keeping services free of SQL.
The streak engine depends only on the store protocols, so the PostgreSQL
repositories and the in-memory stores are interchangeable.
"""

from repositories.attendance_repository import AttendanceRepository
from repositories.memory import InMemoryAttendanceStore, InMemoryStreakRecordStore
from repositories.protocols import (
    AttendanceStore,
    StoreUnavailableError,
    StreakConflictError,
    StreakRecordStore,
)
from repositories.streak_repository import StreakRepository
from repositories.user_repository import UserRepository
from repositories.utils import log_slow_query, translate_store_errors

__all__ = [
    "AttendanceRepository",
    "AttendanceStore",
    "InMemoryAttendanceStore",
    "InMemoryStreakRecordStore",
    "StoreUnavailableError",
    "StreakConflictError",
    "StreakRecordStore",
    "StreakRepository",
    "UserRepository",
    "log_slow_query",
    "translate_store_errors",
]
