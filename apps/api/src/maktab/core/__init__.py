"""
Core module - Configuration, database, redis, locking, events, and email.
"""

from maktab.core.config import get_settings, settings
from maktab.core.database import Base, close_db, get_db, init_db
from maktab.core.events import EventBus, event_bus
from maktab.core.locks import LockUnavailableError, record_lock
from maktab.core.redis import close_redis, init_redis, redis_status

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "get_db",
    "init_db",
    "close_db",
    # Redis
    "redis_status",
    "init_redis",
    "close_redis",
    # Locks
    "record_lock",
    "LockUnavailableError",
    # Events
    "EventBus",
    "event_bus",
]
