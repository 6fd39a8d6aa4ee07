# Store Module
from .base import SignalStore, AlertStore, CaseStore, EnforcementStore, NotificationStore
from .velocity import WindowCounter
from .redis_store import RedisSignalStore
from .memory import MemorySignalStore, MemoryStore
from .postgres import PostgresStore

__all__ = [
    "SignalStore",
    "AlertStore",
    "CaseStore",
    "EnforcementStore",
    "NotificationStore",
    "WindowCounter",
    "RedisSignalStore",
    "MemorySignalStore",
    "MemoryStore",
    "PostgresStore",
]
