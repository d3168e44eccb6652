"""
coding_memory — persistent, versioned memory for coding sessions.

Public API for library usage::

    from coding_memory import MemoryEngine

    with MemoryEngine.open() as engine:
        engine.save("session-1", "Switched to WAL", "decision")
        results = engine.search("WAL")
"""

from .config import Config, ConfigStore
from .engine import MemoryEngine
from .errors import (
    CodingMemoryError,
    ConfigLockedError,
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from .events import EventBus, EventKind

__all__ = [
    "MemoryEngine",
    "Config",
    "ConfigStore",
    "EventBus",
    "EventKind",
    "CodingMemoryError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ConfigLockedError",
    "StorageError",
]
