from .database import Database
from .entities import EntityGraph
from .ledgers import (
    ConfigAuditLedger,
    InMemoryConfigAuditLedger,
    InMemoryMaintenanceLedger,
    MaintenanceLedger,
    SQLiteConfigAuditLedger,
    SQLiteMaintenanceLedger,
)
from .observations import ObservationStore
from .sessions import SessionStore, SummaryStore
from .vectors import VectorIndex

__all__ = [
    "Database",
    "EntityGraph",
    "ObservationStore",
    "SessionStore",
    "SummaryStore",
    "VectorIndex",
    "ConfigAuditLedger",
    "SQLiteConfigAuditLedger",
    "InMemoryConfigAuditLedger",
    "MaintenanceLedger",
    "SQLiteMaintenanceLedger",
    "InMemoryMaintenanceLedger",
]
