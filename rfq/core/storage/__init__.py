"""
Persistent Storage Module.

Provides SQLite-backed persistence for:
- Nonce counters
- Delegations
- Offers
- Engine metadata
"""

from rfq.core.storage.sqlite_adapter import SQLiteAdapter
from rfq.core.storage.storage_manager import (
    StorageManager,
    SQLiteNonceStore,
    SQLiteDelegationStore,
    SQLiteOfferRepository,
)

__all__ = [
    "SQLiteAdapter",
    "StorageManager",
    "SQLiteNonceStore",
    "SQLiteDelegationStore",
    "SQLiteOfferRepository",
]
