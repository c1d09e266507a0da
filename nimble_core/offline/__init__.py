# =============================================================================
# nimble_core/offline/__init__.py
# Local-First Storage and Sync for Nimble Core
# =============================================================================
"""
Local-First Storage Module

The local SQLite store is the single source of truth for the running client.
Cloud propagation is deferred to a durable sync queue and applied by
directional push/pull passes.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                     LOCAL-FIRST STORAGE                          │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                HybridStorageAdapter                       │  │
│   │   (reads/writes local, push_to_cloud / pull_from_cloud)   │  │
│   └──────────────────────────────────────────────────────────┘  │
│              │                           │                       │
│              ▼                           ▼                       │
│   ┌──────────────────┐        ┌──────────────────┐              │
│   │ LocalStorage     │        │ CloudStorage     │              │
│   │ Adapter (SQLite) │        │ Adapter(Supabase)│              │
│   └──────────────────┘        └──────────────────┘              │
│              │                                                   │
│   ┌──────────────────┐                                          │
│   │ sync_queue table │◄──── SyncEngine (passes, backoff)        │
│   └──────────────────┘                                          │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from nimble_core.offline import get_local_database, SyncEngine

db = get_local_database()
print(db.get_pending_count())  # queued remote mutations
"""

from nimble_core.offline.records import (
    Record,
    SyncStatus,
    QueueOperation,
    SyncQueueItem,
    PushResult,
    PullResult,
)

from nimble_core.offline.local_database import (
    LocalDatabase,
    get_local_database,
    COLLECTIONS,
)

from nimble_core.offline.storage_adapter import (
    StorageAdapter,
    StorageConfig,
)

from nimble_core.offline.local_adapter import LocalStorageAdapter
from nimble_core.offline.cloud_adapter import CloudStorageAdapter
from nimble_core.offline.hybrid_adapter import HybridStorageAdapter

from nimble_core.offline.sync_engine import (
    SyncEngine,
    SyncState,
)

__all__ = [
    # Records
    "Record",
    "SyncStatus",
    "QueueOperation",
    "SyncQueueItem",
    "PushResult",
    "PullResult",
    # Local Database
    "LocalDatabase",
    "get_local_database",
    "COLLECTIONS",
    # Adapters
    "StorageAdapter",
    "StorageConfig",
    "LocalStorageAdapter",
    "CloudStorageAdapter",
    "HybridStorageAdapter",
    # Sync Engine
    "SyncEngine",
    "SyncState",
]
