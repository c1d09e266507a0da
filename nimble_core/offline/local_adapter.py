# =============================================================================
# nimble_core/offline/local_adapter.py
# Local Storage Adapter (SQLite)
# =============================================================================

from __future__ import annotations
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from nimble_core.errors import AdapterError
from nimble_core.logging import get_logger
from nimble_core.offline.local_database import LocalDatabase
from nimble_core.offline.records import (
    QueueOperation,
    Record,
    SyncQueueItem,
    SyncStatus,
    SYNC_METADATA_FIELDS,
    create_sync_metadata,
    generate_local_id,
    strip_local_fields,
    touch_sync_metadata,
    utc_now_iso,
)
from nimble_core.offline.storage_adapter import StorageAdapter, StorageConfig

logger = get_logger(__name__)

# Fields callers may not set through create/update
_PROTECTED_FIELDS = frozenset(("id", "createdAt") + SYNC_METADATA_FIELDS)


class LocalStorageAdapter(StorageAdapter):
    """
    Adapter over the local record store.

    Writes stamp sync metadata and, while cloud sync is enabled, append the
    matching entry to the sync queue in the same transaction.
    """

    def __init__(self, config: StorageConfig, database: LocalDatabase):
        super().__init__(config)
        self.db = database

    @contextmanager
    def _storage_errors(self, operation: str, record_id: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except AdapterError:
            raise
        except (sqlite3.Error, ValueError, TypeError) as e:
            raise AdapterError(
                f"Local {operation} failed for {self.table_name}",
                operation=operation,
                table=self.table_name,
                record_id=record_id,
                cause=e,
            ) from e

    def _queue_item(
        self,
        record_id: str,
        operation: QueueOperation,
        data: Optional[Dict[str, Any]],
    ) -> Optional[SyncQueueItem]:
        if not self.config.sync_enabled():
            return None
        return SyncQueueItem.new(self.table_name, record_id, operation, data)

    # =========================================================================
    # READS
    # =========================================================================

    def get_all(self) -> List[Record]:
        with self._storage_errors("get_all"):
            return self.db.get_all(self.table_name)

    def get_by_id(self, record_id: str) -> Optional[Record]:
        with self._storage_errors("get_by_id", record_id):
            return self.db.get(self.table_name, record_id)

    def get_by_index(self, index_name: str, value: Any) -> List[Record]:
        with self._storage_errors("get_by_index"):
            return self.db.get_by_index(self.table_name, index_name, value)

    def count(self) -> int:
        with self._storage_errors("count"):
            return self.db.count(self.table_name)

    # =========================================================================
    # WRITES
    # =========================================================================

    def create(self, data: Dict[str, Any]) -> Record:
        content = {k: v for k, v in data.items() if k not in _PROTECTED_FIELDS}
        record: Record = {
            **content,
            "id": generate_local_id(),
            "createdAt": utc_now_iso(),
            **create_sync_metadata(None),
        }

        with self._storage_errors("create", record["id"]):
            item = self._queue_item(record["id"], QueueOperation.CREATE, strip_local_fields(record))
            self.db.put(self.table_name, record, queue_item=item)

        logger.debug(f"Created {self.table_name}/{record['id']}")
        return record

    def update(self, record_id: str, data: Dict[str, Any]) -> Optional[Record]:
        with self._storage_errors("update", record_id):
            existing = self.db.get(self.table_name, record_id)
            if existing is None:
                return None

            changes = {k: v for k, v in data.items() if k not in _PROTECTED_FIELDS}
            updated: Record = {**existing, **changes, **touch_sync_metadata(existing)}

            item = self._queue_item(record_id, QueueOperation.UPDATE, strip_local_fields(updated))
            self.db.put(self.table_name, updated, queue_item=item)

        return updated

    def delete(self, record_id: str) -> bool:
        with self._storage_errors("delete", record_id):
            existing = self.db.get(self.table_name, record_id)
            if existing is None:
                return False

            # A record that never reached the cloud needs no remote delete
            item = None
            cloud_id = existing.get("cloudId")
            if cloud_id:
                item = self._queue_item(record_id, QueueOperation.DELETE, {"cloudId": cloud_id})

            return self.db.delete(self.table_name, record_id, queue_item=item)

    # =========================================================================
    # SYNC PROTOCOL SUPPORT (no queueing)
    # =========================================================================

    def mark_synced(self, record_id: str, cloud_id: str) -> Optional[Record]:
        """Record a successful push: remote id known, status synced."""
        with self._storage_errors("mark_synced", record_id):
            existing = self.db.get(self.table_name, record_id)
            if existing is None:
                return None
            synced: Record = {
                **existing,
                "cloudId": cloud_id,
                "cloudUpdatedAt": utc_now_iso(),
                "syncStatus": SyncStatus.SYNCED.value,
            }
            self.db.put(self.table_name, synced)
        return synced

    def put_raw(self, record: Record) -> Record:
        """Store a fully-formed record (metadata included) as given."""
        with self._storage_errors("put", record.get("id")):
            self.db.put(self.table_name, record)
        return record

    def find_by_remote_id(self, remote_id: str) -> Optional[Record]:
        """Local record for a remote row: same id, else linked through cloudId."""
        with self._storage_errors("find_by_remote_id", remote_id):
            return self.db.get(self.table_name, remote_id) or self.db.get_by_cloud_id(
                self.table_name, remote_id
            )

    def get_by_status(self, status: SyncStatus) -> List[Record]:
        return self.get_by_index("by_sync_status", status.value)


def create_local_storage_adapter(config: StorageConfig, database: LocalDatabase) -> LocalStorageAdapter:
    return LocalStorageAdapter(config, database)
