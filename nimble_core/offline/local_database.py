# =============================================================================
# nimble_core/offline/local_database.py
# Local SQLite Record Store for Offline-First Operation
# =============================================================================
"""
LocalDatabase - SQLite-backed keyed record store.

Features:
- One table per collection, records stored as JSON documents
- Secondary lookups through expression indexes (e.g. invoices by client)
- Durable sync queue and key-value settings tables
- Transaction support, thread-local connections
- DataFrame export (pandas)
"""

from __future__ import annotations
import json
import math
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import numpy as np
import pandas as pd

from nimble_core.logging import get_logger
from nimble_core.offline.records import (
    QueueOperation,
    Record,
    SyncQueueItem,
    SyncStatus,
    utc_now_iso,
)

logger = get_logger(__name__)


# Collection name -> {index name: record field}. Every collection is also
# indexed by sync status.
COLLECTIONS: Dict[str, Dict[str, str]] = {
    "clients": {},
    "invoices": {"by_client": "clientId"},
    "projects": {"by_client": "clientId"},
    "project_photos": {"by_project": "projectId"},
    "project_receipts": {"by_project": "projectId"},
    "mileage_entries": {"by_project": "projectId", "by_client": "clientId"},
    "capital_assets": {},
    "subcontractor_payments": {"by_client": "clientId"},
    "expense_categories": {},
    "bank_expenses": {},
    "transactions": {},
    "materials": {},
    # Feature-initialization caches, purged by an admin reset
    "services": {},
    "appointments": {
        "by_project": "projectId",
        "by_client": "clientId",
        "by_date": "date",
    },
}

SYNC_STATUS_INDEX = "by_sync_status"

FEATURE_CACHE_COLLECTIONS = ("services", "appointments")
FEATURE_CACHE_KEYS = (
    "services_preview",
    "service_menu_settings",
    "project_cache",
    "feature_flags",
)


def _collection_table_sql(name: str) -> str:
    return f"""
        CREATE TABLE IF NOT EXISTS {name} (
            id TEXT PRIMARY KEY,
            data_json TEXT NOT NULL,
            sync_status TEXT NOT NULL DEFAULT 'pending_push',
            cloud_id TEXT,
            created_at TEXT,
            local_updated_at TEXT
        )
    """


def clean_value(value: Any) -> Any:
    """Make a value JSON-serializable (numpy scalars, timestamps, NaN)."""
    if isinstance(value, dict):
        return {k: clean_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [clean_value(v) for v in value]
    if isinstance(value, np.ndarray):
        return [clean_value(v) for v in value.tolist()]
    if value is pd.NaT:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, (np.floating, float)):
        value = float(value)
        return None if math.isnan(value) else value
    return value


def to_json(value: Any) -> str:
    return json.dumps(clean_value(value))


class LocalDatabase:
    """
    Local SQLite database holding every record collection.

    The local store is the single source of truth for reads; remote
    synchronization goes through the sync queue kept in the same file.
    """

    # Default database location
    DEFAULT_DB_PATH = Path("local_data") / "nimble.db"

    # Fixed tables
    SCHEMA = {
        "sync_queue": """
            CREATE TABLE IF NOT EXISTS sync_queue (
                id TEXT PRIMARY KEY,
                table_name TEXT NOT NULL,
                record_id TEXT NOT NULL,
                operation TEXT NOT NULL,
                data_json TEXT,
                created_at TEXT NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0,
                last_error TEXT
            )
        """,
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
        """,
    }

    _instance: Optional[LocalDatabase] = None
    _lock = threading.Lock()

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self._ensure_directory()
        self._local = threading.local()
        self._initialized = False
        self._collection_locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def get_instance(cls, db_path: Optional[Path] = None) -> LocalDatabase:
        """Get or create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = LocalDatabase(db_path)
        return cls._instance

    def _ensure_directory(self) -> None:
        """Ensure database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            self._local.connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
            )
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> None:
        """Create every table and index if missing."""
        if self._initialized:
            return

        with self.transaction() as conn:
            for name, indexes in COLLECTIONS.items():
                conn.execute(_collection_table_sql(name))
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{name}_sync_status ON {name}(sync_status)"
                )
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{name}_cloud_id ON {name}(cloud_id)"
                )
                for index_name, field_name in indexes.items():
                    conn.execute(
                        f"CREATE INDEX IF NOT EXISTS idx_{name}_{index_name} "
                        f"ON {name}(json_extract(data_json, '$.{field_name}'))"
                    )
                logger.debug(f"Created/verified collection: {name}")

            for table_name, schema in self.SCHEMA.items():
                conn.execute(schema)
                logger.debug(f"Created/verified table: {table_name}")

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sync_queue_table ON sync_queue(table_name)"
            )

        self._initialized = True
        logger.info(f"Local database initialized at: {self.db_path}")

    # =========================================================================
    # COLLECTIONS
    # =========================================================================

    @staticmethod
    def collection_names() -> List[str]:
        return list(COLLECTIONS)

    @staticmethod
    def _require_collection(collection: str) -> None:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")

    def collection_lock(self, collection: str) -> threading.RLock:
        """Lock serializing sync passes over one collection."""
        with self._locks_guard:
            lock = self._collection_locks.get(collection)
            if lock is None:
                lock = self._collection_locks[collection] = threading.RLock()
            return lock

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Record:
        return json.loads(row["data_json"])

    def get(self, collection: str, record_id: str) -> Optional[Record]:
        """Get a record by primary key, or None."""
        self._require_collection(collection)
        row = self._get_connection().execute(
            f"SELECT data_json FROM {collection} WHERE id = ?",
            [record_id],
        ).fetchone()
        return self._row_to_record(row) if row else None

    def get_by_cloud_id(self, collection: str, cloud_id: str) -> Optional[Record]:
        """Get the record linked to a remote id, or None."""
        self._require_collection(collection)
        row = self._get_connection().execute(
            f"SELECT data_json FROM {collection} WHERE cloud_id = ? LIMIT 1",
            [cloud_id],
        ).fetchone()
        return self._row_to_record(row) if row else None

    def get_all(self, collection: str) -> List[Record]:
        """All records of a collection in insertion order."""
        self._require_collection(collection)
        rows = self._get_connection().execute(
            f"SELECT data_json FROM {collection} ORDER BY rowid"
        ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_by_index(self, collection: str, index_name: str, value: Any) -> List[Record]:
        """Records whose indexed field equals value."""
        self._require_collection(collection)
        if index_name == SYNC_STATUS_INDEX:
            where = "sync_status = ?"
        else:
            field_name = COLLECTIONS[collection].get(index_name)
            if field_name is None:
                raise ValueError(f"Collection {collection} has no index {index_name}")
            where = f"json_extract(data_json, '$.{field_name}') = ?"

        rows = self._get_connection().execute(
            f"SELECT data_json FROM {collection} WHERE {where} ORDER BY rowid",
            [value],
        ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def put(
        self,
        collection: str,
        record: Record,
        queue_item: Optional[SyncQueueItem] = None,
    ) -> None:
        """
        Insert or replace a record, optionally queueing a sync entry in the
        same transaction.
        """
        self._require_collection(collection)
        values = [
            record["id"],
            to_json(record),
            record.get("syncStatus") or SyncStatus.PENDING_PUSH.value,
            record.get("cloudId"),
            record.get("createdAt"),
            record.get("localUpdatedAt"),
        ]
        with self.transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO {collection}
                    (id, data_json, sync_status, cloud_id, created_at, local_updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data_json = excluded.data_json,
                    sync_status = excluded.sync_status,
                    cloud_id = excluded.cloud_id,
                    created_at = excluded.created_at,
                    local_updated_at = excluded.local_updated_at
                """,
                values,
            )
            if queue_item is not None:
                self._insert_queue_item(conn, queue_item)

    def delete(
        self,
        collection: str,
        record_id: str,
        queue_item: Optional[SyncQueueItem] = None,
    ) -> bool:
        """Delete a record; returns False when it did not exist."""
        self._require_collection(collection)
        with self.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {collection} WHERE id = ?", [record_id])
            deleted = cursor.rowcount > 0
            if deleted and queue_item is not None:
                self._insert_queue_item(conn, queue_item)
        return deleted

    def count(self, collection: str) -> int:
        self._require_collection(collection)
        row = self._get_connection().execute(
            f"SELECT COUNT(*) AS count FROM {collection}"
        ).fetchone()
        return row["count"] if row else 0

    def clear_collection(self, collection: str) -> int:
        """Remove every record of a collection and its queued work."""
        self._require_collection(collection)
        with self.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {collection}")
            conn.execute("DELETE FROM sync_queue WHERE table_name = ?", [collection])
            removed = cursor.rowcount
        logger.info(f"Cleared {removed} records from {collection}")
        return removed

    # =========================================================================
    # SYNC QUEUE MANAGEMENT
    # =========================================================================

    @staticmethod
    def _insert_queue_item(conn: sqlite3.Connection, item: SyncQueueItem) -> None:
        conn.execute(
            """
            INSERT INTO sync_queue
                (id, table_name, record_id, operation, data_json, created_at, retry_count, last_error)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                item.id,
                item.table_name,
                item.record_id,
                item.operation.value,
                to_json(item.data) if item.data is not None else None,
                item.created_at,
                item.retry_count,
                item.last_error,
            ],
        )

    def enqueue(self, item: SyncQueueItem) -> None:
        """Add an entry to the sync queue."""
        with self.transaction() as conn:
            self._insert_queue_item(conn, item)

    @staticmethod
    def _row_to_queue_item(row: sqlite3.Row) -> SyncQueueItem:
        return SyncQueueItem(
            id=row["id"],
            table_name=row["table_name"],
            record_id=row["record_id"],
            operation=QueueOperation(row["operation"]),
            data=json.loads(row["data_json"]) if row["data_json"] else None,
            created_at=row["created_at"],
            retry_count=row["retry_count"],
            last_error=row["last_error"],
        )

    def get_queue(self, table_name: Optional[str] = None) -> List[SyncQueueItem]:
        """Queue entries in FIFO creation order, optionally for one table."""
        sql = "SELECT * FROM sync_queue"
        params: List[Any] = []
        if table_name:
            sql += " WHERE table_name = ?"
            params.append(table_name)
        sql += " ORDER BY created_at ASC, rowid ASC"
        rows = self._get_connection().execute(sql, params).fetchall()
        return [self._row_to_queue_item(row) for row in rows]

    def remove_queue_item(self, item_id: str) -> None:
        """Drop a queue entry after it was applied remotely."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM sync_queue WHERE id = ?", [item_id])

    def record_queue_failure(self, item_id: str, error: str) -> None:
        """Keep a failed entry for retry, counting the attempt."""
        with self.transaction() as conn:
            conn.execute(
                """
                UPDATE sync_queue
                SET retry_count = retry_count + 1, last_error = ?
                WHERE id = ?
                """,
                [error, item_id],
            )

    def set_queue_operation(self, item_id: str, operation: QueueOperation) -> None:
        """Change what a queued entry does, keeping its place in the queue."""
        with self.transaction() as conn:
            conn.execute(
                "UPDATE sync_queue SET operation = ? WHERE id = ?",
                [operation.value, item_id],
            )

    def has_queued_delete(self, table_name: str, record_id: str) -> bool:
        """Whether a delete is pending for a record, by local or remote id."""
        row = self._get_connection().execute(
            """
            SELECT 1 FROM sync_queue
            WHERE table_name = ? AND operation = ?
              AND (record_id = ? OR json_extract(data_json, '$.cloudId') = ?)
            LIMIT 1
            """,
            [table_name, QueueOperation.DELETE.value, record_id, record_id],
        ).fetchone()
        return row is not None

    def get_pending_count(self, table_name: Optional[str] = None) -> int:
        """Number of queue entries, optionally for one table."""
        sql = "SELECT COUNT(*) AS count FROM sync_queue"
        params: List[Any] = []
        if table_name:
            sql += " WHERE table_name = ?"
            params.append(table_name)
        row = self._get_connection().execute(sql, params).fetchone()
        return row["count"] if row else 0

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(self, collection: str) -> pd.DataFrame:
        """Load a collection into a DataFrame (one column per record field)."""
        return pd.DataFrame(self.get_all(collection))

    def queue_to_dataframe(self) -> pd.DataFrame:
        """Sync queue as a DataFrame, for reconciliation views."""
        rows = self._get_connection().execute(
            """
            SELECT id, table_name, record_id, operation, created_at, retry_count, last_error
            FROM sync_queue ORDER BY created_at ASC, rowid ASC
            """
        ).fetchall()
        columns = ["id", "table_name", "record_id", "operation", "created_at", "retry_count", "last_error"]
        return pd.DataFrame([dict(row) for row in rows], columns=columns)

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an app setting."""
        row = self._get_connection().execute(
            "SELECT value FROM app_settings WHERE key = ?",
            [key],
        ).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except (TypeError, json.JSONDecodeError):
            return row["value"]

    def set_setting(self, key: str, value: Any) -> None:
        """Set an app setting."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO app_settings (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                [key, to_json(value), utc_now_iso()],
            )

    def delete_setting(self, key: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM app_settings WHERE key = ?", [key])
            return cursor.rowcount > 0

    def close(self) -> None:
        """Close this thread's database connection."""
        if getattr(self._local, "connection", None) is not None:
            self._local.connection.close()
            self._local.connection = None


# Singleton accessor
_local_database: Optional[LocalDatabase] = None


def get_local_database(db_path: Optional[Path] = None) -> LocalDatabase:
    """Get the global LocalDatabase instance."""
    global _local_database
    if _local_database is None:
        if db_path is None:
            from nimble_core.config import get_config
            db_path = get_config().db_path
        _local_database = LocalDatabase.get_instance(db_path)
        _local_database.initialize()
    return _local_database
