# =============================================================================
# nimble_core/offline/cloud_adapter.py
# Cloud Storage Adapter (Supabase)
# =============================================================================
"""
CloudStorageAdapter - record operations against a Supabase table.

Rows are translated through the collection's field table in both
directions. Any client failure, including network timeouts raised by the
underlying HTTP client, surfaces as AdapterError.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from nimble_core.errors import AdapterError
from nimble_core.logging import get_logger
from nimble_core.offline.field_mappings import remote_column, to_local, to_remote
from nimble_core.offline.local_database import COLLECTIONS
from nimble_core.offline.records import Record
from nimble_core.offline.storage_adapter import StorageAdapter, StorageConfig

logger = get_logger(__name__)


class CloudStorageAdapter(StorageAdapter):
    """Adapter over one Supabase table."""

    # Supabase caps a single select at 1000 rows
    PAGE_SIZE = 1000

    def __init__(self, config: StorageConfig, client_factory: Optional[Callable[[], Any]] = None):
        """
        Args:
            config: Storage configuration for the collection
            client_factory: Returns a Supabase client (defaults to the cached client)
        """
        super().__init__(config)
        self._client_factory = client_factory
        self._client = None

    @property
    def client(self):
        """Lazy load Supabase client."""
        if self._client is None:
            if self._client_factory is not None:
                self._client = self._client_factory()
            else:
                from nimble_core.data.supabase_client import get_cached_supabase_client
                self._client = get_cached_supabase_client()
        return self._client

    @property
    def remote_table(self) -> str:
        return self.config.remote_table

    def _table(self):
        return self.client.table(self.remote_table)

    @contextmanager
    def _remote_errors(self, operation: str, record_id: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except AdapterError:
            raise
        except Exception as e:
            logger.error(f"Supabase {operation} on {self.remote_table} failed: {e}")
            raise AdapterError(
                f"Remote {operation} failed for {self.remote_table}",
                operation=operation,
                table=self.remote_table,
                record_id=record_id,
                cause=e,
            ) from e

    # =========================================================================
    # FORMAT TRANSLATION
    # =========================================================================

    def _user_id(self) -> Optional[str]:
        if self.config.requires_auth:
            return self.config.get_user_id()
        return None

    def to_cloud_format(self, data: Record) -> Dict[str, Any]:
        return to_remote(self.table_name, data, user_id=self._user_id())

    def to_local_format(self, row: Dict[str, Any]) -> Record:
        return to_local(self.table_name, row)

    @staticmethod
    def _first(response) -> Optional[Dict[str, Any]]:
        data = getattr(response, "data", None) or []
        return data[0] if data else None

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def get_all(self) -> List[Record]:
        """Fetch every row, paging past the 1000 row limit."""
        with self._remote_errors("get_all"):
            rows: List[Dict[str, Any]] = []
            offset = 0
            while True:
                response = (
                    self._table()
                    .select("*")
                    .order("id")
                    .range(offset, offset + self.PAGE_SIZE - 1)
                    .execute()
                )
                batch = response.data or []
                rows.extend(batch)
                if len(batch) < self.PAGE_SIZE:
                    break
                offset += self.PAGE_SIZE

        logger.debug(f"Fetched {len(rows)} rows from {self.remote_table}")
        return [self.to_local_format(row) for row in rows]

    def get_by_id(self, record_id: str) -> Optional[Record]:
        with self._remote_errors("get_by_id", record_id):
            response = self._table().select("*").eq("id", record_id).limit(1).execute()
        row = self._first(response)
        return self.to_local_format(row) if row else None

    def get_by_index(self, index_name: str, value: Any) -> List[Record]:
        field_name = COLLECTIONS.get(self.table_name, {}).get(index_name)
        if field_name is None:
            raise AdapterError(
                f"Unknown index {index_name} for {self.table_name}",
                operation="get_by_index",
                table=self.table_name,
            )
        column = remote_column(self.table_name, field_name)

        with self._remote_errors("get_by_index"):
            response = self._table().select("*").eq(column, value).execute()
        return [self.to_local_format(row) for row in response.data or []]

    def create(self, data: Record) -> Record:
        payload = self.to_cloud_format(data)
        with self._remote_errors("create", data.get("id")):
            response = self._table().insert(payload).execute()
        row = self._first(response)
        if row is None:
            raise AdapterError(
                f"Remote create returned no row for {self.remote_table}",
                operation="create",
                table=self.remote_table,
                record_id=data.get("id"),
            )
        return self.to_local_format(row)

    def update(self, record_id: str, data: Record) -> Optional[Record]:
        payload = self.to_cloud_format(data)
        # The row is addressed by its remote id
        payload.pop("id", None)
        with self._remote_errors("update", record_id):
            response = self._table().update(payload).eq("id", record_id).execute()
        row = self._first(response)
        return self.to_local_format(row) if row else None

    def delete(self, record_id: str) -> bool:
        with self._remote_errors("delete", record_id):
            self._table().delete().eq("id", record_id).execute()
        return True

    def count(self) -> int:
        with self._remote_errors("count"):
            response = self._table().select("id", count="exact").execute()
        if getattr(response, "count", None) is not None:
            return response.count
        return len(response.data or [])


def create_cloud_storage_adapter(
    config: StorageConfig,
    client_factory: Optional[Callable[[], Any]] = None,
) -> CloudStorageAdapter:
    return CloudStorageAdapter(config, client_factory)
