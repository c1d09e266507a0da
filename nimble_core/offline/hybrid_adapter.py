# =============================================================================
# nimble_core/offline/hybrid_adapter.py
# Hybrid Storage Adapter (local-first with queued cloud sync)
# =============================================================================
"""
HybridStorageAdapter - local-first storage with directional cloud sync.

Reads and writes always go to the local store; a write never waits on the
network. Cloud propagation happens only through the sync queue:

    push_to_cloud()    applies queued local mutations remotely (FIFO)
    pull_from_cloud()  reconciles local records against the remote collection

Conflict policy on pull: a record with unpushed local edits keeps its local
content and is flagged ``conflict`` for manual review.

Push, pull and writes for one collection hold the collection lock of the
local database, so pull always reads a stable status snapshot.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from nimble_core.errors import AdapterError
from nimble_core.logging import get_logger
from nimble_core.offline.cloud_adapter import CloudStorageAdapter
from nimble_core.offline.local_adapter import LocalStorageAdapter
from nimble_core.offline.records import (
    LOCAL_BLOB_FIELDS,
    PullResult,
    PushResult,
    QueueOperation,
    Record,
    SyncQueueItem,
    SyncStatus,
    strip_local_fields,
    utc_now_iso,
)
from nimble_core.offline.storage_adapter import StorageAdapter, StorageConfig

logger = get_logger(__name__)

# Local edits the remote copy has not seen
_UNPUSHED_STATUSES = (SyncStatus.PENDING_PUSH.value, SyncStatus.CONFLICT.value)


class HybridStorageAdapter(StorageAdapter):
    """
    Local adapter for every read and write, cloud adapter for sync passes.

    Usage:
        adapter = HybridStorageAdapter(config, local, cloud)
        client = adapter.create({"name": "Acme"})   # local, queued
        adapter.push_to_cloud()                     # PushResult(created=1, ...)
    """

    def __init__(
        self,
        config: StorageConfig,
        local: LocalStorageAdapter,
        cloud: CloudStorageAdapter,
    ):
        super().__init__(config)
        self.local = local
        self.cloud = cloud

    @property
    def _lock(self):
        return self.local.db.collection_lock(self.table_name)

    # =========================================================================
    # READS AND WRITES (local only)
    # =========================================================================

    def get_all(self) -> List[Record]:
        return self.local.get_all()

    def get_by_id(self, record_id: str) -> Optional[Record]:
        return self.local.get_by_id(record_id)

    def get_by_index(self, index_name: str, value: Any) -> List[Record]:
        return self.local.get_by_index(index_name, value)

    def count(self) -> int:
        return self.local.count()

    def create(self, data: Dict[str, Any]) -> Record:
        with self._lock:
            return self.local.create(data)

    def update(self, record_id: str, data: Dict[str, Any]) -> Optional[Record]:
        with self._lock:
            return self.local.update(record_id, data)

    def delete(self, record_id: str) -> bool:
        with self._lock:
            return self.local.delete(record_id)

    # =========================================================================
    # SYNC GUARD
    # =========================================================================

    def can_sync(self) -> bool:
        """Sync is enabled and, for owned collections, a user is signed in."""
        if not self.config.sync_enabled():
            return False
        if self.config.requires_auth and not self.config.get_user_id():
            return False
        return True

    def pending_count(self) -> int:
        return self.local.db.get_pending_count(self.table_name)

    def queue_unsynced(self) -> int:
        """
        Queue a create for every record that never reached the cloud and has
        no queued create (records written while sync was off, including ones
        edited after sync was switched on).

        A record with only queued updates has its earliest update turned into
        the create, so the create still goes out before the later edits.
        """
        with self._lock:
            queue = self.local.db.get_queue(self.table_name)
            queued_creates = {
                item.record_id for item in queue if item.operation == QueueOperation.CREATE
            }
            first_updates: Dict[str, SyncQueueItem] = {}
            for item in queue:
                if item.operation == QueueOperation.UPDATE:
                    first_updates.setdefault(item.record_id, item)

            added = 0
            for record in self.local.get_all():
                if record.get("cloudId") or record["id"] in queued_creates:
                    continue
                if record["id"] in first_updates:
                    self.local.db.set_queue_operation(
                        first_updates[record["id"]].id, QueueOperation.CREATE
                    )
                else:
                    self.local.db.enqueue(SyncQueueItem.new(
                        self.table_name,
                        record["id"],
                        QueueOperation.CREATE,
                        strip_local_fields(record),
                    ))
                added += 1

        if added:
            logger.info(f"Queued {added} unsynced {self.table_name} records")
        return added

    # =========================================================================
    # PUSH (local -> remote)
    # =========================================================================

    def push_to_cloud(self) -> PushResult:
        """
        Apply every queued mutation of this collection to the remote store.

        Each entry succeeds or fails on its own: a success removes the
        entry, a failure keeps it with its retry counter incremented and
        the error recorded.
        """
        result = PushResult()
        if not self.can_sync():
            logger.debug(f"Push skipped for {self.table_name}: sync not available")
            return result

        with self._lock:
            queue = self.local.db.get_queue(self.table_name)
            if not queue:
                return result

            logger.info(f"Pushing {len(queue)} queued operations for {self.table_name}")
            for item in queue:
                try:
                    self._push_item(item, result)
                except AdapterError as e:
                    logger.warning(
                        f"Push of {item.operation.value} {self.table_name}/{item.record_id} "
                        f"failed (attempt {item.retry_count + 1}): {e}"
                    )
                    self.local.db.record_queue_failure(item.id, str(e))
                    result.failed += 1

        logger.info(
            f"Push complete for {self.table_name}: {result.created} created, "
            f"{result.updated} updated, {result.deleted} deleted, {result.failed} failed, {result.skipped} skipped"
        )
        return result

    def _push_item(self, item: SyncQueueItem, result: PushResult) -> None:
        if item.operation == QueueOperation.DELETE:
            cloud_id = (item.data or {}).get("cloudId")
            if cloud_id:
                self.cloud.delete(cloud_id)
                result.deleted += 1
            self.local.db.remove_queue_item(item.id)
            return

        record = self.local.get_by_id(item.record_id)
        if record is None:
            # Deleted locally before it was pushed
            self.local.db.remove_queue_item(item.id)
            return

        cloud_id = record.get("cloudId")
        if not cloud_id and item.operation == QueueOperation.UPDATE and self._create_queued(item):
            # Its create has not landed; try again next pass
            result.skipped += 1
            return

        payload = strip_local_fields(record)
        if not cloud_id:
            remote = self.cloud.create(payload)
            self.local.mark_synced(record["id"], remote.get("id") or record["id"])
            result.created += 1
        else:
            # Also covers a create already linked to its remote row by pull
            if self.cloud.update(cloud_id, payload) is None:
                raise AdapterError(
                    f"Remote record {cloud_id} not found",
                    operation="update",
                    table=self.cloud.remote_table,
                    record_id=record["id"],
                )
            self.local.mark_synced(record["id"], cloud_id)
            result.updated += 1

        self.local.db.remove_queue_item(item.id)

    def _create_queued(self, item: SyncQueueItem) -> bool:
        return any(
            other.id != item.id
            and other.record_id == item.record_id
            and other.operation == QueueOperation.CREATE
            for other in self.local.db.get_queue(self.table_name)
        )

    # =========================================================================
    # PULL (remote -> local)
    # =========================================================================

    def pull_from_cloud(self) -> PullResult:
        """
        Reconcile local records against the full remote collection.

        Raises:
            AdapterError: The remote collection could not be fetched
        """
        result = PullResult()
        if not self.can_sync():
            logger.debug(f"Pull skipped for {self.table_name}: sync not available")
            return result

        with self._lock:
            try:
                remote_records = self.cloud.get_all()
            except AdapterError:
                logger.error(f"Pull aborted for {self.table_name}: remote fetch failed")
                raise

            for remote in remote_records:
                try:
                    self._pull_record(remote, result)
                except AdapterError as e:
                    logger.warning(f"Pull of {self.table_name}/{remote.get('id')} failed: {e}")
                    result.failed += 1

        logger.info(
            f"Pull complete for {self.table_name}: {result.added} added, "
            f"{result.updated} updated, {result.conflicts} conflicts, {result.failed} failed"
        )
        return result

    def _pull_record(self, remote: Record, result: PullResult) -> None:
        remote_id = remote.get("id")
        if not remote_id:
            raise AdapterError(
                "Remote record has no id",
                operation="pull",
                table=self.table_name,
            )

        if self.local.db.has_queued_delete(self.table_name, remote_id):
            # Deleted locally, remote delete still pending
            return

        remote_created = remote.get("createdAt") or utc_now_iso()
        content = strip_local_fields(remote)
        local = self.local.find_by_remote_id(remote_id)

        if local is None:
            self.local.put_raw({
                **content,
                "localUpdatedAt": remote_created,
                "cloudUpdatedAt": remote_created,
                "syncStatus": SyncStatus.SYNCED.value,
                "cloudId": remote_id,
            })
            result.added += 1
            return

        if not local.get("cloudId"):
            # Our own create landed but its response was lost
            self._link_pushed_create(local, remote_id)
            return

        if local.get("syncStatus") in _UNPUSHED_STATUSES:
            # Local wins; flag for review
            if local.get("syncStatus") != SyncStatus.CONFLICT.value:
                self.local.put_raw({**local, "syncStatus": SyncStatus.CONFLICT.value})
            logger.info(f"Conflict on {self.table_name}/{local['id']}: keeping local edits")
            result.conflicts += 1
            return

        blobs = {k: local[k] for k in LOCAL_BLOB_FIELDS if k in local}
        self.local.put_raw({
            **content,
            **blobs,
            "id": local["id"],
            "localUpdatedAt": utc_now_iso(),
            "cloudUpdatedAt": remote_created,
            "syncStatus": SyncStatus.SYNCED.value,
            "cloudId": remote_id,
        })
        result.updated += 1

    def _link_pushed_create(self, local: Record, remote_id: str) -> None:
        """
        Link a never-acknowledged record to its remote row.

        The local content stays pending_push and goes out as an update on the
        next push instead of a create that would clash with the existing row.
        """
        self.local.put_raw({
            **local,
            "cloudId": remote_id,
            "syncStatus": SyncStatus.PENDING_PUSH.value,
        })
        if not any(item.record_id == local["id"] for item in self.local.db.get_queue(self.table_name)):
            self.local.db.enqueue(SyncQueueItem.new(
                self.table_name,
                local["id"],
                QueueOperation.UPDATE,
                strip_local_fields(local),
            ))
        logger.info(f"Linked {self.table_name}/{local['id']} to its remote row")


def create_hybrid_storage_adapter(
    config: StorageConfig,
    local: LocalStorageAdapter,
    cloud: CloudStorageAdapter,
) -> HybridStorageAdapter:
    return HybridStorageAdapter(config, local, cloud)
