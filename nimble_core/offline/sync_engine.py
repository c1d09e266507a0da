# =============================================================================
# nimble_core/offline/sync_engine.py
# Synchronization Engine
# =============================================================================
"""
SyncEngine - drives push/pull passes over every registered hybrid adapter.

Features:
- sync_now() / pull_all() / full_sync() across collections
- One-time migration of an existing local store to the cloud
- Optional background thread with exponential backoff after failed passes
- Sync status tracking and event callbacks
"""

from __future__ import annotations
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from nimble_core.errors import AdapterError, handle_error
from nimble_core.logging import get_logger, LogContext
from nimble_core.offline.hybrid_adapter import HybridStorageAdapter
from nimble_core.offline.records import PullResult, PushResult, utc_now_iso

logger = get_logger(__name__)


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    failed_count: int = 0
    total_synced: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None


class SyncEngine:
    """
    Synchronization engine between the local store and Supabase.

    Usage:
        engine = SyncEngine(flag_store=coordinator.flag_store)
        engine.register_adapter(create_storage("clients", coordinator))
        engine.sync_now()   # push every collection
        engine.start()      # optional background cadence
    """

    # Configuration
    SYNC_INTERVAL = 30          # Seconds between background passes
    MAX_BACKOFF = 600           # Upper bound on the wait after failures
    BACKOFF_BASE = 2            # Exponential backoff base

    def __init__(
        self,
        adapters: Optional[List[HybridStorageAdapter]] = None,
        flag_store=None,
        sync_interval: Optional[float] = None,
        max_backoff: Optional[float] = None,
    ):
        """
        Args:
            adapters: Hybrid adapters to synchronize
            flag_store: FeatureFlagStore receiving migration markers and last sync date
            sync_interval: Seconds between background passes
            max_backoff: Maximum seconds between background passes after failures
        """
        self._adapters: Dict[str, HybridStorageAdapter] = {}
        for adapter in adapters or []:
            self.register_adapter(adapter)

        self._flag_store = flag_store
        self.sync_interval = sync_interval if sync_interval is not None else self.SYNC_INTERVAL
        self.max_backoff = max_backoff if max_backoff is not None else self.MAX_BACKOFF

        self._state = SyncState()
        self._pass_lock = threading.Lock()
        self._sync_thread: Optional[threading.Thread] = None
        self._stop_sync = threading.Event()
        self._callbacks: List[Callable[[SyncState], None]] = []

    # =========================================================================
    # REGISTRY
    # =========================================================================

    def register_adapter(self, adapter: HybridStorageAdapter) -> None:
        self._adapters[adapter.table_name] = adapter

    def get_adapter(self, table_name: str) -> Optional[HybridStorageAdapter]:
        return self._adapters.get(table_name)

    @property
    def table_names(self) -> List[str]:
        return list(self._adapters)

    @property
    def state(self) -> SyncState:
        """Get current sync state."""
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    @property
    def pending_count(self) -> int:
        """Queued operations across registered collections."""
        return sum(adapter.pending_count() for adapter in self._adapters.values())

    # =========================================================================
    # SYNC PASSES
    # =========================================================================

    def _begin_pass(self) -> bool:
        if not self._pass_lock.acquire(blocking=False):
            logger.debug("Sync pass already running")
            return False
        self._state.is_syncing = True
        self._state.last_sync = datetime.now()
        self._notify_callbacks()
        return True

    def _end_pass(self, failed: int, error: Optional[str] = None) -> None:
        self._state.failed_count = failed
        self._state.last_error = error
        if failed == 0 and error is None:
            self._state.last_sync_success = datetime.now()
            self._state.consecutive_failures = 0
            if self._flag_store is not None:
                self._flag_store.update(last_sync_date=utc_now_iso())
        else:
            self._state.consecutive_failures += 1
        self._state.is_syncing = False
        self._pass_lock.release()
        self._notify_callbacks()

    def _push_all(self) -> Tuple[PushResult, List[str]]:
        total = PushResult()
        errors: List[str] = []
        for name, adapter in self._adapters.items():
            try:
                total = total.merge(adapter.push_to_cloud())
            except AdapterError as e:
                logger.error(f"Push failed for {name}: {e}")
                errors.append(f"{name}: {e.message}")
        return total, errors

    def _pull_all(self) -> Tuple[PullResult, List[str]]:
        total = PullResult()
        errors: List[str] = []
        for name, adapter in self._adapters.items():
            try:
                total = total.merge(adapter.pull_from_cloud())
            except AdapterError as e:
                logger.error(f"Pull failed for {name}: {e}")
                errors.append(f"{name}: {e.message}")
        return total, errors

    def sync_now(self) -> PushResult:
        """
        Push queued work of every collection.

        Returns:
            Aggregate PushResult (empty when a pass is already running)
        """
        if not self._begin_pass():
            return PushResult()

        result, errors = PushResult(), []
        try:
            result, errors = self._push_all()
            self._state.total_synced += result.succeeded
            logger.info(f"Sync complete: {result.succeeded} success, {result.failed} failed")
            return result
        except Exception as e:
            errors = [str(e)]
            raise
        finally:
            self._end_pass(result.failed + len(errors), "; ".join(errors) or None)

    def pull_all(self) -> PullResult:
        """Pull every collection; a collection whose fetch fails is skipped."""
        if not self._begin_pass():
            return PullResult()

        result, errors = PullResult(), []
        try:
            result, errors = self._pull_all()
            return result
        except Exception as e:
            errors = [str(e)]
            raise
        finally:
            self._end_pass(result.failed + len(errors), "; ".join(errors) or None)

    def full_sync(self) -> Dict[str, int]:
        """
        Push local changes, then pull remote ones.

        Returns:
            Dict with sync statistics
        """
        stats = {
            "pushed": 0,
            "pulled": 0,
            "conflicts": 0,
            "failed": 0,
            "errors": 0,
            "skipped": 0,
        }
        if not self._begin_pass():
            logger.info("Full sync skipped: another pass is running")
            stats["skipped"] = 1
            return stats

        push, pull = PushResult(), PullResult()
        push_errors: List[str] = []
        pull_errors: List[str] = []
        try:
            with LogContext(logger, "Full sync"):
                push, push_errors = self._push_all()
                pull, pull_errors = self._pull_all()
            self._state.total_synced += push.succeeded
        except Exception as e:
            pull_errors = pull_errors + [str(e)]
            raise
        finally:
            errors = push_errors + pull_errors
            stats.update(
                pushed=push.succeeded,
                pulled=pull.added + pull.updated,
                conflicts=pull.conflicts,
                failed=push.failed + pull.failed,
                errors=len(errors),
            )
            self._end_pass(stats["failed"] + stats["errors"], "; ".join(errors) or None)

        return stats

    def migrate_to_cloud(self) -> Dict[str, int]:
        """
        Move an existing local store to the cloud.

        Enables cloud backup, queues every record that never reached the
        cloud, then pushes and pulls every collection. The migration is marked
        complete only when that pass ran and had no failures; a pass already in
        progress leaves it started, to be run again.
        """
        if self._flag_store is None:
            raise ValueError("migrate_to_cloud requires a feature flag store")

        self._flag_store.update(
            cloud_backup_enabled=True,
            cloud_migration_started=True,
            migration_started_at=utc_now_iso(),
        )

        queued = 0
        for adapter in self._adapters.values():
            queued += adapter.queue_unsynced()

        stats = self.full_sync()
        stats["queued"] = queued

        if stats["skipped"]:
            logger.warning("Cloud migration deferred: no sync pass ran")
        elif stats["failed"] == 0 and stats["errors"] == 0:
            self._flag_store.update(
                cloud_migration_completed=True,
                migration_completed_at=utc_now_iso(),
            )
            logger.info("Cloud migration completed")
        else:
            logger.warning(f"Cloud migration incomplete: {stats}")
        return stats

    # =========================================================================
    # BACKGROUND CADENCE
    # =========================================================================

    def next_delay(self) -> float:
        """Seconds until the next background pass."""
        failures = self._state.consecutive_failures
        if failures == 0:
            return self.sync_interval
        return min(self.sync_interval * (self.BACKOFF_BASE ** failures), self.max_backoff)

    def start(self) -> None:
        """Start background sync thread."""
        if self._sync_thread is not None and self._sync_thread.is_alive():
            return

        self._stop_sync.clear()
        self._sync_thread = threading.Thread(
            target=self._sync_loop,
            daemon=True,
            name="SyncEngine",
        )
        self._sync_thread.start()
        logger.info("Sync engine started")

    def stop(self) -> None:
        """Stop background sync thread."""
        self._stop_sync.set()
        if self._sync_thread:
            self._sync_thread.join(timeout=10)
            self._sync_thread = None
        logger.info("Sync engine stopped")

    @property
    def is_running(self) -> bool:
        return self._sync_thread is not None and self._sync_thread.is_alive()

    def _sync_loop(self) -> None:
        """Background sync loop."""
        while not self._stop_sync.is_set():
            # Wait for interval or stop signal
            if self._stop_sync.wait(timeout=self.next_delay()):
                break

            try:
                self.sync_now()
            except Exception as e:
                # Already counted by the pass itself
                handle_error(e, show_user_message=False)

    # =========================================================================
    # CALLBACKS AND STATUS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        """Notify all registered callbacks."""
        for callback in self._callbacks:
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        flags = self._flag_store.flags if self._flag_store is not None else None
        return {
            "is_syncing": self._state.is_syncing,
            "is_running": self.is_running,
            "last_sync": self._state.last_sync.isoformat() if self._state.last_sync else None,
            "last_success": self._state.last_sync_success.isoformat() if self._state.last_sync_success else None,
            "last_sync_date": flags.last_sync_date if flags else None,
            "pending_count": self.pending_count,
            "failed_count": self._state.failed_count,
            "total_synced": self._state.total_synced,
            "last_error": self._state.last_error,
            "migration_completed": flags.cloud_migration_completed if flags else False,
        }
