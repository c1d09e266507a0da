# =============================================================================
# nimble_core/services/storage_factory.py
# Storage Adapter and Sync Engine Wiring
# =============================================================================
"""
Builds storage adapters bound to an AppStateCoordinator: sync follows the
account's cloud backup flag, remote rows are owned by the signed-in user.
"""

from __future__ import annotations
from typing import Any, Callable, Iterable, Optional

from nimble_core.config import AppConfig, get_config
from nimble_core.logging import get_logger
from nimble_core.offline.cloud_adapter import CloudStorageAdapter
from nimble_core.offline.field_mappings import FIELD_MAPPINGS, LOCAL_ONLY_COLLECTIONS
from nimble_core.offline.hybrid_adapter import HybridStorageAdapter
from nimble_core.offline.local_adapter import LocalStorageAdapter
from nimble_core.offline.storage_adapter import StorageAdapter, StorageConfig
from nimble_core.offline.sync_engine import SyncEngine

logger = get_logger(__name__)


def storage_config_for(table: str, coordinator) -> StorageConfig:
    """StorageConfig whose sync switch and user id come from the coordinator."""
    local_only = table in LOCAL_ONLY_COLLECTIONS

    def sync_enabled() -> bool:
        return not local_only and coordinator.flag_store.cloud_backup_enabled()

    def get_user_id() -> Optional[str]:
        return coordinator.user_id

    return StorageConfig(
        table_name=table,
        requires_auth=True,
        sync_enabled=sync_enabled,
        get_user_id=get_user_id,
    )


def create_storage(
    table: str,
    coordinator,
    client_factory: Optional[Callable[[], Any]] = None,
) -> StorageAdapter:
    """
    Storage adapter for a collection.

    Device-only collections get a local adapter; every other collection gets
    a hybrid adapter.
    """
    config = storage_config_for(table, coordinator)
    local = LocalStorageAdapter(config, coordinator.local_db)
    if table in LOCAL_ONLY_COLLECTIONS:
        return local
    cloud = CloudStorageAdapter(config, client_factory)
    return HybridStorageAdapter(config, local, cloud)


def create_sync_engine(
    coordinator,
    tables: Optional[Iterable[str]] = None,
    client_factory: Optional[Callable[[], Any]] = None,
    config: Optional[AppConfig] = None,
) -> SyncEngine:
    """SyncEngine over every synced collection (or the given ones)."""
    config = config or get_config()
    engine = SyncEngine(
        flag_store=coordinator.flag_store,
        sync_interval=config.sync_interval,
        max_backoff=config.max_backoff,
    )
    for table in tables or FIELD_MAPPINGS:
        adapter = create_storage(table, coordinator, client_factory)
        if isinstance(adapter, HybridStorageAdapter):
            engine.register_adapter(adapter)
        else:
            logger.debug(f"{table} is device-only, not synced")
    logger.info(f"Sync engine wired for {len(engine.table_names)} collections")
    return engine
