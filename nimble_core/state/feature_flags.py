# =============================================================================
# nimble_core/state/feature_flags.py
# Account-Scoped Feature Flags
# =============================================================================
"""
Device-side feature flags for the signed-in account.

The flags object is owned by the AppStateCoordinator: it is loaded on the
first signal fetch, cleared on sign-out and admin reset, and handed to
storage configurations and feature services instead of being imported as a
shared module.
"""

from __future__ import annotations
import threading
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Optional

from nimble_core.logging import get_logger
from nimble_core.offline.local_database import LocalDatabase

logger = get_logger(__name__)

FEATURE_FLAGS_KEY = "feature_flags"


@dataclass(frozen=True)
class FeatureFlags:
    """Flags and migration markers persisted on the device."""
    cloud_backup_enabled: bool = False
    service_menu_enabled: bool = False
    cloud_migration_started: bool = False
    cloud_migration_completed: bool = False
    migration_started_at: Optional[str] = None
    migration_completed_at: Optional[str] = None
    last_sync_date: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> FeatureFlags:
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class FeatureFlagStore:
    """
    Holds the current FeatureFlags and persists changes to the local
    settings table.

    Usage:
        store = FeatureFlagStore(local_db)
        store.load()
        store.update(cloud_backup_enabled=True)
        if store.flags.cloud_backup_enabled:
            ...
    """

    def __init__(self, local_db: LocalDatabase, key: str = FEATURE_FLAGS_KEY):
        self._db = local_db
        self._key = key
        self._flags = FeatureFlags()
        self._loaded = False
        self._lock = threading.Lock()

    @property
    def flags(self) -> FeatureFlags:
        return self._flags

    @property
    def loaded(self) -> bool:
        return self._loaded

    def load(self) -> FeatureFlags:
        """Read persisted flags (defaults when none are stored)."""
        with self._lock:
            self._flags = FeatureFlags.from_dict(self._db.get_setting(self._key))
            self._loaded = True
        logger.debug(f"Feature flags loaded: {self._flags}")
        return self._flags

    def ensure_loaded(self) -> FeatureFlags:
        if not self._loaded:
            return self.load()
        return self._flags

    def update(self, **changes: Any) -> FeatureFlags:
        """Apply changes and persist them."""
        with self._lock:
            self._flags = replace(self._flags, **changes)
            self._db.set_setting(self._key, self._flags.to_dict())
            self._loaded = True
        logger.info(f"Feature flags updated: {', '.join(sorted(changes))}")
        return self._flags

    def clear(self) -> None:
        """Drop in-memory and persisted flags."""
        with self._lock:
            self._flags = FeatureFlags()
            self._db.delete_setting(self._key)
            self._loaded = False
        logger.info("Feature flags cleared")

    # Convenience readers passed into storage configs
    def cloud_backup_enabled(self) -> bool:
        return self._flags.cloud_backup_enabled

    def service_menu_enabled(self) -> bool:
        return self._flags.service_menu_enabled
