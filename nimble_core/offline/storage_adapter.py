# =============================================================================
# nimble_core/offline/storage_adapter.py
# Storage Adapter Contract
# =============================================================================
"""
Uniform record operations implemented by the local, cloud and hybrid
adapters. Every operation may raise AdapterError; callers treat all adapters
as interchangeable.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from nimble_core.offline.records import Record


def _sync_disabled() -> bool:
    return False


def _no_user() -> Optional[str]:
    return None


@dataclass
class StorageConfig:
    """
    Storage behaviour for one collection.

    Attributes:
        table_name: Local collection name
        cloud_table_name: Remote table name when it differs
        requires_auth: Remote rows are owned by the signed-in user
        sync_enabled: Returns whether cloud sync is on for the account
        get_user_id: Returns the signed-in user id, or None
    """
    table_name: str
    cloud_table_name: Optional[str] = None
    requires_auth: bool = True
    sync_enabled: Callable[[], bool] = _sync_disabled
    get_user_id: Callable[[], Optional[str]] = _no_user

    @property
    def remote_table(self) -> str:
        return self.cloud_table_name or self.table_name


class StorageAdapter(ABC):
    """Record storage operations shared by every backing store."""

    def __init__(self, config: StorageConfig):
        self.config = config

    @property
    def table_name(self) -> str:
        return self.config.table_name

    @abstractmethod
    def get_all(self) -> List[Record]:
        ...

    @abstractmethod
    def get_by_id(self, record_id: str) -> Optional[Record]:
        """Return the record, or None when it does not exist."""

    @abstractmethod
    def get_by_index(self, index_name: str, value: Any) -> List[Record]:
        ...

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Record:
        ...

    @abstractmethod
    def update(self, record_id: str, data: Dict[str, Any]) -> Optional[Record]:
        """Merge data into a record; None when the record does not exist."""

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        ...

    @abstractmethod
    def count(self) -> int:
        ...
