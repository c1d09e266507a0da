# =============================================================================
# nimble_core/services/record_service.py
# Capability-Gated Record CRUD
# =============================================================================
"""
RecordService - CRUD over one storage adapter returning ServiceResult.

Storage failures never escape as exceptions: they come back as falsy
results carrying the error code, and a failed local write leaves the stored
record as it was.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from nimble_core.errors import FeatureAccessError, RecordValidationError
from nimble_core.offline.records import Record
from nimble_core.offline.storage_adapter import StorageAdapter
from nimble_core.services.base_service import BaseService, ServiceResult
from nimble_core.state.app_state import FeatureKey

NOT_FOUND = "NOT_FOUND"


class RecordService(BaseService):
    """
    Record operations for one collection.

    Usage:
        clients = RecordService(create_storage("clients", coordinator), coordinator, FeatureKey.CLIENTS)
        result = clients.create({"name": "Acme"})
        if not result:
            st.error(result.error)
    """

    def __init__(
        self,
        storage: StorageAdapter,
        coordinator=None,
        feature: Optional[Union[FeatureKey, str]] = None,
    ):
        """
        Args:
            storage: Adapter backing the collection
            coordinator: AppStateCoordinator used for capability checks
            feature: Capability required for every operation (None = ungated)
        """
        super().__init__()
        self.storage = storage
        self.coordinator = coordinator
        self.feature = FeatureKey(feature) if feature is not None else None

    @property
    def table_name(self) -> str:
        return self.storage.table_name

    # =========================================================================
    # HOOKS
    # =========================================================================

    def is_enabled(self) -> bool:
        """Whether the signed-in account may use this collection."""
        if self.feature is None or self.coordinator is None:
            return True
        return self.coordinator.has_access(self.feature)

    def _require_access(self) -> None:
        if not self.is_enabled():
            state = self.coordinator.state.value if self.coordinator is not None else None
            raise FeatureAccessError(
                f"{self.feature.value} is not available",
                feature=self.feature.value,
                state=state,
            )

    def validate(self, data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
        """Clean and check record data; raise RecordValidationError when invalid."""
        return dict(data)

    def sort_records(self, records: List[Record]) -> List[Record]:
        return records

    @staticmethod
    def _require_text(data: Dict[str, Any], field: str) -> str:
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            raise RecordValidationError(f"{field} is required", field=field, value=value)
        return value.strip()

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def list(self) -> ServiceResult:
        def _list():
            self._require_access()
            return self.sort_records(self.storage.get_all())

        return self.safe_execute(f"Loading {self.table_name}", _list)

    def get(self, record_id: str) -> ServiceResult:
        def _get():
            self._require_access()
            record = self.storage.get_by_id(record_id)
            if record is None:
                return ServiceResult.fail(f"{self.table_name}/{record_id} not found", NOT_FOUND)
            return record

        return self.safe_execute(f"Loading {self.table_name}/{record_id}", _get)

    def find(self, index_name: str, value: Any) -> ServiceResult:
        def _find():
            self._require_access()
            return self.sort_records(self.storage.get_by_index(index_name, value))

        return self.safe_execute(f"Looking up {self.table_name} by {index_name}", _find)

    def create(self, data: Dict[str, Any]) -> ServiceResult:
        def _create():
            self._require_access()
            return self.storage.create(self.validate(data))

        return self.safe_execute(f"Creating {self.table_name} record", _create)

    def update(self, record_id: str, data: Dict[str, Any]) -> ServiceResult:
        def _update():
            self._require_access()
            record = self.storage.update(record_id, self.validate(data, partial=True))
            if record is None:
                return ServiceResult.fail(f"{self.table_name}/{record_id} not found", NOT_FOUND)
            return record

        return self.safe_execute(f"Updating {self.table_name}/{record_id}", _update)

    def delete(self, record_id: str) -> ServiceResult:
        def _delete():
            self._require_access()
            if not self.storage.delete(record_id):
                return ServiceResult.fail(f"{self.table_name}/{record_id} not found", NOT_FOUND)
            return record_id

        return self.safe_execute(f"Deleting {self.table_name}/{record_id}", _delete)

    def count(self) -> ServiceResult:
        def _count():
            self._require_access()
            return self.storage.count()

        return self.safe_execute(f"Counting {self.table_name}", _count)

    def to_dataframe(self) -> pd.DataFrame:
        """Records as a DataFrame (empty when the collection cannot be read)."""
        result = self.list()
        if not result:
            return pd.DataFrame()
        return pd.DataFrame(result.data)
