# =============================================================================
# nimble_core/services/service_menu_service.py
# Service Menu (priced services offered by the business)
# =============================================================================

from __future__ import annotations
import math
from typing import Any, Dict, List

from nimble_core.errors import RecordValidationError
from nimble_core.offline.records import Record, utc_now_iso
from nimble_core.offline.storage_adapter import StorageAdapter
from nimble_core.services.record_service import RecordService
from nimble_core.state.app_state import FeatureKey

SERVICES_COLLECTION = "services"

# Business types that get the service menu switched on during setup
SERVICE_MENU_BUSINESS_TYPES = ("stationary_appointment",)


def should_enable_service_menu(business_type: str) -> bool:
    return business_type in SERVICE_MENU_BUSINESS_TYPES


class ServiceMenuService(RecordService):
    """
    Name-sorted service menu kept on the device.

    Requires the service_menu capability and the account's service menu flag.
    """

    def __init__(self, storage: StorageAdapter, coordinator=None):
        super().__init__(storage, coordinator, FeatureKey.SERVICE_MENU)

    def is_enabled(self) -> bool:
        if not super().is_enabled():
            return False
        if self.coordinator is None:
            return True
        return self.coordinator.flag_store.service_menu_enabled()

    def enable(self) -> None:
        """Switch the service menu on for the account."""
        self.coordinator.flag_store.update(service_menu_enabled=True)

    def validate(self, data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
        cleaned = dict(data)
        if not partial or "name" in data:
            cleaned["name"] = self._require_text(data, "name")

        if not partial or "price" in data:
            price = data.get("price")
            is_number = isinstance(price, (int, float)) and not isinstance(price, bool)
            if not is_number or math.isnan(price) or price < 0:
                raise RecordValidationError("price must be a non-negative number", field="price", value=price)

        duration = data.get("duration")
        if duration is not None and (not isinstance(duration, int) or duration <= 0):
            raise RecordValidationError("duration must be a positive number of minutes", field="duration", value=duration)

        cleaned["updatedAt"] = utc_now_iso()
        return cleaned

    def sort_records(self, records: List[Record]) -> List[Record]:
        return sorted(records, key=lambda r: str(r.get("name", "")).casefold())
