# =============================================================================
# nimble_core/services/appointment_service.py
# Appointments (scheduling)
# =============================================================================
"""
Appointments for stationary businesses, optionally linked to a project for
invoicing. Kept on the device only.
"""

from __future__ import annotations
import re
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd

from nimble_core.errors import RecordValidationError
from nimble_core.offline.records import Record, utc_now_iso
from nimble_core.offline.storage_adapter import StorageAdapter
from nimble_core.services.base_service import ServiceResult
from nimble_core.services.record_service import RecordService
from nimble_core.state.app_state import FeatureKey

APPOINTMENTS_COLLECTION = "appointments"

APPOINTMENT_STATUSES = ("scheduled", "completed", "cancelled", "no_show")

_START_TIME = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _as_date(value: Any) -> date:
    if value is None or value == "":
        raise ValueError("date is missing")
    stamp = pd.Timestamp(value)
    if pd.isna(stamp):
        raise ValueError(f"Not a date: {value!r}")
    return stamp.date()


class AppointmentService(RecordService):
    """
    Appointment CRUD plus lookups by project and by day.

    Usage:
        appointments = AppointmentService(create_storage("appointments", coordinator), coordinator)
        appointments.add(client_id, date(2024, 5, 1), "09:30", 60)
    """

    def __init__(
        self,
        storage: StorageAdapter,
        coordinator=None,
        projects: Optional[StorageAdapter] = None,
    ):
        """
        Args:
            storage: Adapter for the appointments collection
            coordinator: AppStateCoordinator for capability checks
            projects: Projects adapter, needed to create linked projects
        """
        super().__init__(storage, coordinator, FeatureKey.SCHEDULING)
        self.projects = projects

    def validate(self, data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
        cleaned = dict(data)
        if not partial or "clientId" in data:
            cleaned["clientId"] = self._require_text(data, "clientId")

        if not partial or "date" in data:
            try:
                cleaned["date"] = _as_date(data.get("date")).isoformat()
            except (TypeError, ValueError) as e:
                raise RecordValidationError("date is invalid", field="date", value=data.get("date")) from e

        if not partial or "startTime" in data:
            start = data.get("startTime")
            if not isinstance(start, str) or not _START_TIME.match(start):
                raise RecordValidationError("startTime must be HH:MM", field="startTime", value=start)

        if not partial or "duration" in data:
            duration = data.get("duration")
            if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
                raise RecordValidationError("duration must be positive minutes", field="duration", value=duration)

        status = data.get("status", None if partial else "scheduled")
        if status is not None:
            if status not in APPOINTMENT_STATUSES:
                raise RecordValidationError(f"Unknown status: {status}", field="status", value=status)
            cleaned["status"] = status

        cleaned["updatedAt"] = utc_now_iso()
        return cleaned

    def sort_records(self, records: List[Record]) -> List[Record]:
        return sorted(records, key=lambda r: (r.get("date") or "", r.get("startTime") or ""))

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def add(
        self,
        client_id: str,
        on: date,
        start_time: str,
        duration: int,
        service_id: Optional[str] = None,
        notes: Optional[str] = None,
        create_project: bool = False,
        service_name: Optional[str] = None,
        service_price: Optional[float] = None,
    ) -> ServiceResult:
        """
        Book an appointment; optionally create an accepted project for it so
        it can be invoiced.
        """
        data: Dict[str, Any] = {
            "clientId": client_id,
            "serviceId": service_id,
            "date": on,
            "startTime": start_time,
            "duration": duration,
            "notes": notes,
        }

        def _add():
            self._require_access()
            cleaned = self.validate(data)
            if create_project and service_name and self.projects is not None:
                project = self.projects.create(self._linked_project(cleaned, service_name, service_price))
                cleaned["projectId"] = project["id"]
            return self.storage.create(cleaned)

        return self.safe_execute("Booking appointment", _add)

    @staticmethod
    def _linked_project(appointment: Record, service_name: str, price: Optional[float]) -> Record:
        items = []
        if price:
            items.append({"description": service_name, "quantity": 1, "unitPrice": price})
        return {
            "title": service_name,
            "description": appointment.get("notes") or "",
            "clientId": appointment["clientId"],
            "status": "accepted",
            "items": items,
            "scheduledDate": appointment["date"],
            "arrivalWindowStart": appointment["startTime"],
        }

    def for_project(self, project_id: str) -> ServiceResult:
        return self.find("by_project", project_id)

    def for_client(self, client_id: str) -> ServiceResult:
        return self.find("by_client", client_id)

    def on_date(self, day: date) -> ServiceResult:
        return self.find("by_date", _as_date(day).isoformat())

    def set_status(self, appointment_id: str, status: str) -> ServiceResult:
        return self.update(appointment_id, {"status": status})

    def stats(self, today: Optional[date] = None) -> ServiceResult:
        """Counts of scheduled appointments today, this week (Sunday start) and upcoming."""
        result = self.list()
        if not result:
            return result

        today = today or date.today()
        week_start = today - timedelta(days=(today.weekday() + 1) % 7)
        week_end = week_start + timedelta(days=6)

        df = pd.DataFrame(result.data, columns=["date", "status"])
        scheduled = df[df["status"] == "scheduled"]
        days = pd.to_datetime(scheduled["date"]).dt.date

        return ServiceResult.ok({
            "today_count": int((days == today).sum()),
            "this_week_count": int(((days >= week_start) & (days <= week_end)).sum()),
            "upcoming_count": int((days >= today).sum()),
            "total_count": len(df),
        })
