# =============================================================================
# tests/unit/test_services.py
# Unit Tests for Service Layer
# =============================================================================

import sqlite3
import pytest
import pandas as pd
from datetime import date
from unittest.mock import patch

from nimble_core.offline.hybrid_adapter import HybridStorageAdapter
from nimble_core.offline.local_adapter import LocalStorageAdapter
from nimble_core.services.base_service import BaseService, ServiceResult
from nimble_core.services.record_service import NOT_FOUND, RecordService
from nimble_core.services.storage_factory import create_storage
from nimble_core.state.app_state import AppState, FeatureKey


@pytest.fixture
def base(coordinator):
    coordinator.refresh_state()
    return coordinator


@pytest.fixture
def scheduling_pro(make_gateway, make_coordinator):
    coordinator = make_coordinator(make_gateway(settings={
        "setup_completed": True,
        "scheduling_pro_enabled": True,
    }))
    coordinator.refresh_state()
    return coordinator


@pytest.fixture
def admin(make_gateway, make_coordinator):
    coordinator = make_coordinator(make_gateway(admin=True, settings={"setup_completed": True}))
    coordinator.refresh_state()
    return coordinator


# =============================================================================
# BASE SERVICE
# =============================================================================

class TestServiceResult:
    """Tests for ServiceResult"""

    def test_truthiness(self):
        assert ServiceResult.ok([1])
        assert not ServiceResult.fail("nope", "X")

    def test_from_nimble_error(self):
        from nimble_core.errors import RecordValidationError

        result = ServiceResult.from_exception(RecordValidationError("bad", field="name"))
        assert result.error == "bad"
        assert result.error_code == "DATA_001"
        assert result.metadata == {"field": "name"}

    def test_from_plain_exception(self):
        result = ServiceResult.from_exception(KeyError("x"))
        assert result.error_code == "EXCEPTION"


class TestBaseService:
    """Tests for safe_execute"""

    class Echo(BaseService):
        pass

    def test_wraps_return_value(self):
        assert self.Echo().safe_execute("Echo", lambda x: x * 2, 21).data == 42

    def test_passes_results_through(self):
        failed = ServiceResult.fail("missing", NOT_FOUND)
        assert self.Echo().safe_execute("Echo", lambda: failed) is failed

    def test_unexpected_error_becomes_failure(self):
        def boom():
            raise RuntimeError("kaput")

        result = self.Echo().safe_execute("Boom", boom)
        assert not result
        assert result.error == "kaput"


# =============================================================================
# RECORD SERVICE
# =============================================================================

class TestRecordService:
    """Tests for capability-gated CRUD"""

    def test_crud(self, base):
        clients = RecordService(create_storage("clients", base), base, FeatureKey.CLIENTS)

        created = clients.create({"name": "Acme"})
        assert created
        record_id = created.data["id"]

        assert clients.get(record_id).data["name"] == "Acme"
        assert clients.update(record_id, {"email": "hi@acme.test"}).data["email"] == "hi@acme.test"
        assert clients.count().data == 1
        assert [r["name"] for r in clients.list().data] == ["Acme"]
        assert clients.delete(record_id).data == record_id
        assert clients.count().data == 0

    def test_missing_record_is_falsy(self, base):
        clients = RecordService(create_storage("clients", base), base, FeatureKey.CLIENTS)
        for result in (clients.get("ghost"), clients.update("ghost", {}), clients.delete("ghost")):
            assert not result
            assert result.error_code == NOT_FOUND

    def test_feature_gate(self, base):
        """Pro collections are closed on the base plan"""
        mileage = RecordService(create_storage("mileage_entries", base), base, FeatureKey.MILEAGE)
        assert not mileage.is_enabled()

        result = mileage.create({"startLocation": "Home"})

        assert not result
        assert result.error_code == "FEATURE_001"
        assert result.metadata["state"] == AppState.READY_BASE.value

    def test_storage_failure_keeps_prior_state(self, base):
        storage = create_storage("clients", base)
        clients = RecordService(storage, base, FeatureKey.CLIENTS)
        record_id = clients.create({"name": "Acme"}).data["id"]

        with patch.object(base.local_db, "put", side_effect=sqlite3.OperationalError("locked")):
            result = clients.update(record_id, {"name": "Changed"})

        assert not result
        assert result.error_code == "STORAGE_001"
        assert clients.get(record_id).data["name"] == "Acme"

    def test_find_by_index(self, base):
        invoices = RecordService(create_storage("invoices", base), base, FeatureKey.INVOICES)
        invoices.create({"clientId": "c-1"})
        invoices.create({"clientId": "c-2"})
        assert len(invoices.find("by_client", "c-1").data) == 1

    def test_ungated_service(self, local_db):
        from nimble_core.offline.storage_adapter import StorageConfig

        notes = RecordService(LocalStorageAdapter(StorageConfig("clients"), local_db))
        assert notes.create({"name": "Plain"})

    def test_to_dataframe(self, base):
        clients = RecordService(create_storage("clients", base), base, FeatureKey.CLIENTS)
        clients.create({"name": "Acme"})
        df = clients.to_dataframe()
        assert isinstance(df, pd.DataFrame)
        assert list(df["name"]) == ["Acme"]

    def test_to_dataframe_when_closed(self, base):
        mileage = RecordService(create_storage("mileage_entries", base), base, FeatureKey.MILEAGE)
        assert mileage.to_dataframe().empty


# =============================================================================
# STORAGE FACTORY
# =============================================================================

class TestStorageFactory:
    """Tests for create_storage"""

    def test_synced_collection_is_hybrid(self, base):
        assert isinstance(create_storage("clients", base), HybridStorageAdapter)

    def test_device_only_collection_is_local(self, base):
        storage = create_storage("services", base)
        assert isinstance(storage, LocalStorageAdapter)
        assert not isinstance(storage, HybridStorageAdapter)

    def test_sync_follows_cloud_backup_flag(self, base, local_db):
        clients = create_storage("clients", base)
        services = create_storage("services", base)

        clients.create({"name": "Before"})
        base.flag_store.update(cloud_backup_enabled=True)
        clients.create({"name": "After"})
        services.create({"name": "Haircut", "price": 30})

        assert local_db.get_pending_count("clients") == 1
        assert local_db.get_pending_count("services") == 0

    def test_owner_is_signed_in_user(self, base):
        storage = create_storage("clients", base)
        assert storage.config.get_user_id() == "user-1"


# =============================================================================
# SERVICE MENU
# =============================================================================

class TestServiceMenuService:
    """Tests for the service menu"""

    @pytest.fixture
    def menu(self, admin):
        from nimble_core.services.service_menu_service import ServiceMenuService

        return ServiceMenuService(create_storage("services", admin), admin)

    def test_needs_flag(self, menu):
        assert not menu.is_enabled()
        assert menu.create({"name": "Haircut", "price": 30}).error_code == "FEATURE_001"

        menu.enable()

        assert menu.is_enabled()
        assert menu.create({"name": "Haircut", "price": 30})

    def test_closed_on_base_plan(self, base):
        from nimble_core.services.service_menu_service import ServiceMenuService

        base.flag_store.update(service_menu_enabled=True)
        assert not ServiceMenuService(create_storage("services", base), base).is_enabled()

    @pytest.mark.parametrize(
        "data,field",
        [
            ({"name": "  ", "price": 10}, "name"),
            ({"name": "Cut", "price": -1}, "price"),
            ({"name": "Cut", "price": True}, "price"),
            ({"name": "Cut", "price": float("nan")}, "price"),
            ({"name": "Cut", "price": "10"}, "price"),
            ({"name": "Cut", "price": 10, "duration": 0}, "duration"),
        ],
    )
    def test_validation(self, menu, data, field):
        menu.enable()
        result = menu.create(data)
        assert result.error_code == "DATA_001"
        assert result.metadata["field"] == field

    def test_name_trimmed_and_sorted(self, menu):
        menu.enable()
        for name in ("  beard trim", "Haircut", "colour"):
            menu.create({"name": name, "price": 20})

        names = [r["name"] for r in menu.list().data]
        assert names == ["beard trim", "colour", "Haircut"]

    def test_business_type_switch(self):
        from nimble_core.services.service_menu_service import should_enable_service_menu

        assert should_enable_service_menu("stationary_appointment")
        assert not should_enable_service_menu("mobile_service")


# =============================================================================
# APPOINTMENTS
# =============================================================================

class TestAppointmentService:
    """Tests for appointments"""

    @pytest.fixture
    def appointments(self, scheduling_pro):
        from nimble_core.services.appointment_service import AppointmentService

        return AppointmentService(
            create_storage("appointments", scheduling_pro),
            scheduling_pro,
            projects=create_storage("projects", scheduling_pro),
        )

    def test_add(self, appointments):
        result = appointments.add("c-1", date(2024, 6, 5), "09:30", 60, notes="First visit")

        assert result
        assert result.data["date"] == "2024-06-05"
        assert result.data["status"] == "scheduled"
        assert "projectId" not in result.data

    def test_add_with_linked_project(self, appointments):
        result = appointments.add(
            "c-1", date(2024, 6, 5), "09:30", 45,
            create_project=True, service_name="Haircut", service_price=35.0,
        )

        project = appointments.projects.get_by_id(result.data["projectId"])
        assert project["status"] == "accepted"
        assert project["clientId"] == "c-1"
        assert project["scheduledDate"] == "2024-06-05"
        assert project["items"] == [{"description": "Haircut", "quantity": 1, "unitPrice": 35.0}]

    @pytest.mark.parametrize(
        "start,duration",
        [("9:30", 60), ("24:00", 60), ("09:30", 0), ("09:30", True)],
    )
    def test_validation(self, appointments, start, duration):
        result = appointments.add("c-1", date(2024, 6, 5), start, duration)
        assert result.error_code == "DATA_001"

    def test_bad_date(self, appointments):
        assert appointments.create({"clientId": "c-1", "date": "not a date", "startTime": "10:00", "duration": 30}).error_code == "DATA_001"
        assert appointments.create({"clientId": "c-1", "date": None, "startTime": "10:00", "duration": 30}).error_code == "DATA_001"

    def test_status_changes(self, appointments):
        appointment_id = appointments.add("c-1", date(2024, 6, 5), "09:30", 60).data["id"]

        assert appointments.set_status(appointment_id, "completed").data["status"] == "completed"
        assert appointments.set_status(appointment_id, "teleported").error_code == "DATA_001"

    def test_lookups(self, appointments):
        appointments.add("c-1", date(2024, 6, 5), "14:00", 30)
        appointments.add("c-1", date(2024, 6, 5), "09:00", 30)
        appointments.add("c-2", date(2024, 6, 6), "09:00", 30)

        same_day = appointments.on_date(date(2024, 6, 5)).data
        assert [a["startTime"] for a in same_day] == ["09:00", "14:00"]
        assert len(appointments.for_client("c-2").data) == 1
        assert appointments.for_project("p-1").data == []

    def test_stats(self, appointments):
        """Weeks start on Sunday"""
        for day in (date(2024, 6, 3), date(2024, 6, 5), date(2024, 6, 7), date(2024, 6, 12)):
            appointments.add("c-1", day, "10:00", 30)
        appointments.create({
            "clientId": "c-1", "date": "2024-06-05", "startTime": "11:00",
            "duration": 30, "status": "cancelled",
        })

        stats = appointments.stats(today=date(2024, 6, 5)).data

        assert stats == {
            "today_count": 1,
            "this_week_count": 3,
            "upcoming_count": 3,
            "total_count": 5,
        }

    def test_closed_on_base_plan(self, base):
        from nimble_core.services.appointment_service import AppointmentService

        appointments = AppointmentService(create_storage("appointments", base), base)
        assert appointments.add("c-1", date(2024, 6, 5), "09:30", 60).error_code == "FEATURE_001"
        assert not appointments.stats()
