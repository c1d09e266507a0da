# =============================================================================
# tests/unit/test_coordinator.py
# Unit Tests for AppStateCoordinator
# =============================================================================

import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from nimble_core.state.app_state import AppState, FeatureKey, StateAction, should_show_onboarding
from nimble_core.state.feature_flags import FeatureFlags


class TestRefreshState:
    """Tests for signal fetching and derivation"""

    def test_initial_state_is_install(self, coordinator):
        """Nothing is known before the first refresh"""
        assert coordinator.state == AppState.INSTALL
        assert coordinator.loading

    def test_refresh_ready_base(self, coordinator):
        """Set-up account on the base plan"""
        assert coordinator.refresh_state() == AppState.READY_BASE
        assert coordinator.user_id == "user-1"
        assert coordinator.is_setup_complete
        assert not coordinator.loading
        assert coordinator.capabilities.can_access_app
        assert coordinator.flag_store.loaded

    def test_refresh_admin(self, make_gateway, make_coordinator):
        """Admin role derives ADMIN_PREVIEW"""
        coordinator = make_coordinator(make_gateway(admin=True, settings={"setup_completed": False}))
        assert coordinator.refresh_state() == AppState.ADMIN_PREVIEW
        assert coordinator.is_admin

    def test_missing_settings_row(self, make_gateway, make_coordinator):
        """A new account without a settings row is still in setup"""
        coordinator = make_coordinator(make_gateway(settings=None))
        assert coordinator.refresh_state() == AppState.SETUP_INCOMPLETE

    def test_signed_out(self, make_gateway, make_coordinator):
        """No user means INSTALL with resolved signals"""
        coordinator = make_coordinator(make_gateway(user_id=None))
        assert coordinator.refresh_state() == AppState.INSTALL
        assert not coordinator.loading
        assert coordinator.user_id is None

    def test_auth_failure_stays_loading(self, gateway, coordinator):
        """An auth lookup failure leaves every signal unresolved"""
        gateway.get_user_id = MagicMock(side_effect=RuntimeError("offline"))
        assert coordinator.refresh_state() == AppState.INSTALL
        assert coordinator.loading

    def test_admin_signal_failure_stays_install(self, make_gateway, make_coordinator, caplog):
        """A failing role lookup is logged and treated as loading"""
        gateway = make_gateway(admin=True, settings={"setup_completed": True})
        gateway.fail_admin = True
        coordinator = make_coordinator(gateway)

        assert coordinator.refresh_state() == AppState.INSTALL
        assert coordinator.loading
        assert "Could not fetch admin_role signal" in caplog.text

    def test_settings_signal_failure_stays_install(self, gateway, coordinator):
        """A failing settings fetch never flashes SETUP_INCOMPLETE"""
        gateway.fail_settings = True
        assert coordinator.refresh_state() == AppState.INSTALL
        assert coordinator.loading

    def test_recovers_after_failure(self, gateway, coordinator):
        """The next successful refresh derives the real state"""
        gateway.fail_settings = True
        coordinator.refresh_state()
        gateway.fail_settings = False
        assert coordinator.refresh_state() == AppState.READY_BASE

    def test_rederive_notices_trial_expiry(self, make_gateway, local_db, now):
        """Re-deriving with a later clock ends an expired trial"""
        from nimble_core.state.coordinator import AppStateCoordinator

        clock = [now]
        gateway = make_gateway(settings={
            "setup_completed": True,
            "trial_started_at": {
                "mileage": {
                    "started_at": (now - timedelta(days=6)).isoformat(),
                    "expires_at": (now + timedelta(hours=1)).isoformat(),
                },
            },
        })
        coordinator = AppStateCoordinator(gateway, local_db, clock=lambda: clock[0])

        assert coordinator.refresh_state() == AppState.TRIAL_PRO
        clock[0] = now + timedelta(hours=1)
        assert coordinator.rederive() == AppState.READY_BASE


class TestCallbacks:
    """Tests for state change notification"""

    def test_notified_only_on_change(self, coordinator):
        """Refetching identical signals does not notify again"""
        seen = []
        coordinator.register_callback(seen.append)

        coordinator.refresh_state()
        coordinator.refresh_state()

        assert seen == [AppState.READY_BASE]

    def test_register_is_idempotent(self, coordinator):
        seen = []
        coordinator.register_callback(seen.append)
        coordinator.register_callback(seen.append)
        coordinator.refresh_state()
        assert len(seen) == 1

    def test_unregister(self, coordinator):
        seen = []
        coordinator.register_callback(seen.append)
        coordinator.unregister_callback(seen.append)
        coordinator.refresh_state()
        assert seen == []

    def test_failing_callback_isolated(self, coordinator):
        """One broken subscriber does not stop the others"""
        seen = []
        coordinator.register_callback(MagicMock(side_effect=RuntimeError("boom")))
        coordinator.register_callback(seen.append)
        coordinator.refresh_state()
        assert seen == [AppState.READY_BASE]


class TestAccess:
    """Tests for coordinator feature access"""

    def test_base_plan_access(self, coordinator):
        coordinator.refresh_state()
        assert coordinator.has_access(FeatureKey.CLIENTS)
        assert not coordinator.has_access("scheduling")

    def test_paid_pro_only_entitled_features(self, make_gateway, make_coordinator, now):
        """Paid scheduling with an expired mileage trial"""
        coordinator = make_coordinator(make_gateway(settings={
            "setup_completed": True,
            "scheduling_pro_enabled": True,
            "trial_started_at": {
                "mileage": {
                    "started_at": (now - timedelta(days=8)).isoformat(),
                    "expires_at": (now - timedelta(days=1)).isoformat(),
                },
            },
        }))

        assert coordinator.refresh_state() == AppState.PAID_PRO
        assert coordinator.is_paid_pro
        assert not coordinator.is_trial_active
        assert coordinator.has_access("scheduling")
        assert not coordinator.has_access("mileage")

    def test_before_refresh_nothing_accessible(self, coordinator):
        assert not coordinator.has_access("clients")


class TestTransitions:
    """Tests for transition_to"""

    def test_noop_action_skips_refetch(self, gateway, coordinator):
        """Actions invalid from the current state do not refetch"""
        coordinator.refresh_state()
        gateway.settings["scheduling_pro_enabled"] = True

        assert coordinator.transition_to(StateAction.TRIAL_EXPIRED) == AppState.READY_BASE
        assert coordinator.state == AppState.READY_BASE

    def test_valid_action_rederives(self, gateway, coordinator):
        """The resulting state comes from fresh signals"""
        coordinator.refresh_state()
        gateway.settings["scheduling_pro_enabled"] = True

        assert coordinator.transition_to("subscribe") == AppState.PAID_PRO

    def test_derived_state_wins_over_table(self, coordinator):
        """A subscribe that did not land keeps the derived state"""
        coordinator.refresh_state()
        assert coordinator.transition_to("subscribe") == AppState.READY_BASE

    def test_unknown_action(self, coordinator):
        coordinator.refresh_state()
        assert coordinator.transition_to("teleport") == AppState.READY_BASE

    def test_complete_setup(self, make_gateway, make_coordinator):
        gateway = make_gateway(settings={"setup_completed": False})
        coordinator = make_coordinator(gateway)
        coordinator.refresh_state()

        gateway.settings["setup_completed"] = True
        assert coordinator.transition_to(StateAction.COMPLETE_SETUP) == AppState.READY_BASE


# =============================================================================
# RESET
# =============================================================================

@pytest.fixture
def admin_gateway(make_gateway, now):
    return make_gateway(admin=True, settings={
        "setup_completed": True,
        "company_name": "Acme",
        "business_type": "stationary_appointment",
        "business_sector": "beauty",
        "scheduling_pro_enabled": True,
        "financial_tool_enabled": True,
        "mileage_pro_enabled": True,
        "ai_scans_subscription_status": "active",
        "trial_started_at": {
            "cloud_storage": {
                "started_at": now.isoformat(),
                "expires_at": (now + timedelta(days=14)).isoformat(),
            },
        },
    })


@pytest.fixture
def admin(admin_gateway, make_coordinator):
    coordinator = make_coordinator(admin_gateway)
    coordinator.refresh_state()
    return coordinator


class TestResetToInstall:
    """Tests for the admin reset"""

    def test_denied_outside_admin_preview(self, gateway, coordinator, local_db, caplog):
        """Non-admins get False and nothing is written"""
        coordinator.refresh_state()
        local_db.set_setting("services_preview", {"count": 3})

        assert coordinator.reset_to_install() is False
        assert gateway.upserts == []
        assert local_db.get_setting("services_preview") == {"count": 3}
        assert "STATE_002" in caplog.text

    def test_writes_setup_and_paid_flags(self, admin, admin_gateway):
        """Every paid flag is cleared upstream, not only scheduling"""
        assert admin.reset_to_install() is True

        written = admin_gateway.upserts[-1]
        assert written["setup_completed"] is False
        assert written["company_name"] is None
        assert written["business_type"] is None
        for column in ("scheduling_pro_enabled", "financial_tool_enabled",
                       "financial_pro_enabled", "tax_pro_enabled", "mileage_pro_enabled"):
            assert written[column] is False
        assert written["ai_scans_subscription_status"] is None
        assert "trial_started_at" not in written

    def test_reset_scope(self, admin, local_db):
        """Feature caches are purged, business records survive"""
        client = {"id": "c-1", "name": "Acme", "syncStatus": "synced", "cloudId": "c-1"}
        local_db.put("clients", client)
        local_db.put("services", {"id": "s-1", "name": "Haircut", "price": 30})
        local_db.put("appointments", {"id": "a-1", "clientId": "c-1", "date": "2024-06-02"})
        local_db.set_setting("services_preview", ["Haircut"])
        local_db.set_setting("project_cache", {"p-1": {}})
        admin.flag_store.update(service_menu_enabled=True, cloud_backup_enabled=True)
        admin.setup_progress["company_name"] = "Acme"

        assert admin.reset_to_install() is True

        assert local_db.count("services") == 0
        assert local_db.count("appointments") == 0
        assert local_db.get_setting("services_preview") is None
        assert local_db.get_setting("project_cache") is None
        assert local_db.get_setting("feature_flags") is None
        assert admin.flag_store.flags == FeatureFlags()
        assert admin.setup_progress == {}
        assert local_db.get("clients", "c-1") == client

    def test_admin_stays_admin_but_sees_onboarding(self, admin):
        """Reset leaves the lifecycle state separate from onboarding display"""
        admin.reset_to_install()
        assert admin.state == AppState.ADMIN_PREVIEW
        assert not admin.is_setup_complete
        assert should_show_onboarding(admin.signals)
        assert not any(admin.signals.paid_features.values())
        assert "cloud_storage" in admin.signals.trials

    def test_upstream_failure_keeps_caches(self, admin, admin_gateway, local_db):
        """A failed settings write leaves local caches untouched"""
        local_db.put("services", {"id": "s-1", "name": "Haircut", "price": 30})
        admin_gateway.fail_upsert = True

        assert admin.reset_to_install() is False
        assert local_db.count("services") == 1
        assert admin.is_setup_complete

    def test_reset_action_routes_to_reset(self, admin, admin_gateway):
        assert admin.transition_to(StateAction.RESET) == AppState.ADMIN_PREVIEW
        assert admin_gateway.upserts[-1]["setup_completed"] is False


# =============================================================================
# SETUP STEPS, TRIALS, PAID FEATURES, SESSION
# =============================================================================

class TestPersistSetupStep:
    """Tests for persist_setup_step"""

    def test_writes_immediately(self, make_gateway, make_coordinator):
        gateway = make_gateway(settings={"setup_completed": False})
        coordinator = make_coordinator(gateway)
        coordinator.refresh_state()

        assert coordinator.persist_setup_step("company_name", "Acme") is True
        assert gateway.upserts == [{"company_name": "Acme"}]
        assert coordinator.signals.company_name == "Acme"
        assert coordinator.setup_progress == {"company_name": "Acme"}

    def test_completing_setup_changes_state(self, make_gateway, make_coordinator):
        coordinator = make_coordinator(make_gateway(settings={"setup_completed": False}))
        coordinator.refresh_state()

        assert coordinator.persist_setup_step("setup_completed", True)
        assert coordinator.state == AppState.READY_BASE

    def test_failure_restores_local_state(self, make_gateway, make_coordinator):
        """Upstream failure leaves local state as it was"""
        gateway = make_gateway(settings={"setup_completed": False, "company_name": "Old"})
        coordinator = make_coordinator(gateway)
        coordinator.refresh_state()
        gateway.fail_upsert = True

        assert coordinator.persist_setup_step("company_name", "New") is False
        assert coordinator.signals.company_name == "Old"
        assert coordinator.setup_progress == {}
        assert coordinator.state == AppState.SETUP_INCOMPLETE

    def test_unknown_step_rejected(self, gateway, coordinator):
        coordinator.refresh_state()
        assert coordinator.persist_setup_step("favourite_colour", "blue") is False
        assert gateway.upserts == []

    def test_requires_user(self, coordinator):
        assert coordinator.persist_setup_step("company_name", "Acme") is False


class TestTrials:
    """Tests for start_trial and trial_days_remaining"""

    def test_start_trial(self, gateway, coordinator, now):
        coordinator.refresh_state()

        assert coordinator.start_trial("mileage") is True
        assert coordinator.state == AppState.TRIAL_PRO
        assert coordinator.has_access("mileage")
        assert not coordinator.has_access("financial")
        assert coordinator.trial_days_remaining("mileage") == 7

        stored = gateway.upserts[-1]["trial_started_at"]["mileage"]
        assert stored["expires_at"] == (now + timedelta(days=7)).isoformat()

    def test_cloud_storage_trial_is_longer(self, coordinator):
        coordinator.refresh_state()
        coordinator.start_trial("cloud_storage")
        assert coordinator.trial_days_remaining("cloud_storage") == 14

    def test_financial_tool_alias(self, coordinator):
        """The financial_tool trial unlocks the financial feature"""
        coordinator.refresh_state()
        coordinator.start_trial("financial_tool")
        assert coordinator.has_access(FeatureKey.FINANCIAL)

    def test_trial_never_restarted(self, gateway, coordinator):
        coordinator.refresh_state()
        coordinator.start_trial("mileage")
        assert coordinator.start_trial("mileage") is False
        assert len(gateway.upserts) == 1

    def test_failed_write_does_not_start(self, gateway, coordinator):
        coordinator.refresh_state()
        gateway.fail_upsert = True
        assert coordinator.start_trial("mileage") is False
        assert coordinator.state == AppState.READY_BASE

    def test_days_remaining_without_trial(self, coordinator):
        coordinator.refresh_state()
        assert coordinator.trial_days_remaining("mileage") == 0


class TestPaidFeatures:
    """Tests for enable_paid_feature"""

    def test_enable_scheduling(self, gateway, coordinator):
        coordinator.refresh_state()
        assert coordinator.enable_paid_feature(FeatureKey.SCHEDULING) is True
        assert gateway.upserts[-1] == {"scheduling_pro_enabled": True}
        assert coordinator.state == AppState.PAID_PRO
        assert coordinator.has_access("scheduling")

    def test_enable_ai_scanning(self, gateway, coordinator):
        coordinator.refresh_state()
        assert coordinator.enable_paid_feature("ai_scanning")
        assert gateway.upserts[-1] == {"ai_scans_subscription_status": "active"}

    def test_core_feature_not_purchasable(self, gateway, coordinator):
        coordinator.refresh_state()
        assert coordinator.enable_paid_feature("clients") is False
        assert gateway.upserts == []


class TestSession:
    """Tests for sign-out and the session accessor"""

    def test_sign_out(self, gateway, coordinator, local_db):
        coordinator.refresh_state()
        coordinator.flag_store.update(cloud_backup_enabled=True)

        coordinator.sign_out()

        assert gateway.signed_out
        assert coordinator.state == AppState.INSTALL
        assert coordinator.user_id is None
        assert local_db.get_setting("feature_flags") is None
        assert not coordinator.flag_store.cloud_backup_enabled()

    def test_get_app_state_reuses_session(self, mock_streamlit, coordinator):
        from nimble_core.state.coordinator import SESSION_KEY, get_app_state

        mock_streamlit.session_state[SESSION_KEY] = coordinator
        assert get_app_state() is coordinator

    def test_get_app_state_creates_and_refreshes(self, mock_streamlit, monkeypatch, gateway, local_db):
        import nimble_core.data.account_gateway as account_gateway
        import nimble_core.offline.local_database as local_database
        from nimble_core.state.coordinator import SESSION_KEY, get_app_state

        monkeypatch.setattr(account_gateway, "SupabaseAccountGateway", lambda: gateway)
        monkeypatch.setattr(local_database, "get_local_database", lambda: local_db)

        app_state = get_app_state()

        assert app_state.state == AppState.READY_BASE
        assert mock_streamlit.session_state[SESSION_KEY] is app_state
