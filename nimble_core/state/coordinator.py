# =============================================================================
# nimble_core/state/coordinator.py
# AppState Coordinator - signal fetching, memoized state, transitions
# =============================================================================
"""
AppStateCoordinator - the stateful wrapper around AppState derivation.

Responsibilities:
- Fetch account signals (admin role and settings row in parallel)
- Memoize the derived AppState and its capabilities; subscribers are
  notified only when the derived state changes
- Feature access checks, transitions and the admin reset
- Own the account-scoped FeatureFlagStore

Usage:
    coordinator = AppStateCoordinator(SupabaseAccountGateway(), get_local_database())
    coordinator.refresh_state()
    if coordinator.has_access("scheduling"):
        ...
"""

from __future__ import annotations
import math
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Union

import streamlit as st

from nimble_core.data.account_gateway import AccountGateway
from nimble_core.errors import PermissionDeniedError, SignalFetchError
from nimble_core.logging import get_logger
from nimble_core.offline.local_database import (
    FEATURE_CACHE_COLLECTIONS,
    FEATURE_CACHE_KEYS,
    LocalDatabase,
)
from nimble_core.offline.records import parse_timestamp, utc_now
from nimble_core.state.app_state import (
    AppState,
    Capabilities,
    FeatureKey,
    StateAction,
    derive_state,
    entitled_features,
    get_next_state,
    get_state_capabilities,
    has_feature_access,
    is_paid_pro,
    is_trial_active,
    trial_duration,
)
from nimble_core.state.feature_flags import FeatureFlagStore
from nimble_core.state.signals import (
    AI_SCANS_STATUS_COLUMN,
    ONBOARDING_FIELDS,
    PAID_FEATURE_COLUMNS,
    PAID_FLAG_COLUMNS,
    TRIALS_COLUMN,
    AccountSignals,
    TrialInfo,
    serialize_trials,
)

logger = get_logger(__name__)

# Onboarding fields persist_setup_step may write
SETUP_STEP_FIELDS = ONBOARDING_FIELDS + ("setup_completed",)

SESSION_KEY = "app_state_coordinator"


class AppStateCoordinator:
    """Fetches account signals and exposes the derived AppState."""

    def __init__(
        self,
        gateway: AccountGateway,
        local_db: LocalDatabase,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            gateway: Account identity/roles/settings collaborator
            local_db: Local store holding feature caches and flags
            clock: Returns the current aware datetime (defaults to UTC now)
        """
        self.gateway = gateway
        self.local_db = local_db
        self._clock = clock or utc_now

        self._signals = AccountSignals()
        self._user_id: Optional[str] = None
        self._state = AppState.INSTALL
        self._capabilities = get_state_capabilities(AppState.INSTALL)
        self._lock = threading.RLock()
        self._callbacks: List[Callable[[AppState], None]] = []

        self.flag_store = FeatureFlagStore(local_db)
        self.setup_progress: Dict[str, Any] = {}

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    def now(self) -> datetime:
        return self._clock()

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def capabilities(self) -> Capabilities:
        return self._capabilities

    @property
    def signals(self) -> AccountSignals:
        return self._signals

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def loading(self) -> bool:
        return self._signals.is_loading

    @property
    def is_admin(self) -> bool:
        return bool(self._signals.is_admin)

    @property
    def is_setup_complete(self) -> bool:
        return bool(self._signals.setup_completed)

    @property
    def is_trial_active(self) -> bool:
        return is_trial_active(self._signals, self.now())

    @property
    def is_paid_pro(self) -> bool:
        return is_paid_pro(self._signals)

    @property
    def entitled(self) -> FrozenSet[FeatureKey]:
        return entitled_features(self._signals, self.now())

    # =========================================================================
    # SIGNALS AND MEMOIZATION
    # =========================================================================

    def _signal_failed(self, signal: str, user_id: Optional[str], error: Exception) -> None:
        failure = SignalFetchError(
            f"Could not fetch {signal} signal: {error}",
            signal=signal,
            user_id=user_id,
        )
        logger.warning(str(failure))

    def refresh_state(self) -> AppState:
        """
        Fetch every signal and re-derive the state.

        A failing source leaves its signals unresolved, which keeps the
        state on INSTALL rather than guessing.
        """
        try:
            user_id = self.gateway.get_user_id()
        except Exception as e:
            self._signal_failed("auth", None, e)
            return self._apply(AccountSignals(), None)

        if not user_id:
            return self._apply(AccountSignals.signed_out(), None)

        signals = AccountSignals(authenticated=True)
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="AppStateSignals") as pool:
            admin_future = pool.submit(self.gateway.is_admin, user_id)
            settings_future = pool.submit(self.gateway.fetch_settings, user_id)

            try:
                signals.is_admin = bool(admin_future.result())
            except Exception as e:
                self._signal_failed("admin_role", user_id, e)

            try:
                signals.apply_settings_row(settings_future.result())
            except Exception as e:
                self._signal_failed("settings", user_id, e)

        self.flag_store.ensure_loaded()
        return self._apply(signals, user_id)

    def rederive(self) -> AppState:
        """Re-derive from the current signals (e.g. to notice a trial expiring)."""
        return self._apply(self._signals, self._user_id)

    def _apply(self, signals: AccountSignals, user_id: Optional[str]) -> AppState:
        with self._lock:
            self._signals = signals
            self._user_id = user_id
            new_state = derive_state(signals, self.now())
            changed = new_state != self._state
            if changed:
                logger.info(f"AppState changed: {self._state.value} -> {new_state.value}")
                self._state = new_state
                self._capabilities = get_state_capabilities(new_state)

        if changed:
            self._notify_callbacks()
        return new_state

    def register_callback(self, callback: Callable[[AppState], None]) -> None:
        """Register a callback for derived state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[AppState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in self._callbacks:
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in app state callback: {e}")

    # =========================================================================
    # ACCESS AND TRANSITIONS
    # =========================================================================

    def has_access(self, feature: Union[FeatureKey, str]) -> bool:
        return has_feature_access(self._state, feature, self.entitled)

    def transition_to(self, action: Union[StateAction, str]) -> AppState:
        """
        Act on a lifecycle event.

        The transition table only decides whether signals must be fetched
        again; the resulting state is always re-derived.
        """
        try:
            action = StateAction(action)
        except ValueError:
            logger.warning(f"Unknown state action: {action}")
            return self._state

        if action == StateAction.RESET:
            self.reset_to_install()
            return self._state

        expected = get_next_state(self._state, action)
        if expected == self._state:
            logger.debug(f"Action {action.value} is a no-op from {self._state.value}")
            return self._state

        derived = self.refresh_state()
        if derived != expected:
            logger.info(
                f"Action {action.value}: expected {expected.value}, derived {derived.value}"
            )
        return derived

    def reset_to_install(self) -> bool:
        """
        Wipe onboarding and feature-initialization state (admin preview only).

        Business records are never touched.
        """
        if self._state != AppState.ADMIN_PREVIEW or not self._user_id:
            denied = PermissionDeniedError(
                "Reset is only available in admin preview",
                action=StateAction.RESET.value,
                state=self._state.value,
            )
            logger.warning(str(denied))
            return False

        values: Dict[str, Any] = {"setup_completed": False}
        values.update({name: None for name in ONBOARDING_FIELDS})
        values.update({column: False for column in PAID_FLAG_COLUMNS})
        values[AI_SCANS_STATUS_COLUMN] = None

        try:
            self.gateway.upsert_settings(self._user_id, values)
        except Exception as e:
            logger.error(f"Reset failed writing settings: {e}")
            return False

        try:
            for collection in FEATURE_CACHE_COLLECTIONS:
                self.local_db.clear_collection(collection)
            for key in FEATURE_CACHE_KEYS:
                self.local_db.delete_setting(key)
            self.flag_store.clear()
        except sqlite3.Error as e:
            logger.error(f"Reset failed purging feature caches: {e}")
            return False

        self.setup_progress.clear()

        signals = replace(
            self._signals,
            setup_completed=False,
            paid_features={feature: False for feature in self._signals.paid_features},
            **{name: None for name in ONBOARDING_FIELDS},
        )
        self._apply(signals, self._user_id)
        logger.info("Setup reset to install")
        return True

    def persist_setup_step(self, step: str, value: Any) -> bool:
        """
        Save one onboarding field immediately.

        Local state is updated first; if the upstream write fails it is
        restored and False is returned.
        """
        if step not in SETUP_STEP_FIELDS:
            logger.warning(f"Unknown setup step: {step}")
            return False
        if not self._user_id:
            logger.warning(f"Cannot persist setup step {step}: no user")
            return False

        previous_progress = dict(self.setup_progress)
        previous_signals = self._signals

        self.setup_progress[step] = value
        self._apply(replace(previous_signals, **{step: value}), self._user_id)

        try:
            self.gateway.upsert_settings(self._user_id, {step: value})
        except Exception as e:
            logger.error(f"Failed to persist setup step {step}: {e}")
            self.setup_progress = previous_progress
            self._apply(previous_signals, self._user_id)
            return False
        return True

    # =========================================================================
    # TRIALS AND PAID FEATURES
    # =========================================================================

    def start_trial(self, trial_key: str, days: Optional[int] = None) -> bool:
        """Start a feature trial; an existing trial (even expired) is never restarted."""
        if not self._user_id:
            return False
        if trial_key in self._signals.trials:
            logger.info(f"Trial {trial_key} already used")
            return False

        now = self.now()
        duration = timedelta(days=days) if days is not None else trial_duration(trial_key)
        trials = dict(self._signals.trials)
        trials[trial_key] = TrialInfo(started_at=now, expires_at=now + duration)

        try:
            self.gateway.upsert_settings(self._user_id, {TRIALS_COLUMN: serialize_trials(trials)})
        except Exception as e:
            logger.error(f"Failed to start trial {trial_key}: {e}")
            return False

        self._apply(replace(self._signals, trials=trials), self._user_id)
        logger.info(f"Trial started: {trial_key} until {trials[trial_key].expires_at.isoformat()}")
        return True

    def trial_days_remaining(self, trial_key: str) -> int:
        trial = self._signals.trials.get(trial_key)
        now = self.now()
        if trial is None or not trial.is_active(now):
            return 0
        remaining = parse_timestamp(trial.expires_at) - parse_timestamp(now)
        return math.ceil(remaining.total_seconds() / 86400)

    def enable_paid_feature(self, feature: Union[FeatureKey, str]) -> bool:
        """Record a purchased feature on the account."""
        if not self._user_id:
            return False
        name = feature.value if isinstance(feature, FeatureKey) else str(feature)

        if name in PAID_FEATURE_COLUMNS:
            values = {PAID_FEATURE_COLUMNS[name][0]: True}
        elif name == FeatureKey.AI_SCANNING.value:
            values = {AI_SCANS_STATUS_COLUMN: "active"}
        else:
            logger.warning(f"Feature {name} cannot be purchased")
            return False

        try:
            self.gateway.upsert_settings(self._user_id, values)
        except Exception as e:
            logger.error(f"Failed to enable {name}: {e}")
            return False

        paid = {**self._signals.paid_features, name: True}
        self._apply(replace(self._signals, paid_features=paid), self._user_id)
        return True

    # =========================================================================
    # SESSION
    # =========================================================================

    def sign_out(self) -> None:
        """End the session and drop account-scoped state."""
        try:
            self.gateway.sign_out()
        except Exception as e:
            logger.error(f"Sign-out failed: {e}")
        self.flag_store.clear()
        self.setup_progress.clear()
        self._apply(AccountSignals.signed_out(), None)


def get_app_state() -> AppStateCoordinator:
    """Session-scoped coordinator, created and refreshed on first use."""
    if SESSION_KEY not in st.session_state:
        from nimble_core.data.account_gateway import SupabaseAccountGateway
        from nimble_core.offline.local_database import get_local_database

        coordinator = AppStateCoordinator(SupabaseAccountGateway(), get_local_database())
        coordinator.refresh_state()
        st.session_state[SESSION_KEY] = coordinator
    return st.session_state[SESSION_KEY]
