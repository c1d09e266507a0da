# =============================================================================
# nimble_core/state/app_state.py
# AppState - Single Authoritative Application State
# =============================================================================
"""
AppState derivation and capability model.

Navigation and feature access depend only on the derived AppState. The state
is never stored: it is a total, deterministic function of the account
signals, recomputed whenever they change.

Derivation, first match wins:

    1. any signal still loading          -> INSTALL
    2. not authenticated                 -> INSTALL
    3. admin role                        -> ADMIN_PREVIEW
    4. setup not completed               -> SETUP_INCOMPLETE
    5. any paid feature                  -> PAID_PRO
    6. any trial with expires_at > now   -> TRIAL_PRO
    7. otherwise                         -> READY_BASE
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Union

from nimble_core.offline.records import utc_now
from nimble_core.state.signals import AccountSignals


class AppState(str, Enum):
    """Application lifecycle and entitlement phase."""
    INSTALL = "INSTALL"                     # No session yet
    SETUP_INCOMPLETE = "SETUP_INCOMPLETE"   # Signed in, setup wizard pending
    READY_BASE = "READY_BASE"               # Base plan
    TRIAL_PRO = "TRIAL_PRO"                 # At least one trial running
    PAID_PRO = "PAID_PRO"                   # At least one paid feature
    ADMIN_PREVIEW = "ADMIN_PREVIEW"         # Admin, bypasses every paywall


class FeatureKey(str, Enum):
    """Feature keys for capability checks."""
    CLIENTS = "clients"
    PROJECTS = "projects"
    INVOICES = "invoices"
    NOTEPAD = "notepad"
    SCHEDULING = "scheduling"
    FINANCIAL = "financial"
    MILEAGE = "mileage"
    SERVICE_MENU = "service_menu"
    CLOUD_STORAGE = "cloud_storage"
    GPS_TRACKING = "gps_tracking"
    AI_SCANNING = "ai_scanning"


class StateAction(str, Enum):
    COMPLETE_SETUP = "complete_setup"
    START_TRIAL = "start_trial"
    SUBSCRIBE = "subscribe"
    TRIAL_EXPIRED = "trial_expired"
    RESET = "reset"


CORE_FEATURES: FrozenSet[FeatureKey] = frozenset({
    FeatureKey.CLIENTS,
    FeatureKey.PROJECTS,
    FeatureKey.INVOICES,
    FeatureKey.NOTEPAD,
})
PRO_FEATURES: FrozenSet[FeatureKey] = frozenset(FeatureKey) - CORE_FEATURES

# Trial keys as stored on the account -> feature they unlock
TRIAL_FEATURE_ALIASES: Dict[str, FeatureKey] = {
    "financial_tool": FeatureKey.FINANCIAL,
    "cloud_storage": FeatureKey.CLOUD_STORAGE,
}

# Trial length per trial key
TRIAL_DURATIONS_DAYS: Dict[str, int] = {
    "mileage": 7,
    "financial_tool": 7,
    "cloud_storage": 14,
}
DEFAULT_TRIAL_DAYS = 7


@dataclass(frozen=True)
class Capabilities:
    """Feature access and UI flags of one AppState."""
    features: FrozenSet[FeatureKey] = frozenset()
    can_reset: bool = False
    bypasses_paywall: bool = False
    show_upgrade_prompts: bool = False
    can_access_setup: bool = False
    can_access_app: bool = False

    def allows(self, feature: Union[FeatureKey, str]) -> bool:
        key = _coerce_feature(feature)
        return key is not None and key in self.features


_ALL_FEATURES: FrozenSet[FeatureKey] = frozenset(FeatureKey)

STATE_CAPABILITIES: Dict[AppState, Capabilities] = {
    AppState.INSTALL: Capabilities(can_access_setup=True),
    AppState.SETUP_INCOMPLETE: Capabilities(can_access_setup=True),
    AppState.READY_BASE: Capabilities(
        features=CORE_FEATURES,
        show_upgrade_prompts=True,
        can_access_app=True,
    ),
    AppState.TRIAL_PRO: Capabilities(features=_ALL_FEATURES, can_access_app=True),
    AppState.PAID_PRO: Capabilities(features=_ALL_FEATURES, can_access_app=True),
    AppState.ADMIN_PREVIEW: Capabilities(
        features=_ALL_FEATURES,
        can_reset=True,
        bypasses_paywall=True,
        can_access_setup=True,
        can_access_app=True,
    ),
}

# action -> {from state: to state}
STATE_TRANSITIONS: Dict[StateAction, Dict[AppState, AppState]] = {
    StateAction.COMPLETE_SETUP: {
        AppState.INSTALL: AppState.READY_BASE,
        AppState.SETUP_INCOMPLETE: AppState.READY_BASE,
    },
    StateAction.START_TRIAL: {AppState.READY_BASE: AppState.TRIAL_PRO},
    StateAction.SUBSCRIBE: {
        AppState.READY_BASE: AppState.PAID_PRO,
        AppState.TRIAL_PRO: AppState.PAID_PRO,
    },
    StateAction.TRIAL_EXPIRED: {AppState.TRIAL_PRO: AppState.READY_BASE},
    StateAction.RESET: {AppState.ADMIN_PREVIEW: AppState.INSTALL},
}


def _coerce_feature(feature: Union[FeatureKey, str]) -> Optional[FeatureKey]:
    try:
        return FeatureKey(feature)
    except ValueError:
        return None


# =============================================================================
# DERIVATION
# =============================================================================

def is_trial_active(signals: AccountSignals, now: Optional[datetime] = None) -> bool:
    now = now or utc_now()
    return any(trial.is_active(now) for trial in signals.trials.values())


def is_paid_pro(signals: AccountSignals) -> bool:
    return any(signals.paid_features.values())


def derive_state(signals: AccountSignals, now: Optional[datetime] = None) -> AppState:
    """Derive the AppState from account signals."""
    # Unknown signals stay on INSTALL instead of flashing a wrong state
    if signals.is_loading:
        return AppState.INSTALL
    if not signals.authenticated:
        return AppState.INSTALL
    if signals.is_admin:
        return AppState.ADMIN_PREVIEW
    if not signals.setup_completed:
        return AppState.SETUP_INCOMPLETE
    if is_paid_pro(signals):
        return AppState.PAID_PRO
    if is_trial_active(signals, now):
        return AppState.TRIAL_PRO
    return AppState.READY_BASE


def entitled_features(signals: AccountSignals, now: Optional[datetime] = None) -> FrozenSet[FeatureKey]:
    """Features individually paid for or in an active trial."""
    now = now or utc_now()
    entitled = set()
    for name, enabled in signals.paid_features.items():
        key = _coerce_feature(name)
        if enabled and key is not None:
            entitled.add(key)
    for name, trial in signals.trials.items():
        key = TRIAL_FEATURE_ALIASES.get(name) or _coerce_feature(name)
        if key is not None and trial.is_active(now):
            entitled.add(key)
    return frozenset(entitled)


# =============================================================================
# CAPABILITIES
# =============================================================================

def get_state_capabilities(state: AppState) -> Capabilities:
    return STATE_CAPABILITIES.get(state, Capabilities())


def has_feature_access(
    state: AppState,
    feature: Union[FeatureKey, str],
    entitled: Optional[Iterable[Union[FeatureKey, str]]] = None,
) -> bool:
    """
    Check if a feature is available in a state.

    When ``entitled`` is given, pro features in PAID_PRO and TRIAL_PRO also
    require the feature itself to be paid for or on trial. ADMIN_PREVIEW
    ignores it.
    """
    capabilities = get_state_capabilities(state)
    if not capabilities.allows(feature):
        return False

    key = _coerce_feature(feature)
    if entitled is None or capabilities.bypasses_paywall or key not in PRO_FEATURES:
        return True
    if state in (AppState.PAID_PRO, AppState.TRIAL_PRO):
        return key in {_coerce_feature(f) for f in entitled}
    return True


def should_show_upgrade_prompts(state: AppState) -> bool:
    return get_state_capabilities(state).show_upgrade_prompts


def can_perform_admin_reset(state: AppState) -> bool:
    return get_state_capabilities(state).can_reset


def can_access_main_app(state: AppState) -> bool:
    return get_state_capabilities(state).can_access_app


def can_access_setup_screens(state: AppState) -> bool:
    return get_state_capabilities(state).can_access_setup


def should_show_onboarding(signals: AccountSignals) -> bool:
    """Onboarding display is independent of the lifecycle state (admins included)."""
    return bool(signals.authenticated) and signals.setup_completed is False


# =============================================================================
# TRANSITIONS
# =============================================================================

def get_next_state(state: AppState, action: Union[StateAction, str]) -> AppState:
    """
    Expected state after an action; invalid actions leave the state unchanged.

    Only used to decide whether a fresh signal fetch is needed.
    """
    try:
        action = StateAction(action)
    except ValueError:
        return state
    return STATE_TRANSITIONS[action].get(state, state)


def trial_duration(trial_key: str) -> timedelta:
    return timedelta(days=TRIAL_DURATIONS_DAYS.get(trial_key, DEFAULT_TRIAL_DAYS))
