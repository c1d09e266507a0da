# =============================================================================
# nimble_core/state/__init__.py
# Application State and Entitlements
# =============================================================================
"""
AppState engine: a pure derivation core (derive_state, capabilities,
transitions) wrapped by the stateful AppStateCoordinator.

Usage:
------
from nimble_core.state import get_app_state

app_state = get_app_state()
if app_state.has_access("mileage"):
    ...
"""

from nimble_core.state.signals import (
    AccountSignals,
    TrialInfo,
)

from nimble_core.state.app_state import (
    AppState,
    FeatureKey,
    StateAction,
    Capabilities,
    derive_state,
    entitled_features,
    get_state_capabilities,
    has_feature_access,
    get_next_state,
    should_show_upgrade_prompts,
    can_perform_admin_reset,
    can_access_main_app,
    can_access_setup_screens,
    should_show_onboarding,
)

from nimble_core.state.feature_flags import (
    FeatureFlags,
    FeatureFlagStore,
)

from nimble_core.state.coordinator import (
    AppStateCoordinator,
    get_app_state,
)

__all__ = [
    # Signals
    "AccountSignals",
    "TrialInfo",
    # Derivation
    "AppState",
    "FeatureKey",
    "StateAction",
    "Capabilities",
    "derive_state",
    "entitled_features",
    "get_state_capabilities",
    "has_feature_access",
    "get_next_state",
    "should_show_upgrade_prompts",
    "can_perform_admin_reset",
    "can_access_main_app",
    "can_access_setup_screens",
    "should_show_onboarding",
    # Feature flags
    "FeatureFlags",
    "FeatureFlagStore",
    # Coordinator
    "AppStateCoordinator",
    "get_app_state",
]
