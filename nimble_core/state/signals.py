# =============================================================================
# nimble_core/state/signals.py
# Account Signals Feeding AppState Derivation
# =============================================================================
"""
Raw, independently fetched inputs to state derivation.

A signal left as ``None`` is still loading (or its source failed); derivation
treats any unresolved signal as "not known yet".
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from nimble_core.offline.records import parse_timestamp, utc_now

# user_settings column -> paid feature key
PAID_FEATURE_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "scheduling": ("scheduling_pro_enabled",),
    "financial": ("financial_tool_enabled", "financial_pro_enabled", "tax_pro_enabled"),
    "mileage": ("mileage_pro_enabled",),
}
AI_SCANS_STATUS_COLUMN = "ai_scans_subscription_status"

# Every paid-feature column, as cleared by an admin reset
PAID_FLAG_COLUMNS = tuple(
    column for columns in PAID_FEATURE_COLUMNS.values() for column in columns
)

ONBOARDING_FIELDS = ("company_name", "business_type", "business_sector")
TRIALS_COLUMN = "trial_started_at"


@dataclass(frozen=True)
class TrialInfo:
    """One feature trial. Expired trials are kept, never deleted."""
    started_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """Active strictly before expiry: a trial expiring exactly now is over."""
        if self.expires_at is None:
            return False
        return parse_timestamp(self.expires_at) > parse_timestamp(now or utc_now())

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> TrialInfo:
        if not data:
            return cls()
        return cls(
            started_at=parse_timestamp(data.get("started_at")),
            expires_at=parse_timestamp(data.get("expires_at")),
        )

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass
class AccountSignals:
    """
    Inputs to derive_state.

    Attributes:
        authenticated: A user session exists (None while loading)
        is_admin: The user holds the admin role (None while loading)
        setup_completed: Onboarding finished (None while loading)
        trials: feature -> TrialInfo
        paid_features: feature -> bool
    """
    authenticated: Optional[bool] = None
    is_admin: Optional[bool] = None
    setup_completed: Optional[bool] = None
    company_name: Optional[str] = None
    business_type: Optional[str] = None
    business_sector: Optional[str] = None
    trials: Dict[str, TrialInfo] = field(default_factory=dict)
    paid_features: Dict[str, bool] = field(default_factory=dict)

    @property
    def is_loading(self) -> bool:
        return self.authenticated is None or self.is_admin is None or self.setup_completed is None

    @classmethod
    def signed_out(cls) -> AccountSignals:
        return cls(authenticated=False, is_admin=False, setup_completed=False)

    def apply_settings_row(self, row: Optional[Mapping[str, Any]]) -> None:
        """Fill setup, trial and paid signals from a user_settings row (None = no row yet)."""
        row = row or {}
        self.setup_completed = bool(row.get("setup_completed") or False)
        for name in ONBOARDING_FIELDS:
            setattr(self, name, row.get(name))
        self.trials = parse_trials(row.get(TRIALS_COLUMN))
        self.paid_features = parse_paid_features(row)


def parse_trials(value: Any) -> Dict[str, TrialInfo]:
    """Trial map stored as JSON: {feature: {started_at, expires_at}}."""
    if not isinstance(value, Mapping):
        return {}
    return {
        feature: TrialInfo.from_dict(info)
        for feature, info in value.items()
        if isinstance(info, Mapping)
    }


def serialize_trials(trials: Mapping[str, TrialInfo]) -> Dict[str, Dict[str, Optional[str]]]:
    return {feature: info.to_dict() for feature, info in trials.items()}


def _first_set(row: Mapping[str, Any], columns: Tuple[str, ...]) -> bool:
    """First column that is not NULL decides; later columns are fallbacks."""
    for column in columns:
        value = row.get(column)
        if value is not None:
            return bool(value)
    return False


def parse_paid_features(row: Mapping[str, Any]) -> Dict[str, bool]:
    paid = {
        feature: _first_set(row, columns)
        for feature, columns in PAID_FEATURE_COLUMNS.items()
    }
    paid["ai_scanning"] = row.get(AI_SCANS_STATUS_COLUMN) == "active"
    return paid
