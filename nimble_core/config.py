# =============================================================================
# nimble_core/config.py
# Application Configuration (Streamlit secrets, environment, defaults)
# =============================================================================
"""
Configuration for the Nimble Core runtime.

Values are resolved in this order:
    1. Explicit keyword overrides passed to ``load_config``
    2. Streamlit secrets (``.streamlit/secrets.toml``)
    3. Environment variables
    4. Defaults

Expected secrets.toml format:
    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [nimble]
    db_path = "local_data/nimble.db"
    sync_interval = 30
"""

from __future__ import annotations
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import streamlit as st

from nimble_core.errors import ConfigurationError
from nimble_core.logging import get_logger

logger = get_logger(__name__)


DEFAULT_DB_PATH = Path("local_data") / "nimble.db"
DEFAULT_SYNC_INTERVAL = 30          # Seconds between background push passes
DEFAULT_MAX_BACKOFF = 600           # Ceiling for the scheduler backoff delay


@dataclass(frozen=True)
class AppConfig:
    """Resolved runtime configuration."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    db_path: Path = DEFAULT_DB_PATH
    sync_interval: int = DEFAULT_SYNC_INTERVAL
    max_backoff: int = DEFAULT_MAX_BACKOFF

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def require_supabase(self) -> None:
        """Fail fast when cloud features are used without credentials."""
        if not self.supabase_url:
            raise ConfigurationError("Supabase URL is not configured", config_key="supabase.url")
        if not self.supabase_key:
            raise ConfigurationError("Supabase key is not configured", config_key="supabase.key")


def _read_secrets() -> Dict[str, Dict[str, Any]]:
    """Read the relevant secrets sections, tolerating a missing secrets file."""
    sections: Dict[str, Dict[str, Any]] = {}
    try:
        for section in ("supabase", "nimble"):
            if section in st.secrets:
                sections[section] = dict(st.secrets[section])
    except Exception as e:
        # No secrets.toml outside a deployed app
        logger.debug(f"Streamlit secrets unavailable: {e}")
    return sections


def _as_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid integer for {key}: {value!r}",
            config_key=key,
            expected_type="int",
        ) from e


def load_config(**overrides: Any) -> AppConfig:
    """Build an AppConfig from secrets, environment and overrides."""
    secrets = _read_secrets()
    supabase = secrets.get("supabase", {})
    nimble = secrets.get("nimble", {})

    config = AppConfig(
        supabase_url=supabase.get("url") or os.getenv("SUPABASE_URL"),
        supabase_key=supabase.get("key") or os.getenv("SUPABASE_KEY"),
        db_path=Path(nimble.get("db_path") or os.getenv("NIMBLE_DB_PATH") or DEFAULT_DB_PATH),
        sync_interval=_as_int(
            nimble.get("sync_interval") or os.getenv("NIMBLE_SYNC_INTERVAL") or DEFAULT_SYNC_INTERVAL,
            "nimble.sync_interval",
        ),
        max_backoff=_as_int(
            nimble.get("max_backoff") or os.getenv("NIMBLE_MAX_BACKOFF") or DEFAULT_MAX_BACKOFF,
            "nimble.max_backoff",
        ),
    )

    if overrides:
        if "db_path" in overrides and overrides["db_path"] is not None:
            overrides["db_path"] = Path(overrides["db_path"])
        config = replace(config, **overrides)

    return config


# Singleton accessor
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the process-wide configuration."""
    global _config
    if _config is None:
        _config = load_config()
        logger.info(
            f"Configuration loaded (db: {_config.db_path}, "
            f"supabase: {'yes' if _config.has_supabase else 'no'})"
        )
    return _config


def reset_config() -> None:
    """Forget the cached configuration (tests, credential rotation)."""
    global _config
    _config = None
