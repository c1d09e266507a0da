# =============================================================================
# nimble_core/data/supabase_client.py
# Supabase Client Configuration
# =============================================================================

from __future__ import annotations
from typing import Optional

import streamlit as st
from supabase import Client, create_client

from nimble_core.config import AppConfig, get_config
from nimble_core.logging import get_logger

logger = get_logger(__name__)


def get_supabase_client(config: Optional[AppConfig] = None) -> Client:
    """
    Create a Supabase client from the resolved configuration.

    Raises:
        ConfigurationError: URL or key missing
    """
    config = config or get_config()
    config.require_supabase()
    client = create_client(config.supabase_url, config.supabase_key)
    logger.info("Supabase client created")
    return client


@st.cache_resource(ttl=3600)  # Cache for 1 hour, then refresh
def get_cached_supabase_client() -> Client:
    """Supabase client shared across sessions."""
    return get_supabase_client()
