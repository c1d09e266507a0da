# =============================================================================
# nimble_core/data/__init__.py
# Supabase Collaborators
# =============================================================================

from nimble_core.data.supabase_client import (
    get_supabase_client,
    get_cached_supabase_client,
)

from nimble_core.data.account_gateway import (
    AccountGateway,
    SupabaseAccountGateway,
)

__all__ = [
    "get_supabase_client",
    "get_cached_supabase_client",
    "AccountGateway",
    "SupabaseAccountGateway",
]
