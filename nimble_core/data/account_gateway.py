# =============================================================================
# nimble_core/data/account_gateway.py
# Account Identity, Roles and Settings (Supabase)
# =============================================================================
"""
Gateway to the account collaborator: who is signed in, whether they hold the
admin role, and their key-value settings row.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional

from nimble_core.errors import AdapterError
from nimble_core.logging import get_logger
from nimble_core.offline.records import utc_now_iso

logger = get_logger(__name__)

USER_ROLES_TABLE = "user_roles"
USER_SETTINGS_TABLE = "user_settings"
ADMIN_ROLE = "admin"


class AccountGateway(ABC):
    """Account signals as read and written by the AppState coordinator."""

    @abstractmethod
    def get_user_id(self) -> Optional[str]:
        """Signed-in user id, or None without a session."""

    @abstractmethod
    def is_admin(self, user_id: str) -> bool:
        ...

    @abstractmethod
    def fetch_settings(self, user_id: str) -> Optional[Dict[str, Any]]:
        """The user's settings row, or None when none exists yet."""

    @abstractmethod
    def upsert_settings(self, user_id: str, values: Mapping[str, Any]) -> None:
        ...

    def sign_out(self) -> None:
        """End the session (no-op by default)."""


class SupabaseAccountGateway(AccountGateway):
    """AccountGateway over Supabase auth and the user_roles/user_settings tables."""

    def __init__(self, client_factory: Optional[Callable[[], Any]] = None):
        self._client_factory = client_factory
        self._client = None

    @property
    def client(self):
        """Lazy load Supabase client."""
        if self._client is None:
            if self._client_factory is not None:
                self._client = self._client_factory()
            else:
                from nimble_core.data.supabase_client import get_cached_supabase_client
                self._client = get_cached_supabase_client()
        return self._client

    def _fail(self, operation: str, table: str, error: Exception) -> AdapterError:
        logger.error(f"Account {operation} failed on {table}: {error}")
        return AdapterError(
            f"Account {operation} failed",
            operation=operation,
            table=table,
            cause=error,
        )

    def get_user_id(self) -> Optional[str]:
        try:
            response = self.client.auth.get_user()
        except Exception as e:
            raise self._fail("get_user", "auth", e) from e
        user = getattr(response, "user", None) if response is not None else None
        return getattr(user, "id", None)

    def is_admin(self, user_id: str) -> bool:
        try:
            response = (
                self.client.table(USER_ROLES_TABLE)
                .select("role")
                .eq("user_id", user_id)
                .eq("role", ADMIN_ROLE)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise self._fail("is_admin", USER_ROLES_TABLE, e) from e
        return bool(response.data)

    def fetch_settings(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = (
                self.client.table(USER_SETTINGS_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise self._fail("fetch_settings", USER_SETTINGS_TABLE, e) from e
        return response.data[0] if response.data else None

    def upsert_settings(self, user_id: str, values: Mapping[str, Any]) -> None:
        row = {**values, "user_id": user_id, "updated_at": utc_now_iso()}
        try:
            self.client.table(USER_SETTINGS_TABLE).upsert(row, on_conflict="user_id").execute()
        except Exception as e:
            raise self._fail("upsert_settings", USER_SETTINGS_TABLE, e) from e
        logger.debug(f"Settings updated: {', '.join(sorted(values))}")

    def sign_out(self) -> None:
        try:
            self.client.auth.sign_out()
        except Exception as e:
            raise self._fail("sign_out", "auth", e) from e
