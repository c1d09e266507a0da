# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import copy
import pytest
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Set, Tuple
from unittest.mock import MagicMock

from nimble_core.data.account_gateway import AccountGateway
from nimble_core.offline.local_database import LocalDatabase
from nimble_core.offline.storage_adapter import StorageConfig


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
USER_ID = "user-1"


# =============================================================================
# FAKE SUPABASE CLIENT
# =============================================================================

class FakeAPIError(Exception):
    """Stands in for a postgrest/httpx failure"""


class FakeQuery:
    """In-memory version of the Supabase query builder chain"""

    def __init__(self, client: "FakeSupabase", table: str):
        self.client = client
        self.table_name = table
        self.op = "select"
        self.payload: Any = None
        self.filters: List[Tuple[str, Any]] = []
        self.order_by: Optional[str] = None
        self.bounds: Optional[Tuple[int, int]] = None
        self.max_rows: Optional[int] = None
        self.count_mode: Optional[str] = None

    def select(self, *columns, count=None):
        self.op = "select"
        self.count_mode = count
        return self

    def insert(self, row):
        self.op, self.payload = "insert", dict(row)
        return self

    def update(self, row):
        self.op, self.payload = "update", dict(row)
        return self

    def upsert(self, row, on_conflict=None):
        self.op, self.payload = "upsert", (dict(row), on_conflict or "id")
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.order_by = column
        return self

    def range(self, start, end):
        self.bounds = (start, end)
        return self

    def limit(self, n):
        self.max_rows = n
        return self

    def _matches(self, row):
        return all(row.get(column) == value for column, value in self.filters)

    def _target_id(self):
        if self.op == "insert":
            return self.payload.get("id")
        for column, value in self.filters:
            if column == "id":
                return value
        return None

    def execute(self):
        self.client.calls.append((self.table_name, self.op, self._target_id()))
        self.client.check_failure(self.table_name, self.op, self._target_id())
        rows = self.client.tables.setdefault(self.table_name, [])

        if self.op == "select":
            result = [copy.deepcopy(r) for r in rows if self._matches(r)]
            if self.order_by:
                result.sort(key=lambda r: str(r.get(self.order_by)))
            total = len(result)
            if self.bounds:
                result = result[self.bounds[0]:self.bounds[1] + 1]
            if self.max_rows is not None:
                result = result[:self.max_rows]
            return SimpleNamespace(data=result, count=total if self.count_mode else None)

        if self.op == "insert":
            row = dict(self.payload)
            row.setdefault("id", self.client.next_id())
            if any(r.get("id") == row["id"] for r in rows):
                raise FakeAPIError(f"duplicate key value violates unique constraint: {row['id']}")
            row.setdefault("created_at", NOW.isoformat())
            rows.append(row)
            return SimpleNamespace(data=[copy.deepcopy(row)], count=None)

        if self.op == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(self.payload)
                    updated.append(copy.deepcopy(row))
            return SimpleNamespace(data=updated, count=None)

        if self.op == "upsert":
            values, key = self.payload
            for row in rows:
                if row.get(key) == values.get(key):
                    row.update(values)
                    return SimpleNamespace(data=[copy.deepcopy(row)], count=None)
            rows.append(dict(values))
            return SimpleNamespace(data=[dict(values)], count=None)

        if self.op == "delete":
            removed = [r for r in rows if self._matches(r)]
            self.client.tables[self.table_name] = [r for r in rows if not self._matches(r)]
            return SimpleNamespace(data=removed, count=None)

        raise AssertionError(f"Unsupported operation {self.op}")


class FakeSupabase:
    """
    Minimal Supabase client: tables held in memory, failures injected per
    (table, operation) or per (table, operation, record id).
    """

    def __init__(self, user_id: Optional[str] = USER_ID):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.failures: Set[Tuple] = set()
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.auth = MagicMock()
        self.auth.get_user.return_value = (
            SimpleNamespace(user=SimpleNamespace(id=user_id)) if user_id else None
        )
        self._counter = 0

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def next_id(self) -> str:
        self._counter += 1
        return f"remote-{self._counter}"

    def fail(self, table: str, op: str, record_id: Optional[str] = None) -> None:
        self.failures.add((table, op, record_id))

    def check_failure(self, table: str, op: str, record_id: Optional[str]) -> None:
        if (table, op, None) in self.failures or (table, op, record_id) in self.failures:
            raise FakeAPIError(f"{op} on {table} failed")

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])


# =============================================================================
# FAKE ACCOUNT GATEWAY
# =============================================================================

class FakeAccountGateway(AccountGateway):
    """Account collaborator with a settings dict and switchable failures"""

    def __init__(
        self,
        user_id: Optional[str] = USER_ID,
        admin: bool = False,
        settings: Optional[Dict[str, Any]] = None,
    ):
        self.user_id = user_id
        self.admin = admin
        self.settings = settings
        self.fail_admin = False
        self.fail_settings = False
        self.fail_upsert = False
        self.upserts: List[Dict[str, Any]] = []
        self.signed_out = False

    def get_user_id(self):
        return self.user_id

    def is_admin(self, user_id):
        if self.fail_admin:
            raise FakeAPIError("user_roles unavailable")
        return self.admin

    def fetch_settings(self, user_id):
        if self.fail_settings:
            raise FakeAPIError("user_settings unavailable")
        return copy.deepcopy(self.settings)

    def upsert_settings(self, user_id, values):
        if self.fail_upsert:
            raise FakeAPIError("user_settings write failed")
        self.upserts.append(dict(values))
        self.settings = {**(self.settings or {}), **values}

    def sign_out(self):
        self.signed_out = True
        self.user_id = None


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def local_db(tmp_path):
    """Fresh SQLite store per test"""
    db = LocalDatabase(tmp_path / "nimble.db")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def now():
    """Fixed clock value used by coordinators in tests"""
    return NOW


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def make_supabase():
    """Factory for fake clients (e.g. signed out: make_supabase(user_id=None))"""
    return FakeSupabase


@pytest.fixture
def gateway():
    """Signed-in, setup-complete account on the base plan"""
    return FakeAccountGateway(settings={"setup_completed": True, "company_name": "Acme"})


@pytest.fixture
def make_gateway():
    """Factory for account gateways with custom settings"""
    return FakeAccountGateway


@pytest.fixture
def make_coordinator(local_db):
    """Factory binding a gateway to a coordinator on the fixed clock"""
    from nimble_core.state.coordinator import AppStateCoordinator

    def _make(gateway):
        return AppStateCoordinator(gateway, local_db, clock=lambda: NOW)

    return _make


@pytest.fixture
def coordinator(gateway, make_coordinator):
    return make_coordinator(gateway)


@pytest.fixture
def sync_on():
    """Mutable switch read by storage configs"""
    return {"enabled": True, "user_id": USER_ID}


def make_config(table: str, switch: Dict[str, Any]) -> StorageConfig:
    return StorageConfig(
        table_name=table,
        requires_auth=True,
        sync_enabled=lambda: switch["enabled"],
        get_user_id=lambda: switch["user_id"],
    )


@pytest.fixture
def make_hybrid(local_db, fake_supabase, sync_on):
    """Factory for hybrid adapters over the fake client"""
    from nimble_core.offline.cloud_adapter import CloudStorageAdapter
    from nimble_core.offline.hybrid_adapter import HybridStorageAdapter
    from nimble_core.offline.local_adapter import LocalStorageAdapter

    def _make(table: str = "clients"):
        config = make_config(table, sync_on)
        local = LocalStorageAdapter(config, local_db)
        cloud = CloudStorageAdapter(config, lambda: fake_supabase)
        return HybridStorageAdapter(config, local, cloud)

    return _make


@pytest.fixture
def mock_streamlit(monkeypatch):
    """Replace the Streamlit module used by nimble_core with a mock"""
    mock_st = MagicMock()
    mock_st.session_state = {}
    mock_st.secrets = {}

    import nimble_core.config
    import nimble_core.errors.handlers
    import nimble_core.state.coordinator

    for module in (nimble_core.config, nimble_core.errors.handlers, nimble_core.state.coordinator):
        monkeypatch.setattr(module, "st", mock_st)

    yield mock_st
