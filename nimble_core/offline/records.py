# =============================================================================
# nimble_core/offline/records.py
# Record Model and Sync Metadata Primitives
# =============================================================================
"""
Records are plain dictionaries keyed by ``id`` whose domain fields follow the
local document convention (camelCase, e.g. ``clientId``, ``is1099Eligible``).
Every stored record also carries sync metadata:

    localUpdatedAt  - ISO timestamp, set on every local mutation
    cloudUpdatedAt  - ISO timestamp or None, set only by a successful sync
    syncStatus      - one of SyncStatus values
    cloudId         - remote identifier, None until the first successful push
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

Record = Dict[str, Any]


class SyncStatus(Enum):
    """Per-record synchronization status."""
    SYNCED = "synced"
    PENDING_PUSH = "pending_push"
    PENDING_PULL = "pending_pull"
    CONFLICT = "conflict"


class QueueOperation(Enum):
    """Mutation kinds recorded in the sync queue."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


SYNC_METADATA_FIELDS = ("localUpdatedAt", "cloudUpdatedAt", "syncStatus", "cloudId")

# Binary attachments kept on the device only
LOCAL_BLOB_FIELDS = ("localBlob", "localLogoBlob")

# Never leave the device
LOCAL_ONLY_FIELDS = frozenset(SYNC_METADATA_FIELDS + LOCAL_BLOB_FIELDS)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp (``Z`` suffix accepted) into an aware datetime.

    Naive values are taken to be UTC. Returns None for empty input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_local_id() -> str:
    """Generate a record id on the device."""
    return str(uuid.uuid4())


def create_sync_metadata(cloud_id: Optional[str] = None) -> Record:
    """Metadata for a freshly created record."""
    return {
        "localUpdatedAt": utc_now_iso(),
        "cloudUpdatedAt": None,
        "syncStatus": SyncStatus.SYNCED.value if cloud_id else SyncStatus.PENDING_PUSH.value,
        "cloudId": cloud_id,
    }


def touch_sync_metadata(existing: Record) -> Record:
    """Metadata after a local edit: any edit invalidates sync state until pushed."""
    return {
        "localUpdatedAt": utc_now_iso(),
        "cloudUpdatedAt": existing.get("cloudUpdatedAt"),
        "syncStatus": SyncStatus.PENDING_PUSH.value,
        "cloudId": existing.get("cloudId"),
    }


def strip_local_fields(record: Record) -> Record:
    """Domain content of a record without sync metadata or local blobs."""
    return {k: v for k, v in record.items() if k not in LOCAL_ONLY_FIELDS}


@dataclass
class SyncQueueItem:
    """One pending remote mutation."""
    id: str
    table_name: str
    record_id: str
    operation: QueueOperation
    data: Optional[Dict[str, Any]] = None
    created_at: str = field(default_factory=utc_now_iso)
    retry_count: int = 0
    last_error: Optional[str] = None

    @classmethod
    def new(
        cls,
        table_name: str,
        record_id: str,
        operation: QueueOperation,
        data: Optional[Dict[str, Any]] = None,
    ) -> SyncQueueItem:
        return cls(
            id=generate_local_id(),
            table_name=table_name,
            record_id=record_id,
            operation=operation,
            data=data,
        )


@dataclass
class PushResult:
    """Aggregate outcome of one push pass."""
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def succeeded(self) -> int:
        return self.created + self.updated + self.deleted

    def merge(self, other: PushResult) -> PushResult:
        return PushResult(
            created=self.created + other.created,
            updated=self.updated + other.updated,
            deleted=self.deleted + other.deleted,
            failed=self.failed + other.failed,
            skipped=self.skipped + other.skipped,
        )

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class PullResult:
    """Aggregate outcome of one pull pass."""
    added: int = 0
    updated: int = 0
    conflicts: int = 0
    failed: int = 0

    def merge(self, other: PullResult) -> PullResult:
        return PullResult(
            added=self.added + other.added,
            updated=self.updated + other.updated,
            conflicts=self.conflicts + other.conflicts,
            failed=self.failed + other.failed,
        )

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)
