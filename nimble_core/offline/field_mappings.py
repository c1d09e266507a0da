# =============================================================================
# nimble_core/offline/field_mappings.py
# Local <-> Remote Field Name Tables
# =============================================================================
"""
Explicit per-collection field tables between the local document convention
(camelCase) and the Supabase column names. Fields absent from a table have
the same name on both sides (``name``, ``email``, ``amount``...).

Remote names are not a mechanical transform of local names
(``is1099Eligible`` is stored as ``is_1099_eligible``), so every renamed
field is listed.
"""

from __future__ import annotations
from typing import Any, Dict, Mapping, Optional

from nimble_core.offline.records import LOCAL_ONLY_FIELDS, Record

USER_ID_COLUMN = "user_id"

FIELD_MAPPINGS: Dict[str, Dict[str, str]] = {
    "clients": {
        "createdAt": "created_at",
        "legalName": "legal_name",
        "tinType": "tin_type",
        "tinEncrypted": "tin_encrypted",
        "is1099Eligible": "is_1099_eligible",
        "isSubcontractor": "is_subcontractor",
    },
    "invoices": {
        "createdAt": "created_at",
        "clientId": "client_id",
        "invoiceNumber": "invoice_number",
        "dueDate": "due_date",
        "paidAt": "paid_at",
        "quoteId": "quote_id",
        "paymentToken": "payment_token",
        "receiptAttachments": "receipt_attachments",
    },
    "projects": {
        "createdAt": "created_at",
        "clientId": "client_id",
        "invoiceId": "invoice_id",
        "quoteNotes": "quote_notes",
        "validUntil": "valid_until",
        "scheduledDate": "scheduled_date",
        "arrivalWindowStart": "arrival_window_start",
        "arrivalWindowEnd": "arrival_window_end",
        "scheduleNotes": "schedule_notes",
        "scheduleNotificationSentAt": "schedule_notification_sent_at",
        "responseToken": "response_token",
        "responseTokenUsedAt": "response_token_used_at",
        "sentAt": "sent_at",
        "acceptedAt": "accepted_at",
        "startedAt": "started_at",
        "completedAt": "completed_at",
    },
    "project_photos": {
        "createdAt": "created_at",
        "projectId": "project_id",
        "storagePath": "storage_path",
    },
    "project_receipts": {
        "createdAt": "created_at",
        "projectId": "project_id",
        "storagePath": "storage_path",
        "categoryId": "category_id",
        "isCapitalAsset": "is_capital_asset",
        "taxNotes": "tax_notes",
    },
    "mileage_entries": {
        "createdAt": "created_at",
        "projectId": "project_id",
        "clientId": "client_id",
        "startLocation": "start_location",
        "endLocation": "end_location",
        "startTime": "start_time",
        "endTime": "end_time",
        "isTracking": "is_tracking",
        "taxYear": "tax_year",
    },
    "capital_assets": {
        "createdAt": "created_at",
        "updatedAt": "updated_at",
        "purchaseDate": "purchase_date",
        "assetType": "asset_type",
        "depreciationHint": "depreciation_hint",
        "receiptId": "receipt_id",
    },
    "subcontractor_payments": {
        "createdAt": "created_at",
        "clientId": "client_id",
        "projectId": "project_id",
        "paymentDate": "payment_date",
        "checkNumber": "check_number",
    },
    "expense_categories": {
        "createdAt": "created_at",
        "irsCode": "irs_code",
        "isDefault": "is_default",
    },
    "bank_expenses": {
        "createdAt": "created_at",
        "expenseDate": "expense_date",
        "categoryId": "category_id",
        "isReconciled": "is_reconciled",
        "bankStatementRef": "bank_statement_ref",
    },
    "transactions": {
        "createdAt": "created_at",
        "updatedAt": "updated_at",
        "transactionDate": "transaction_date",
        "transactionType": "transaction_type",
        "categoryId": "category_id",
        "matchedInvoiceId": "matched_invoice_id",
        "matchedReceiptId": "matched_receipt_id",
        "matchConfidence": "match_confidence",
        "sourceReference": "source_reference",
        "isIgnored": "is_ignored",
    },
    "materials": {
        "createdAt": "created_at",
        "updatedAt": "updated_at",
        "unitPrice": "unit_price",
    },
}

# Collections that only ever live on the device
LOCAL_ONLY_COLLECTIONS = frozenset({"services", "appointments"})


def get_mapping(table: str) -> Mapping[str, str]:
    """Local -> remote table for a collection."""
    if table not in FIELD_MAPPINGS:
        raise KeyError(f"No field mapping for collection: {table}")
    return FIELD_MAPPINGS[table]


def _reverse(mapping: Mapping[str, str]) -> Dict[str, str]:
    return {remote: local for local, remote in mapping.items()}


def remote_column(table: str, local_field: str) -> str:
    return get_mapping(table).get(local_field, local_field)


def to_remote(table: str, record: Record, user_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Translate a local record into a remote row.

    Sync metadata and local blobs are dropped; ``user_id`` is attached when
    given.
    """
    mapping = get_mapping(table)
    row = {
        mapping.get(key, key): value
        for key, value in record.items()
        if key not in LOCAL_ONLY_FIELDS
    }
    if user_id:
        row[USER_ID_COLUMN] = user_id
    return row


def to_local(table: str, row: Mapping[str, Any]) -> Record:
    """Translate a remote row into local field names (without ``user_id``)."""
    reverse = _reverse(get_mapping(table))
    return {
        reverse.get(key, key): value
        for key, value in row.items()
        if key != USER_ID_COLUMN and key not in LOCAL_ONLY_FIELDS
    }
