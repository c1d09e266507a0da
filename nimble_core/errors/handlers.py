# =============================================================================
# nimble_core/errors/handlers.py
# Reporting Storage, Sync and State Errors
# =============================================================================
"""
Error reporting for nimble_core failures.

Services and the sync engine recover from their own errors and only log
them; Streamlit pages also surface them to the user with ``st.error``.
"""

from __future__ import annotations
from typing import Optional
import streamlit as st

from nimble_core.logging import get_logger
from .exceptions import AdapterError, NimbleError, RecordValidationError

logger = get_logger(__name__)


def describe_error(error: BaseException) -> str:
    """
    User-facing text for an error, naming the record or field it concerns.

    Usage:
        describe_error(AdapterError("Remote create failed", operation="create",
                                    table="clients", record_id="c-1"))
        # "Remote create failed (create clients/c-1)"
    """
    if isinstance(error, AdapterError):
        target = "/".join(part for part in (error.table, error.record_id) if part)
        if error.operation and target:
            return f"{error.message} ({error.operation} {target})"
        return error.message
    if isinstance(error, RecordValidationError) and error.details.get("field"):
        return f"{error.message} (field: {error.details['field']})"
    if isinstance(error, NimbleError):
        return error.message
    return str(error) or type(error).__name__


def handle_error(
    error: BaseException,
    show_user_message: bool = True,
    user_message: Optional[str] = None,
) -> None:
    """
    Log an error with its code and details, optionally showing it in the UI.

    Args:
        error: The exception to report
        show_user_message: Whether to display the error via st.error
        user_message: Text shown instead of the described error
    """
    message = user_message or describe_error(error)
    if isinstance(error, NimbleError):
        code, details, recoverable = error.code, error.details, error.recoverable
    else:
        code, details, recoverable = "UNKNOWN", {"type": type(error).__name__}, True

    if isinstance(error, AdapterError) and recoverable:
        # Queued work is retried on the next pass
        logger.warning(f"[{code}] {message}", extra={"details": details})
    else:
        logger.error(f"[{code}] {message}", extra={"details": details}, exc_info=error)

    if show_user_message:
        if recoverable:
            st.error(f"Error: {message}")
        else:
            st.error(f"Critical Error: {message}. Please contact support.")
