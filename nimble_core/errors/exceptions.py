# =============================================================================
# nimble_core/errors/exceptions.py
# Custom Exception Hierarchy for Nimble Core
# =============================================================================

from typing import Optional, Dict, Any


class NimbleError(Exception):
    """
    Base exception for all Nimble Core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORAGE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "NB_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# APP STATE EXCEPTIONS
# =============================================================================

class SignalFetchError(NimbleError):
    """Raised when an account signal source (role, settings) cannot be read"""

    def __init__(
        self,
        message: str,
        signal: Optional[str] = None,
        user_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if signal:
            details["signal"] = signal
        if user_id:
            details["user_id"] = user_id

        super().__init__(
            message=message,
            code="STATE_001",
            details=details,
            **kwargs,
        )


class PermissionDeniedError(NimbleError):
    """Raised when an action is not allowed from the current app state"""

    def __init__(
        self,
        message: str,
        action: Optional[str] = None,
        state: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if action:
            details["action"] = action
        if state:
            details["state"] = state

        super().__init__(
            message=message,
            code="STATE_002",
            details=details,
            **kwargs,
        )


# =============================================================================
# STORAGE EXCEPTIONS
# =============================================================================

class AdapterError(NimbleError):
    """Raised when a local or remote storage operation fails"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        record_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        if record_id:
            details["record_id"] = record_id
        if cause is not None:
            details["cause"] = f"{type(cause).__name__}: {cause}"

        super().__init__(
            message=message,
            code="STORAGE_001",
            details=details,
            **kwargs,
        )
        self.operation = operation
        self.table = table
        self.record_id = record_id
        self.cause = cause


class FeatureAccessError(NimbleError):
    """Raised when a feature service is used without the matching capability"""

    def __init__(
        self,
        message: str,
        feature: Optional[str] = None,
        state: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if feature:
            details["feature"] = feature
        if state:
            details["state"] = state

        super().__init__(
            message=message,
            code="FEATURE_001",
            details=details,
            **kwargs,
        )


class RecordValidationError(NimbleError):
    """Raised when record data fails validation before it is stored"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = value

        super().__init__(
            message=message,
            code="DATA_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(NimbleError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
