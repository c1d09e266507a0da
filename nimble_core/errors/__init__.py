# =============================================================================
# nimble_core/errors/__init__.py
# Centralized Error Handling for Nimble Core
# =============================================================================

from .exceptions import (
    NimbleError,
    SignalFetchError,
    PermissionDeniedError,
    AdapterError,
    FeatureAccessError,
    RecordValidationError,
    ConfigurationError,
)

from .handlers import (
    describe_error,
    handle_error,
)

__all__ = [
    # Exceptions
    "NimbleError",
    "SignalFetchError",
    "PermissionDeniedError",
    "AdapterError",
    "FeatureAccessError",
    "RecordValidationError",
    "ConfigurationError",
    # Handlers
    "describe_error",
    "handle_error",
]
