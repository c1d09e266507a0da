# =============================================================================
# nimble_core/services/__init__.py
# Service Layer for Nimble Core
# Capability-gated record services over the storage adapters
# =============================================================================
"""
Service Layer for Nimble Core

Services wrap storage adapters with capability checks and validation and
return ServiceResult objects instead of raising.

Usage Example:
-------------
    from nimble_core.services import RecordService, create_storage
    from nimble_core.state import get_app_state, FeatureKey

    coordinator = get_app_state()
    clients = RecordService(create_storage("clients", coordinator), coordinator, FeatureKey.CLIENTS)

    result = clients.create({"name": "Acme Plumbing"})
    if result:
        print(f"Created {result.data['id']}")
    else:
        print(f"Failed: {result.error} ({result.error_code})")
"""

from .base_service import BaseService, ServiceResult
from .record_service import RecordService
from .service_menu_service import ServiceMenuService
from .appointment_service import AppointmentService
from .storage_factory import create_storage, create_sync_engine

__all__ = [
    # Base classes
    "BaseService",
    "ServiceResult",
    # Record services
    "RecordService",
    "ServiceMenuService",
    "AppointmentService",
    # Wiring
    "create_storage",
    "create_sync_engine",
]
