"""
Core module initialization.
Exports configuration, logging and error utilities.
"""

from fulfillment.core.config import get_settings, setup_logging, Settings, EnvironmentMode
from fulfillment.core.exceptions import (
    FulfillmentError,
    ValidationFailed,
    NotFound,
    PermissionDenied,
    CapacityExceeded,
    OwnershipConflict,
    DependencyUnavailable,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "FulfillmentError",
    "ValidationFailed",
    "NotFound",
    "PermissionDenied",
    "CapacityExceeded",
    "OwnershipConflict",
    "DependencyUnavailable",
]
