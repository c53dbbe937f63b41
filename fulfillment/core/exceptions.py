"""
Domain Exceptions

Every caller-facing failure of the fulfillment services is raised as a
FulfillmentError subclass. The API layer renders them as structured
``{"success": false, "error": ..., "message": ...}`` responses; anything
else reaching the top is an unexpected fault.
"""


class FulfillmentError(Exception):
    """Base class for expected, caller-facing failures."""

    error_code = "fulfillment_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.error_code,
            "message": self.message,
        }


class ValidationFailed(FulfillmentError):
    """Malformed or missing input. Raised before any state is touched."""

    error_code = "validation_failed"
    status_code = 400


class NotFound(FulfillmentError):
    """Unknown order, hub, drone or restaurant id."""

    error_code = "not_found"
    status_code = 404


class PermissionDenied(FulfillmentError):
    """Caller is not allowed to act on the resource."""

    error_code = "permission_denied"
    status_code = 403


class CapacityExceeded(FulfillmentError):
    """Hub has no room for another drone."""

    error_code = "capacity_exceeded"
    status_code = 409


class OwnershipConflict(FulfillmentError):
    """Resource is already owned/assigned elsewhere, or a unique code is taken."""

    error_code = "ownership_conflict"
    status_code = 409


class DependencyUnavailable(FulfillmentError):
    """A registry or collaborator could not be reached."""

    error_code = "dependency_unavailable"
    status_code = 503
