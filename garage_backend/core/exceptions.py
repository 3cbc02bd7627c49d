"""
Garage Exception Hierarchy

Structured exception classes for the service-order and inventory subsystems.
All exceptions carry code, message and details so they can be logged and
returned to clients in the same shape.

Classes:
    GarageError
    ├── ValidationError
    │   └── InvalidQuantityError
    ├── NotFoundError
    │   ├── PartNotFoundError
    │   ├── ServiceOrderNotFoundError
    │   ├── VehicleNotFoundError
    │   └── MovementNotFoundError
    ├── InventoryError
    │   ├── InsufficientStockError
    │   └── PartInUseError
    ├── LinkError
    │   ├── LinkNotFoundError
    │   ├── LinkExpiredError
    │   └── AlreadyDecidedError
    ├── InvalidStatusError
    ├── OrderNumberConflictError
    └── TransactionError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class GarageError(Exception):
    """
    Root of every error the services raise on purpose.

    ``message`` is safe to show the workshop user, ``code`` is stable for
    front-end handling and ``details`` holds the ids involved. Routes turn
    the error into an HTTP response with ``status_code``.
    """

    default_code: str = "GARAGE_ERROR"
    status_code: int = 400

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code if code else self.default_code
        self.details = dict(details) if details else {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "code": self.code,
            "status_code": self.status_code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.code}: {self.message}>"


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(GarageError):
    """Request data is structurally fine but semantically invalid."""
    default_code = "VALIDATION_ERROR"
    status_code = 400


class InvalidQuantityError(ValidationError):
    """Movement quantity must be strictly positive."""
    default_code = "INVALID_QUANTITY"

    def __init__(self, quantity: Any, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"quantity": quantity})
        super().__init__(
            kwargs.pop("message", "Quantity must be greater than zero"),
            details=details,
            **kwargs,
        )


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================

class NotFoundError(GarageError):
    """Base for missing tenant-scoped resources."""
    default_code = "NOT_FOUND"
    status_code = 404
    resource = "Resource"

    def __init__(self, resource_id: Any = None, message: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"id": resource_id})
        super().__init__(
            message or f"{self.resource} not found",
            details=details,
            **kwargs,
        )


class PartNotFoundError(NotFoundError):
    default_code = "PART_NOT_FOUND"
    resource = "Part"


class ServiceOrderNotFoundError(NotFoundError):
    default_code = "SERVICE_ORDER_NOT_FOUND"
    resource = "Service order"


class VehicleNotFoundError(NotFoundError):
    """Vehicle referenced by a request body; reported as a bad request."""
    default_code = "VEHICLE_NOT_FOUND"
    status_code = 400
    resource = "Vehicle"


class MovementNotFoundError(NotFoundError):
    default_code = "MOVEMENT_NOT_FOUND"
    resource = "Inventory movement"


# =============================================================================
# INVENTORY ERRORS
# =============================================================================

class InventoryError(GarageError):
    """Base exception for inventory errors."""
    default_code = "INVENTORY_ERROR"
    status_code = 400


class InsufficientStockError(InventoryError):
    """Requested quantity exceeds the running stock of a part."""
    default_code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        part_name: str,
        available: int,
        requested: int,
        part_id: Optional[int] = None,
        **kwargs
    ):
        self.part_name = part_name
        self.available = available
        self.requested = requested
        details = kwargs.pop("details", {})
        details.update({
            "part_id": part_id,
            "part_name": part_name,
            "available": available,
            "requested": requested,
        })
        super().__init__(
            f"Insufficient stock for part {part_name}. "
            f"Available: {available}, Requested: {requested}",
            details=details,
            **kwargs,
        )


class PartInUseError(InventoryError):
    """Part still has ledger movements and cannot be deleted."""
    default_code = "PART_IN_USE"
    status_code = 409

    def __init__(self, part_id: int, movement_count: int, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"part_id": part_id, "movement_count": movement_count})
        super().__init__(
            "Cannot delete part: there are inventory movements linked to it",
            details=details,
            **kwargs,
        )


# =============================================================================
# BUDGET APPROVAL LINK ERRORS
# =============================================================================

class LinkError(GarageError):
    """Base exception for public approval link errors."""
    default_code = "APPROVAL_LINK_ERROR"
    status_code = 400


class LinkNotFoundError(LinkError):
    default_code = "APPROVAL_LINK_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Approval link not found", **kwargs):
        super().__init__(message, **kwargs)


class LinkExpiredError(LinkError):
    default_code = "APPROVAL_LINK_EXPIRED"
    status_code = 410

    def __init__(self, message: str = "Approval link has expired", **kwargs):
        super().__init__(message, **kwargs)


class AlreadyDecidedError(LinkError):
    default_code = "APPROVAL_ALREADY_DECIDED"
    status_code = 409

    def __init__(self, decision: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"decision": decision})
        super().__init__(
            "This budget has already been decided through its approval link",
            details=details,
            **kwargs,
        )


# =============================================================================
# STATUS / TRANSACTION ERRORS
# =============================================================================

class InvalidStatusError(GarageError):
    """Operation not allowed from the order's current status."""
    default_code = "INVALID_STATUS"
    status_code = 400

    def __init__(self, message: str, current_status: Any = None, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"current_status": getattr(current_status, "value", current_status)})
        super().__init__(message, details=details, **kwargs)


class OrderNumberConflictError(GarageError):
    """Another order took the same number first; the client may resend."""
    default_code = "ORDER_NUMBER_CONFLICT"
    status_code = 409

    def __init__(self, order_number: str, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"order_number": order_number})
        super().__init__(
            f"Order number {order_number} was taken by a concurrent request, please try again",
            details=details,
            **kwargs,
        )


class TransactionError(GarageError):
    """Storage layer aborted a status change; the previous status was re-applied."""
    default_code = "TRANSACTION_FAILED"
    status_code = 500


def log_exception(exc: GarageError, context: Optional[Dict[str, Any]] = None, level: int = logging.WARNING):
    """
    Log a garage error with structured context.

    Args:
        exc: The exception to log
        context: Extra context (garage_id, order id, part id)
        level: Logging level
    """
    log_data = exc.to_dict()
    if context:
        log_data["context"] = context
    logger.log(level, f"{exc.__class__.__name__}: {exc.message}", extra={"error_data": log_data})
