"""
Audit logging for inventory ledger writes

Every stock movement written (entry, exit, edit, removal, service-order
consumption/restoration) is recorded on the ``inventory.audit`` logger with
the structured entry under ``extra["audit"]``.
"""
import logging
from typing import Optional, Any

from garage_backend.core.config import settings
from garage_backend.core.utils import utcnow

audit_logger = logging.getLogger("inventory.audit")
audit_logger.setLevel(logging.INFO)

# Action categories
ACTION_ENTRY_CREATE = "inventory.entry.create"
ACTION_ENTRY_UPDATE = "inventory.entry.update"
ACTION_ENTRY_DELETE = "inventory.entry.delete"
ACTION_EXIT_MANUAL = "inventory.exit.manual"
ACTION_CONSUME = "inventory.service_order.consume"
ACTION_RESTORE = "inventory.service_order.restore"
ACTION_STATUS_REVERT = "service_order.status.revert"


def log_inventory_action(
    action: str,
    garage_id: int,
    part_id: Optional[int] = None,
    quantity: Optional[int] = None,
    reference: Optional[Any] = None,
    details: Optional[dict] = None,
    success: bool = True,
):
    """
    Log an inventory ledger action.

    Args:
        action: Action identifier (e.g., "inventory.entry.create")
        garage_id: Tenant the movement belongs to
        part_id: Part affected (if applicable)
        quantity: Signed quantity written
        reference: Service order id or free-form reference
        details: Additional context
        success: Whether the action succeeded
    """
    log_entry = {
        "timestamp": utcnow().isoformat(),
        "action": action,
        "garage_id": garage_id,
        "part_id": part_id,
        "quantity": quantity,
        "reference": str(reference) if reference is not None else None,
        "success": success,
        "environment": settings.ENVIRONMENT,
    }
    if details:
        log_entry["details"] = details

    if success:
        audit_logger.info(
            f"AUDIT: {action} garage={garage_id} part={part_id} qty={quantity}",
            extra={"audit": log_entry}
        )
    else:
        audit_logger.warning(
            f"AUDIT FAILED: {action} garage={garage_id} part={part_id} qty={quantity}",
            extra={"audit": log_entry}
        )
