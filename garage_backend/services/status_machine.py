"""
Service order state machine

The status enum is closed. Two pieces of data drive the workflow:
- VALID_STATUS_TRANSITIONS documents the expected graph. It is advisory:
  off-graph moves are accepted and logged
- the stock partition says which transitions should consume or restore parts

CANCELED sits in neither stock set. Whether a consume or restore actually
writes anything is decided by what the ledger says the order holds.
"""
from enum import Enum
from typing import Dict, List

from garage_backend.models import ServiceOrderStatus


class InventoryAction(str, Enum):
    CONSUME = "consume"
    RESTORE = "restore"
    NONE = "none"


NON_AFFECTING_STATUSES = frozenset({
    ServiceOrderStatus.OPENED,
    ServiceOrderStatus.DIAGNOSING,
    ServiceOrderStatus.WAITING_APPROVAL,
    ServiceOrderStatus.APPROVED,
    ServiceOrderStatus.REJECTED,
})

AFFECTING_STATUSES = frozenset({
    ServiceOrderStatus.IN_PROGRESS,
    ServiceOrderStatus.WAITING_PARTS,
    ServiceOrderStatus.COMPLETED,
    ServiceOrderStatus.DELIVERED,
})

VALID_STATUS_TRANSITIONS: Dict[ServiceOrderStatus, List[ServiceOrderStatus]] = {
    ServiceOrderStatus.OPENED: [
        ServiceOrderStatus.DIAGNOSING,
        ServiceOrderStatus.CANCELED,
    ],
    ServiceOrderStatus.DIAGNOSING: [
        ServiceOrderStatus.WAITING_APPROVAL,
        ServiceOrderStatus.CANCELED,
    ],
    ServiceOrderStatus.WAITING_APPROVAL: [
        ServiceOrderStatus.APPROVED,
        ServiceOrderStatus.REJECTED,
        ServiceOrderStatus.CANCELED,
    ],
    ServiceOrderStatus.APPROVED: [
        ServiceOrderStatus.IN_PROGRESS,
        ServiceOrderStatus.CANCELED,
    ],
    ServiceOrderStatus.REJECTED: [
        ServiceOrderStatus.DIAGNOSING,
        ServiceOrderStatus.CANCELED,
    ],
    ServiceOrderStatus.IN_PROGRESS: [
        ServiceOrderStatus.WAITING_PARTS,
        ServiceOrderStatus.COMPLETED,
        ServiceOrderStatus.CANCELED,
    ],
    ServiceOrderStatus.WAITING_PARTS: [
        ServiceOrderStatus.IN_PROGRESS,
        ServiceOrderStatus.CANCELED,
    ],
    ServiceOrderStatus.COMPLETED: [
        ServiceOrderStatus.DELIVERED,
    ],
    ServiceOrderStatus.DELIVERED: [],
    ServiceOrderStatus.CANCELED: [],
}


def inventory_action(old_status: ServiceOrderStatus, new_status: ServiceOrderStatus) -> InventoryAction:
    """Classify a status change by its effect on stock."""
    old_status = ServiceOrderStatus(old_status)
    new_status = ServiceOrderStatus(new_status)
    if old_status in NON_AFFECTING_STATUSES and new_status in AFFECTING_STATUSES:
        return InventoryAction.CONSUME
    if old_status in AFFECTING_STATUSES and new_status in NON_AFFECTING_STATUSES:
        return InventoryAction.RESTORE
    return InventoryAction.NONE


def is_documented_transition(old_status: ServiceOrderStatus, new_status: ServiceOrderStatus) -> bool:
    return ServiceOrderStatus(new_status) in VALID_STATUS_TRANSITIONS.get(ServiceOrderStatus(old_status), [])


def transition_graph() -> Dict[str, List[str]]:
    """Serializable view of the documented transitions."""
    return {
        current.value: [target.value for target in targets]
        for current, targets in VALID_STATUS_TRANSITIONS.items()
    }
