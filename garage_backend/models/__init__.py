from garage_backend.models.garage import Garage, Client, Vehicle
from garage_backend.models.part import Part
from garage_backend.models.stock_movement import StockMovement, MovementType, ExitType
from garage_backend.models.service_order import (
    ServiceOrder,
    ServiceOrderStatus,
    BudgetApprovalStatus,
    BudgetApproval,
    ApprovalDecision,
    PaymentMethod,
)

__all__ = [
    "Garage",
    "Client",
    "Vehicle",
    "Part",
    "StockMovement",
    "MovementType",
    "ExitType",
    "ServiceOrder",
    "ServiceOrderStatus",
    "BudgetApprovalStatus",
    "BudgetApproval",
    "ApprovalDecision",
    "PaymentMethod",
]
