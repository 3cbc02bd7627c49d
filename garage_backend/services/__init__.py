from garage_backend.services.stock_ledger import StockLedger
from garage_backend.services.part_catalog import PartCatalog
from garage_backend.services.inventory_service import InventoryService
from garage_backend.services.service_order_service import ServiceOrderService, next_order_number
from garage_backend.services.budget_approval import BudgetApprovalService

__all__ = [
    "StockLedger",
    "PartCatalog",
    "InventoryService",
    "ServiceOrderService",
    "next_order_number",
    "BudgetApprovalService",
]
