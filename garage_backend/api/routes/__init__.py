from garage_backend.api.routes import service_orders, inventory_entries, parts

__all__ = ["service_orders", "inventory_entries", "parts"]
