from garage_backend.repositories.tenant import TenantScope

__all__ = ["TenantScope"]
