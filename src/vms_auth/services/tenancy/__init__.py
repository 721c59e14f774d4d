from .resolver import TenantStrategy, TenantStrategyResolver

__all__ = ["TenantStrategy", "TenantStrategyResolver"]
