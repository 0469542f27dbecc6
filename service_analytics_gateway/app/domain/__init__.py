"""
Domain layer: access model, resolution, planning and orchestration.
"""

from .gateway import GatewayService
from .planner import QueryPlanner, WarehouseQuery, apply_dimension_filters, fingerprint
from .resolver import AccessResolver

__all__ = [
    "AccessResolver",
    "GatewayService",
    "QueryPlanner",
    "WarehouseQuery",
    "apply_dimension_filters",
    "fingerprint",
]
