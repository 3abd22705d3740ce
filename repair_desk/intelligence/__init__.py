"""Deterministic intelligence layer for shop analytics."""

from repair_desk.intelligence.complaint_matching import (
    common_problems_for_shop,
    estimate_labor_hours,
    rank_common_problems,
    similar_labor_for_shop,
)
from repair_desk.intelligence.maintenance_rules import (
    compute_maintenance_suggestions,
    get_cached_suggestions,
)
from repair_desk.intelligence.service_intervals import suggest_services_for_vehicle
from repair_desk.intelligence.shop_health import compute_shop_health

__all__ = [
    "common_problems_for_shop",
    "compute_maintenance_suggestions",
    "compute_shop_health",
    "estimate_labor_hours",
    "get_cached_suggestions",
    "rank_common_problems",
    "similar_labor_for_shop",
    "suggest_services_for_vehicle",
]
