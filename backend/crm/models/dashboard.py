"""
Dashboard Models
================

Revenue and pipeline metrics, serialized in camelCase for the frontend.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Dict, List
from decimal import Decimal


class CamelModel(BaseModel):
    """
    Base model that serializes to camelCase for frontend compatibility.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class TopPerformer(CamelModel):
    user_id: str
    name: str
    won_count: int
    total_assigned_count: int


class DashboardMetrics(CamelModel):
    total_deals: int = 0
    new_deals_this_month: int = 0
    won_deals: int = 0
    lost_deals: int = 0
    in_progress_deals: int = 0
    sales_this_month: int = 0
    conversion_rate: float = 0.0
    average_ticket: Decimal = Decimal("0")
    pipeline_value: Decimal = Decimal("0")
    mrr: Decimal = Decimal("0")
    monthly_revenue: Decimal = Decimal("0")
    annual_revenue: Decimal = Decimal("0")
    arr: Decimal = Decimal("0")
    deals_by_stage: Dict[str, int] = {}
    deals_by_service: Dict[str, int] = {}
    top_performers: List[TopPerformer] = []
