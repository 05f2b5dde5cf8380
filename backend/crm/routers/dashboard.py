"""
Dashboard Router

Revenue and pipeline metrics for the caller's scope.
"""

from fastapi import APIRouter, Depends

from crm.deps import UserContext, get_user_context, get_language
from crm.models.dashboard import DashboardMetrics
from crm.services.dashboard_service import DashboardService, get_dashboard_service

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])


@router.get("/metrics", response_model=DashboardMetrics, response_model_by_alias=True)
async def get_metrics(
    ctx: UserContext = Depends(get_user_context),
    language: str = Depends(get_language),
    dashboard: DashboardService = Depends(get_dashboard_service),
):
    """
    Pipeline value, won/lost counts, MRR/ARR and breakdowns.

    Admins get organization-wide numbers and top performers; other users
    only see their own deals.
    """
    return await dashboard.get_metrics(ctx, language=language)
