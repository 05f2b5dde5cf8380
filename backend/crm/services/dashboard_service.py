"""
Dashboard Service - loads the inputs of the revenue aggregator
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from supabase import Client

from crm.database import get_supabase_service, execute, rows
from crm.deps import UserContext
from crm.i18n import DEFAULT_LANGUAGE
from crm.models.dashboard import DashboardMetrics
from crm.services.catalog_service import CatalogService, get_catalog_service
from crm.services.deal_service import DealService, get_deal_service
from crm.services.revenue_aggregator import aggregate
from crm.services.stage_registry import StageRegistryService, get_stage_registry_service

logger = logging.getLogger(__name__)


class DashboardService:
    """Service for dashboard metrics."""

    def __init__(
        self,
        client: Optional[Client] = None,
        deal_service: Optional[DealService] = None,
        catalog: Optional[CatalogService] = None,
        stage_registry: Optional[StageRegistryService] = None,
    ):
        self.client: Client = client or get_supabase_service()
        self.deal_service = deal_service or get_deal_service()
        self.catalog = catalog or get_catalog_service()
        self.stage_registry = stage_registry or get_stage_registry_service()

    async def _organization_users(self, organization_id: str) -> List[dict]:
        result = execute(
            self.client.table("users")
            .select("id, name")
            .eq("organization_id", organization_id),
            "loading organization users",
        )
        return rows(result)

    async def get_metrics(
        self,
        ctx: UserContext,
        now: Optional[datetime] = None,
        language: str = DEFAULT_LANGUAGE,
    ) -> DashboardMetrics:
        """Metrics over the caller's deals (the whole organization for admins)."""
        deals = await self.deal_service.list_deals(ctx)
        services = await self.catalog.list_services(ctx.organization_id, seed_defaults=False)
        stages = await self.stage_registry.list_stages(ctx.organization_id)
        users = await self._organization_users(ctx.organization_id) if ctx.is_admin else None

        metrics = aggregate(
            deals,
            services,
            stages,
            now or datetime.now(timezone.utc),
            users=users,
            is_admin=ctx.is_admin,
            language=language,
        )
        logger.info(f"Dashboard for {ctx.user_id}: {metrics.total_deals} deals, {metrics.won_deals} won")
        return metrics


# Singleton instance
_dashboard_service: Optional[DashboardService] = None


def get_dashboard_service() -> DashboardService:
    """Get or create dashboard service instance"""
    global _dashboard_service
    if _dashboard_service is None:
        _dashboard_service = DashboardService()
    return _dashboard_service
