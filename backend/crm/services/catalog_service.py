"""
Catalog Service - services and their monthly plans
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from supabase import Client

from crm.database import get_supabase_service, execute, rows
from crm.errors import NotFoundError, InvariantViolation
from crm.models.catalog import Service, ServiceCreate, ServiceUpdate, DEFAULT_SERVICES

logger = logging.getLogger(__name__)


class CatalogService:
    """Service for managing the organization's service catalog."""

    def __init__(self, client: Optional[Client] = None):
        """Initialize Supabase client using centralized module."""
        self.client: Client = client or get_supabase_service()

    async def list_services(self, organization_id: str, seed_defaults: bool = True) -> List[Service]:
        """
        List services for an organization.

        Seeds the default catalog the first time an organization has none.
        """
        result = execute(
            self.client.table("services")
            .select("*")
            .eq("organization_id", organization_id)
            .order("created_at"),
            "loading services",
        )
        services = [Service(**row) for row in rows(result)]

        if not services and seed_defaults:
            services = await self._seed_defaults(organization_id)

        return services

    async def _seed_defaults(self, organization_id: str) -> List[Service]:
        now = datetime.now(timezone.utc).isoformat()
        payload = [
            {**service, "organization_id": organization_id, "created_at": now}
            for service in DEFAULT_SERVICES
        ]
        result = execute(self.client.table("services").insert(payload), "seeding default services")
        logger.info(f"Seeded default services for org {organization_id}")
        return [Service(**row) for row in rows(result)]

    async def get_service(self, organization_id: str, service_id: str) -> Service:
        result = execute(
            self.client.table("services")
            .select("*")
            .eq("id", service_id)
            .eq("organization_id", organization_id)
            .maybe_single(),
            "loading service",
        )
        data = rows(result)
        if not data:
            raise NotFoundError("Service not found")
        return Service(**data[0])

    async def create_service(self, organization_id: str, user_id: str, service: ServiceCreate) -> Service:
        data = {
            **service.model_dump(mode="json"),
            "organization_id": organization_id,
            "active": True,
            "created_by": user_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        result = execute(self.client.table("services").insert(data), "creating service")
        created = Service(**rows(result)[0])
        logger.info(f"Created service '{created.name}' for org {organization_id}")
        return created

    async def update_service(self, organization_id: str, service_id: str, changes: ServiceUpdate) -> Service:
        await self.get_service(organization_id, service_id)

        update_data = changes.model_dump(mode="json", exclude_unset=True)
        if not update_data:
            return await self.get_service(organization_id, service_id)

        result = execute(
            self.client.table("services")
            .update(update_data)
            .eq("id", service_id)
            .eq("organization_id", organization_id),
            "updating service",
        )
        return Service(**rows(result)[0])

    async def toggle_service(self, organization_id: str, service_id: str) -> Service:
        """Flip the active flag."""
        service = await self.get_service(organization_id, service_id)
        return await self.update_service(
            organization_id, service_id, ServiceUpdate(active=not service.active)
        )

    async def delete_service(self, organization_id: str, service_id: str) -> None:
        """
        Delete a service.

        Raises:
            NotFoundError: If the service does not exist
            InvariantViolation: While any deal references the service
        """
        await self.get_service(organization_id, service_id)

        referencing = execute(
            self.client.table("businesses")
            .select("id")
            .eq("organization_id", organization_id)
            .eq("service_id", service_id)
            .limit(1),
            "checking service usage",
        )
        if rows(referencing):
            raise InvariantViolation("This service cannot be deleted because deals are using it")

        execute(
            self.client.table("services")
            .delete()
            .eq("id", service_id)
            .eq("organization_id", organization_id),
            "deleting service",
        )
        logger.info(f"Deleted service {service_id} for org {organization_id}")


# Singleton instance
_catalog_service: Optional[CatalogService] = None


def get_catalog_service() -> CatalogService:
    """Get or create catalog service instance"""
    global _catalog_service
    if _catalog_service is None:
        _catalog_service = CatalogService()
    return _catalog_service
