"""
Service Catalog Router

Services offered by the organization and their monthly plans. Reading is
open to every member; changes are admin-only.
"""

from fastapi import APIRouter, Depends
from typing import List

from crm.deps import UserContext, get_user_context, require_admin
from crm.models.catalog import Service, ServiceCreate, ServiceUpdate
from crm.services.catalog_service import CatalogService, get_catalog_service

router = APIRouter(prefix="/api/v1/services", tags=["services"])


@router.get("", response_model=List[Service])
async def list_services(
    ctx: UserContext = Depends(get_user_context),
    catalog: CatalogService = Depends(get_catalog_service),
):
    """List services (seeds the default catalog on first use)"""
    return await catalog.list_services(ctx.organization_id)


@router.get("/{service_id}", response_model=Service)
async def get_service(
    service_id: str,
    ctx: UserContext = Depends(get_user_context),
    catalog: CatalogService = Depends(get_catalog_service),
):
    return await catalog.get_service(ctx.organization_id, service_id)


@router.post("", response_model=Service, status_code=201)
async def create_service(
    data: ServiceCreate,
    ctx: UserContext = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service),
):
    return await catalog.create_service(ctx.organization_id, ctx.user_id, data)


@router.patch("/{service_id}", response_model=Service)
async def update_service(
    service_id: str,
    data: ServiceUpdate,
    ctx: UserContext = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service),
):
    return await catalog.update_service(ctx.organization_id, service_id, data)


@router.post("/{service_id}/toggle", response_model=Service)
async def toggle_service(
    service_id: str,
    ctx: UserContext = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service),
):
    """Flip the active flag"""
    return await catalog.toggle_service(ctx.organization_id, service_id)


@router.delete("/{service_id}", status_code=204)
async def delete_service(
    service_id: str,
    ctx: UserContext = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service),
):
    """Delete a service no deal references"""
    await catalog.delete_service(ctx.organization_id, service_id)
