"""
Pipeline Stages Router

The stage list of an organization: add, rename, drag-and-drop reorder and
delete (deals of a deleted stage move to the first remaining stage).
"""

from fastapi import APIRouter, Depends
from typing import List

from crm.deps import UserContext, get_user_context, get_language
from crm.models.pipeline import Stage, StageCreate, StageUpdate, StageReorder, StageDeleteResult, COLOR_OPTIONS
from crm.services.stage_registry import StageRegistryService, get_stage_registry_service

router = APIRouter(prefix="/api/v1/stages", tags=["stages"])


@router.get("", response_model=List[Stage])
async def list_stages(
    ctx: UserContext = Depends(get_user_context),
    registry: StageRegistryService = Depends(get_stage_registry_service),
):
    """Stages in pipeline order"""
    return await registry.list_stages(ctx.organization_id)


@router.get("/colors")
async def list_colors():
    """Color options for the stage editor"""
    return COLOR_OPTIONS


@router.post("", response_model=Stage, status_code=201)
async def add_stage(
    data: StageCreate,
    ctx: UserContext = Depends(get_user_context),
    registry: StageRegistryService = Depends(get_stage_registry_service),
):
    return await registry.add_stage(ctx.organization_id, data.name, data.color)


@router.patch("/{stage_id}", response_model=Stage)
async def rename_stage(
    stage_id: str,
    data: StageUpdate,
    ctx: UserContext = Depends(get_user_context),
    registry: StageRegistryService = Depends(get_stage_registry_service),
):
    return await registry.rename_stage(ctx.organization_id, stage_id, data.name, data.color)


@router.post("/reorder", response_model=List[Stage])
async def reorder_stage(
    data: StageReorder,
    ctx: UserContext = Depends(get_user_context),
    registry: StageRegistryService = Depends(get_stage_registry_service),
):
    """Move a stage to the target stage's position"""
    return await registry.reorder_stage(ctx.organization_id, data.moved_id, data.target_id)


@router.delete("/{stage_id}", response_model=StageDeleteResult)
async def delete_stage(
    stage_id: str,
    ctx: UserContext = Depends(get_user_context),
    language: str = Depends(get_language),
    registry: StageRegistryService = Depends(get_stage_registry_service),
):
    """Delete a stage; the last remaining stage cannot be deleted."""
    return await registry.delete_stage(
        ctx.organization_id,
        stage_id,
        user_id=ctx.user_id,
        user_name=ctx.name,
        language=language,
    )
