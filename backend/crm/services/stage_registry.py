"""
Stage Registry

Ordered pipeline stages of an organization, stored as a single JSON array
in the pipeline_stages table (one row per organization).

Invariants kept by StageList:
- order values are always the dense sequence 0..N-1
- at least one stage exists
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Iterable
from uuid import uuid4

from supabase import Client

from crm.database import get_supabase_service, execute, rows
from crm.errors import ValidationError, NotFoundError, InvariantViolation
from crm.i18n import translate, DEFAULT_LANGUAGE
from crm.models.pipeline import Stage, StageDeleteResult, DEFAULT_STAGES, DEFAULT_COLOR
from crm.services.timeline import InteractionLog, get_interaction_log

logger = logging.getLogger(__name__)


class StageList:
    """In-memory stage list with the registry's mutation rules."""

    def __init__(self, stages: Iterable[Stage]):
        ordered = sorted(stages, key=lambda s: s.order)
        self._stages: List[Stage] = [s.model_copy() for s in ordered]
        self._renumber()

    @classmethod
    def defaults(cls) -> "StageList":
        return cls(DEFAULT_STAGES)

    @property
    def stages(self) -> List[Stage]:
        return [s.model_copy() for s in self._stages]

    def __len__(self) -> int:
        return len(self._stages)

    def get(self, stage_id: str) -> Optional[Stage]:
        return next((s for s in self._stages if s.id == stage_id), None)

    def _index_of(self, stage_id: str) -> int:
        for index, stage in enumerate(self._stages):
            if stage.id == stage_id:
                return index
        raise NotFoundError(f"Stage {stage_id} not found")

    def _renumber(self) -> None:
        for index, stage in enumerate(self._stages):
            stage.order = index

    def add(self, name: str, color: Optional[str] = None) -> Stage:
        if not name or not name.strip():
            raise ValidationError("Stage name is required")
        stage = Stage(
            id=uuid4().hex,
            name=name.strip(),
            color=color or DEFAULT_COLOR,
            order=len(self._stages),
        )
        self._stages.append(stage)
        return stage.model_copy()

    def rename(self, stage_id: str, name: str, color: Optional[str] = None) -> Stage:
        if not name or not name.strip():
            raise ValidationError("Stage name is required")
        stage = self._stages[self._index_of(stage_id)]
        stage.name = name.strip()
        if color:
            stage.color = color
        return stage.model_copy()

    def reorder(self, moved_id: str, target_id: str) -> None:
        """Move a stage to where the target currently sits (splice, not swap)."""
        if moved_id == target_id:
            return
        moved_index = self._index_of(moved_id)
        target_index = self._index_of(target_id)
        moved = self._stages.pop(moved_index)
        self._stages.insert(target_index, moved)
        self._renumber()

    def delete(self, stage_id: str) -> Stage:
        index = self._index_of(stage_id)
        if len(self._stages) <= 1:
            raise InvariantViolation("Cannot delete the last pipeline stage")
        removed = self._stages.pop(index)
        self._renumber()
        return removed


class StageRegistryService:
    """Loads and saves an organization's stage list."""

    def __init__(self, client: Optional[Client] = None, interaction_log: Optional[InteractionLog] = None):
        self.client: Client = client or get_supabase_service()
        self.interaction_log = interaction_log or get_interaction_log()

    async def load(self, organization_id: str) -> StageList:
        """Persisted stages, or the default five when nothing is saved yet."""
        result = execute(
            self.client.table("pipeline_stages")
            .select("stages")
            .eq("organization_id", organization_id)
            .maybe_single(),
            "loading pipeline stages",
        )
        data = rows(result)
        stored = data[0].get("stages") if data else None
        if not stored:
            return StageList.defaults()
        return StageList(Stage(**s) for s in stored)

    async def save(self, organization_id: str, stage_list: StageList) -> List[Stage]:
        stages = stage_list.stages
        execute(
            self.client.table("pipeline_stages").upsert(
                {
                    "organization_id": organization_id,
                    "stages": [s.model_dump() for s in stages],
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                },
                on_conflict="organization_id",
            ),
            "saving pipeline stages",
        )
        return stages

    async def list_stages(self, organization_id: str) -> List[Stage]:
        return (await self.load(organization_id)).stages

    async def add_stage(self, organization_id: str, name: str, color: Optional[str] = None) -> Stage:
        stage_list = await self.load(organization_id)
        stage = stage_list.add(name, color)
        await self.save(organization_id, stage_list)
        logger.info(f"Added stage '{stage.name}' for org {organization_id}")
        return stage

    async def rename_stage(
        self,
        organization_id: str,
        stage_id: str,
        name: str,
        color: Optional[str] = None
    ) -> Stage:
        stage_list = await self.load(organization_id)
        stage = stage_list.rename(stage_id, name, color)
        await self.save(organization_id, stage_list)
        logger.info(f"Renamed stage {stage_id} to '{stage.name}' for org {organization_id}")
        return stage

    async def reorder_stage(self, organization_id: str, moved_id: str, target_id: str) -> List[Stage]:
        stage_list = await self.load(organization_id)
        if moved_id == target_id:
            return stage_list.stages
        stage_list.reorder(moved_id, target_id)
        return await self.save(organization_id, stage_list)

    async def delete_stage(
        self,
        organization_id: str,
        stage_id: str,
        user_id: Optional[str] = None,
        user_name: str = "Unknown",
        language: str = DEFAULT_LANGUAGE,
    ) -> StageDeleteResult:
        """
        Delete a stage and move its deals to the first remaining stage.

        Deals are moved before the stage list is saved, so a failed move
        leaves the stage in place with its deals still on it.

        Raises:
            InvariantViolation: If it is the last stage (nothing is written)
            NotFoundError: If the stage does not exist
        """
        stage_list = await self.load(organization_id)
        removed = stage_list.delete(stage_id)
        fallback = stage_list.stages[0]

        result = execute(
            self.client.table("businesses")
            .update({
                "stage_id": fallback.id,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            })
            .eq("organization_id", organization_id)
            .eq("stage_id", stage_id),
            "reassigning deals of deleted stage",
        )
        reassigned = rows(result)
        stages = await self.save(organization_id, stage_list)

        for deal in reassigned:
            await self.interaction_log.append(
                organization_id=organization_id,
                business_id=deal["id"],
                kind="stage_change",
                title=translate("stage_change_title", language),
                description=translate(
                    "stage_change_description", language,
                    previous=removed.name, new=fallback.name,
                ),
                user_id=user_id,
                user_name=user_name,
                metadata={
                    "previousValue": removed.name,
                    "newValue": fallback.name,
                    "previousStage": stage_id,
                    "newStage": fallback.id,
                    "reason": "stage_deleted",
                },
            )

        if reassigned:
            logger.warning(
                f"Deleted stage '{removed.name}' had {len(reassigned)} deals; moved to '{fallback.name}'"
            )
        logger.info(f"Deleted stage {stage_id} for org {organization_id}")
        return StageDeleteResult(
            stages=stages,
            reassigned_deals=len(reassigned),
            reassigned_to=fallback.id if reassigned else None,
        )


# Singleton instance
_stage_registry_service: Optional[StageRegistryService] = None


def get_stage_registry_service() -> StageRegistryService:
    """Get or create stage registry service instance"""
    global _stage_registry_service
    if _stage_registry_service is None:
        _stage_registry_service = StageRegistryService()
    return _stage_registry_service
