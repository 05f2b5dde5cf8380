"""
Deal Service - intake, edits and stage transitions

Scope rules: admins see every deal of their organization, other users
only the deals assigned to them. Out-of-scope deals look missing.

Intake writes a company, its contacts and the deal as separate inserts.
Every created row carries the same intake_id; if a later insert fails,
the rows created so far are deleted in reverse order before the error
is raised. Rows left behind by a failed compensation keep their
intake_id so they can be found and cleaned up.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import uuid4

from supabase import Client

from crm.database import get_supabase_service, execute, rows
from crm.deps import UserContext
from crm.errors import ValidationError, NotFoundError, InvariantViolation, ExternalServiceError
from crm.i18n import translate, DEFAULT_LANGUAGE
from crm.models.catalog import CUSTOM_PLAN_ID
from crm.models.deals import (
    Deal, DealWithPrice, DealIntake, DealUpdate, Interaction, InteractionCreate,
    SYSTEM_INTERACTION_KINDS,
)
from crm.services.catalog_service import CatalogService, get_catalog_service
from crm.services.revenue_aggregator import effective_monthly_price
from crm.services.stage_registry import StageRegistryService, get_stage_registry_service
from crm.services.timeline import InteractionLog, get_interaction_log

logger = logging.getLogger(__name__)

PLAN_FIELDS = {"service_id", "plan_id", "custom_plan_price"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DealService:
    """Service for the deal lifecycle."""

    def __init__(
        self,
        client: Optional[Client] = None,
        stage_registry: Optional[StageRegistryService] = None,
        catalog: Optional[CatalogService] = None,
        interaction_log: Optional[InteractionLog] = None,
    ):
        self.client: Client = client or get_supabase_service()
        self.stage_registry = stage_registry or get_stage_registry_service()
        self.catalog = catalog or get_catalog_service()
        self.interaction_log = interaction_log or get_interaction_log()

    # ==========================================
    # READS
    # ==========================================

    def _scoped(self, query, ctx: UserContext):
        query = query.eq("organization_id", ctx.organization_id)
        if not ctx.is_admin:
            query = query.eq("assigned_to", ctx.user_id)
        return query

    async def list_deals(self, ctx: UserContext, stage_id: Optional[str] = None) -> List[Deal]:
        """Deals in the caller's scope, newest first."""
        query = self._scoped(self.client.table("businesses").select("*"), ctx)
        if stage_id:
            query = query.eq("stage_id", stage_id)
        result = execute(query.order("created_at", desc=True), "listing deals")
        return [Deal(**row) for row in rows(result)]

    async def get_deal(self, ctx: UserContext, deal_id: str) -> Deal:
        query = self._scoped(self.client.table("businesses").select("*").eq("id", deal_id), ctx)
        data = rows(execute(query.maybe_single(), "loading deal"))
        if not data:
            raise NotFoundError("Deal not found")
        return Deal(**data[0])

    async def get_deal_with_price(self, ctx: UserContext, deal_id: str) -> DealWithPrice:
        deal = await self.get_deal(ctx, deal_id)
        services = await self.catalog.list_services(ctx.organization_id, seed_defaults=False)
        price = effective_monthly_price(deal, {s.id: s for s in services})
        return DealWithPrice(**deal.model_dump(), effective_monthly_price=price)

    # ==========================================
    # INTAKE
    # ==========================================

    async def _validate_plan(
        self,
        ctx: UserContext,
        service_id: Optional[str],
        plan_id: Optional[str],
        custom_plan_price: Optional[Decimal],
    ) -> None:
        """Service and plan must exist in the catalog; "custom" needs a price."""
        if plan_id == CUSTOM_PLAN_ID:
            if custom_plan_price is None:
                raise ValidationError("A custom plan needs a custom price")
        elif plan_id:
            if not service_id:
                raise ValidationError("A plan needs a service")
            service = await self.catalog.get_service(ctx.organization_id, service_id)
            if service.find_plan(plan_id) is None:
                raise NotFoundError("Plan not found for this service")
        elif service_id:
            await self.catalog.get_service(ctx.organization_id, service_id)

    async def _validate_terms(self, ctx: UserContext, intake: DealIntake) -> str:
        """Check commercial terms and return the stage id to use."""
        terms = intake.terms

        if not any(c.name.strip() for c in intake.contacts):
            raise ValidationError("At least one contact with a name is required")
        if terms.discount_percent > 0 and not ctx.is_admin:
            raise ValidationError("Only admins can apply a discount")
        await self._validate_plan(ctx, terms.service_id, terms.plan_id, terms.custom_plan_price)

        stage_list = await self.stage_registry.load(ctx.organization_id)
        if terms.stage_id:
            if stage_list.get(terms.stage_id) is None:
                raise NotFoundError("Stage not found")
            return terms.stage_id
        return stage_list.stages[0].id

    async def create_deal_from_intake(self, ctx: UserContext, intake: DealIntake) -> Deal:
        """
        Create company, contacts and deal from the intake wizard.

        Raises:
            ValidationError / NotFoundError: Before any write
            ExternalServiceError: If a write fails (earlier writes are undone)
        """
        stage_id = await self._validate_terms(ctx, intake)
        intake_id = uuid4().hex
        created: List[Tuple[str, str]] = []

        try:
            company_result = execute(
                self.client.table("companies").insert({
                    **intake.company.model_dump(),
                    "organization_id": ctx.organization_id,
                    "intake_id": intake_id,
                    "created_by": ctx.user_id,
                    "created_at": _now(),
                }),
                "creating company",
            )
            company_id = rows(company_result)[0]["id"]
            created.append(("companies", company_id))

            contact_ids = []
            for contact in intake.contacts:
                if not contact.name.strip():
                    continue
                contact_result = execute(
                    self.client.table("contacts").insert({
                        **contact.model_dump(),
                        "company_id": company_id,
                        "organization_id": ctx.organization_id,
                        "intake_id": intake_id,
                        "created_by": ctx.user_id,
                        "created_at": _now(),
                        "updated_at": _now(),
                    }),
                    "creating contact",
                )
                contact_id = rows(contact_result)[0]["id"]
                created.append(("contacts", contact_id))
                contact_ids.append(contact_id)

            terms = intake.terms.model_dump(mode="json", exclude={"stage_id"})
            deal_result = execute(
                self.client.table("businesses").insert({
                    **terms,
                    "stage_id": stage_id,
                    "company_id": company_id,
                    "contact_ids": contact_ids,
                    "organization_id": ctx.organization_id,
                    "intake_id": intake_id,
                    "assigned_to": ctx.user_id,
                    "created_by": ctx.user_id,
                    "created_at": _now(),
                    "updated_at": _now(),
                }),
                "creating deal",
            )
            deal = Deal(**rows(deal_result)[0])
        except ExternalServiceError:
            await self._compensate(intake_id, created)
            raise

        logger.info(f"Created deal {deal.id} (intake {intake_id}) for org {ctx.organization_id}")
        return deal

    async def _compensate(self, intake_id: str, created: List[Tuple[str, str]]) -> None:
        """Delete rows created by a failed intake, newest first."""
        for table, row_id in reversed(created):
            try:
                execute(self.client.table(table).delete().eq("id", row_id), f"rolling back {table}")
            except ExternalServiceError:
                logger.error(f"Intake {intake_id}: could not roll back {table} row {row_id}")
        logger.warning(f"Intake {intake_id} failed; rolled back {len(created)} records")

    # ==========================================
    # UPDATES
    # ==========================================

    async def move_deal(
        self,
        ctx: UserContext,
        deal_id: str,
        new_stage_id: str,
        language: str = DEFAULT_LANGUAGE,
    ) -> Deal:
        """
        Move a deal to another stage and log the change.

        Raises:
            NotFoundError: If the deal is out of scope or the stage is not registered
        """
        deal = await self.get_deal(ctx, deal_id)
        stage_list = await self.stage_registry.load(ctx.organization_id)

        new_stage = stage_list.get(new_stage_id)
        if new_stage is None:
            raise NotFoundError("Stage not found")
        old_stage = stage_list.get(deal.stage_id)

        result = execute(
            self.client.table("businesses")
            .update({"stage_id": new_stage_id, "updated_at": _now()})
            .eq("id", deal_id)
            .eq("organization_id", ctx.organization_id),
            "moving deal",
        )
        moved = Deal(**rows(result)[0])

        unknown = translate("unknown_stage", language)
        previous_name = old_stage.name if old_stage else unknown
        await self.interaction_log.append(
            organization_id=ctx.organization_id,
            business_id=deal_id,
            kind="stage_change",
            title=translate("stage_change_title", language),
            description=translate(
                "stage_change_description", language,
                previous=previous_name, new=new_stage.name,
            ),
            user_id=ctx.user_id,
            user_name=ctx.name,
            metadata={
                "previousValue": previous_name,
                "newValue": new_stage.name,
                "previousStage": deal.stage_id,
                "newStage": new_stage_id,
            },
        )

        logger.info(f"Moved deal {deal_id} from {deal.stage_id} to {new_stage_id}")
        return moved

    async def step_deal(
        self,
        ctx: UserContext,
        deal_id: str,
        direction: str,
        language: str = DEFAULT_LANGUAGE,
    ) -> Deal:
        """Move a deal to the previous or next stage in pipeline order."""
        deal = await self.get_deal(ctx, deal_id)
        stages = (await self.stage_registry.load(ctx.organization_id)).stages

        index = next((i for i, s in enumerate(stages) if s.id == deal.stage_id), None)
        if index is None:
            raise InvariantViolation("Deal is not on a registered stage")

        target = index - 1 if direction == "prev" else index + 1
        if target < 0 or target >= len(stages):
            raise InvariantViolation("Deal is already at the end of the pipeline")

        return await self.move_deal(ctx, deal_id, stages[target].id, language)

    async def update_deal(
        self,
        ctx: UserContext,
        deal_id: str,
        changes: DealUpdate,
        language: str = DEFAULT_LANGUAGE,
    ) -> Deal:
        """
        Partial update of deal fields, logged as a field change.

        Plan fields are validated on the merged deal like at intake.
        Discount and assignment changes are admin-only.
        """
        current = await self.get_deal(ctx, deal_id)

        update_data = changes.model_dump(mode="json", exclude_unset=True)
        if "discount_percent" in update_data and not ctx.is_admin:
            raise ValidationError("Only admins can apply a discount")
        if "assigned_to" in update_data and not ctx.is_admin:
            raise ValidationError("Only admins can reassign a deal")
        if PLAN_FIELDS & update_data.keys():
            merged = current.model_copy(update=changes.model_dump(exclude_unset=True))
            await self._validate_plan(ctx, merged.service_id, merged.plan_id, merged.custom_plan_price)
        if not update_data:
            return await self.get_deal(ctx, deal_id)
        update_data["updated_at"] = _now()

        result = execute(
            self.client.table("businesses")
            .update(update_data)
            .eq("id", deal_id)
            .eq("organization_id", ctx.organization_id),
            "updating deal",
        )
        updated = Deal(**rows(result)[0])

        await self.interaction_log.append(
            organization_id=ctx.organization_id,
            business_id=deal_id,
            kind="field_change",
            title=translate("field_change_title", language),
            description=translate("field_change_description", language),
            user_id=ctx.user_id,
            user_name=ctx.name,
            metadata={"fields": sorted(k for k in update_data if k != "updated_at")},
        )
        return updated

    # ==========================================
    # TIMELINE
    # ==========================================

    async def add_interaction(self, ctx: UserContext, deal_id: str, entry: InteractionCreate) -> Interaction:
        """Manual note/call/email/whatsapp/social entry."""
        if entry.kind in SYSTEM_INTERACTION_KINDS:
            raise ValidationError(f"'{entry.kind}' entries are recorded automatically")
        if not entry.description.strip():
            raise ValidationError("Description is required")
        await self.get_deal(ctx, deal_id)

        return await self.interaction_log.append(
            organization_id=ctx.organization_id,
            business_id=deal_id,
            kind=entry.kind,
            title=entry.title or entry.kind.capitalize(),
            description=entry.description.strip(),
            user_id=ctx.user_id,
            user_name=ctx.name,
        )

    async def list_interactions(self, ctx: UserContext, deal_id: str) -> List[Interaction]:
        await self.get_deal(ctx, deal_id)
        return await self.interaction_log.list_for_deal(ctx.organization_id, deal_id)


# Singleton instance
_deal_service: Optional[DealService] = None


def get_deal_service() -> DealService:
    """Get or create deal service instance"""
    global _deal_service
    if _deal_service is None:
        _deal_service = DealService()
    return _deal_service
