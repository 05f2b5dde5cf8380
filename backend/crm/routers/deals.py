"""
Deals Router

Deal intake, edits, stage moves and the interaction timeline, including a
Server-Sent Events stream of the timeline.
"""

import asyncio
import json
import logging
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from crm.deps import UserContext, get_user_context, get_language
from crm.models.deals import (
    Deal, DealWithPrice, DealIntake, DealUpdate, StageMove, StageStep,
    Interaction, InteractionCreate,
)
from crm.services.deal_service import DealService, get_deal_service
from crm.services.timeline import TimelineBroadcaster, get_broadcaster, sort_interactions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/deals", tags=["deals"])

# Seconds between keep-alive comments on an idle stream
KEEPALIVE_SECONDS = 15.0


# ============================================================
# DEAL ENDPOINTS
# ============================================================

@router.get("", response_model=List[Deal])
async def list_deals(
    stage_id: Optional[str] = None,
    ctx: UserContext = Depends(get_user_context),
    deals: DealService = Depends(get_deal_service),
):
    """Deals visible to the caller, optionally filtered by stage"""
    return await deals.list_deals(ctx, stage_id)


@router.get("/{deal_id}", response_model=DealWithPrice)
async def get_deal(
    deal_id: str,
    ctx: UserContext = Depends(get_user_context),
    deals: DealService = Depends(get_deal_service),
):
    return await deals.get_deal_with_price(ctx, deal_id)


@router.post("", response_model=Deal, status_code=201)
async def create_deal(
    intake: DealIntake,
    ctx: UserContext = Depends(get_user_context),
    deals: DealService = Depends(get_deal_service),
):
    """Create company, contacts and deal from the intake wizard"""
    return await deals.create_deal_from_intake(ctx, intake)


@router.patch("/{deal_id}", response_model=Deal)
async def update_deal(
    deal_id: str,
    changes: DealUpdate,
    ctx: UserContext = Depends(get_user_context),
    language: str = Depends(get_language),
    deals: DealService = Depends(get_deal_service),
):
    return await deals.update_deal(ctx, deal_id, changes, language)


@router.post("/{deal_id}/move", response_model=Deal)
async def move_deal(
    deal_id: str,
    data: StageMove,
    ctx: UserContext = Depends(get_user_context),
    language: str = Depends(get_language),
    deals: DealService = Depends(get_deal_service),
):
    """Move a deal to any registered stage (kanban drop)"""
    return await deals.move_deal(ctx, deal_id, data.stage_id, language)


@router.post("/{deal_id}/step", response_model=Deal)
async def step_deal(
    deal_id: str,
    data: StageStep,
    ctx: UserContext = Depends(get_user_context),
    language: str = Depends(get_language),
    deals: DealService = Depends(get_deal_service),
):
    """Move a deal to the previous or next stage"""
    return await deals.step_deal(ctx, deal_id, data.direction, language)


# ============================================================
# TIMELINE ENDPOINTS
# ============================================================

@router.get("/{deal_id}/interactions", response_model=List[Interaction])
async def list_interactions(
    deal_id: str,
    ctx: UserContext = Depends(get_user_context),
    deals: DealService = Depends(get_deal_service),
):
    """Timeline, newest first"""
    return await deals.list_interactions(ctx, deal_id)


@router.post("/{deal_id}/interactions", response_model=Interaction, status_code=201)
async def add_interaction(
    deal_id: str,
    entry: InteractionCreate,
    ctx: UserContext = Depends(get_user_context),
    deals: DealService = Depends(get_deal_service),
):
    return await deals.add_interaction(ctx, deal_id, entry)


def format_timeline_event(interactions: List[Interaction]) -> str:
    """One SSE `data:` frame holding the whole timeline."""
    payload = json.dumps([i.model_dump(mode="json") for i in interactions])
    return f"event: timeline\ndata: {payload}\n\n"


async def timeline_events(
    request: Request,
    ctx: UserContext,
    deal_id: str,
    deals: DealService,
    broadcaster: TimelineBroadcaster,
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """
    Emit the full timeline on subscribe and after every new entry.

    Entries are merged by id, so a redelivered entry does not duplicate.
    Stops when the client disconnects; the subscription is always released.
    """
    async with broadcaster.subscription(deal_id) as queue:
        known = {i.id: i for i in await deals.list_interactions(ctx, deal_id)}
        yield format_timeline_event(sort_interactions(list(known.values())))

        while not await request.is_disconnected():
            try:
                interaction = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            known[interaction.id] = interaction
            yield format_timeline_event(sort_interactions(list(known.values())))

    logger.info(f"Timeline stream closed for deal {deal_id}")


@router.get("/{deal_id}/interactions/stream")
async def stream_interactions(
    deal_id: str,
    request: Request,
    ctx: UserContext = Depends(get_user_context),
    deals: DealService = Depends(get_deal_service),
    broadcaster: TimelineBroadcaster = Depends(get_broadcaster),
):
    """Live timeline as Server-Sent Events"""
    # Scope check before the response starts
    await deals.get_deal(ctx, deal_id)
    return StreamingResponse(
        timeline_events(request, ctx, deal_id, deals, broadcaster),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
