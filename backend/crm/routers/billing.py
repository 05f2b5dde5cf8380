"""
Billing Router - token balance and plan status

Billable features call /reserve before doing their work. Balances are
refilled only by the Stripe webhook after a paid checkout; the payment
success page polls /activation/{session_id} until the tokens arrive.
"""

import logging
from fastapi import APIRouter, Depends

from crm.deps import UserContext, get_user_context
from crm.errors import NotFoundError
from crm.models.billing import TokenUsageResponse, ReserveRequest, ReserveResponse, ActivationStatus
from crm.services.plan_activation import PlanActivationService, get_plan_activation_service, PLANS
from crm.services.token_ledger import TokenLedger, get_token_ledger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


@router.get("/plans")
async def list_plans():
    """Purchasable token plans"""
    return [{"plan": key, **plan} for key, plan in PLANS.items()]


@router.get("/usage", response_model=TokenUsageResponse)
async def get_usage(
    ctx: UserContext = Depends(get_user_context),
    ledger: TokenLedger = Depends(get_token_ledger),
):
    """Current token balance of the caller"""
    usage = await ledger.get_usage(ctx.user_id)
    if usage is None:
        raise NotFoundError("No active token plan")
    return TokenUsageResponse(**usage.model_dump(), remaining_tokens=usage.remaining)


@router.post("/reserve", response_model=ReserveResponse)
async def reserve_tokens(
    data: ReserveRequest,
    ctx: UserContext = Depends(get_user_context),
    ledger: TokenLedger = Depends(get_token_ledger),
):
    """
    Spend tokens for a billable action.

    allowed is false when the balance is insufficient or the plan expired.
    """
    allowed = await ledger.check_and_reserve(ctx.user_id, data.cost)
    usage = await ledger.get_usage(ctx.user_id)
    return ReserveResponse(allowed=allowed, remaining_tokens=usage.remaining if usage else 0)


@router.get("/activation/{session_id}", response_model=ActivationStatus)
async def get_activation(
    session_id: str,
    ctx: UserContext = Depends(get_user_context),
    activation: PlanActivationService = Depends(get_plan_activation_service),
):
    """Read-only activation status of one of the caller's checkout sessions"""
    purchase = await activation.get_purchase(session_id)
    if not purchase or purchase.get("user_id") != ctx.user_id:
        return ActivationStatus(checkout_session_id=session_id)
    return ActivationStatus(
        checkout_session_id=session_id,
        activated=True,
        plan=purchase.get("plan_id"),
        tokens=purchase.get("tokens"),
        purchased_at=purchase.get("purchased_at"),
    )
