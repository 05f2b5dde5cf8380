"""
Revenue Aggregator

Pure computation of dashboard metrics from the deals in scope, the
service catalog and the stage registry. Nothing here reads or writes
the database; the dashboard router loads the inputs.

Revenue rules:
- pipeline value counts every deal (won, lost or open) as
  setup + 12 months of its plan price
- MRR / monthly revenue only count won deals closed (updated) this month
- ARR / annual revenue count every won deal regardless of close month
- a deal whose service or plan is gone contributes its setup value only
"""

from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from crm.i18n import translate, DEFAULT_LANGUAGE
from crm.models.catalog import Service, CUSTOM_PLAN_ID
from crm.models.dashboard import DashboardMetrics, TopPerformer
from crm.models.deals import Deal
from crm.models.pipeline import Stage
from crm.services.stage_classifier import StageClassifier, StageBucket

MONTHS_PER_YEAR = 12
TOP_PERFORMERS_LIMIT = 5

ZERO = Decimal("0")


def _aware(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def month_window(now: datetime) -> Tuple[datetime, datetime]:
    """[first instant of now's month, first instant of next month)"""
    start = _aware(now).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def resolve_plan_price(deal: Deal, services_by_id: Dict[str, Service]) -> Optional[Decimal]:
    """
    Monthly price of the deal's plan, None when the plan cannot be resolved.

    The "custom" plan sentinel uses the price stored on the deal.
    """
    if deal.plan_id == CUSTOM_PLAN_ID:
        return deal.custom_plan_price or ZERO
    service = services_by_id.get(deal.service_id) if deal.service_id else None
    if service is None:
        return None
    plan = service.find_plan(deal.plan_id)
    return plan.price if plan else None


def monthly_plan_price(deal: Deal, services_by_id: Dict[str, Service]) -> Decimal:
    """Monthly price of the deal's plan, 0 when it cannot be resolved."""
    price = resolve_plan_price(deal, services_by_id)
    return price if price is not None else ZERO


def effective_monthly_price(
    deal: Deal,
    services_by_id: Dict[str, Service]
) -> Decimal:
    """Plan price after the deal's discount percentage."""
    base = monthly_plan_price(deal, services_by_id)
    if deal.discount_percent and deal.discount_percent > 0:
        return base - (base * deal.discount_percent / Decimal("100"))
    return base


def aggregate(
    deals: Iterable[Deal],
    services: Iterable[Service],
    stages: Iterable[Stage],
    now: datetime,
    users: Optional[Iterable[dict]] = None,
    is_admin: bool = False,
    language: str = DEFAULT_LANGUAGE,
) -> DashboardMetrics:
    """
    Compute dashboard metrics.

    Args:
        deals: Deals in the caller's scope (all org deals for admins)
        services: Service catalog with plans
        stages: Stage registry snapshot used for classification
        now: Reference time; defines the current month window
        users: Organization users ({"id", "name"}) for top performers
        is_admin: Top performers are only computed for admins
        language: Language for the unknown-stage label

    Returns:
        DashboardMetrics
    """
    deals = list(deals)
    services_by_id = {s.id: s for s in services}
    classifier = StageClassifier(stages)
    month_start, month_end = month_window(now)

    def in_month(value: datetime) -> bool:
        return month_start <= _aware(value) < month_end

    buckets = {deal.id: classifier.bucket_for(deal.stage_id) for deal in deals}
    won = [d for d in deals if buckets[d.id] == StageBucket.WON]
    lost = [d for d in deals if buckets[d.id] == StageBucket.LOST]

    total = len(deals)
    metrics = DashboardMetrics(
        total_deals=total,
        new_deals_this_month=sum(1 for d in deals if in_month(d.created_at)),
        won_deals=len(won),
        lost_deals=len(lost),
        in_progress_deals=total - len(won) - len(lost),
        sales_this_month=sum(1 for d in won if in_month(d.updated_at)),
        conversion_rate=(len(won) / total * 100) if total else 0.0,
    )

    if won:
        metrics.average_ticket = sum((d.setup_value for d in won), ZERO) / len(won)

    pipeline_value = ZERO
    for deal in deals:
        pipeline_value += deal.setup_value + monthly_plan_price(deal, services_by_id) * MONTHS_PER_YEAR
    metrics.pipeline_value = pipeline_value

    # Won deals without a resolvable plan only count towards pipeline value
    mrr = monthly_revenue = annual_revenue = arr = ZERO
    for deal in won:
        monthly = resolve_plan_price(deal, services_by_id)
        if monthly is None:
            continue
        if in_month(deal.updated_at):
            mrr += monthly
            monthly_revenue += deal.setup_value + monthly
        annual_revenue += deal.setup_value + monthly * MONTHS_PER_YEAR
        arr += monthly * MONTHS_PER_YEAR
    metrics.mrr = mrr
    metrics.monthly_revenue = monthly_revenue
    metrics.annual_revenue = annual_revenue
    metrics.arr = arr

    unknown = translate("unknown_stage", language)
    by_stage: Counter = Counter()
    for deal in deals:
        stage = classifier.stage_for(deal.stage_id)
        by_stage[stage.name if stage else unknown] += 1
    metrics.deals_by_stage = dict(by_stage)

    by_service: Counter = Counter()
    for deal in won:
        service = services_by_id.get(deal.service_id) if deal.service_id else None
        if service:
            by_service[service.name] += 1
    metrics.deals_by_service = dict(by_service)

    if is_admin and users is not None:
        metrics.top_performers = top_performers(deals, buckets, users)

    return metrics


def top_performers(
    deals: List[Deal],
    buckets: Dict[str, StageBucket],
    users: Iterable[dict],
) -> List[TopPerformer]:
    """Users ranked by won deals, top five."""
    performers = []
    for user in users:
        assigned = [d for d in deals if d.assigned_to == user["id"]]
        performers.append(TopPerformer(
            user_id=user["id"],
            name=user.get("name") or "Unknown",
            won_count=sum(1 for d in assigned if buckets[d.id] == StageBucket.WON),
            total_assigned_count=len(assigned),
        ))
    performers.sort(key=lambda p: p.won_count, reverse=True)
    return performers[:TOP_PERFORMERS_LIMIT]
