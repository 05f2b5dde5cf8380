"""
Tests for dashboard metrics and stage-name classification.
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from crm.models.catalog import Service, ServicePlan
from crm.models.deals import Deal
from crm.models.pipeline import Stage
from crm.services.revenue_aggregator import (
    aggregate, effective_monthly_price, month_window, monthly_plan_price,
)
from crm.services.stage_classifier import StageBucket, StageClassifier, classify

NOW = datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc)
THIS_MONTH = datetime(2026, 10, 3, 9, 30, tzinfo=timezone.utc)
LAST_MONTH = datetime(2026, 9, 20, 9, 30, tzinfo=timezone.utc)

STAGES = [
    Stage(id="mapeada", name="Mapeada", order=0),
    Stage(id="fechada", name="Fechada", order=1),
    Stage(id="perdida", name="Perdida", order=2),
]

SERVICE = Service(
    id="svc-1",
    name="Consultoria em Patentes",
    plans=[
        ServicePlan(id="p50", name="Básico", price=Decimal("50")),
        ServicePlan(id="p100", name="Padrão", price=Decimal("100")),
        ServicePlan(id="p150", name="Plus", price=Decimal("150")),
        ServicePlan(id="p200", name="Premium", price=Decimal("200")),
    ],
)


def make_deal(deal_id, setup, plan_id, stage_id, updated_at=THIS_MONTH, created_at=THIS_MONTH, **extra):
    return Deal(
        id=deal_id,
        name=f"Deal {deal_id}",
        setup_value=Decimal(setup),
        service_id=SERVICE.id,
        plan_id=plan_id,
        stage_id=stage_id,
        created_at=created_at,
        updated_at=updated_at,
        **extra,
    )


class TestClassifier:
    @pytest.mark.parametrize("name, bucket", [
        ("Fechada", StageBucket.WON),
        ("Negócio Fechado", StageBucket.WON),
        ("Closed Won", StageBucket.WON),
        ("Perdida", StageBucket.LOST),
        ("LOST", StageBucket.LOST),
        ("Em Contato", StageBucket.IN_PROGRESS),
        ("", StageBucket.IN_PROGRESS),
    ])
    def test_classify(self, name, bucket):
        assert classify(name) == bucket

    def test_won_patterns_take_precedence(self):
        assert classify("Fechada / Perdida") == StageBucket.WON

    def test_unknown_stage_is_in_progress(self):
        assert StageClassifier(STAGES).bucket_for("deleted-stage") == StageBucket.IN_PROGRESS


class TestPrices:
    def test_custom_plan_uses_deal_price(self):
        deal = make_deal("a", 0, "custom", "mapeada", custom_plan_price=Decimal("321"))
        assert monthly_plan_price(deal, {}) == Decimal("321")

    def test_missing_plan_is_zero(self):
        deal = make_deal("a", 0, "gone", "mapeada")
        assert monthly_plan_price(deal, {SERVICE.id: SERVICE}) == 0

    def test_discount(self):
        deal = make_deal("a", 0, "p200", "mapeada", discount_percent=Decimal("10"))
        assert effective_monthly_price(deal, {SERVICE.id: SERVICE}) == Decimal("180")

    def test_month_window_december(self):
        start, end = month_window(datetime(2026, 12, 31, 23, 59, tzinfo=timezone.utc))
        assert start == datetime(2026, 12, 1, tzinfo=timezone.utc)
        assert end == datetime(2027, 1, 1, tzinfo=timezone.utc)


class TestAggregate:
    def test_empty(self):
        metrics = aggregate([], [SERVICE], STAGES, NOW)
        assert metrics.total_deals == 0
        assert metrics.conversion_rate == 0
        assert metrics.average_ticket == 0

    @pytest.mark.parametrize("stage_id", ["mapeada", "fechada", "perdida"])
    def test_pipeline_counts_every_deal(self, stage_id):
        deal = make_deal("a", 1000, "p200", stage_id)
        metrics = aggregate([deal], [SERVICE], STAGES, NOW)
        assert metrics.pipeline_value == Decimal("3400")

    def test_mrr_only_counts_this_month(self):
        deals = [
            make_deal("a", 0, "p100", "fechada", updated_at=THIS_MONTH),
            make_deal("b", 0, "p150", "fechada", updated_at=LAST_MONTH),
        ]
        metrics = aggregate(deals, [SERVICE], STAGES, NOW)
        assert metrics.mrr == Decimal("100")
        assert metrics.arr == Decimal("3000")
        assert metrics.sales_this_month == 1

    def test_end_to_end(self):
        stages = [Stage(id="mapeada", name="Mapeada", order=0), Stage(id="fechada", name="Fechada", order=1)]
        deals = [
            make_deal("a", 500, "p50", "mapeada"),
            make_deal("b", 1000, "p100", "fechada", updated_at=THIS_MONTH),
        ]
        metrics = aggregate(deals, [SERVICE], stages, NOW)

        assert metrics.total_deals == 2
        assert metrics.won_deals == 1
        assert metrics.lost_deals == 0
        assert metrics.in_progress_deals == 1
        assert metrics.conversion_rate == 50
        assert metrics.pipeline_value == Decimal("3300")
        assert metrics.mrr == Decimal("100")
        assert metrics.monthly_revenue == Decimal("1100")
        assert metrics.arr == Decimal("1200")
        assert metrics.annual_revenue == Decimal("2200")
        assert metrics.average_ticket == Decimal("1000")
        assert metrics.deals_by_stage == {"Mapeada": 1, "Fechada": 1}
        assert metrics.deals_by_service == {"Consultoria em Patentes": 1}

    def test_unknown_stage_label(self):
        deal = make_deal("a", 0, None, "deleted-stage")
        assert aggregate([deal], [], STAGES, NOW).deals_by_stage == {"Desconhecido": 1}
        assert aggregate([deal], [], STAGES, NOW, language="en").deals_by_stage == {"Unknown": 1}

    def test_won_deal_without_plan_only_counts_in_pipeline(self):
        deal = make_deal("a", 700, None, "fechada")
        metrics = aggregate([deal], [SERVICE], STAGES, NOW)
        assert metrics.pipeline_value == Decimal("700")
        assert metrics.annual_revenue == 0
        assert metrics.monthly_revenue == 0
        assert metrics.mrr == 0
        assert metrics.arr == 0

    def test_new_deals_this_month(self):
        deals = [
            make_deal("a", 0, None, "mapeada", created_at=THIS_MONTH),
            make_deal("b", 0, None, "mapeada", created_at=LAST_MONTH),
        ]
        assert aggregate(deals, [], STAGES, NOW).new_deals_this_month == 1

    def test_top_performers_admin_only(self):
        deals = [
            make_deal("a", 0, None, "fechada", assigned_to="u1"),
            make_deal("b", 0, None, "fechada", assigned_to="u2"),
            make_deal("c", 0, None, "fechada", assigned_to="u2"),
            make_deal("d", 0, None, "mapeada", assigned_to="u1"),
        ]
        users = [{"id": "u1", "name": "Bia"}, {"id": "u2", "name": "Caio"}]

        metrics = aggregate(deals, [], STAGES, NOW, users=users, is_admin=True)
        assert [p.user_id for p in metrics.top_performers] == ["u2", "u1"]
        assert metrics.top_performers[1].total_assigned_count == 2

        assert aggregate(deals, [], STAGES, NOW, users=users, is_admin=False).top_performers == []

    def test_serializes_camel_case(self):
        dumped = aggregate([], [], STAGES, NOW).model_dump(by_alias=True)
        assert "conversionRate" in dumped
        assert "dealsByStage" in dumped
