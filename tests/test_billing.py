"""
Tests for the token ledger and plan activation.
"""
import asyncio
from datetime import datetime, timezone

import pytest

from crm.errors import ExternalServiceError, InvariantViolation, ValidationError
from crm.services.plan_activation import PlanActivationService
from crm.services.token_ledger import MAX_RESERVE_ATTEMPTS

NOW = datetime(2026, 10, 15, tzinfo=timezone.utc)


def seed_usage(db, total=100, used=0, expiration="2026-11-15T00:00:00+00:00"):
    db.tables["token_usage"] = [{
        "owner_id": "user-1",
        "plan": "Jedi",
        "total_tokens": total,
        "used_tokens": used,
        "expiration_date": expiration,
    }]


class TestTokenLedger:
    def test_reserve_within_balance(self, db, ledger):
        seed_usage(db, total=100, used=40)
        assert asyncio.run(ledger.check_and_reserve("user-1", 60, now=NOW)) is True
        assert db.rows("token_usage")[0]["used_tokens"] == 100

    def test_reserve_beyond_balance(self, db, ledger):
        seed_usage(db, total=100, used=40)
        assert asyncio.run(ledger.check_and_reserve("user-1", 61, now=NOW)) is False
        assert db.rows("token_usage")[0]["used_tokens"] == 40

    def test_no_plan(self, ledger):
        assert asyncio.run(ledger.check_and_reserve("user-1", 1, now=NOW)) is False

    def test_expired_plan(self, db, ledger):
        seed_usage(db, expiration="2026-10-01T00:00:00")
        assert asyncio.run(ledger.check_and_reserve("user-1", 1, now=NOW)) is False

    def test_cost_must_be_positive(self, ledger):
        with pytest.raises(ValidationError):
            asyncio.run(ledger.check_and_reserve("user-1", 0))

    def test_concurrent_reservation_cannot_overspend(self, db, ledger):
        seed_usage(db, total=100, used=0)
        raced = []

        def competitor(query):
            # Another request spends the whole balance between our read and our write
            if query.table_name == "token_usage" and query.operation == "update" and not raced:
                raced.append(True)
                db.rows("token_usage")[0]["used_tokens"] = 100

        db.before_execute.append(competitor)

        assert asyncio.run(ledger.check_and_reserve("user-1", 100, now=NOW)) is False
        assert db.rows("token_usage")[0]["used_tokens"] == 100

    def test_retries_after_losing_a_race(self, db, ledger):
        seed_usage(db, total=100, used=0)
        raced = []

        def competitor(query):
            if query.table_name == "token_usage" and query.operation == "update" and not raced:
                raced.append(True)
                db.rows("token_usage")[0]["used_tokens"] = 10

        db.before_execute.append(competitor)

        assert asyncio.run(ledger.check_and_reserve("user-1", 30, now=NOW)) is True
        assert db.rows("token_usage")[0]["used_tokens"] == 40

    def test_gives_up_after_max_attempts(self, db, ledger):
        seed_usage(db, total=1000, used=0)

        def competitor(query):
            if query.table_name == "token_usage" and query.operation == "update":
                db.rows("token_usage")[0]["used_tokens"] += 1

        db.before_execute.append(competitor)

        assert asyncio.run(ledger.check_and_reserve("user-1", 5, now=NOW)) is False
        assert db.rows("token_usage")[0]["used_tokens"] == MAX_RESERVE_ATTEMPTS

    def test_reset_for_new_plan(self, db, ledger):
        seed_usage(db, total=100, used=90)
        usage = asyncio.run(ledger.reset_for_new_plan("user-1", 3000, "Mestre Jedi", now=NOW))
        assert usage.total_tokens == 3000
        assert usage.used_tokens == 0
        assert usage.expiration_date == datetime(2026, 11, 15, tzinfo=timezone.utc)
        assert len(db.rows("token_usage")) == 1


class TestPlanActivation:
    def test_activate(self, db, ledger):
        db.tables["users"] = [{"id": "user-1", "plan": None}]
        service = PlanActivationService(client=db, ledger=ledger)

        result = asyncio.run(service.activate_plan("user-1", "mestrejedi", "cs_1", email="a@b.com"))

        assert result == {"plan": "mestrejedi", "name": "Mestre Jedi", "tokens": 3000, "already_active": False}
        assert db.rows("token_usage")[0]["total_tokens"] == 3000
        assert db.rows("plan_hired")[0]["plan_id"] == "mestrejedi"
        assert db.rows("plan_purchases")[0]["transaction_id"] == "cs_1"
        assert db.rows("users")[0]["plan"] == "Mestre Jedi"

    def test_upgrade_to_another_plan(self, db, ledger):
        db.tables["users"] = [{"id": "user-1"}]
        service = PlanActivationService(client=db, ledger=ledger)
        asyncio.run(service.activate_plan("user-1", "jedi", "cs_1"))
        asyncio.run(service.activate_plan("user-1", "mestreyoda", "cs_2"))
        assert len(db.rows("plan_hired")) == 1
        assert db.rows("token_usage")[0]["total_tokens"] == 11000

    def test_renewing_the_same_plan(self, db, ledger):
        db.tables["users"] = [{"id": "user-1"}]
        service = PlanActivationService(client=db, ledger=ledger)
        asyncio.run(service.activate_plan("user-1", "jedi", "cs_1"))
        db.rows("token_usage")[0]["used_tokens"] = 900

        result = asyncio.run(service.activate_plan("user-1", "jedi", "cs_2"))

        assert result["already_active"] is False
        assert db.rows("token_usage")[0]["used_tokens"] == 0
        assert len(db.rows("plan_purchases")) == 2
        assert db.rows("potential_fraud") == []
        assert "disabled" not in db.rows("users")[0]

    def test_same_session_grants_once(self, db, ledger):
        db.tables["users"] = [{"id": "user-1"}]
        service = PlanActivationService(client=db, ledger=ledger)
        asyncio.run(service.activate_plan("user-1", "jedi", "cs_1"))
        db.rows("token_usage")[0]["used_tokens"] = 900

        result = asyncio.run(service.activate_plan("user-1", "jedi", "cs_1"))

        assert result["already_active"] is True
        assert db.rows("token_usage")[0]["used_tokens"] == 900
        assert len(db.rows("plan_purchases")) == 1

    def test_session_reused_by_another_user(self, db, ledger):
        db.tables["users"] = [{"id": "user-1"}, {"id": "user-2"}]
        service = PlanActivationService(client=db, ledger=ledger)
        asyncio.run(service.activate_plan("user-1", "jedi", "cs_1"))

        with pytest.raises(InvariantViolation):
            asyncio.run(service.activate_plan("user-2", "jedi", "cs_1"))

        assert db.rows("potential_fraud")[0]["user_id"] == "user-2"
        assert [r["owner_id"] for r in db.rows("token_usage")] == ["user-1"]
        assert all("disabled" not in user for user in db.rows("users"))

    def test_failure_leaves_session_unrecorded(self, db, ledger):
        db.tables["users"] = [{"id": "user-1"}]
        service = PlanActivationService(client=db, ledger=ledger)
        db.fail_on("plan_hired", "upsert")

        with pytest.raises(ExternalServiceError):
            asyncio.run(service.activate_plan("user-1", "jedi", "cs_1"))
        assert db.rows("plan_purchases") == []

        db.failures.clear()
        result = asyncio.run(service.activate_plan("user-1", "jedi", "cs_1"))
        assert result["already_active"] is False
        assert len(db.rows("plan_purchases")) == 1

    def test_unknown_plan(self, db, ledger):
        service = PlanActivationService(client=db, ledger=ledger)
        with pytest.raises(ValidationError):
            asyncio.run(service.activate_plan("user-1", "padawan", "cs_1"))
        assert db.calls == []
