"""
Plan Activation

Turns a paid Stripe checkout session into a token balance. Activation is
keyed on the checkout session id: a session already recorded in
plan_purchases grants nothing again, so redelivered or repeated events
are harmless and buying the same plan again is a normal renewal.

A session id that shows up for a second user is recorded as potential
fraud and rejected.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from supabase import Client

from crm.database import get_supabase_service, execute, rows
from crm.errors import ValidationError, InvariantViolation
from crm.services.token_ledger import TokenLedger, get_token_ledger

logger = logging.getLogger(__name__)

PLANS: Dict[str, Dict] = {
    "jedi": {"name": "Jedi", "tokens": 1000},
    "mestrejedi": {"name": "Mestre Jedi", "tokens": 3000},
    "mestreyoda": {"name": "Mestre Yoda", "tokens": 11000},
}


class PlanActivationService:
    """Service for activating purchased token plans"""

    def __init__(self, client: Optional[Client] = None, ledger: Optional[TokenLedger] = None):
        self.client: Client = client or get_supabase_service()
        self.ledger = ledger or get_token_ledger()

    async def get_purchase(self, checkout_session_id: str) -> Optional[Dict]:
        """The recorded purchase for a checkout session, if any"""
        found = rows(execute(
            self.client.table("plan_purchases").select("*")
            .eq("transaction_id", checkout_session_id).maybe_single(),
            "loading plan purchase",
        ))
        return found[0] if found else None

    async def activate_plan(
        self,
        user_id: str,
        plan_key: str,
        checkout_session_id: str,
        email: Optional[str] = None,
    ) -> Dict:
        """
        Activate the plan paid for by a checkout session.

        The purchase row is written last, so a failure part way through
        leaves the session unrecorded and a retry runs the whole activation.

        Returns:
            {"plan": key, "name": display name, "tokens": int, "already_active": bool}

        Raises:
            ValidationError: Unknown plan or missing session id
            InvariantViolation: Session already used by another user
        """
        plan = PLANS.get(plan_key)
        if plan is None:
            raise ValidationError(f"Invalid plan: {plan_key}")
        if not checkout_session_id:
            raise ValidationError("Checkout session id is required")

        result = {"plan": plan_key, "name": plan["name"], "tokens": plan["tokens"], "already_active": False}
        now = datetime.now(timezone.utc)

        purchase = await self.get_purchase(checkout_session_id)
        if purchase:
            if purchase.get("user_id") != user_id:
                await self._flag_fraud(user_id, email, plan_key, checkout_session_id, now)
                raise InvariantViolation("Checkout session already used by another account")
            logger.info(f"Checkout session {checkout_session_id} already activated for user {user_id}")
            return {**result, "already_active": True}

        await self.ledger.reset_for_new_plan(user_id, plan["tokens"], plan["name"], email=email, now=now)

        execute(
            self.client.table("plan_hired").upsert({
                "user_id": user_id,
                "email": email,
                "plan_id": plan_key,
                "hired_at": now.isoformat(),
                "transaction_id": checkout_session_id,
            }, on_conflict="user_id"),
            "recording hired plan",
        )
        execute(
            self.client.table("users").update({
                "plan": plan["name"],
                "updated_at": now.isoformat(),
            }).eq("id", user_id),
            "updating user plan",
        )
        execute(
            self.client.table("plan_purchases").insert({
                "transaction_id": checkout_session_id,
                "user_id": user_id,
                "email": email,
                "plan_id": plan_key,
                "plan": plan["name"],
                "tokens": plan["tokens"],
                "purchased_at": now.isoformat(),
            }),
            "recording plan purchase",
        )

        logger.info(f"Activated plan {plan_key} for user {user_id} ({checkout_session_id})")
        return result

    async def _flag_fraud(
        self,
        user_id: str,
        email: Optional[str],
        plan_key: str,
        checkout_session_id: str,
        now: datetime,
    ) -> None:
        logger.warning(f"Checkout session {checkout_session_id} reused by user {user_id}")
        execute(
            self.client.table("potential_fraud").insert({
                "user_id": user_id,
                "email": email,
                "plan_id": plan_key,
                "detected_at": now.isoformat(),
                "transaction_id": checkout_session_id,
            }),
            "recording potential fraud",
        )


# Singleton instance
_plan_activation_service: Optional[PlanActivationService] = None


def get_plan_activation_service() -> PlanActivationService:
    """Get or create plan activation service instance"""
    global _plan_activation_service
    if _plan_activation_service is None:
        _plan_activation_service = PlanActivationService()
    return _plan_activation_service
