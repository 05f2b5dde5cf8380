"""
Token Ledger

Per-user token balance gating billable features (consultations, chat).

Reservations are a compare-and-swap on used_tokens: the update only
matches the row if used_tokens still holds the value that was read.
When another request got there first the read is retried, so two
concurrent reservations can never spend the same remaining balance.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta
from supabase import Client

from crm.database import get_supabase_service, execute, rows
from crm.errors import ValidationError
from crm.models.billing import TokenUsage

logger = logging.getLogger(__name__)

MAX_RESERVE_ATTEMPTS = 5


class TokenLedger:
    """Service for reading and spending token balances"""

    def __init__(self, client: Optional[Client] = None):
        self.client: Client = client or get_supabase_service()

    async def get_usage(self, owner_id: str) -> Optional[TokenUsage]:
        """Current balance, or None when the owner never bought a plan."""
        result = execute(
            self.client.table("token_usage").select("*").eq("owner_id", owner_id).maybe_single(),
            "loading token usage",
        )
        data = rows(result)
        return TokenUsage(**data[0]) if data else None

    async def check_and_reserve(self, owner_id: str, cost: int, now: Optional[datetime] = None) -> bool:
        """
        Spend `cost` tokens if the balance allows it.

        Returns:
            True if the tokens were reserved, False if the balance is
            insufficient, the plan expired, or the swap kept losing races.
        """
        if cost < 1:
            raise ValidationError("Token cost must be at least 1")
        now = now or datetime.now(timezone.utc)

        for attempt in range(MAX_RESERVE_ATTEMPTS):
            usage = await self.get_usage(owner_id)
            if usage is None:
                logger.info(f"No token plan for {owner_id}")
                return False
            expiration = usage.expiration_date
            if expiration and expiration.tzinfo is None:
                expiration = expiration.replace(tzinfo=timezone.utc)
            if expiration and expiration <= now:
                logger.info(f"Token plan expired for {owner_id}")
                return False
            if usage.remaining < cost:
                return False

            result = execute(
                self.client.table("token_usage")
                .update({
                    "used_tokens": usage.used_tokens + cost,
                    "last_updated": now.isoformat(),
                })
                .eq("owner_id", owner_id)
                .eq("used_tokens", usage.used_tokens),
                "reserving tokens",
            )
            if rows(result):
                logger.info(f"Reserved {cost} tokens for {owner_id} ({usage.remaining - cost} left)")
                return True

            logger.warning(f"Token reservation race for {owner_id}, retrying (attempt {attempt + 1})")

        logger.error(f"Giving up token reservation for {owner_id} after {MAX_RESERVE_ATTEMPTS} attempts")
        return False

    async def reset_for_new_plan(
        self,
        owner_id: str,
        new_total: int,
        plan: str,
        email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TokenUsage:
        """Start a fresh balance: total = new_total, used = 0, valid one month."""
        if new_total < 0:
            raise ValidationError("Token total cannot be negative")
        now = now or datetime.now(timezone.utc)

        data = {
            "owner_id": owner_id,
            "email": email,
            "plan": plan,
            "total_tokens": new_total,
            "used_tokens": 0,
            "last_updated": now.isoformat(),
            "expiration_date": (now + relativedelta(months=1)).isoformat(),
        }
        result = execute(
            self.client.table("token_usage").upsert(data, on_conflict="owner_id"),
            "resetting token usage",
        )
        logger.info(f"Reset tokens for {owner_id}: {new_total} ({plan})")
        return TokenUsage(**rows(result)[0])


# Singleton instance
_token_ledger: Optional[TokenLedger] = None


def get_token_ledger() -> TokenLedger:
    """Get or create token ledger instance"""
    global _token_ledger
    if _token_ledger is None:
        _token_ledger = TokenLedger()
    return _token_ledger
