"""
Interaction timeline.

Append-only log of what happened to a deal (notes, calls, stage changes,
field edits). Entries are never updated or deleted. Appends are pushed to
live subscribers of the deal; consumers re-sort by created_at on every
update because delivery order is not guaranteed.
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, AsyncIterator

from supabase import Client

from crm.database import get_supabase_service, execute, rows
from crm.models.deals import Interaction

logger = logging.getLogger(__name__)


def sort_interactions(interactions: List[Interaction]) -> List[Interaction]:
    """Newest first."""
    return sorted(interactions, key=lambda i: i.created_at, reverse=True)


class TimelineBroadcaster:
    """In-process fan-out of new interactions to per-deal subscribers."""

    def __init__(self):
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, business_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[business_id].add(queue)
        return queue

    def unsubscribe(self, business_id: str, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(business_id)
        if not subscribers:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[business_id]

    def subscriber_count(self, business_id: str) -> int:
        return len(self._subscribers.get(business_id, ()))

    def publish(self, interaction: Interaction) -> None:
        for queue in list(self._subscribers.get(interaction.business_id, ())):
            queue.put_nowait(interaction)

    @asynccontextmanager
    async def subscription(self, business_id: str) -> AsyncIterator[asyncio.Queue]:
        """Subscribe for the duration of the block; always unsubscribes."""
        queue = self.subscribe(business_id)
        try:
            yield queue
        finally:
            self.unsubscribe(business_id, queue)


class InteractionLog:
    """Writes and reads the business_interactions table."""

    def __init__(self, client: Optional[Client] = None, broadcaster: Optional[TimelineBroadcaster] = None):
        self.client: Client = client or get_supabase_service()
        self.broadcaster = broadcaster or get_broadcaster()

    async def append(
        self,
        organization_id: str,
        business_id: str,
        kind: str,
        title: str,
        description: str = "",
        user_id: Optional[str] = None,
        user_name: str = "Unknown",
        metadata: Optional[dict] = None,
    ) -> Interaction:
        """
        Append an entry and notify live subscribers.

        Returns:
            The stored Interaction
        """
        data = {
            "business_id": business_id,
            "organization_id": organization_id,
            "user_id": user_id,
            "user_name": user_name,
            "kind": kind,
            "title": title,
            "description": description,
            "metadata": metadata,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        result = execute(self.client.table("business_interactions").insert(data), "recording interaction")
        interaction = Interaction(**rows(result)[0])

        self.broadcaster.publish(interaction)
        logger.info(f"Recorded {kind} interaction for deal {business_id}")
        return interaction

    async def list_for_deal(self, organization_id: str, business_id: str) -> List[Interaction]:
        """All entries for a deal, newest first."""
        result = execute(
            self.client.table("business_interactions")
            .select("*")
            .eq("organization_id", organization_id)
            .eq("business_id", business_id)
            .order("created_at", desc=True),
            "loading interactions",
        )
        return sort_interactions([Interaction(**row) for row in rows(result)])


# Singleton instances
_broadcaster: Optional[TimelineBroadcaster] = None
_interaction_log: Optional[InteractionLog] = None


def get_broadcaster() -> TimelineBroadcaster:
    """Get or create the process-wide broadcaster"""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = TimelineBroadcaster()
    return _broadcaster


def get_interaction_log() -> InteractionLog:
    """Get or create interaction log instance"""
    global _interaction_log
    if _interaction_log is None:
        _interaction_log = InteractionLog()
    return _interaction_log
