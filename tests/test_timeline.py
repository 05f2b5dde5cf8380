"""
Tests for the interaction log, its broadcaster and message translation.
"""
import asyncio
from datetime import datetime, timedelta, timezone

from crm.i18n import MESSAGES, resolve_language, translate
from crm.models.deals import Interaction
from crm.services.timeline import TimelineBroadcaster, sort_interactions

from fakes import ORG_ID

T0 = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def entry(entry_id, minutes, business_id="deal-1"):
    return Interaction(
        id=entry_id, business_id=business_id, kind="note", title="Note",
        created_at=T0 + timedelta(minutes=minutes),
    )


def test_sort_newest_first():
    ordered = sort_interactions([entry("a", 0), entry("c", 10), entry("b", 5)])
    assert [i.id for i in ordered] == ["c", "b", "a"]


def test_publish_reaches_only_subscribers_of_the_deal():
    async def run():
        broadcaster = TimelineBroadcaster()
        mine = broadcaster.subscribe("deal-1")
        other = broadcaster.subscribe("deal-2")
        broadcaster.publish(entry("a", 0))
        return mine.qsize(), other.qsize()

    assert asyncio.run(run()) == (1, 0)


def test_subscription_is_released():
    async def run():
        broadcaster = TimelineBroadcaster()
        async with broadcaster.subscription("deal-1"):
            assert broadcaster.subscriber_count("deal-1") == 1
        return broadcaster.subscriber_count("deal-1")

    assert asyncio.run(run()) == 0


def test_append_stores_and_publishes(db, broadcaster, interaction_log):
    async def run():
        queue = broadcaster.subscribe("deal-1")
        stored = await interaction_log.append(ORG_ID, "deal-1", "call", "Call", "Ligação", user_name="Ana")
        return stored, queue.get_nowait()

    stored, published = asyncio.run(run())
    assert published.id == stored.id
    assert db.rows("business_interactions")[0]["description"] == "Ligação"


def test_list_for_deal_is_scoped(db, interaction_log):
    db.tables["business_interactions"] = [
        {"id": "1", "business_id": "deal-1", "organization_id": ORG_ID, "kind": "note", "title": "A",
         "created_at": "2026-10-01T10:00:00+00:00"},
        {"id": "2", "business_id": "deal-1", "organization_id": "org-2", "kind": "note", "title": "B",
         "created_at": "2026-10-01T11:00:00+00:00"},
        {"id": "3", "business_id": "deal-1", "organization_id": ORG_ID, "kind": "note", "title": "C",
         "created_at": "2026-10-01T12:00:00+00:00"},
    ]
    entries = asyncio.run(interaction_log.list_for_deal(ORG_ID, "deal-1"))
    assert [e.id for e in entries] == ["3", "1"]


def test_every_language_has_every_message():
    assert set(MESSAGES["en"]) == set(MESSAGES["pt"])


def test_translate_and_resolve():
    assert translate("stage_change_description", "en", previous="A", new="B") == 'Deal moved from "A" to "B"'
    assert translate("unknown_stage", "de") == "Desconhecido"
    assert resolve_language("en") == "en"
    assert resolve_language("fr") == "pt"
    assert resolve_language(None, default="en") == "en"
