"""
Tests for Case Store Adapters
=============================

Dotted-path helpers, the in-memory store, and the Redis store when a server
is reachable (REDIS_URL, default redis://localhost:6379/15).
"""

import asyncio
import os
import uuid

import pytest

from bear_court.errors import InvalidCaseCode, StoreUnavailable
from bear_court.store import (
    MemoryCaseStore,
    RedisCaseStore,
    apply_updates,
    conditions_hold,
    get_path,
)


def make_document(case_id: str = "ABC123") -> dict:
    return {
        "id": case_id,
        "createdBy": "alice",
        "status": "waiting",
        "sideA": {"uid": "alice", "content": "", "submitted": False},
        "sideB": {"uid": None, "content": "", "submitted": False},
        "verdict": None,
        "objection": None,
        "createdAt": 1,
    }


# =============================================================================
# Dotted Paths
# =============================================================================

class TestDottedPaths:
    """Tests for get_path / apply_updates / conditions_hold"""

    def test_get_path_reads_nested(self):
        doc = make_document()
        assert get_path(doc, "sideA.uid") == "alice"
        assert get_path(doc, "sideB.missing", "x") == "x"
        assert get_path(doc, "verdict.feedback") is None

    def test_apply_updates_does_not_mutate_input(self):
        doc = make_document()
        updated = apply_updates(doc, {"sideB.uid": "bob"})
        assert updated["sideB"]["uid"] == "bob"
        assert doc["sideB"]["uid"] is None

    def test_apply_updates_creates_null_intermediates(self):
        """Writing objection.status onto a null objection creates the object"""
        updated = apply_updates(make_document(), {"objection.status": "resolved"})
        assert updated["objection"] == {"status": "resolved"}

    def test_missing_path_counts_as_none(self):
        doc = make_document()
        assert conditions_hold(doc, {"verdict.feedback": None})
        assert conditions_hold(doc, {"sideB.uid": None, "sideA.uid": "alice"})
        assert not conditions_hold(doc, {"sideA.uid": None})

    def test_empty_conditions_always_hold(self):
        assert conditions_hold(make_document(), {})


# =============================================================================
# Memory Store
# =============================================================================

class TestMemoryCaseStore:
    """Tests for MemoryCaseStore"""

    @pytest.mark.asyncio
    async def test_create_refuses_taken_id(self, store):
        assert await store.create("ABC123", make_document()) is True
        assert await store.create("ABC123", make_document()) is False

    @pytest.mark.asyncio
    async def test_get_unknown_returns_none(self, store):
        assert await store.get("NOPE00") is None

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, store):
        await store.create("ABC123", make_document())
        doc = await store.get("ABC123")
        doc["sideA"]["uid"] = "mallory"
        assert (await store.get("ABC123"))["sideA"]["uid"] == "alice"

    @pytest.mark.asyncio
    async def test_update_if_applies_when_conditions_hold(self, store):
        await store.create("ABC123", make_document())
        updated = await store.update_if("ABC123", {"sideB.uid": None}, {"sideB.uid": "bob"})
        assert updated["sideB"]["uid"] == "bob"
        assert (await store.get("ABC123"))["sideB"]["uid"] == "bob"

    @pytest.mark.asyncio
    async def test_update_if_leaves_document_when_condition_fails(self, store):
        await store.create("ABC123", make_document())
        await store.update("ABC123", {"sideB.uid": "bob"})

        result = await store.update_if("ABC123", {"sideB.uid": None}, {"sideB.uid": "carol"})

        assert result is None
        assert (await store.get("ABC123"))["sideB"]["uid"] == "bob"

    @pytest.mark.asyncio
    async def test_update_unknown_case_raises(self, store):
        with pytest.raises(InvalidCaseCode):
            await store.update_if("NOPE00", {}, {"status": "finished"})

    @pytest.mark.asyncio
    async def test_closed_store_is_unavailable(self, store):
        await store.close()
        with pytest.raises(StoreUnavailable):
            await store.get("ABC123")
        with pytest.raises(StoreUnavailable):
            await store.increment_stats("likes")

    @pytest.mark.asyncio
    async def test_subscribe_yields_current_then_writes_in_order(self, store):
        await store.create("ABC123", make_document())
        stream = store.subscribe("ABC123")

        first = await stream.__anext__()
        assert first["sideB"]["uid"] is None

        await store.update("ABC123", {"sideB.uid": "bob"})
        await store.update("ABC123", {"sideB.submitted": True})

        second = await stream.__anext__()
        third = await stream.__anext__()
        assert second["sideB"] == {"uid": "bob", "content": "", "submitted": False}
        assert third["sideB"]["submitted"] is True
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_subscribe_unknown_case_raises(self, store):
        stream = store.subscribe("NOPE00")
        with pytest.raises(InvalidCaseCode):
            await stream.__anext__()

    @pytest.mark.asyncio
    async def test_closing_subscription_stops_delivery(self, store):
        await store.create("ABC123", make_document())
        stream = store.subscribe("ABC123")
        await stream.__anext__()
        await stream.aclose()

        # No subscriber left to feed
        await store.update("ABC123", {"status": "finished"})
        assert "ABC123" not in store._case_subscribers

    @pytest.mark.asyncio
    async def test_subscriber_entry_kept_while_another_watches(self, store):
        await store.create("ABC123", make_document())
        first = store.subscribe("ABC123")
        second = store.subscribe("ABC123")
        await first.__anext__()
        await second.__anext__()

        await first.aclose()
        assert len(store._case_subscribers["ABC123"]) == 1

        await second.aclose()
        assert store._case_subscribers == {}

    @pytest.mark.asyncio
    async def test_stats_start_empty(self, store):
        stats = await store.get_stats()
        assert stats["likes"] == 0
        assert stats["dislikes"] == 0

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, store):
        await asyncio.gather(*(store.increment_stats("likes") for _ in range(50)))
        await asyncio.gather(*(store.increment_stats("dislikes") for _ in range(7)))

        stats = await store.get_stats()
        assert stats["likes"] == 50
        assert stats["dislikes"] == 7
        assert stats["lastUpdated"] > 0

    @pytest.mark.asyncio
    async def test_stats_subscription(self, store):
        stream = store.subscribe_stats()
        assert (await stream.__anext__())["likes"] == 0

        await store.increment_stats("likes")
        assert (await stream.__anext__())["likes"] == 1
        await stream.aclose()


# =============================================================================
# Redis Store
# =============================================================================

@pytest.fixture
async def redis_store():
    store = RedisCaseStore(
        redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/15"),
        app_id=f"test-{uuid.uuid4().hex[:8]}",
        stats_doc_id="--GLOBAL-STATS--",
    )
    try:
        await store.connect()
    except StoreUnavailable:
        pytest.skip("Redis server not reachable")

    yield store

    keys = await store.client.keys(f"artifacts:{store.app_id}:*")
    if keys:
        await store.client.delete(*keys)
    await store.close()


class TestRedisCaseStore:
    """Tests for RedisCaseStore against a live server"""

    @pytest.mark.asyncio
    async def test_unreachable_server_is_store_unavailable(self):
        store = RedisCaseStore("redis://127.0.0.1:1/0", app_id="test", stats_doc_id="stats")
        with pytest.raises(StoreUnavailable):
            await store.connect()
        assert store.connected is False

    @pytest.mark.asyncio
    async def test_create_get_and_conditional_update(self, redis_store):
        assert await redis_store.create("ABC123", make_document()) is True
        assert await redis_store.create("ABC123", make_document()) is False

        updated = await redis_store.update_if("ABC123", {"sideB.uid": None}, {"sideB.uid": "bob"})
        assert updated["sideB"]["uid"] == "bob"
        assert await redis_store.update_if("ABC123", {"sideB.uid": None}, {"sideB.uid": "carol"}) is None
        assert (await redis_store.get("ABC123"))["sideB"]["uid"] == "bob"

    @pytest.mark.asyncio
    async def test_update_unknown_case_raises(self, redis_store):
        with pytest.raises(InvalidCaseCode):
            await redis_store.update_if("NOPE00", {}, {"status": "finished"})

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, redis_store):
        await asyncio.gather(*(redis_store.increment_stats("likes") for _ in range(20)))
        stats = await redis_store.get_stats()
        assert stats["likes"] == 20
        assert stats["dislikes"] == 0

    @pytest.mark.asyncio
    async def test_subscribe_yields_current_then_writes(self, redis_store):
        await redis_store.create("ABC123", make_document())
        stream = redis_store.subscribe("ABC123")

        first = await stream.__anext__()
        assert first["sideB"]["uid"] is None

        await redis_store.update("ABC123", {"sideB.uid": "bob"})
        second = await asyncio.wait_for(stream.__anext__(), timeout=5)
        assert second["sideB"]["uid"] == "bob"
        await stream.aclose()
