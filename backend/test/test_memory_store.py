"""Tests for the signaling store contract on the in-memory backend."""

import pytest

from relaycast.shared import DocumentExistsError, DocumentMissingError
from relaycast.signaling import (
    InMemorySignalingStore,
    call_path,
    caller_candidates_path,
    publisher_candidates_path,
    room_path,
    viewer_path,
    viewers_path,
)


class TestPaths:
    def test_room_layout(self):
        assert room_path("hall") == "rooms/hall"
        assert viewer_path("hall", "v1") == "rooms/hall/viewers/v1"
        assert publisher_candidates_path("hall", "v1") == "rooms/hall/viewers/v1/publisherCandidates"

    def test_call_layout(self):
        assert call_path("c1") == "calls/c1"
        assert caller_candidates_path("c1") == "calls/c1/callerCandidates"


class TestDocumentWrites:
    async def test_set_replaces_whole_document(self, store: InMemorySignalingStore):
        await store.set("rooms/hall", {"publisherId": "a", "status": "active"})
        await store.set("rooms/hall", {"publisherId": "b"})

        assert await store.get("rooms/hall") == {"publisherId": "b"}

    async def test_merge_keeps_unmentioned_fields(self, store: InMemorySignalingStore):
        await store.set("rooms/hall/viewers/v1", {"id": "v1", "isActive": True})
        await store.merge("rooms/hall/viewers/v1", {"offer": {"type": "offer", "sdp": "x"}})

        doc = await store.get("rooms/hall/viewers/v1")
        assert doc["id"] == "v1"
        assert doc["isActive"] is True
        assert doc["offer"]["sdp"] == "x"

    async def test_merge_creates_missing_document(self, store: InMemorySignalingStore):
        await store.merge("calls/c1", {"answer": {"type": "answer", "sdp": "y"}})

        assert await store.get("calls/c1") == {"answer": {"type": "answer", "sdp": "y"}}

    async def test_create_rejects_existing(self, store: InMemorySignalingStore):
        await store.create("calls/c1", {"callerSessionId": "t1"})

        with pytest.raises(DocumentExistsError):
            await store.create("calls/c1", {"callerSessionId": "t2"})
        assert (await store.get("calls/c1"))["callerSessionId"] == "t1"

    async def test_update_merges_into_existing(self, store: InMemorySignalingStore):
        await store.set("rooms/hall/viewers/v1", {"id": "v1", "answer": {"type": "answer", "sdp": "old"}})
        await store.update("rooms/hall/viewers/v1", {"offer": {"type": "offer", "sdp": "x"}, "answer": None})

        assert await store.get("rooms/hall/viewers/v1") == {
            "id": "v1",
            "offer": {"type": "offer", "sdp": "x"},
            "answer": None,
        }

    async def test_update_never_recreates_deleted_document(self, store: InMemorySignalingStore):
        await store.set("rooms/hall/viewers/v1", {"id": "v1"})
        await store.delete("rooms/hall/viewers/v1")

        with pytest.raises(DocumentMissingError):
            await store.update("rooms/hall/viewers/v1", {"offer": {"type": "offer", "sdp": "x"}})
        assert await store.get("rooms/hall/viewers/v1") is None
        assert await store.list_ids("rooms/hall/viewers") == []

    async def test_delete_if_matches_field(self, store: InMemorySignalingStore):
        await store.set("rooms/hall", {"publisherId": "b", "status": "active"})

        assert await store.delete_if("rooms/hall", "publisherId", "a") is False
        assert (await store.get("rooms/hall"))["publisherId"] == "b"
        assert await store.delete_if("rooms/hall", "publisherId", "b") is True
        assert await store.get("rooms/hall") is None
        assert await store.delete_if("rooms/hall", "publisherId", "b") is False

    async def test_get_returns_copy(self, store: InMemorySignalingStore):
        await store.set("rooms/hall", {"publisherId": "a"})
        doc = await store.get("rooms/hall")
        doc["publisherId"] = "mutated"

        assert (await store.get("rooms/hall"))["publisherId"] == "a"

    async def test_append_preserves_order(self, store: InMemorySignalingStore):
        log = "calls/c1/callerCandidates"
        ids = [await store.append(log, {"candidate": f"candidate:{i}"}) for i in range(3)]

        assert await store.list_ids(log) == ids
        assert ids == sorted(ids)

    async def test_recursive_delete_removes_subcollections(self, store: InMemorySignalingStore):
        await store.set("calls/c1", {"callerSessionId": "t1"})
        await store.append("calls/c1/callerCandidates", {"candidate": "candidate:1"})
        await store.append("calls/c1/calleeCandidates", {"candidate": "candidate:2"})

        await store.delete("calls/c1", recursive=True)

        assert store.dump() == {}

    async def test_plain_delete_keeps_subcollections(self, store: InMemorySignalingStore):
        await store.set("rooms/hall", {"publisherId": "a"})
        await store.set("rooms/hall/viewers/v1", {"id": "v1"})

        await store.delete("rooms/hall")

        assert await store.get("rooms/hall") is None
        assert await store.get("rooms/hall/viewers/v1") == {"id": "v1"}


class TestSubscriptions:
    async def test_document_subscription_gets_snapshot_then_changes(self, store: InMemorySignalingStore):
        seen = []

        async def on_change(fields):
            seen.append(fields)

        await store.set("rooms/hall", {"publisherId": "a"})
        sub = await store.subscribe_document("rooms/hall", on_change)
        await store.drain()
        await store.merge("rooms/hall", {"status": "active"})
        await store.drain()
        await store.delete("rooms/hall")
        await store.drain()
        await sub.close()

        assert seen == [
            {"publisherId": "a"},
            {"publisherId": "a", "status": "active"},
            None,
        ]

    async def test_collection_subscription_delivers_existing_in_order(self, store: InMemorySignalingStore):
        added = []

        async def on_add(doc_id, fields):
            added.append(fields["candidate"])

        log = "calls/c1/callerCandidates"
        await store.append(log, {"candidate": "candidate:1"})
        await store.append(log, {"candidate": "candidate:2"})
        sub = await store.subscribe_collection(log, on_add)
        await store.append(log, {"candidate": "candidate:3"})
        await store.drain()
        await sub.close()

        assert added == ["candidate:1", "candidate:2", "candidate:3"]

    async def test_collection_modification_is_not_a_second_add(self, store: InMemorySignalingStore):
        added, removed = [], []

        async def on_add(doc_id, fields):
            added.append(doc_id)

        async def on_remove(doc_id):
            removed.append(doc_id)

        sub = await store.subscribe_collection(viewers_path("hall"), on_add, on_remove)
        await store.set(viewer_path("hall", "v1"), {"id": "v1"})
        await store.merge(viewer_path("hall", "v1"), {"offer": {"type": "offer", "sdp": "x"}})
        await store.delete(viewer_path("hall", "v1"))
        await store.drain()
        await sub.close()

        assert added == ["v1"]
        assert removed == ["v1"]

    async def test_callback_error_keeps_subscription_alive(self, store: InMemorySignalingStore):
        added = []

        async def on_add(doc_id, fields):
            if fields.get("explode"):
                raise RuntimeError("boom")
            added.append(doc_id)

        sub = await store.subscribe_collection("rooms/hall/viewers", on_add)
        await store.set("rooms/hall/viewers/bad", {"explode": True})
        await store.set("rooms/hall/viewers/good", {"id": "good"})
        await store.drain()
        await sub.close()

        assert added == ["good"]

    async def test_closed_subscription_stops_delivery(self, store: InMemorySignalingStore):
        seen = []

        async def on_change(fields):
            seen.append(fields)

        sub = await store.subscribe_document("rooms/hall", on_change)
        await store.drain()
        await sub.close()
        await store.set("rooms/hall", {"publisherId": "a"})
        await store.drain()

        assert seen == [None]
        assert sub.closed

    async def test_subscription_can_close_itself(self, store: InMemorySignalingStore):
        seen = []
        holder = {}

        async def on_change(fields):
            seen.append(fields)
            if fields is not None:
                await holder["sub"].close()

        holder["sub"] = await store.subscribe_document("rooms/hall", on_change)
        await store.drain()
        await store.set("rooms/hall", {"publisherId": "a"})
        await store.drain()
        await store.set("rooms/hall", {"publisherId": "b"})
        await store.drain()

        assert seen == [None, {"publisherId": "a"}]
