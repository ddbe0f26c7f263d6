"""Tests for PublishSession room ownership and per-viewer negotiation."""

import asyncio

import pytest

from relaycast.signaling import (
    InMemorySignalingStore,
    publisher_candidates_path,
    room_path,
    viewer_candidates_path,
    viewer_path,
    viewers_path,
)
from relaycast.webrtc import PublishSession, PublishStatus, SubscribeSession

from fakes import FakeNetwork, fake_media, wait_until

ROOM = "big-church"


async def add_viewer(store, viewer_id: str):
    await store.set(viewer_path(ROOM, viewer_id), {"id": viewer_id, "isActive": True, "joinedAt": 1})


@pytest.fixture
def publisher(store, link_factory):
    return PublishSession(store, ROOM, fake_media(), link_factory=link_factory)


class TestClaim:
    async def test_start_claims_empty_room(self, store: InMemorySignalingStore, publisher: PublishSession):
        status = await publisher.start()

        assert status == PublishStatus.READY
        room = await store.get(room_path(ROOM))
        assert room["publisherId"] == publisher.session_id
        assert room["status"] == "active"
        assert isinstance(room["createdAt"], int)

    async def test_conflict_does_not_write(self, store: InMemorySignalingStore, publisher: PublishSession):
        await store.set(room_path(ROOM), {"publisherId": "other", "status": "active", "createdAt": 1})

        status = await publisher.start()

        assert status == PublishStatus.CONFLICT
        assert publisher.conflict_owner == "other"
        assert (await store.get(room_path(ROOM)))["publisherId"] == "other"

    async def test_confirmed_takeover_overwrites(self, store: InMemorySignalingStore, publisher: PublishSession):
        await store.set(room_path(ROOM), {"publisherId": "other", "status": "active", "createdAt": 1})
        await publisher.start()

        status = await publisher.confirm_takeover()

        assert status == PublishStatus.READY
        assert (await store.get(room_path(ROOM)))["publisherId"] == publisher.session_id

    async def test_abandon_leaves_room_alone(self, store: InMemorySignalingStore, publisher: PublishSession):
        await store.set(room_path(ROOM), {"publisherId": "other", "status": "active", "createdAt": 1})
        await publisher.start()

        await publisher.abandon()

        assert publisher.status == PublishStatus.STOPPED
        assert (await store.get(room_path(ROOM)))["publisherId"] == "other"

    async def test_inactive_room_is_not_a_conflict(self, store: InMemorySignalingStore, publisher: PublishSession):
        await store.set(room_path(ROOM), {"publisherId": "other", "status": "ended", "createdAt": 1})

        assert await publisher.start() == PublishStatus.READY

    async def test_status_callback_sees_transitions(self, store: InMemorySignalingStore, publisher: PublishSession):
        seen = []
        publisher.on_status_change = seen.append

        await publisher.start()
        await publisher.stop()

        assert seen == [PublishStatus.READY, PublishStatus.STOPPED]


class TestViewers:
    async def test_new_viewer_gets_offer_and_candidates(
        self, store: InMemorySignalingStore, publisher: PublishSession, network: FakeNetwork
    ):
        await publisher.start()
        await add_viewer(store, "v1")
        await store.drain()

        record = await store.get(viewer_path(ROOM, "v1"))
        assert record["id"] == "v1"
        assert record["isActive"] is True
        assert record["offer"]["type"] == "offer"
        assert publisher.viewer_count == 1

        (link,) = network.by_label("v1")
        assert [t.kind for t in link.local_tracks] == ["audio", "video"]
        assert len(await store.list_ids(publisher_candidates_path(ROOM, "v1"))) == 2

    async def test_existing_viewers_are_picked_up(
        self, store: InMemorySignalingStore, publisher: PublishSession
    ):
        await add_viewer(store, "v1")
        await add_viewer(store, "v2")

        await publisher.start()
        await store.drain()

        assert sorted(publisher.viewer_ids) == ["v1", "v2"]

    async def test_record_update_does_not_create_second_link(
        self, store: InMemorySignalingStore, publisher: PublishSession, network: FakeNetwork
    ):
        await publisher.start()
        await add_viewer(store, "v1")
        await store.drain()
        await store.merge(viewer_path(ROOM, "v1"), {"isActive": True})
        await store.drain()

        assert len(network.by_label("v1")) == 1
        assert network.by_label("v1")[0].offers_created == 1

    async def test_answer_applies_buffered_candidates(
        self, store: InMemorySignalingStore, publisher: PublishSession, network: FakeNetwork
    ):
        await publisher.start()
        await add_viewer(store, "v1")
        await store.drain()
        (link,) = network.by_label("v1")

        await store.append(viewer_candidates_path(ROOM, "v1"), {"candidate": "candidate:a", "sdpMid": "0", "sdpMLineIndex": 0})
        await store.append(viewer_candidates_path(ROOM, "v1"), {"candidate": "candidate:b", "sdpMid": "0", "sdpMLineIndex": 0})
        await store.drain()
        assert link.remote_candidates == []

        await store.merge(viewer_path(ROOM, "v1"), {"answer": {"type": "answer", "sdp": "v=0"}})
        await store.drain()

        assert link.has_remote_description
        assert [c["candidate"] for c in link.remote_candidates] == ["candidate:a", "candidate:b"]

    async def test_redelivered_answer_is_ignored(
        self, store: InMemorySignalingStore, publisher: PublishSession, network: FakeNetwork
    ):
        await publisher.start()
        await add_viewer(store, "v1")
        await store.drain()
        await store.merge(viewer_path(ROOM, "v1"), {"answer": {"type": "answer", "sdp": "v=0"}})
        await store.drain()

        await store.merge(viewer_path(ROOM, "v1"), {"answer": {"type": "answer", "sdp": "v=0\r\n"}})
        await store.drain()

        (link,) = network.by_label("v1")
        assert link.remote_description["sdp"] == "v=0"
        assert publisher.status == PublishStatus.READY

    async def test_removed_viewer_is_closed(
        self, store: InMemorySignalingStore, publisher: PublishSession, network: FakeNetwork
    ):
        await publisher.start()
        await add_viewer(store, "v1")
        await add_viewer(store, "v2")
        await store.drain()

        await store.delete(viewer_path(ROOM, "v1"), recursive=True)
        await store.drain()

        assert publisher.viewer_ids == ["v2"]
        assert network.by_label("v1")[0].closed
        assert not network.by_label("v2")[0].closed

    async def test_viewer_leaving_during_offer_is_not_brought_back(
        self, store: InMemorySignalingStore, publisher: PublishSession, network: FakeNetwork, link_factory
    ):
        await publisher.start()
        await store.drain()
        network.gate = asyncio.Event()

        viewer = SubscribeSession(store, ROOM, link_factory=link_factory)
        await viewer.join()
        # publisher has registered the link and is waiting inside create_offer
        await wait_until(lambda: network.held == 1)

        await viewer.leave()
        network.gate.set()
        await store.drain()

        record_prefix = viewer_path(ROOM, viewer.viewer_id)
        assert not [path for path in store.dump() if path.startswith(record_prefix)]
        assert await store.list_ids(viewers_path(ROOM)) == []
        assert publisher.viewer_count == 0
        assert all(link.closed for link in network.by_label(viewer.viewer_id))
        assert publisher.status == PublishStatus.READY

    async def test_unknown_removal_is_noop(self, store: InMemorySignalingStore, publisher: PublishSession):
        await publisher.start()
        await store.drain()

        await publisher._on_viewer_removed("ghost")

        assert publisher.viewer_count == 0


class TestSupersession:
    async def test_foreign_claim_supersedes(
        self, store: InMemorySignalingStore, publisher: PublishSession, network: FakeNetwork
    ):
        await publisher.start()
        await add_viewer(store, "v1")
        await store.drain()

        await store.set(room_path(ROOM), {"publisherId": "newcomer", "status": "active", "createdAt": 2})
        await store.drain()

        assert publisher.status == PublishStatus.SUPERSEDED
        assert publisher.superseded
        assert publisher.viewer_count == 0
        assert network.by_label("v1")[0].closed

    async def test_superseded_publisher_stops_reacting(
        self, store: InMemorySignalingStore, publisher: PublishSession, network: FakeNetwork
    ):
        await publisher.start()
        await store.set(room_path(ROOM), {"publisherId": "newcomer", "status": "active", "createdAt": 2})
        await store.drain()

        await add_viewer(store, "v9")
        await store.drain()

        assert network.by_label("v9") == []
        assert "offer" not in await store.get(viewer_path(ROOM, "v9"))

    async def test_superseded_stop_never_deletes(self, store: InMemorySignalingStore, publisher: PublishSession):
        await publisher.start()
        await store.set(room_path(ROOM), {"publisherId": "newcomer", "status": "active", "createdAt": 2})
        await store.drain()

        await publisher.stop()

        assert (await store.get(room_path(ROOM)))["publisherId"] == "newcomer"
        assert publisher.status == PublishStatus.SUPERSEDED


class TestStop:
    async def test_stop_deletes_owned_room(
        self, store: InMemorySignalingStore, publisher: PublishSession, network: FakeNetwork
    ):
        await publisher.start()
        await add_viewer(store, "v1")
        await store.drain()

        await publisher.stop()

        assert await store.get(room_path(ROOM)) is None
        assert publisher.status == PublishStatus.STOPPED
        assert network.by_label("v1")[0].closed

    async def test_stop_rechecks_owner_before_delete(self, store: InMemorySignalingStore, publisher: PublishSession):
        await publisher.start()
        await store.drain()

        # takeover committed but not yet observed
        await store.set(room_path(ROOM), {"publisherId": "newcomer", "status": "active", "createdAt": 2})
        await publisher.stop()

        assert (await store.get(room_path(ROOM)))["publisherId"] == "newcomer"

    @pytest.mark.parametrize("delay", range(30))
    async def test_stop_racing_takeover_keeps_new_room(
        self, store: InMemorySignalingStore, publisher: PublishSession, link_factory, delay: int
    ):
        await publisher.start()
        await store.drain()
        newcomer = PublishSession(store, ROOM, fake_media(), link_factory=link_factory)

        async def take_over():
            for _ in range(delay):
                await asyncio.sleep(0)
            return await newcomer.start(confirm_takeover=True)

        await asyncio.gather(publisher.stop(), take_over())
        await store.drain()

        assert newcomer.status == PublishStatus.READY
        assert (await store.get(room_path(ROOM)))["publisherId"] == newcomer.session_id
        await newcomer.stop()

    async def test_stop_is_idempotent(self, store: InMemorySignalingStore, publisher: PublishSession):
        await publisher.start()
        await publisher.stop()
        await publisher.stop()

        assert publisher.status == PublishStatus.STOPPED

    async def test_stopped_session_cannot_restart(self, publisher: PublishSession):
        await publisher.start()
        await publisher.stop()

        with pytest.raises(RuntimeError):
            await publisher.start()
