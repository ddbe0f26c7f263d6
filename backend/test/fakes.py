"""Test doubles for peer links and media tracks.

FakePeerLink implements the same surface as relaycast.webrtc.PeerLink but
without ICE or RTP. Two links "connect" once each holds the other's session
description, which is how the sessions observe connected state in tests.
"""

import asyncio
import uuid
from typing import Dict, List, Optional

from aiortc.mediastreams import MediaStreamError

from relaycast.webrtc import LocalMedia


class FakeTrack:
    def __init__(self, kind: str):
        self.kind = kind
        self.id = uuid.uuid4().hex
        self.stopped = False

    async def recv(self):
        raise MediaStreamError

    def stop(self):
        self.stopped = True


def fake_media(kinds=("audio", "video")) -> LocalMedia:
    return LocalMedia([FakeTrack(kind) for kind in kinds])


def _sdp_kinds(sdp: str) -> List[str]:
    return [line[2:] for line in sdp.split("\r\n") if line.startswith("m=")]


def _sdp_link_id(sdp: str) -> Optional[str]:
    for line in sdp.split("\r\n"):
        if line.startswith("a=fake-link:"):
            return line[len("a=fake-link:"):]
    return None


class FakeNetwork:
    """Registry of fake links so paired links can find each other."""

    def __init__(self):
        self.links: Dict[str, "FakePeerLink"] = {}
        self.created: List["FakePeerLink"] = []
        # When set, create_offer/create_answer wait on it (holds a session mid-negotiation)
        self.gate: Optional[asyncio.Event] = None
        self.held = 0

    def create(self, label: str) -> "FakePeerLink":
        link = FakePeerLink(label, self)
        self.links[link.link_id] = link
        self.created.append(link)
        return link

    def by_label(self, label: str) -> List["FakePeerLink"]:
        return [link for link in self.created if link.label == label]


class FakePeerLink:
    candidates_per_description = 2

    def __init__(self, label: str, network: FakeNetwork):
        self.label = label
        self.network = network
        self.link_id = uuid.uuid4().hex
        self.local_tracks: list = []
        self.local_description: Optional[dict] = None
        self.remote_description: Optional[dict] = None
        self.remote_candidates: List[dict] = []
        self.state = "new"
        self.closed = False
        self.offers_created = 0
        self._on_candidate = None
        self._on_track = None
        self._on_state = None

    # ---- callbacks ----

    def on_candidate_discovered(self, callback):
        self._on_candidate = callback

    def on_remote_track(self, callback):
        self._on_track = callback

    def on_connection_state_changed(self, callback):
        self._on_state = callback

    # ---- state ----

    @property
    def has_remote_description(self) -> bool:
        return self.remote_description is not None

    @property
    def connection_state(self) -> str:
        return self.state

    @property
    def peer(self) -> Optional["FakePeerLink"]:
        if self.remote_description is None:
            return None
        return self.network.links.get(_sdp_link_id(self.remote_description["sdp"]))

    @property
    def _complete(self) -> bool:
        return self.local_description is not None and self.remote_description is not None

    # ---- negotiation ----

    def add_local_track(self, track):
        self.local_tracks.append(track)

    def _sdp(self) -> str:
        lines = ["v=0", f"a=fake-link:{self.link_id}"]
        lines.extend(f"m={track.kind}" for track in self.local_tracks)
        return "\r\n".join(lines)

    async def create_offer(self) -> dict:
        await self._hold()
        await asyncio.sleep(0)
        self.offers_created += 1
        return {"type": "offer", "sdp": self._sdp()}

    async def create_answer(self) -> dict:
        await self._hold()
        await asyncio.sleep(0)
        if self.remote_description is None:
            raise RuntimeError("createAnswer without remote offer")
        return {"type": "answer", "sdp": self._sdp()}

    async def set_local_description(self, description: dict) -> dict:
        await asyncio.sleep(0)
        self.local_description = dict(description)
        for i in range(self.candidates_per_description):
            await self._emit({
                "candidate": f"candidate:{self.link_id[:8]}{i} 1 udp 2122260223 192.0.2.{i + 1} {50000 + i} typ host",
                "sdpMid": "0",
                "sdpMLineIndex": 0,
            })
        await self._maybe_connect()
        return dict(description)

    async def set_remote_description(self, description: dict) -> None:
        await asyncio.sleep(0)
        if self.remote_description is not None:
            raise RuntimeError("remote description already set")
        self.remote_description = dict(description)
        for kind in _sdp_kinds(description["sdp"]):
            if self._on_track:
                await self._on_track(FakeTrack(kind))
        await self._maybe_connect()

    async def add_remote_candidate(self, candidate: dict) -> None:
        await asyncio.sleep(0)
        if "bogus" in candidate.get("candidate", ""):
            raise ValueError("unparseable candidate")
        self.remote_candidates.append(candidate)

    async def close(self) -> None:
        if self.closed:
            return
        peer = self.peer
        await self._set_state("closed")
        self.closed = True
        if peer is not None and peer.state == "connected":
            await peer._set_state("disconnected")

    # ---- helpers ----

    async def _hold(self):
        gate = self.network.gate
        if gate is not None and not gate.is_set():
            self.network.held += 1
            await gate.wait()
        if self.closed:
            raise RuntimeError("peer connection is closed")

    async def fail(self) -> None:
        await self._set_state("failed")

    async def _emit(self, candidate: dict):
        if self._on_candidate:
            await self._on_candidate(candidate)

    async def _set_state(self, state: str):
        if self.closed or self.state == state:
            return
        self.state = state
        if self._on_state:
            await self._on_state(state)

    async def _maybe_connect(self):
        peer = self.peer
        if peer is None or peer.peer is not self:
            return
        if not (self._complete and peer._complete):
            return
        for link in (self, peer):
            if link.state == "new":
                await link._set_state("connecting")
        for link in (self, peer):
            if link.state == "connecting":
                await link._set_state("connected")


async def wait_until(predicate, ticks: int = 500):
    """Yield to the event loop until `predicate()` holds."""
    for _ in range(ticks):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")
