"""WebRTC 피어 링크 모듈.

aiortc `RTCPeerConnection` 하나를 감싸 세션 계층이 사용하는 작은 계약
(offer/answer/candidate/콜백)만 노출합니다. 세션 디스크립션과 후보는
브라우저와 같은 dict 형태로 주고받습니다.

Candidate Handling:
    aiortc는 후보를 trickle하지 않고 setLocalDescription 중에 모두 수집해
    SDP에 포함시킵니다. 그래서 set_local_description()이 커밋된 SDP의
    `a=candidate` 라인을 뽑아 후보 발견 콜백으로 하나씩 전달합니다.
    원격 후보의 버퍼링/중복 제거는 세션 쪽 CandidateInbox가 담당합니다.

Examples:
    >>> link = PeerLink(label="viewer-123")
    >>> link.on_candidate_discovered(write_candidate)
    >>> offer = await link.create_offer()
    >>> committed = await link.set_local_description(offer)
    >>> await link.close()
"""
import logging
from typing import Awaitable, Callable, List, Optional

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from .config import ice_config

logger = logging.getLogger(__name__)

CandidateCallback = Callable[[dict], Awaitable[None]]
TrackCallback = Callable[[MediaStreamTrack], Awaitable[None]]
StateCallback = Callable[[str], Awaitable[None]]


def build_rtc_configuration() -> RTCConfiguration:
    """설정된 STUN/TURN 서버로 RTCConfiguration을 만듭니다."""
    ice_servers = []

    # STUN 서버 추가 (커스텀 + Google 백업)
    if ice_config.STUN_SERVER_URL:
        ice_servers.append(RTCIceServer(urls=[ice_config.STUN_SERVER_URL]))
    ice_servers.append(RTCIceServer(urls=list(ice_config.DEFAULT_STUN_SERVERS)))

    # TURN 서버 추가
    if ice_config.has_turn_server:
        ice_servers.append(RTCIceServer(
            urls=[ice_config.TURN_SERVER_URL],
            username=ice_config.TURN_USERNAME,
            credential=ice_config.TURN_CREDENTIAL
        ))
        logger.debug(f"[PeerLink] TURN 서버 사용: {ice_config.TURN_SERVER_URL}")

    return RTCConfiguration(iceServers=ice_servers)


def candidates_from_sdp(sdp: str) -> List[dict]:
    """SDP 본문에서 미디어 섹션별 `a=candidate` 라인을 추출합니다.

    Returns:
        List[dict]: {"candidate", "sdpMid", "sdpMLineIndex"} 목록
    """
    found = []
    mline_index = -1
    mid: Optional[str] = None
    section: List[str] = []

    def flush():
        for line in section:
            found.append({"candidate": line, "sdpMid": mid, "sdpMLineIndex": mline_index})

    for raw in sdp.splitlines():
        line = raw.strip()
        if line.startswith("m="):
            flush()
            section = []
            mline_index += 1
            mid = None
        elif line.startswith("a=mid:"):
            mid = line[len("a=mid:"):]
        elif line.startswith("a=candidate:") and mline_index >= 0:
            section.append(line[len("a="):])
    flush()
    return found


class PeerLink:
    """피어 하나와의 미디어 세션.

    Attributes:
        label (str): 로그용 식별자
        pc (RTCPeerConnection): 내부 aiortc 피어 연결
    """

    def __init__(self, label: str = "", configuration: Optional[RTCConfiguration] = None):
        self.label = label
        self.pc = RTCPeerConnection(configuration=configuration or build_rtc_configuration())
        self._on_candidate: Optional[CandidateCallback] = None
        self._on_track: Optional[TrackCallback] = None
        self._on_state: Optional[StateCallback] = None

        pc = self.pc

        @pc.on("icecandidate")
        async def on_ice_candidate(candidate):
            if candidate:
                await self._emit_candidate({
                    "candidate": "candidate:" + candidate_to_sdp(candidate),
                    "sdpMid": candidate.sdpMid,
                    "sdpMLineIndex": candidate.sdpMLineIndex,
                })

        @pc.on("track")
        async def on_track(track: MediaStreamTrack):
            logger.info(f"[PeerLink] {self.label[:8]} {track.kind} 트랙 수신")
            if self._on_track:
                await self._on_track(track)

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.info(f"[PeerLink] {self.label[:8]} 연결 상태: {pc.connectionState}")
            if self._on_state:
                await self._on_state(pc.connectionState)

    # ---- 콜백 등록 ----

    def on_candidate_discovered(self, callback: CandidateCallback) -> None:
        self._on_candidate = callback

    def on_remote_track(self, callback: TrackCallback) -> None:
        self._on_track = callback

    def on_connection_state_changed(self, callback: StateCallback) -> None:
        self._on_state = callback

    # ---- 상태 ----

    @property
    def has_remote_description(self) -> bool:
        return self.pc.remoteDescription is not None

    @property
    def connection_state(self) -> str:
        return self.pc.connectionState

    # ---- 협상 ----

    def add_local_track(self, track: MediaStreamTrack) -> None:
        self.pc.addTrack(track)

    async def create_offer(self) -> dict:
        offer = await self.pc.createOffer()
        return {"type": offer.type, "sdp": offer.sdp}

    async def create_answer(self) -> dict:
        answer = await self.pc.createAnswer()
        return {"type": answer.type, "sdp": answer.sdp}

    async def set_local_description(self, description: dict) -> dict:
        """로컬 디스크립션을 커밋하고, 후보가 포함된 최종 디스크립션을 반환합니다."""
        await self.pc.setLocalDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )
        local = self.pc.localDescription

        candidates = candidates_from_sdp(local.sdp)
        logger.info(
            f"[PeerLink] {self.label[:8]} {local.type} 커밋: "
            f"후보수={len(candidates)}, gathering={self.pc.iceGatheringState}"
        )
        for candidate in candidates:
            await self._emit_candidate(candidate)

        return {"type": local.type, "sdp": local.sdp}

    async def set_remote_description(self, description: dict) -> None:
        """원격 디스크립션을 설정합니다.

        Raises:
            RuntimeError: 원격 디스크립션이 이미 설정된 경우
        """
        if self.has_remote_description:
            raise RuntimeError(f"Remote description already set for {self.label}")
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_remote_candidate(self, candidate: dict) -> None:
        """원격 후보를 적용합니다. 빈 후보(end-of-candidates)는 무시합니다."""
        text = candidate.get("candidate") or ""
        if text.startswith("candidate:"):
            text = text.split(":", 1)[1]
        if not text:
            return

        ice = candidate_from_sdp(text)
        ice.sdpMid = candidate.get("sdpMid")
        ice.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await self.pc.addIceCandidate(ice)

    async def close(self) -> None:
        await self.pc.close()

    async def _emit_candidate(self, candidate: dict) -> None:
        if self._on_candidate:
            await self._on_candidate(candidate)
        else:
            logger.warning(f"[PeerLink] {self.label[:8]} 후보 콜백이 None입니다!")
