"""방송 구독 세션 모듈.

구독자는 룸을 한 번 조회해 활성 여부를 확인한 뒤, 자기 presence 레코드를
만들고 송출자의 offer를 기다립니다. offer가 오면 answer를 같은 레코드에
병합하고, 송출자 후보 로그를 소비합니다.

상태 흐름:
    connecting → presence_created → offer_received → answer_written → connected
    (룸이 없으면 not_found, 연결이 끊기면 disconnected, 퇴장 시 left)
"""
import logging
import uuid
from typing import Callable, List, Optional

from aiortc import MediaStreamTrack

from .media import MediaSink, RemoteStream
from .negotiation import CandidateInbox
from .peer_link import PeerLink
from .status import ViewerStatus
from ..shared.dto import RoomDocument, ViewerRecord, now_ms
from ..shared.errors import RoomNotFoundError, SignalingWriteError
from ..signaling.store import (
    SignalingStore,
    Subscription,
    publisher_candidates_path,
    room_path,
    viewer_candidates_path,
    viewer_path,
)

logger = logging.getLogger(__name__)


class SubscribeSession:
    """룸 하나에 대한 구독 세션.

    Attributes:
        store (SignalingStore): 시그널링 스토어
        room_id (str): 룸 ID
        viewer_id (str): 이 구독자의 ID (presence 레코드 문서 ID)
        status (ViewerStatus): 현재 상태
        remote_stream (Optional[RemoteStream]): 첫 트랙 수신 후 설정되는 원격 스트림
        sink (Optional[MediaSink]): 수신 트랙 소비기
        on_status_change (Optional[Callable]): 상태 변경 콜백
    """

    def __init__(
        self,
        store: SignalingStore,
        room_id: str,
        link_factory: Callable[[str], PeerLink] = PeerLink,
        viewer_id: Optional[str] = None,
        sink: Optional[MediaSink] = None,
    ):
        self.store = store
        self.room_id = room_id
        self.viewer_id = viewer_id or str(uuid.uuid4())
        self.status = ViewerStatus.CONNECTING
        self.remote_stream: Optional[RemoteStream] = None
        self.sink = sink
        self.on_status_change: Optional[Callable[[ViewerStatus], None]] = None

        self._link_factory = link_factory
        self._link: Optional[PeerLink] = None
        self._inbox: Optional[CandidateInbox] = None
        self._stream = RemoteStream()
        self._subs: List[Subscription] = []
        self._present = False
        self._offer_applied = False
        self._left = False

    @property
    def link(self) -> Optional[PeerLink]:
        return self._link

    def _set_status(self, status: ViewerStatus) -> None:
        if self.status == status:
            return
        logger.info(f"[Subscribe] 구독자 {self.viewer_id[:8]} 상태: {self.status.value} -> {status.value}")
        self.status = status
        if self.on_status_change:
            try:
                self.on_status_change(status)
            except Exception as e:
                logger.error(f"[Subscribe] 상태 콜백 오류: {e}", exc_info=True)

    async def join(self) -> None:
        """룸에 입장합니다.

        Raises:
            RoomNotFoundError: 룸이 없거나 활성 상태가 아닐 때 (스토어에 쓰지 않음)
        """
        if self._left or self._present:
            raise RuntimeError(f"Viewer session {self.viewer_id} already joined or left")

        current = await self.store.get(room_path(self.room_id))
        if current is None or not RoomDocument.model_validate(current).is_active:
            logger.warning(f"[Subscribe] 룸 '{self.room_id}' 없음 또는 비활성")
            self._set_status(ViewerStatus.NOT_FOUND)
            raise RoomNotFoundError(self.room_id)

        presence = ViewerRecord(id=self.viewer_id, is_active=True, joined_at=now_ms())
        await self.store.set(viewer_path(self.room_id, self.viewer_id), presence.to_fields())
        self._present = True
        self._set_status(ViewerStatus.PRESENCE_CREATED)

        link = self._link_factory(self.viewer_id)
        link.on_candidate_discovered(self._on_local_candidate)
        link.on_remote_track(self._on_remote_track)
        link.on_connection_state_changed(self._on_connection_state)
        self._link = link
        self._inbox = CandidateInbox(link, self.viewer_id)

        self._subs.append(await self.store.subscribe_document(
            viewer_path(self.room_id, self.viewer_id), self._on_record_change
        ))
        self._subs.append(await self.store.subscribe_collection(
            publisher_candidates_path(self.room_id, self.viewer_id), self._on_publisher_candidate
        ))
        logger.info(f"[Subscribe] 룸 '{self.room_id}' 입장: 구독자 {self.viewer_id[:8]}, offer 대기")

    # ---- 스토어 이벤트 ----

    async def _on_record_change(self, record: Optional[dict]) -> None:
        if record is None or self._left:
            return
        offer = record.get("offer")
        if not offer or self._offer_applied or self._link.has_remote_description:
            return

        self._offer_applied = True
        self._set_status(ViewerStatus.OFFER_RECEIVED)
        link = self._link
        try:
            await link.set_remote_description(offer)
            await self._inbox.flush()
            answer = await link.create_answer()
            committed = await link.set_local_description(answer)
        except Exception as e:
            # 처리 도중 leave()가 링크를 닫은 경우
            if self._left:
                return
            logger.error(f"[Subscribe] 구독자 {self.viewer_id[:8]} offer 처리 실패: {type(e).__name__}: {e}")
            self._set_status(ViewerStatus.ERROR)
            return

        if self._left:
            return
        try:
            await self.store.update(viewer_path(self.room_id, self.viewer_id), {"answer": committed})
        except SignalingWriteError:
            logger.warning(f"[Subscribe] 구독자 {self.viewer_id[:8]} 레코드가 없어 answer를 쓰지 않음")
            return
        logger.info(f"[Subscribe] 구독자 {self.viewer_id[:8]} answer 전송")
        if self.status == ViewerStatus.OFFER_RECEIVED:
            self._set_status(ViewerStatus.ANSWER_WRITTEN)

    async def _on_publisher_candidate(self, _entry_id: str, candidate: dict) -> None:
        if not self._left:
            await self._inbox.receive(candidate)

    # ---- 링크 이벤트 ----

    async def _on_local_candidate(self, candidate: dict) -> None:
        if self._left:
            return
        await self.store.append(viewer_candidates_path(self.room_id, self.viewer_id), candidate)

    async def _on_remote_track(self, track: MediaStreamTrack) -> None:
        self._stream.add(track)
        if self.sink is not None:
            self.sink.add(track)
        if self.remote_stream is None:
            self.remote_stream = self._stream
            logger.info(f"[Subscribe] 구독자 {self.viewer_id[:8]} 원격 스트림 수신 시작")

    async def _on_connection_state(self, state: str) -> None:
        if self._left:
            return
        if state == "connected":
            self._set_status(ViewerStatus.CONNECTED)
            if self.sink is not None:
                await self.sink.start()
        elif state in ("disconnected", "failed"):
            self._set_status(ViewerStatus.DISCONNECTED)

    # ---- 퇴장 ----

    async def leave(self) -> None:
        """퇴장합니다. 링크를 닫고 자기 레코드(후보 로그 포함)를 삭제합니다."""
        if self._left:
            return
        self._left = True

        if self._link is not None:
            try:
                await self._link.close()
            except Exception as e:
                logger.warning(f"[Subscribe] 구독자 {self.viewer_id[:8]} 링크 종료 오류: {e}")
        if self.sink is not None:
            await self.sink.stop()

        if self._present:
            try:
                await self.store.delete(viewer_path(self.room_id, self.viewer_id), recursive=True)
            except Exception as e:
                logger.warning(f"[Subscribe] 구독자 {self.viewer_id[:8]} 레코드 삭제 실패 (무시): {e}")

        for sub in self._subs:
            await sub.close()
        self._subs = []

        if self.status != ViewerStatus.NOT_FOUND:
            self._set_status(ViewerStatus.LEFT)
        logger.info(f"[Subscribe] 룸 '{self.room_id}' 퇴장: 구독자 {self.viewer_id[:8]}")
