"""1:1 통화 세션 모듈.

같은 통화 ID로 두 참가자가 입장하면 먼저 통화 문서를 만든 쪽이 caller,
나머지가 callee가 됩니다. 두 참가자가 동시에 입장해도 정확히 한 명만
caller가 되도록 "없을 때만 생성" 쓰기로 역할을 결정합니다.

Role Resolution:
    1. 통화 문서 조회 → 있으면 callee
    2. 없으면 자기 토큰으로 create → 성공하면 caller
    3. create가 거절되면 다시 읽어 callerSessionId가 자기 토큰이면 caller,
       아니면 callee
"""
import logging
import uuid
from typing import Callable, List, Optional

from aiortc import MediaStreamTrack

from .media import LocalMedia, MediaSink, RemoteStream
from .negotiation import CandidateInbox
from .peer_link import PeerLink
from .status import CALL_STATE_MAP, CallRole, CallStatus
from ..shared.dto import CallDocument
from ..shared.errors import MediaUnavailableError, SignalingWriteError
from ..signaling.store import (
    SignalingStore,
    Subscription,
    call_path,
    callee_candidates_path,
    caller_candidates_path,
)

logger = logging.getLogger(__name__)


class DirectCallSession:
    """1:1 통화 세션.

    로컬 미디어는 `media`로 직접 넘기거나 `media_factory`로 시작 시점에 엽니다.
    미디어를 열 수 없으면 상태는 failed가 되고 스토어에는 아무것도 쓰지 않습니다.

    Attributes:
        store (SignalingStore): 시그널링 스토어
        call_id (str): 통화 ID
        session_id (str): 이 참가자의 세션 토큰
        role (Optional[CallRole]): 결정된 역할 (시작 전에는 None)
        status (CallStatus): 현재 통화 상태
        remote_stream (Optional[RemoteStream]): 상대방 스트림
    """

    def __init__(
        self,
        store: SignalingStore,
        call_id: str,
        media: Optional[LocalMedia] = None,
        media_factory: Optional[Callable[[], LocalMedia]] = None,
        link_factory: Callable[[str], PeerLink] = PeerLink,
        session_id: Optional[str] = None,
        sink: Optional[MediaSink] = None,
    ):
        if media is None and media_factory is None:
            raise ValueError("media or media_factory is required")
        self.store = store
        self.call_id = call_id
        self.media = media
        self.session_id = session_id or str(uuid.uuid4())
        self.role: Optional[CallRole] = None
        self.status = CallStatus.INITIALIZING
        self.remote_stream: Optional[RemoteStream] = None
        self.sink = sink
        self.on_status_change: Optional[Callable[[CallStatus], None]] = None

        self._media_factory = media_factory
        self._link_factory = link_factory
        self._link: Optional[PeerLink] = None
        self._inbox: Optional[CandidateInbox] = None
        self._stream = RemoteStream()
        self._subs: List[Subscription] = []
        self._outgoing: Optional[str] = None
        self._remote_applied = False
        self._closed = False

    @property
    def link(self) -> Optional[PeerLink]:
        return self._link

    @property
    def closed(self) -> bool:
        return self._closed

    def _set_status(self, status: CallStatus) -> None:
        if self.status == status:
            return
        logger.info(f"[Call] 통화 '{self.call_id}' {self._who} 상태: {self.status.value} -> {status.value}")
        self.status = status
        if self.on_status_change:
            try:
                self.on_status_change(status)
            except Exception as e:
                logger.error(f"[Call] 상태 콜백 오류: {e}", exc_info=True)

    @property
    def _who(self) -> str:
        role = self.role.value if self.role else "?"
        return f"{role}({self.session_id[:8]})"

    # ============================================================
    # 시작
    # ============================================================

    async def start(self) -> CallRole:
        """로컬 미디어를 열고, 역할을 결정한 뒤 협상을 시작합니다.

        Returns:
            CallRole: 결정된 역할

        Raises:
            MediaUnavailableError: 로컬 미디어를 열 수 없을 때 (상태 failed)
        """
        if self._closed or self.role is not None:
            raise RuntimeError(f"Call session {self.session_id} already started or closed")

        if self.media is None:
            try:
                self.media = self._media_factory()
            except MediaUnavailableError:
                self._set_status(CallStatus.FAILED)
                raise

        link = self._link_factory(f"call-{self.session_id}")
        for track in self.media.tracks_for_peer():
            link.add_local_track(track)
        link.on_remote_track(self._on_remote_track)
        link.on_connection_state_changed(self._on_connection_state)
        link.on_candidate_discovered(self._on_local_candidate)
        self._link = link
        self._inbox = CandidateInbox(link, self.session_id)

        self.role = await self._resolve_role()
        logger.info(f"[Call] 통화 '{self.call_id}' 역할 결정: {self._who}")

        if self.role == CallRole.CALLER:
            await self._start_as_caller()
        else:
            await self._start_as_callee()
        return self.role

    async def _resolve_role(self) -> CallRole:
        path = call_path(self.call_id)
        if await self.store.get(path) is not None:
            return CallRole.CALLEE

        try:
            await self.store.create(path, CallDocument(caller_session_id=self.session_id).to_fields())
            return CallRole.CALLER
        except SignalingWriteError as e:
            logger.info(f"[Call] 통화 '{self.call_id}' 생성 경합: {e}")

        current = await self.store.get(path) or {}
        if current.get("callerSessionId") == self.session_id:
            return CallRole.CALLER
        return CallRole.CALLEE

    async def _start_as_caller(self) -> None:
        self._outgoing = caller_candidates_path(self.call_id)

        offer = await self._link.create_offer()
        committed = await self._link.set_local_description(offer)
        if self._closed:
            return
        await self.store.merge(call_path(self.call_id), {"offer": committed})
        logger.info(f"[Call] 통화 '{self.call_id}' offer 전송")

        self._subs.append(await self.store.subscribe_document(
            call_path(self.call_id), self._on_call_change_as_caller
        ))
        self._subs.append(await self.store.subscribe_collection(
            callee_candidates_path(self.call_id), self._on_remote_candidate
        ))

    async def _start_as_callee(self) -> None:
        self._outgoing = callee_candidates_path(self.call_id)

        current = await self.store.get(call_path(self.call_id))
        if current and current.get("offer"):
            await self._accept_offer(current["offer"])

        self._subs.append(await self.store.subscribe_document(
            call_path(self.call_id), self._on_call_change_as_callee
        ))
        self._subs.append(await self.store.subscribe_collection(
            caller_candidates_path(self.call_id), self._on_remote_candidate
        ))

    # ============================================================
    # 스토어 이벤트
    # ============================================================

    async def _on_call_change_as_caller(self, fields: Optional[dict]) -> None:
        if fields is None or self._closed:
            return
        answer = fields.get("answer")
        if not answer or self._remote_applied or self._link.has_remote_description:
            return

        self._remote_applied = True
        try:
            await self._link.set_remote_description(answer)
        except Exception as e:
            logger.error(f"[Call] 통화 '{self.call_id}' answer 적용 실패: {type(e).__name__}: {e}")
            return
        logger.info(f"[Call] 통화 '{self.call_id}' answer 적용")
        await self._inbox.flush()

    async def _on_call_change_as_callee(self, fields: Optional[dict]) -> None:
        if fields is None or self._closed:
            return
        offer = fields.get("offer")
        if offer:
            await self._accept_offer(offer)

    async def _accept_offer(self, offer: dict) -> None:
        if self._remote_applied or self._link.has_remote_description:
            return
        self._remote_applied = True

        try:
            await self._link.set_remote_description(offer)
            await self._inbox.flush()
            answer = await self._link.create_answer()
            committed = await self._link.set_local_description(answer)
        except Exception as e:
            logger.error(f"[Call] 통화 '{self.call_id}' offer 처리 실패: {type(e).__name__}: {e}")
            return

        if self._closed:
            return
        try:
            # caller가 이미 통화를 삭제했으면 문서를 되살리지 않음
            await self.store.update(call_path(self.call_id), {"answer": committed})
        except SignalingWriteError:
            logger.warning(f"[Call] 통화 '{self.call_id}' 문서가 없어 answer를 쓰지 않음")
            return
        logger.info(f"[Call] 통화 '{self.call_id}' answer 전송")

    async def _on_remote_candidate(self, _entry_id: str, candidate: dict) -> None:
        if not self._closed:
            await self._inbox.receive(candidate)

    # ============================================================
    # 링크 이벤트
    # ============================================================

    async def _on_local_candidate(self, candidate: dict) -> None:
        if self._closed or self._outgoing is None:
            return
        await self.store.append(self._outgoing, candidate)

    async def _on_remote_track(self, track: MediaStreamTrack) -> None:
        self._stream.add(track)
        if self.sink is not None:
            self.sink.add(track)
        if self.remote_stream is None:
            self.remote_stream = self._stream

    async def _on_connection_state(self, state: str) -> None:
        status = CALL_STATE_MAP.get(state)
        if status is None or self._closed:
            return
        self._set_status(status)
        if status == CallStatus.CONNECTED and self.sink is not None:
            await self.sink.start()

    # ============================================================
    # 종료
    # ============================================================

    async def leave(self) -> None:
        """통화에서 나갑니다.

        링크를 닫고 로컬 미디어를 정지합니다. caller만 통화 문서와 후보 로그를
        삭제합니다 (best-effort).
        """
        if self._closed:
            return
        self._closed = True

        if self._link is not None:
            try:
                await self._link.close()
            except Exception as e:
                logger.warning(f"[Call] 통화 '{self.call_id}' 링크 종료 오류: {e}")
        if self.media is not None:
            self.media.stop()
        if self.sink is not None:
            await self.sink.stop()

        for sub in self._subs:
            await sub.close()
        self._subs = []

        if self.role == CallRole.CALLER:
            try:
                await self.store.delete(call_path(self.call_id), recursive=True)
                logger.info(f"[Call] 통화 '{self.call_id}' 문서 삭제")
            except Exception as e:
                logger.warning(f"[Call] 통화 '{self.call_id}' 문서 삭제 실패 (무시): {e}")

        logger.info(f"[Call] 통화 '{self.call_id}' 종료: {self._who}")
