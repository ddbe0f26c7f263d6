"""서버 호스팅 세션 레지스트리.

서버 프로세스가 직접 송출자/구독자/통화 참가자로 참여하는 세션들을 보관합니다.
HTTP 라우트는 이 레지스트리를 통해 세션을 시작/조회/종료하고, 서버 종료 시
`cleanup_all()`이 모든 세션을 정리합니다.
"""
import logging
from typing import Callable, Dict, Optional

from .direct_call import DirectCallSession
from .media import MediaSink, open_local_media
from .peer_link import PeerLink
from .publish import PublishSession
from .status import PublishStatus
from .subscribe import SubscribeSession
from ..shared.errors import CallNotFoundError, RoomConflictError
from ..signaling.store import SignalingStore

logger = logging.getLogger(__name__)


class SessionRegistry:
    """서버가 호스팅하는 세션 모음.

    Attributes:
        store (SignalingStore): 모든 세션이 공유하는 시그널링 스토어
        publishers (Dict[str, PublishSession]): 룸 ID → 송출 세션
        viewers (Dict[str, SubscribeSession]): 구독자 ID → 구독 세션
        calls (Dict[str, DirectCallSession]): 통화 ID → 통화 세션

    Examples:
        >>> registry = SessionRegistry(store)
        >>> session = await registry.start_broadcast("hall", source="/media/service.mp4")
        >>> viewer = await registry.join_view("hall")
        >>> await registry.cleanup_all()
    """

    def __init__(self, store: SignalingStore, link_factory: Callable[[str], PeerLink] = PeerLink):
        self.store = store
        self.publishers: Dict[str, PublishSession] = {}
        self.viewers: Dict[str, SubscribeSession] = {}
        self.calls: Dict[str, DirectCallSession] = {}
        self._link_factory = link_factory

    # ============================================================
    # 송출
    # ============================================================

    async def start_broadcast(
        self,
        room_id: str,
        source: str,
        media_format: Optional[str] = None,
        confirm_takeover: bool = False,
    ) -> PublishSession:
        """룸 송출을 시작하거나, 충돌 대기 중인 송출의 인계를 확정합니다.

        Raises:
            RoomConflictError: 다른 송출자가 활성 상태이고 인계 확인이 없을 때
            MediaUnavailableError: 미디어 소스를 열 수 없을 때
        """
        session = self.publishers.get(room_id)
        if session is not None and session.status == PublishStatus.READY:
            return session

        if session is None or session.status != PublishStatus.CONFLICT:
            if session is not None:
                await self.stop_broadcast(room_id)
            media = open_local_media(source, media_format, fanout=True)
            session = PublishSession(self.store, room_id, media, link_factory=self._link_factory)
            self.publishers[room_id] = session

        try:
            status = await session.start(confirm_takeover=confirm_takeover)
        except Exception:
            await self.stop_broadcast(room_id)
            raise

        if status == PublishStatus.CONFLICT:
            raise RoomConflictError(room_id, session.conflict_owner)
        return session

    async def stop_broadcast(self, room_id: str) -> bool:
        session = self.publishers.pop(room_id, None)
        if session is None:
            return False
        if session.status == PublishStatus.CONFLICT:
            await session.abandon()
        else:
            await session.stop()
        session.media.stop()
        return True

    def get_broadcast(self, room_id: str) -> Optional[PublishSession]:
        return self.publishers.get(room_id)

    # ============================================================
    # 구독
    # ============================================================

    async def join_view(self, room_id: str, record_to: Optional[str] = None) -> SubscribeSession:
        """호스팅 구독자로 룸에 입장합니다.

        Raises:
            RoomNotFoundError: 룸이 없거나 비활성일 때
        """
        session = SubscribeSession(
            self.store, room_id, link_factory=self._link_factory, sink=MediaSink(record_to)
        )
        try:
            await session.join()
        except Exception:
            await session.leave()
            raise
        self.viewers[session.viewer_id] = session
        return session

    async def leave_view(self, viewer_id: str) -> bool:
        session = self.viewers.pop(viewer_id, None)
        if session is None:
            return False
        await session.leave()
        return True

    def get_view(self, viewer_id: str) -> Optional[SubscribeSession]:
        return self.viewers.get(viewer_id)

    # ============================================================
    # 1:1 통화
    # ============================================================

    async def join_call(
        self,
        call_id: str,
        source: str,
        media_format: Optional[str] = None,
        call_type: str = "video",
        record_to: Optional[str] = None,
    ) -> DirectCallSession:
        """호스팅 참가자로 통화에 입장합니다. 이미 참가 중이면 기존 세션을 반환합니다."""
        session = self.calls.get(call_id)
        if session is not None and not session.closed:
            return session

        session = DirectCallSession(
            self.store,
            call_id,
            media_factory=lambda: open_local_media(source, media_format, kind=call_type),
            link_factory=self._link_factory,
            sink=MediaSink(record_to),
        )
        try:
            await session.start()
        except Exception:
            await session.leave()
            raise
        self.calls[call_id] = session
        return session

    async def leave_call(self, call_id: str) -> bool:
        session = self.calls.pop(call_id, None)
        if session is None:
            return False
        await session.leave()
        return True

    def get_call(self, call_id: str) -> DirectCallSession:
        """호스팅 중인 통화 세션을 반환합니다.

        Raises:
            CallNotFoundError: 호스팅 중인 통화가 아닐 때
        """
        session = self.calls.get(call_id)
        if session is None:
            raise CallNotFoundError(call_id)
        return session

    # ============================================================
    # 정리
    # ============================================================

    async def cleanup_all(self) -> None:
        """모든 호스팅 세션을 종료합니다. 서버 종료 시 lifespan에서 호출됩니다."""
        total = len(self.publishers) + len(self.viewers) + len(self.calls)
        if total == 0:
            return

        for viewer_id in list(self.viewers):
            await self._safely(self.leave_view, viewer_id)
        for call_id in list(self.calls):
            await self._safely(self.leave_call, call_id)
        for room_id in list(self.publishers):
            await self._safely(self.stop_broadcast, room_id)

        logger.info(f"[Registry] 호스팅 세션 {total}개 정리 완료")

    @staticmethod
    async def _safely(close, key: str) -> None:
        try:
            await close(key)
        except Exception as e:
            logger.warning(f"[Registry] 세션 {key[:8]} 정리 실패: {e}")
