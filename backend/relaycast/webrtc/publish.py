"""방송 송출 세션 모듈.

송출자 하나가 룸을 점유하고, 룸에 들어오는 구독자마다 PeerLink를 하나씩
만들어 offer/answer를 교환합니다 (1:N 팬아웃, 미디어는 P2P로 직접 전송).

Ownership:
    스토어에는 잠금이 없으므로 룸 소유권은 "룸 문서가 현재 소유자를 스스로
    기술한다"는 규칙으로 정합니다. 나중에 쓴 쪽이 이기고, 진 쪽은 룸 문서
    구독으로 publisherId가 바뀐 것을 보고 스스로 물러납니다 (superseded).
    물러난 세션은 새 소유자의 룸 문서를 절대 삭제하지 않습니다.

Signaling Flow (구독자 1명 기준):
    1. 구독자가 rooms/{room}/viewers/{viewer}에 presence 레코드 생성
    2. 송출자가 PeerLink 생성, 로컬 트랙 추가, offer 커밋 후 레코드에 병합
    3. 구독자가 answer를 같은 레코드에 병합
    4. 송출자가 answer 적용, 양쪽 후보 로그를 서로 소비

Examples:
    >>> session = PublishSession(store, "big-church", media)
    >>> status = await session.start()
    >>> if status == PublishStatus.CONFLICT:
    ...     status = await session.confirm_takeover()
    >>> print(session.viewer_count)
    >>> await session.stop()
"""
import logging
import uuid
from typing import Callable, Dict, List, Optional, Set

from .media import LocalMedia
from .negotiation import CandidateInbox
from .peer_link import PeerLink
from .status import PublishStatus
from ..shared.dto import RoomDocument
from ..shared.errors import SignalingWriteError
from ..signaling.store import (
    SignalingStore,
    Subscription,
    publisher_candidates_path,
    room_path,
    viewer_candidates_path,
    viewer_path,
    viewers_path,
)

logger = logging.getLogger(__name__)


class PublishSession:
    """룸 하나에 대한 송출 세션.

    Attributes:
        store (SignalingStore): 시그널링 스토어
        room_id (str): 룸 ID
        media (LocalMedia): 송출할 로컬 미디어 (세션이 정지시키지 않음)
        session_id (str): 이 송출자 세대의 토큰 (룸 문서의 publisherId)
        status (PublishStatus): 현재 상태
        conflict_owner (Optional[str]): 충돌 시 현재 소유자 토큰
        on_status_change (Optional[Callable]): 상태 변경 콜백
    """

    def __init__(
        self,
        store: SignalingStore,
        room_id: str,
        media: LocalMedia,
        link_factory: Callable[[str], PeerLink] = PeerLink,
        session_id: Optional[str] = None,
    ):
        self.store = store
        self.room_id = room_id
        self.media = media
        self.session_id = session_id or str(uuid.uuid4())
        self.status = PublishStatus.INITIALIZING
        self.conflict_owner: Optional[str] = None
        self.on_status_change: Optional[Callable[[PublishStatus], None]] = None

        self._link_factory = link_factory

        # viewer_id -> PeerLink
        self._links: Dict[str, PeerLink] = {}
        # viewer_id -> CandidateInbox
        self._inboxes: Dict[str, CandidateInbox] = {}
        # viewer_id -> 구독자별 스토어 구독 (answer, 구독자 후보)
        self._viewer_subs: Dict[str, List[Subscription]] = {}
        self._answered: Set[str] = set()

        self._room_sub: Optional[Subscription] = None
        self._viewers_sub: Optional[Subscription] = None
        self._claimed = False
        self._superseded = False
        self._stopped = False

    @property
    def viewer_count(self) -> int:
        """현재 추적 중인 구독자 수."""
        return len(self._links)

    @property
    def viewer_ids(self) -> List[str]:
        return list(self._links)

    @property
    def superseded(self) -> bool:
        return self._superseded

    @property
    def _writable(self) -> bool:
        return self._claimed and not self._superseded and not self._stopped

    def _set_status(self, status: PublishStatus) -> None:
        if self.status == status:
            return
        logger.info(f"[Publish] 룸 '{self.room_id}' 송출자 {self.session_id[:8]} 상태: {self.status.value} -> {status.value}")
        self.status = status
        if self.on_status_change:
            try:
                self.on_status_change(status)
            except Exception as e:
                logger.error(f"[Publish] 상태 콜백 오류: {e}", exc_info=True)

    # ============================================================
    # 시작 / 인계
    # ============================================================

    async def start(self, confirm_takeover: bool = False) -> PublishStatus:
        """룸을 점유하고 구독자 수신을 시작합니다.

        사전 조회에서 다른 송출자가 활성 상태로 룸을 점유 중이면 아무것도 쓰지
        않고 CONFLICT를 반환합니다. 호출자가 `confirm_takeover=True`로 다시
        호출하면 룸 문서를 덮어써서 인계합니다.

        Args:
            confirm_takeover: 충돌이 있어도 룸을 인계할지 여부

        Returns:
            PublishStatus: READY 또는 CONFLICT

        Raises:
            RuntimeError: 이미 정지되었거나 밀려난 세션에서 호출한 경우
        """
        if self._stopped or self._superseded:
            raise RuntimeError(f"Publish session {self.session_id} is no longer usable")
        if self._claimed:
            return self.status

        if not confirm_takeover:
            current = await self.store.get(room_path(self.room_id))
            if current is not None:
                room = RoomDocument.model_validate(current)
                if room.is_active and room.publisher_id and room.publisher_id != self.session_id:
                    self.conflict_owner = room.publisher_id
                    logger.warning(
                        f"[Publish] 룸 '{self.room_id}' 이미 송출 중 (소유자 {room.publisher_id[:8]}), 인계 확인 필요"
                    )
                    self._set_status(PublishStatus.CONFLICT)
                    return self.status

        await self._claim()
        return self.status

    async def confirm_takeover(self) -> PublishStatus:
        """충돌 상태에서 룸 인계를 확정합니다."""
        return await self.start(confirm_takeover=True)

    async def abandon(self) -> None:
        """충돌 상태에서 송출을 포기합니다. 스토어에는 아무것도 쓰지 않습니다."""
        if self._claimed:
            raise RuntimeError("Cannot abandon a claimed room, use stop()")
        self._stopped = True
        self._set_status(PublishStatus.STOPPED)

    async def _claim(self) -> None:
        room = RoomDocument(publisher_id=self.session_id, status="active")
        try:
            # Blind overwrite: last writer wins
            await self.store.set(room_path(self.room_id), room.to_fields())
        except Exception as e:
            logger.error(f"[Publish] 룸 '{self.room_id}' 생성 실패: {e}")
            self._set_status(PublishStatus.ERROR)
            raise

        self._claimed = True
        logger.info(f"[Publish] 룸 '{self.room_id}' 점유: 송출자 {self.session_id[:8]}")

        self._room_sub = await self.store.subscribe_document(
            room_path(self.room_id), self._on_room_change
        )
        self._viewers_sub = await self.store.subscribe_collection(
            viewers_path(self.room_id), self._on_viewer_added, self._on_viewer_removed
        )
        # 구독 등록 중에 이미 밀려났을 수 있음
        if self._superseded:
            await self._close_room_subscriptions()
        else:
            self._set_status(PublishStatus.READY)

    # ============================================================
    # 소유권 상실 감지
    # ============================================================

    async def _on_room_change(self, fields: Optional[dict]) -> None:
        if fields is None or not self._writable:
            return
        owner = fields.get("publisherId")
        if owner and owner != self.session_id:
            await self._handle_superseded(owner)

    async def _handle_superseded(self, new_owner: str) -> None:
        self._superseded = True
        logger.warning(
            f"[Publish] 룸 '{self.room_id}' 다른 송출자({new_owner[:8]})가 인계함, "
            f"송출자 {self.session_id[:8]} 연결 {len(self._links)}개 종료"
        )
        await self._drop_all_viewers()
        await self._close_room_subscriptions()
        self._set_status(PublishStatus.SUPERSEDED)

    # ============================================================
    # 구독자 수신
    # ============================================================

    async def _on_viewer_added(self, viewer_id: str, fields: dict) -> None:
        if not self._writable or viewer_id in self._links:
            return

        link = self._link_factory(viewer_id)
        self._links[viewer_id] = link
        inbox = CandidateInbox(link, viewer_id)
        self._inboxes[viewer_id] = inbox
        self._viewer_subs[viewer_id] = []
        logger.info(f"[Publish] 룸 '{self.room_id}' 새 구독자 {viewer_id[:8]} (총 {self.viewer_count}명)")

        for track in self.media.tracks_for_peer():
            link.add_local_track(track)

        outgoing = publisher_candidates_path(self.room_id, viewer_id)

        async def on_candidate(candidate: dict):
            if self._writable and self._links.get(viewer_id) is link:
                await self.store.append(outgoing, candidate)

        link.on_candidate_discovered(on_candidate)

        try:
            offer = await link.create_offer()
            committed = await link.set_local_description(offer)
        except Exception as e:
            logger.error(f"[Publish] 구독자 {viewer_id[:8]} offer 생성 실패: {type(e).__name__}: {e}")
            await self._drop_viewer(viewer_id)
            return

        if not self._is_current(viewer_id, link):
            return

        # update: 이미 퇴장한 구독자의 레코드를 되살리지 않음
        # 이전 송출자 세대의 answer는 이 offer와 짝이 아니므로 비움
        try:
            await self.store.update(
                viewer_path(self.room_id, viewer_id), {"offer": committed, "answer": None}
            )
        except SignalingWriteError:
            logger.info(f"[Publish] 구독자 {viewer_id[:8]} offer 전송 전에 퇴장함")
            await self._drop_viewer(viewer_id)
            # 레코드 삭제 이후에 쓴 송출자 후보 로그 정리
            try:
                await self.store.delete(outgoing, recursive=True)
            except Exception as e:
                logger.warning(f"[Publish] 구독자 {viewer_id[:8]} 후보 로그 정리 실패 (무시): {e}")
            return
        logger.info(f"[Publish] 구독자 {viewer_id[:8]} offer 전송")

        async def on_record(record: Optional[dict]):
            await self._on_viewer_record(viewer_id, link, record)

        async def on_viewer_candidate(_entry_id: str, candidate: dict):
            if self._is_current(viewer_id, link):
                await inbox.receive(candidate)

        await self._add_viewer_subscription(
            viewer_id, link,
            await self.store.subscribe_document(viewer_path(self.room_id, viewer_id), on_record),
        )
        await self._add_viewer_subscription(
            viewer_id, link,
            await self.store.subscribe_collection(
                viewer_candidates_path(self.room_id, viewer_id), on_viewer_candidate
            ),
        )

    async def _add_viewer_subscription(self, viewer_id: str, link: PeerLink, sub: Subscription) -> None:
        if self._is_current(viewer_id, link):
            self._viewer_subs[viewer_id].append(sub)
        else:
            await sub.close()

    def _is_current(self, viewer_id: str, link: PeerLink) -> bool:
        return self._writable and self._links.get(viewer_id) is link

    async def _on_viewer_record(self, viewer_id: str, link: PeerLink, record: Optional[dict]) -> None:
        if record is None or not self._is_current(viewer_id, link):
            return
        answer = record.get("answer")
        if not answer or viewer_id in self._answered or link.has_remote_description:
            return

        self._answered.add(viewer_id)
        try:
            await link.set_remote_description(answer)
        except Exception as e:
            logger.error(f"[Publish] 구독자 {viewer_id[:8]} answer 적용 실패: {type(e).__name__}: {e}")
            return
        logger.info(f"[Publish] 구독자 {viewer_id[:8]} answer 적용")
        await self._inboxes[viewer_id].flush()

    async def _on_viewer_removed(self, viewer_id: str) -> None:
        if viewer_id in self._links:
            logger.info(f"[Publish] 룸 '{self.room_id}' 구독자 {viewer_id[:8]} 퇴장")
        await self._drop_viewer(viewer_id)

    async def _drop_viewer(self, viewer_id: str) -> None:
        """구독자 링크와 구독을 정리합니다. 추적하지 않는 ID면 no-op."""
        link = self._links.pop(viewer_id, None)
        if link is None:
            return
        self._inboxes.pop(viewer_id, None)
        self._answered.discard(viewer_id)

        for sub in self._viewer_subs.pop(viewer_id, []):
            await sub.close()
        try:
            await link.close()
        except Exception as e:
            logger.warning(f"[Publish] 구독자 {viewer_id[:8]} 링크 종료 오류: {e}")

        logger.info(f"[Publish] 룸 '{self.room_id}' 구독자 {viewer_id[:8]} 연결 종료 (남은 {self.viewer_count}명)")

    async def _drop_all_viewers(self) -> None:
        for viewer_id in list(self._links):
            await self._drop_viewer(viewer_id)

    async def _close_room_subscriptions(self) -> None:
        for sub in (self._viewers_sub, self._room_sub):
            if sub is not None:
                await sub.close()
        self._viewers_sub = None
        self._room_sub = None

    # ============================================================
    # 정지
    # ============================================================

    async def stop(self) -> None:
        """송출을 정지합니다.

        모든 링크를 닫고, 밀려나지 않았다면 룸 문서를 삭제합니다. 룸 문서의
        publisherId가 아직 자신일 때만 삭제하며, 확인과 삭제는 원자적입니다.
        삭제는 best-effort이며 실패해도 무시합니다.
        """
        if self._stopped:
            return
        was_owner = self._claimed and not self._superseded
        self._stopped = True

        await self._drop_all_viewers()
        await self._close_room_subscriptions()

        if was_owner:
            await self._delete_room_if_owner()

        if not self._superseded:
            self._set_status(PublishStatus.STOPPED)

    async def _delete_room_if_owner(self) -> None:
        try:
            deleted = await self.store.delete_if(room_path(self.room_id), "publisherId", self.session_id)
            if deleted:
                logger.info(f"[Publish] 룸 '{self.room_id}' 삭제")
            else:
                logger.info(f"[Publish] 룸 '{self.room_id}' 소유자가 바뀌었거나 이미 없어 삭제하지 않음")
        except Exception as e:
            logger.warning(f"[Publish] 룸 '{self.room_id}' 삭제 실패 (무시): {e}")
