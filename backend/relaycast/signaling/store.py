"""시그널링 스토어 계약.

룸/통화 시그널링 문서를 읽고 쓰는 문서 스토어의 추상 계층입니다.
미디어는 절대 스토어를 거치지 않으며, 스토어는 offer/answer/candidate 교환을
위한 랑데부 역할만 합니다.

문서 경로:
    rooms/{roomId}                                     룸 문서
    rooms/{roomId}/viewers/{viewerId}                  구독자 레코드
    rooms/{roomId}/viewers/{viewerId}/publisherCandidates   송출자 → 구독자 후보 로그
    rooms/{roomId}/viewers/{viewerId}/viewerCandidates      구독자 → 송출자 후보 로그
    calls/{callId}                                     통화 문서
    calls/{callId}/callerCandidates                    caller → callee 후보 로그
    calls/{callId}/calleeCandidates                    callee → caller 후보 로그

Delivery:
    - 구독당 이벤트는 커밋 순서대로, 순차적으로 전달됩니다.
    - 같은 항목이 다시 전달될 수 있으므로 소비자는 멱등하게 적용해야 합니다.
    - 콜백 예외는 로그만 남기고 구독은 계속 유지됩니다.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

DocumentCallback = Callable[[Optional[dict]], Awaitable[None]]
AddCallback = Callable[[str, dict], Awaitable[None]]
RemoveCallback = Callable[[str], Awaitable[None]]

ROOMS = "rooms"
CALLS = "calls"

# 구독 큐에 처음 넣는 스냅샷 마커
SNAPSHOT = ("snapshot", None)


# ============================================================
# 경로 헬퍼
# ============================================================

def join_path(*segments: str) -> str:
    return "/".join(s.strip("/") for s in segments)


def split_path(path: str) -> tuple:
    """경로를 (컬렉션, 문서 ID)로 분리합니다."""
    collection, _, doc_id = path.rpartition("/")
    return collection, doc_id


def room_path(room_id: str) -> str:
    return join_path(ROOMS, room_id)


def viewers_path(room_id: str) -> str:
    return join_path(ROOMS, room_id, "viewers")


def viewer_path(room_id: str, viewer_id: str) -> str:
    return join_path(viewers_path(room_id), viewer_id)


def publisher_candidates_path(room_id: str, viewer_id: str) -> str:
    return join_path(viewer_path(room_id, viewer_id), "publisherCandidates")


def viewer_candidates_path(room_id: str, viewer_id: str) -> str:
    return join_path(viewer_path(room_id, viewer_id), "viewerCandidates")


def call_path(call_id: str) -> str:
    return join_path(CALLS, call_id)


def caller_candidates_path(call_id: str) -> str:
    return join_path(call_path(call_id), "callerCandidates")


def callee_candidates_path(call_id: str) -> str:
    return join_path(call_path(call_id), "calleeCandidates")


# ============================================================
# 구독 핸들
# ============================================================

class Subscription:
    """스토어 변경 구독 핸들.

    이벤트는 내부 큐에 쌓이고 전용 태스크가 하나씩 순서대로 처리합니다.
    자기 콜백 안에서 `close()`를 호출해도 안전합니다 (현재 이벤트 처리 후 종료).

    Attributes:
        name (str): 로그용 구독 이름
    """

    def __init__(self, name: str, handler: Callable[[Any], Awaitable[None]]):
        self.name = name
        self._handler = handler
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._processing = False
        self._closed = False
        self._release: Optional[Callable[["Subscription"], Awaitable[None]]] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def busy(self) -> bool:
        """처리 중이거나 대기 중인 이벤트가 있는지 여부."""
        if self._closed:
            return False
        return self._processing or not self._queue.empty()

    def push(self, event: Any) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def wait_idle(self) -> None:
        await self._queue.join()

    async def _run(self):
        while not self._closed:
            event = await self._queue.get()
            self._processing = True
            try:
                if not self._closed:
                    await self._handler(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[Store] 구독 콜백 오류 ({self.name}): {type(e).__name__}: {e}", exc_info=True)
            finally:
                self._processing = False
                self._queue.task_done()

    async def close(self) -> None:
        """구독을 해제합니다. 여러 번 호출해도 안전합니다."""
        if self._closed:
            return
        self._closed = True

        if self._release is not None:
            try:
                await self._release(self)
            except Exception as e:
                logger.warning(f"[Store] 구독 해제 실패 ({self.name}): {e}")

        task = self._task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()


# ============================================================
# 스토어 계약
# ============================================================

class SignalingStore(ABC):
    """멀티 리더/멀티 라이터 시그널링 문서 스토어.

    하위 클래스는 문서 읽기/쓰기 프리미티브와 변경 알림 채널(`_watch`,
    `_unwatch`)만 구현합니다. 구독 스냅샷, 중복 추가 필터링, 순차 전달은
    이 클래스가 담당합니다.

    Examples:
        >>> store = InMemorySignalingStore()
        >>> await store.set("rooms/hall", {"publisherId": "t1", "status": "active"})
        >>> sub = await store.subscribe_document("rooms/hall", on_change)
        >>> await sub.close()
    """

    backend_name = "abstract"

    def __init__(self):
        self._subscriptions: Set[Subscription] = set()

    # ---- 문서 프리미티브 ----

    @abstractmethod
    async def get(self, path: str) -> Optional[dict]:
        """문서를 한 번 읽습니다. 없으면 None."""

    @abstractmethod
    async def set(self, path: str, fields: dict) -> None:
        """문서를 생성하거나 통째로 교체합니다."""

    @abstractmethod
    async def merge(self, path: str, fields: dict) -> None:
        """언급된 필드만 병합합니다. 문서가 없으면 생성합니다."""

    @abstractmethod
    async def update(self, path: str, fields: dict) -> None:
        """문서가 존재할 때만 언급된 필드를 병합합니다.

        삭제된 문서를 되살리지 않아야 하는 쓰기에 사용합니다.

        Raises:
            DocumentMissingError: 문서가 없을 때
        """

    @abstractmethod
    async def delete_if(self, path: str, field: str, expected: Any) -> bool:
        """`field` 값이 `expected`와 같을 때만 문서를 삭제합니다.

        비교와 삭제는 하나의 원자적 연산입니다. 하위 문서는 건드리지 않습니다.

        Returns:
            bool: 삭제했으면 True
        """

    @abstractmethod
    async def create(self, path: str, fields: dict) -> None:
        """문서가 없을 때만 생성합니다.

        Raises:
            DocumentExistsError: 문서가 이미 존재할 때
        """

    @abstractmethod
    async def append(self, collection: str, fields: dict) -> str:
        """순서가 보장되는 로그 컬렉션에 항목을 추가하고 항목 ID를 반환합니다."""

    @abstractmethod
    async def delete(self, path: str, recursive: bool = False) -> None:
        """문서를 삭제합니다. recursive=True면 하위 문서도 모두 삭제합니다."""

    @abstractmethod
    async def list_ids(self, collection: str) -> List[str]:
        """컬렉션의 문서 ID를 커밋 순서대로 반환합니다."""

    # ---- 알림 채널 ----

    @abstractmethod
    async def _watch(self, channel: str, subscription: Subscription) -> None:
        """채널 이벤트를 구독 큐로 전달하도록 등록합니다."""

    @abstractmethod
    async def _unwatch(self, channel: str, subscription: Subscription) -> None:
        """채널 등록을 해제합니다."""

    async def close(self) -> None:
        """열린 모든 구독을 해제합니다."""
        for sub in list(self._subscriptions):
            await sub.close()

    @staticmethod
    def document_channel(path: str) -> str:
        return f"doc:{path}"

    @staticmethod
    def collection_channel(collection: str) -> str:
        return f"col:{collection}"

    # ---- 구독 ----

    async def subscribe_document(self, path: str, on_change: DocumentCallback) -> Subscription:
        """단일 문서 구독.

        구독 직후 현재 상태로 한 번, 이후 변경마다 한 번씩 `on_change`가
        호출됩니다. 콜백은 알림 시점이 아니라 처리 시점의 문서를 다시 읽어
        전달받습니다.
        """
        async def handle(_event):
            await on_change(await self.get(path))

        return await self._open(f"doc:{path}", self.document_channel(path), handle)

    async def subscribe_collection(
        self,
        collection: str,
        on_add: AddCallback,
        on_remove: Optional[RemoveCallback] = None,
    ) -> Subscription:
        """컬렉션 구독.

        구독 이전에 존재하던 문서도 커밋 순서대로 `on_add`로 전달됩니다.
        이미 전달된 문서의 수정은 추가로 취급하지 않습니다.
        """
        seen: Set[str] = set()

        async def deliver_add(doc_id: str):
            if doc_id in seen:
                return
            fields = await self.get(join_path(collection, doc_id))
            if fields is None:
                return
            seen.add(doc_id)
            await on_add(doc_id, fields)

        async def handle(event):
            op, doc_id = event
            if op == "snapshot":
                for existing_id in await self.list_ids(collection):
                    await deliver_add(existing_id)
            elif op == "set":
                await deliver_add(doc_id)
            elif op == "delete":
                if doc_id not in seen:
                    return
                seen.discard(doc_id)
                if on_remove is not None:
                    await on_remove(doc_id)

        return await self._open(f"col:{collection}", self.collection_channel(collection), handle)

    async def _open(self, name: str, channel: str, handler) -> Subscription:
        sub = Subscription(name, handler)
        # 스냅샷 마커를 채널 등록 전에 넣어야 이후 알림이 스냅샷 뒤에 처리됨
        sub.push(SNAPSHOT)
        await self._watch(channel, sub)

        async def release(s: Subscription):
            self._subscriptions.discard(s)
            await self._unwatch(channel, s)

        sub._release = release
        self._subscriptions.add(sub)
        sub.start()
        return sub

    def _notify(self, watchers: Dict[str, Set[Subscription]], channel: str, event: Any) -> None:
        for sub in list(watchers.get(channel, ())):
            sub.push(event)
