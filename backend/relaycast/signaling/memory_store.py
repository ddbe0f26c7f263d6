"""프로세스 내 시그널링 스토어.

단일 프로세스에서 여러 세션을 띄우거나 테스트할 때 사용합니다.
모든 연산은 이벤트 루프에 한 번 양보한 뒤 원자적으로 수행되므로,
동시에 실행되는 세션들이 원격 스토어를 쓸 때와 같은 방식으로 교차 실행됩니다.
"""

import asyncio
import itertools
import json
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

from .store import SignalingStore, Subscription, split_path
from ..shared.errors import DocumentExistsError, DocumentMissingError

logger = logging.getLogger(__name__)


class InMemorySignalingStore(SignalingStore):
    """dict 기반 시그널링 스토어.

    Attributes:
        _docs (Dict[str, dict]): 경로 → 문서 필드
        _collections (Dict[str, Dict[str, None]]): 컬렉션 → 커밋 순서의 문서 ID
    """

    backend_name = "memory"

    def __init__(self):
        super().__init__()
        self._docs: Dict[str, dict] = {}
        self._collections: Dict[str, Dict[str, None]] = defaultdict(dict)
        self._watchers: Dict[str, Set[Subscription]] = defaultdict(set)
        self._seq = itertools.count(1)

    @staticmethod
    def _copy(fields: dict) -> dict:
        # 원격 스토어처럼 직렬화 가능한 값만 보관
        return json.loads(json.dumps(fields))

    async def get(self, path: str) -> Optional[dict]:
        await asyncio.sleep(0)
        doc = self._docs.get(path)
        return self._copy(doc) if doc is not None else None

    async def set(self, path: str, fields: dict) -> None:
        await asyncio.sleep(0)
        self._write(path, self._copy(fields))

    async def merge(self, path: str, fields: dict) -> None:
        await asyncio.sleep(0)
        doc = dict(self._docs.get(path) or {})
        doc.update(self._copy(fields))
        self._write(path, doc)

    async def update(self, path: str, fields: dict) -> None:
        await asyncio.sleep(0)
        if path not in self._docs:
            raise DocumentMissingError(path)
        doc = dict(self._docs[path])
        doc.update(self._copy(fields))
        self._write(path, doc)

    async def delete_if(self, path: str, field: str, expected: Any) -> bool:
        await asyncio.sleep(0)
        doc = self._docs.get(path)
        if doc is None or doc.get(field) != expected:
            return False
        self._remove(path)
        return True

    async def create(self, path: str, fields: dict) -> None:
        await asyncio.sleep(0)
        if path in self._docs:
            raise DocumentExistsError(path)
        self._write(path, self._copy(fields))

    async def append(self, collection: str, fields: dict) -> str:
        await asyncio.sleep(0)
        entry_id = f"{next(self._seq):012d}"
        self._write(f"{collection}/{entry_id}", self._copy(fields))
        return entry_id

    async def delete(self, path: str, recursive: bool = False) -> None:
        await asyncio.sleep(0)
        targets = [path]
        if recursive:
            prefix = path + "/"
            targets.extend(p for p in list(self._docs) if p.startswith(prefix))
        for target in targets:
            self._remove(target)

    async def list_ids(self, collection: str) -> List[str]:
        await asyncio.sleep(0)
        return list(self._collections.get(collection, {}))

    def _write(self, path: str, doc: dict) -> None:
        collection, doc_id = split_path(path)
        self._docs[path] = doc
        self._collections[collection].setdefault(doc_id, None)
        self._notify(self._watchers, self.document_channel(path), ("change", doc_id))
        self._notify(self._watchers, self.collection_channel(collection), ("set", doc_id))

    def _remove(self, path: str) -> None:
        if path not in self._docs:
            return
        collection, doc_id = split_path(path)
        del self._docs[path]
        self._collections[collection].pop(doc_id, None)
        self._notify(self._watchers, self.document_channel(path), ("change", doc_id))
        self._notify(self._watchers, self.collection_channel(collection), ("delete", doc_id))

    async def _watch(self, channel: str, subscription: Subscription) -> None:
        self._watchers[channel].add(subscription)

    async def _unwatch(self, channel: str, subscription: Subscription) -> None:
        watchers = self._watchers.get(channel)
        if watchers is not None:
            watchers.discard(subscription)
            if not watchers:
                del self._watchers[channel]

    async def drain(self) -> None:
        """모든 구독이 대기 중인 이벤트를 처리할 때까지 기다립니다.

        콜백이 새 쓰기를 만들면 그 이벤트까지 처리합니다.
        """
        while True:
            pending = [s for s in list(self._subscriptions) if s.busy]
            if not pending:
                for _ in range(5):
                    await asyncio.sleep(0)
                if not any(s.busy for s in list(self._subscriptions)):
                    return
                continue
            for sub in pending:
                await sub.wait_idle()

    def dump(self) -> Dict[str, dict]:
        """현재 문서 전체의 복사본 (디버깅/테스트용)."""
        return {path: self._copy(doc) for path, doc in self._docs.items()}
