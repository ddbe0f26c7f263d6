"""Redis 기반 시그널링 스토어.

여러 프로세스가 같은 룸/통화에 참여할 수 있도록 Redis를 공유 랑데부 지점으로
사용합니다.

Data Layout:
    {prefix}doc:{path}         HASH   필드 → JSON 값
    {prefix}col:{collection}   ZSET   문서 ID (score = 전역 시퀀스, 커밋 순서)
    {prefix}seq                STRING 전역 시퀀스 카운터
    {prefix}doc:{path}         채널    문서 변경 알림
    {prefix}col:{collection}   채널    컬렉션 변경 알림 ({"op": "set"|"delete", "id": ...})

Note:
    - 알림은 "무엇이 바뀌었는지"만 전달하며, 구독자는 처리 시점에 권위 있는
      상태를 다시 읽습니다.
    - create-if-absent, update-if-exists, 조건부 삭제는 Lua 스크립트로
      원자적으로 수행됩니다.
"""

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

import redis.asyncio as redis

from .store import SignalingStore, Subscription, split_path
from ..shared.errors import DocumentExistsError, DocumentMissingError, SignalingWriteError

logger = logging.getLogger(__name__)

# KEYS[1]=문서 키, KEYS[2]=컬렉션 키, ARGV[1]=시퀀스, ARGV[2]=문서 ID, ARGV[3..]=필드/값 쌍
_CREATE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return 0
end
for i = 3, #ARGV, 2 do
    redis.call('HSET', KEYS[1], ARGV[i], ARGV[i + 1])
end
redis.call('ZADD', KEYS[2], 'NX', ARGV[1], ARGV[2])
return 1
"""

# KEYS[1]=문서 키, ARGV[1..]=필드/값 쌍
_UPDATE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
for i = 1, #ARGV, 2 do
    redis.call('HSET', KEYS[1], ARGV[i], ARGV[i + 1])
end
return 1
"""

# KEYS[1]=문서 키, KEYS[2]=컬렉션 키, ARGV[1]=필드, ARGV[2]=기대값(JSON), ARGV[3]=문서 ID
_DELETE_IF_SCRIPT = """
if redis.call('HGET', KEYS[1], ARGV[1]) ~= ARGV[2] then
    return 0
end
redis.call('DEL', KEYS[1])
redis.call('ZREM', KEYS[2], ARGV[3])
return 1
"""


class RedisSignalingStore(SignalingStore):
    """redis.asyncio 클라이언트를 사용하는 시그널링 스토어.

    Attributes:
        client (redis.Redis): `decode_responses=True`로 생성된 클라이언트
        prefix (str): 키/채널 접두사

    Examples:
        >>> redis_mgr = get_redis_manager()
        >>> await redis_mgr.initialize()
        >>> store = RedisSignalingStore(redis_mgr.client, prefix="relaycast:")
        >>> await store.set("rooms/hall", {"publisherId": "t1", "status": "active"})
    """

    backend_name = "redis"

    def __init__(self, client: redis.Redis, prefix: str = "relaycast:"):
        super().__init__()
        self.client = client
        self.prefix = prefix
        self._create_script = client.register_script(_CREATE_SCRIPT)
        self._update_script = client.register_script(_UPDATE_SCRIPT)
        self._delete_if_script = client.register_script(_DELETE_IF_SCRIPT)
        self._pubsub = None
        self._reader: Optional[asyncio.Task] = None
        self._watchers: Dict[str, Set[Subscription]] = defaultdict(set)

    # ---- 키 ----

    def _doc_key(self, path: str) -> str:
        return f"{self.prefix}doc:{path}"

    def _col_key(self, collection: str) -> str:
        return f"{self.prefix}col:{collection}"

    def _channel(self, channel: str) -> str:
        return f"{self.prefix}{channel}"

    @staticmethod
    def _encode(fields: dict) -> Dict[str, str]:
        return {name: json.dumps(value) for name, value in fields.items()}

    @staticmethod
    def _decode(raw: Dict[str, str]) -> dict:
        return {name: json.loads(value) for name, value in raw.items()}

    async def _next_seq(self) -> int:
        return await self.client.incr(f"{self.prefix}seq")

    # ---- 문서 프리미티브 ----

    async def get(self, path: str) -> Optional[dict]:
        raw = await self.client.hgetall(self._doc_key(path))
        if not raw:
            return None
        return self._decode(raw)

    async def set(self, path: str, fields: dict) -> None:
        await self._write(path, fields, replace=True)

    async def merge(self, path: str, fields: dict) -> None:
        await self._write(path, fields, replace=False)

    async def update(self, path: str, fields: dict) -> None:
        args = []
        for name, value in self._encode(fields).items():
            args.extend([name, value])
        if not args:
            if not await self.client.exists(self._doc_key(path)):
                raise DocumentMissingError(path)
            return

        updated = await self._update_script(keys=[self._doc_key(path)], args=args)
        if not updated:
            raise DocumentMissingError(path)
        await self._publish_set(path)

    async def delete_if(self, path: str, field: str, expected: Any) -> bool:
        collection, doc_id = split_path(path)
        deleted = await self._delete_if_script(
            keys=[self._doc_key(path), self._col_key(collection)],
            args=[field, json.dumps(expected), doc_id],
        )
        if deleted:
            await self._publish(path, "delete")
        return bool(deleted)

    async def create(self, path: str, fields: dict) -> None:
        if not fields:
            raise SignalingWriteError(f"Cannot create empty document '{path}'")
        collection, doc_id = split_path(path)
        seq = await self._next_seq()
        args = [seq, doc_id]
        for name, value in self._encode(fields).items():
            args.extend([name, value])

        created = await self._create_script(
            keys=[self._doc_key(path), self._col_key(collection)],
            args=args,
        )
        if not created:
            raise DocumentExistsError(path)
        await self._publish_set(path)

    async def append(self, collection: str, fields: dict) -> str:
        seq = await self._next_seq()
        entry_id = f"{seq:012d}"
        await self._write(f"{collection}/{entry_id}", fields, replace=True, seq=seq)
        return entry_id

    async def delete(self, path: str, recursive: bool = False) -> None:
        targets = [path]
        if recursive:
            doc_prefix = self._doc_key(path + "/")
            async for key in self.client.scan_iter(match=f"{doc_prefix}*"):
                targets.append(key[len(self._doc_key("")):])

        for target in targets:
            collection, doc_id = split_path(target)
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.delete(self._doc_key(target))
                pipe.zrem(self._col_key(collection), doc_id)
                removed, _ = await pipe.execute()
            if removed:
                await self._publish(target, "delete")

        if recursive:
            col_prefix = self._col_key(path + "/")
            async for key in self.client.scan_iter(match=f"{col_prefix}*"):
                await self.client.delete(key)

    async def list_ids(self, collection: str) -> List[str]:
        return list(await self.client.zrange(self._col_key(collection), 0, -1))

    async def _write(self, path: str, fields: dict, replace: bool, seq: Optional[int] = None) -> None:
        if not fields and not replace:
            return
        collection, doc_id = split_path(path)
        if seq is None:
            seq = await self._next_seq()

        async with self.client.pipeline(transaction=True) as pipe:
            if replace:
                pipe.delete(self._doc_key(path))
            if fields:
                pipe.hset(self._doc_key(path), mapping=self._encode(fields))
            pipe.zadd(self._col_key(collection), {doc_id: seq}, nx=True)
            await pipe.execute()

        await self._publish_set(path)

    async def _publish_set(self, path: str) -> None:
        await self._publish(path, "set")

    async def _publish(self, path: str, op: str) -> None:
        collection, doc_id = split_path(path)
        payload = json.dumps({"op": op, "id": doc_id})
        await self.client.publish(self._channel(self.document_channel(path)), payload)
        await self.client.publish(self._channel(self.collection_channel(collection)), payload)

    # ---- 알림 채널 ----

    async def _watch(self, channel: str, subscription: Subscription) -> None:
        full = self._channel(channel)
        first = not self._watchers[full]
        self._watchers[full].add(subscription)
        if first:
            if self._pubsub is None:
                self._pubsub = self.client.pubsub(ignore_subscribe_messages=True)
            await self._pubsub.subscribe(full)
            logger.debug(f"[Store] Redis 채널 구독: {full}")
        if self._reader is None or self._reader.done():
            self._reader = asyncio.create_task(self._read_notifications())

    async def _unwatch(self, channel: str, subscription: Subscription) -> None:
        full = self._channel(channel)
        watchers = self._watchers.get(full)
        if watchers is None:
            return
        watchers.discard(subscription)
        if not watchers:
            del self._watchers[full]
            if self._pubsub is not None:
                await self._pubsub.unsubscribe(full)

    async def _read_notifications(self):
        """pub/sub 메시지를 읽어 해당 채널의 구독 큐로 전달합니다."""
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                channel = message["channel"]
                try:
                    payload = json.loads(message["data"])
                except (TypeError, ValueError):
                    logger.warning(f"[Store] 잘못된 알림 페이로드: {message['data']!r}")
                    continue

                event = (payload.get("op"), payload.get("id"))
                for sub in list(self._watchers.get(channel, ())):
                    sub.push(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Store] Redis 알림 수신 오류: {type(e).__name__}: {e}", exc_info=True)

    async def close(self) -> None:
        await super().close()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
