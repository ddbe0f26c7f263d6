"""시그널링용 Redis 연결 관리 모듈.

프로세스당 Redis 클라이언트 하나를 열고, 그 클라이언트 위에서 동작하는
`RedisSignalingStore`를 설정된 키 접두사로 만들어 줍니다. 헬스 체크에 쓰는
지연 시간과 룸/통화 문서 수도 여기서 조회합니다.

Examples:
    >>> redis_mgr = get_redis_manager()
    >>> if await redis_mgr.initialize():
    ...     store = redis_mgr.create_store()
    >>> await redis_mgr.close()
"""

import logging
import time
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import redis.asyncio as redis

from .config import signaling_config
from .redis_store import RedisSignalingStore
from .store import CALLS, ROOMS

logger = logging.getLogger(__name__)


def mask_url(url: str) -> str:
    """로그용으로 URL의 비밀번호를 가립니다."""
    parts = urlsplit(url)
    if not parts.password:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    user = parts.username or ""
    return urlunsplit(parts._replace(netloc=f"{user}:***@{host}"))


class RedisManager:
    """시그널링 Redis 연결 싱글톤.

    Attributes:
        client: `decode_responses=True` redis 클라이언트 (초기화 전 None)
        prefix (str): 이 매니저가 만드는 스토어의 키 접두사
    """

    _instance: Optional["RedisManager"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance.client = None
            cls._instance.prefix = signaling_config.KEY_PREFIX
            cls._instance._url = signaling_config.REDIS_URL
        return cls._instance

    @property
    def is_initialized(self) -> bool:
        return self.client is not None

    async def initialize(self, url: Optional[str] = None) -> bool:
        """Redis에 연결하고 ping으로 확인합니다.

        Args:
            url: 연결할 URL (없으면 REDIS_URL 설정값)

        Returns:
            bool: 연결 성공 여부
        """
        if self.client is not None:
            logger.info("[Redis] 이미 연결됨")
            return True

        self._url = url or signaling_config.REDIS_URL
        client = redis.from_url(self._url, encoding="utf-8", decode_responses=True)
        try:
            await client.ping()
        except Exception as e:
            logger.error(f"[Redis] 연결 실패 ({mask_url(self._url)}): {e}")
            await client.aclose()
            return False

        self.client = client
        logger.info(f"[Redis] 연결 완료: {mask_url(self._url)} (접두사 '{self.prefix}')")
        return True

    def create_store(self, prefix: Optional[str] = None) -> RedisSignalingStore:
        """현재 연결로 시그널링 스토어를 만듭니다.

        Raises:
            RuntimeError: 연결되지 않았을 때
        """
        if self.client is None:
            raise RuntimeError("Redis is not initialized")
        return RedisSignalingStore(self.client, prefix=prefix or self.prefix)

    async def latency_ms(self) -> Optional[float]:
        """ping 왕복 시간(ms). 연결이 없거나 실패하면 None."""
        if self.client is None:
            return None
        started = time.perf_counter()
        try:
            await self.client.ping()
        except Exception as e:
            logger.warning(f"[Redis] ping 실패: {e}")
            return None
        return round((time.perf_counter() - started) * 1000, 2)

    async def ping(self) -> bool:
        return await self.latency_ms() is not None

    async def document_counts(self) -> dict:
        """접두사 아래 룸/통화 문서 수."""
        if self.client is None:
            return {"rooms": 0, "calls": 0}
        store = self.create_store()
        return {
            "rooms": len(await store.list_ids(ROOMS)),
            "calls": len(await store.list_ids(CALLS)),
        }

    async def close(self):
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            logger.info("[Redis] 연결 종료")


def get_redis_manager() -> RedisManager:
    """RedisManager 싱글톤 인스턴스를 반환합니다."""
    return RedisManager()
