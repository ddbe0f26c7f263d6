"""시그널링 스토어 모듈.

룸/통화 시그널링 문서를 위한 공유 문서 스토어와 백엔드 구현을 제공합니다.

Classes:
    SignalingStore: 스토어 계약 (추상 클래스)
    InMemorySignalingStore: 단일 프로세스용 인메모리 백엔드
    RedisSignalingStore: 다중 프로세스용 Redis 백엔드
    Subscription: 변경 구독 핸들

Config:
    signaling_config: 백엔드/Redis/룸 카탈로그 설정
"""

from typing import Optional

from .config import signaling_config, SignalingConfig
from .memory_store import InMemorySignalingStore
from .redis_connection import RedisManager, get_redis_manager
from .redis_store import RedisSignalingStore
from .store import (
    SignalingStore,
    Subscription,
    room_path,
    viewers_path,
    viewer_path,
    publisher_candidates_path,
    viewer_candidates_path,
    call_path,
    caller_candidates_path,
    callee_candidates_path,
)


def create_store(backend: Optional[str] = None) -> SignalingStore:
    """설정된 백엔드로 시그널링 스토어를 만듭니다.

    Redis 백엔드는 `get_redis_manager().initialize()`가 먼저 성공해야 합니다.

    Raises:
        RuntimeError: Redis가 초기화되지 않았을 때
        ValueError: 알 수 없는 백엔드 이름
    """
    backend = (backend or signaling_config.BACKEND).lower()
    if backend == "memory":
        return InMemorySignalingStore()
    if backend == "redis":
        return get_redis_manager().create_store()
    raise ValueError(f"Unknown signaling backend: {backend}")


__all__ = [
    "SignalingStore",
    "Subscription",
    "InMemorySignalingStore",
    "RedisSignalingStore",
    "RedisManager",
    "get_redis_manager",
    "create_store",
    "signaling_config",
    "SignalingConfig",
    "room_path",
    "viewers_path",
    "viewer_path",
    "publisher_candidates_path",
    "viewer_candidates_path",
    "call_path",
    "caller_candidates_path",
    "callee_candidates_path",
]
