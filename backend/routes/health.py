"""Health Check API 라우터.

서비스 상태 확인을 위한 엔드포인트들을 제공합니다.
"""

from fastapi import APIRouter

from relaycast.signaling import get_redis_manager, signaling_config

from . import deps

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """전체 서비스 상태를 확인합니다.

    Returns:
        dict: 스토어 백엔드와 Redis 연결 상태 정보
    """
    store_status = "ok" if deps._store is not None else "not_initialized"
    redis_status = await _redis_status()

    # 인메모리 백엔드는 Redis 없이도 정상
    redis_required = signaling_config.BACKEND == "redis"
    healthy = store_status == "ok" and (redis_status == "ok" or not redis_required)

    return {
        "status": "ok" if healthy else "degraded",
        "services": {
            "store": store_status,
            "backend": deps._store.backend_name if deps._store is not None else signaling_config.BACKEND,
            "redis": redis_status,
        }
    }


@router.get("/redis")
async def redis_health_check():
    """Redis 상태를 확인합니다.

    Returns:
        dict: Redis 연결 상태, 지연 시간(ms), 룸/통화 문서 수
    """
    redis_mgr = get_redis_manager()
    if not redis_mgr.is_initialized:
        return {"status": "error", "message": "Redis not initialized"}

    latency = await redis_mgr.latency_ms()
    if latency is None:
        return {"status": "error", "message": "Redis ping failed"}
    try:
        documents = await redis_mgr.document_counts()
    except Exception as e:
        return {"status": "error", "message": str(e)}
    return {
        "status": "ok",
        "latencyMs": latency,
        "prefix": redis_mgr.prefix,
        "documents": documents,
    }


async def _redis_status() -> str:
    redis_mgr = get_redis_manager()
    if not redis_mgr.is_initialized:
        return "not_initialized"
    return "ok" if await redis_mgr.ping() else "error"
