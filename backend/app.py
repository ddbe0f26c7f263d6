"""FastAPI WebRTC Signaling Server (Relaycast).

공유 문서 스토어를 랑데부로 사용하는 WebRTC 방송/1:1 통화 시그널링 서버입니다.
미디어는 피어 사이에서 직접 흐르고, 서버는 스토어와 호스팅 세션만 관리합니다.

주요 기능:
    - 방송 룸 카탈로그 및 송출 상태 조회
    - 서버 호스팅 송출/구독/1:1 통화 세션
    - 통화 링크 생성
    - 클라이언트용 ICE 서버 목록 제공
    - CORS 설정을 통한 크로스 오리진 요청 지원

Architecture:
    - SignalingStore: Redis(다중 프로세스) 또는 인메모리 시그널링 스토어
    - SessionRegistry: 서버가 직접 참여하는 세션 관리
    - 브라우저 클라이언트는 같은 문서 레이아웃으로 스토어에 직접 참여
"""
import logging
from contextlib import asynccontextmanager
import os
from datetime import datetime, timedelta
from typing import Optional
from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware

from relaycast.signaling import (
    InMemorySignalingStore, SignalingStore, create_store, get_redis_manager, signaling_config
)
from relaycast.webrtc import SessionRegistry, ice_config
from routes import (
    health_router, auth_router, rooms_router, broadcast_router, view_router, calls_router,
    init_sessions, verify_auth_header
)
from dotenv import load_dotenv
from pathlib import Path

# Load 환경변수 로드 variables from config/.env
load_dotenv(Path(__file__).parent / "config" / ".env")


# 로그 설정
os.makedirs("logs", exist_ok=True)
log_filename = f"logs/server_{datetime.now().strftime('%Y%m%d')}.log"

# 환경별 로그 레벨 설정 (환경변수로 제어)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ENV = os.getenv("ENV", "development")

# 로그 보관 기간 (일) - 기본 60일 (2개월)
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "60"))


def cleanup_old_logs(log_dir: str = "logs", retention_days: int = LOG_RETENTION_DAYS) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    import glob

    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob.glob(os.path.join(log_dir, "server_*.log")):
        try:
            date_str = os.path.basename(log_file)[len("server_"):-len(".log")]
            if datetime.strptime(date_str, "%Y%m%d") < cutoff_date:
                os.remove(log_file)
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),  # 콘솔 출력
        logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
    ]
)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={LOG_LEVEL}, env={ENV}")


# Redis 매니저 및 글로벌 세션 상태
redis_manager = get_redis_manager()
store: Optional[SignalingStore] = None
registry: Optional[SessionRegistry] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    서버 시작 시 스토어와 세션 레지스트리를 준비하고, 종료 시 모든 호스팅
    세션을 정리합니다. 호스팅 세션 정리는 브라우저의 페이지 이탈 정리와 같은
    역할로, 소유한 룸/통화 문서를 best-effort로 삭제합니다.

    Note:
        - 시작: 로그 정리, Redis 초기화, 스토어 생성
        - 종료: 호스팅 세션 정리, 스토어 구독 해제, Redis 연결 종료
    """
    global store, registry

    # 서버 시작
    logger.info("WebRTC 시그널링 서버 시작 중...")

    # 오래된 로그 파일 정리 (2개월 이상)
    deleted_logs = cleanup_old_logs()
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({LOG_RETENTION_DAYS}일 이상)")

    # Redis 연결 초기화
    if signaling_config.BACKEND == "redis":
        redis_initialized = await redis_manager.initialize()
        if redis_initialized:
            logger.info("Redis 연결 완료")
            store = redis_manager.create_store()
        else:
            logger.warning("Redis 사용 불가, 인메모리 스토어로 실행 (단일 프로세스)")
            store = InMemorySignalingStore()
    else:
        store = create_store()

    registry = SessionRegistry(store)
    init_sessions(store, registry)
    logger.info(f"시그널링 스토어 준비 완료: {store.backend_name}")

    yield

    # 서버 종료
    logger.info("서버 종료 중...")

    # 호스팅 세션 정리
    await registry.cleanup_all()
    init_sessions(None, None)

    # 스토어 구독 해제
    await store.close()

    # Redis 연결 종료
    if redis_manager.is_initialized:
        await redis_manager.close()
        logger.info("Redis 연결 종료됨")


app = FastAPI(title="Relaycast WebRTC Signaling Server", lifespan=lifespan)

# CORS - 개발 환경에서는 모든 로컬 네트워크 허용
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}|172\.\d{1,3}\.\d{1,3}\.\d{1,3}):\d+$|^https://.*\.ngrok(-free)?\.(app|dev|io)$|^https://.*\.trycloudflare\.com$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(rooms_router)
app.include_router(broadcast_router)
app.include_router(view_router)
app.include_router(calls_router)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트 (Health check).

    Returns:
        dict: 서버 상태 정보 {"status": "ok", "service": ...}
    """
    return {"status": "ok", "service": "Relaycast WebRTC Signaling Server"}


@app.get("/api/ice-servers")
async def get_ice_servers(_: bool = Depends(verify_auth_header)):
    """STUN/TURN 서버 목록을 Frontend에 제공합니다.

    TURN credentials는 Backend 환경 변수에서만 관리하고, 인증된 클라이언트에게만
    전달합니다.

    Returns:
        list: `RTCPeerConnection` iceServers 형식의 목록

    Environment Variables:
        TURN_SERVER_URL, TURN_USERNAME, TURN_CREDENTIAL: TURN 서버 (선택)
        STUN_SERVER_URL: 커스텀 STUN 서버 (선택)
    """
    ice_servers = ice_config.as_client_list()
    if ice_config.has_turn_server:
        logger.info("ICE 서버 제공: STUN + TURN")
    else:
        logger.info("ICE 서버 제공: STUN만 (TURN 미설정)")
    return ice_servers


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
