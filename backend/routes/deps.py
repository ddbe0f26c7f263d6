"""공유 의존성 모듈.

라우터들이 공통으로 사용하는 의존성을 정의합니다.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import Header, HTTPException

from relaycast.signaling import SignalingStore
from relaycast.webrtc import SessionRegistry

logger = logging.getLogger(__name__)

load_dotenv(Path(__file__).parent.parent / "config" / ".env")

# 송출자 패스키 설정 (빈 값이면 인증 없음)
BROADCASTER_PASSKEY = os.getenv("BROADCASTER_PASSKEY", "")

# 글로벌 스토어/레지스트리 참조 (app.py lifespan에서 설정됨)
_store: Optional[SignalingStore] = None
_registry: Optional[SessionRegistry] = None


def init_sessions(store: Optional[SignalingStore], registry: Optional[SessionRegistry]):
    """스토어와 세션 레지스트리를 설정합니다.

    app.py lifespan에서 호출하며, 종료 시 None으로 해제합니다.
    """
    global _store, _registry
    _store = store
    _registry = registry
    if store is not None:
        logger.info(f"세션 라우터 초기화 완료 (스토어: {store.backend_name})")


def get_store() -> SignalingStore:
    if _store is None:
        raise HTTPException(status_code=503, detail="Signaling store not available")
    return _store


def get_registry() -> SessionRegistry:
    if _registry is None:
        raise HTTPException(status_code=503, detail="Session registry not available")
    return _registry


async def verify_auth_header(authorization: Optional[str] = Header(None)) -> bool:
    """Authorization 헤더의 송출자 패스키를 검증합니다.

    Args:
        authorization: Authorization 헤더 값

    Returns:
        bool: 검증 성공 시 True

    Raises:
        HTTPException: 인증 실패 시
    """
    if not BROADCASTER_PASSKEY:
        return True
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization format")
    if parts[1] != BROADCASTER_PASSKEY:
        raise HTTPException(status_code=401, detail="Invalid passkey")
    return True
