"""WebRTC 모듈 설정.

TURN/STUN 서버, 미디어 소스 등 WebRTC 관련 상수와 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import List, Optional

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정."""

    # TURN 서버
    TURN_SERVER_URL: Optional[str] = os.getenv("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN 서버
    STUN_SERVER_URL: Optional[str] = os.getenv("STUN_SERVER_URL")

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun1.l.google.com:19302",
        "stun:stun2.l.google.com:19302",
    )

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def as_client_list(self) -> List[dict]:
        """브라우저 `RTCPeerConnection` 설정 형식의 ICE 서버 목록."""
        servers = []
        if self.STUN_SERVER_URL:
            servers.append({"urls": self.STUN_SERVER_URL})
        servers.append({"urls": list(self.DEFAULT_STUN_SERVERS)})
        if self.has_turn_server:
            servers.append({
                "urls": self.TURN_SERVER_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL,
            })
        return servers


# ============================================================
# 미디어 설정
# ============================================================

@dataclass(frozen=True)
class MediaConfig:
    """로컬 미디어 소스 기본값."""

    # 기본 미디어 소스 (파일 경로, 장치 또는 URL)
    DEFAULT_SOURCE: Optional[str] = os.getenv("MEDIA_SOURCE")

    # ffmpeg 입력 포맷 (예: v4l2, avfoundation)
    DEFAULT_FORMAT: Optional[str] = os.getenv("MEDIA_FORMAT")

    # 수신 미디어 녹화 디렉토리
    RECORDINGS_DIR: Path = Path(os.getenv("RECORDINGS_DIR", "data/recordings"))


# ============================================================
# 싱글톤 인스턴스
# ============================================================

ice_config = ICEServerConfig()
media_config = MediaConfig()


# ============================================================
# 설정 로드 확인 로그
# ============================================================

logger.info(f"[WebRTC Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(f"[WebRTC Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
if ice_config.STUN_SERVER_URL:
    logger.info(f"[WebRTC Config] STUN URL: {ice_config.STUN_SERVER_URL}")
else:
    logger.info(f"[WebRTC Config] STUN URL: 기본 Google STUN 사용")
