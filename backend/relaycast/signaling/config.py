"""시그널링 모듈 설정.

스토어 백엔드, Redis 접속 정보, 방송 룸 카탈로그 등 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, Tuple

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)

DEFAULT_ROOMS = "big-church:Big Church,small-church:Small Church,hall:Hall"


def _parse_rooms(value: str) -> Tuple[Tuple[str, str], ...]:
    """`id:Name,id:Name` 형식을 (id, name) 튜플로 변환."""
    rooms = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        room_id, _, name = item.partition(":")
        rooms.append((room_id.strip(), (name or room_id).strip()))
    return tuple(rooms)


# ============================================================
# 시그널링 스토어 설정
# ============================================================

@dataclass(frozen=True)
class SignalingConfig:
    """시그널링 스토어 설정."""

    # 스토어 백엔드 (redis | memory)
    BACKEND: str = os.getenv("SIGNALING_BACKEND", "redis").lower()

    # Redis 접속 URL
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")

    # Redis 키/채널 접두사
    KEY_PREFIX: str = os.getenv("SIGNALING_KEY_PREFIX", "relaycast:")

    # 방송 룸 카탈로그
    ROOMS: Tuple[Tuple[str, str], ...] = field(
        default_factory=lambda: _parse_rooms(os.getenv("BROADCAST_ROOMS", DEFAULT_ROOMS))
    )

    @property
    def room_names(self) -> Dict[str, str]:
        return dict(self.ROOMS)


# ============================================================
# 싱글톤 인스턴스
# ============================================================

signaling_config = SignalingConfig()

logger.info(f"[Signaling Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(f"[Signaling Config] 백엔드: {signaling_config.BACKEND}, 룸: {len(signaling_config.ROOMS)}개")
