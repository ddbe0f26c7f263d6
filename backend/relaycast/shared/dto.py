"""시그널링 스토어 문서 DTO.

스토어에 저장되는 필드 이름은 브라우저 클라이언트와 호환되도록 camelCase를
사용합니다. 모델은 alias로 읽고 `to_fields()`로 다시 camelCase dict를 만듭니다.
"""

import time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """현재 시각 (epoch milliseconds)."""
    return int(time.time() * 1000)


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_fields(self) -> dict:
        """스토어 쓰기용 dict로 변환합니다 (None 필드 제외)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SessionDescription(BaseModel):
    """offer/answer 세션 디스크립션."""

    type: str = Field(description="offer 또는 answer")
    sdp: str = Field(description="Session Description Protocol 본문")


class IceCandidate(BaseModel):
    """브라우저 `RTCIceCandidate.toJSON()`과 같은 형태의 후보."""

    model_config = ConfigDict(extra="ignore")

    candidate: str
    sdpMid: Optional[str] = None
    sdpMLineIndex: Optional[int] = None

    @property
    def key(self) -> tuple:
        """중복 판정 키."""
        return (self.candidate, self.sdpMid, self.sdpMLineIndex)


class RoomDocument(_Document):
    """방송 룸 문서 (`rooms/{roomId}`)."""

    publisher_id: Optional[str] = Field(default=None, alias="publisherId")
    status: str = "active"
    created_at: int = Field(default_factory=now_ms, alias="createdAt")

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class ViewerRecord(_Document):
    """구독자 레코드 (`rooms/{roomId}/viewers/{viewerId}`)."""

    id: Optional[str] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    joined_at: Optional[int] = Field(default=None, alias="joinedAt")
    offer: Optional[SessionDescription] = None
    answer: Optional[SessionDescription] = None


class CallDocument(_Document):
    """1:1 통화 문서 (`calls/{callId}`)."""

    caller_session_id: Optional[str] = Field(default=None, alias="callerSessionId")
    offer: Optional[SessionDescription] = None
    answer: Optional[SessionDescription] = None
