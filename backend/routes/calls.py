"""1:1 통화 API 라우터.

통화 링크 생성과 서버 호스팅 통화 참가를 제공합니다.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from relaycast.shared import CallNotFoundError, MediaUnavailableError
from relaycast.webrtc import CALL_TYPES, SessionRegistry, media_config

from .deps import get_registry, verify_auth_header

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calls", tags=["calls"])


class CallLinkRequest(BaseModel):
    """통화 링크 생성 요청 모델."""
    model_config = ConfigDict(populate_by_name=True)

    call_type: str = Field(default="video", alias="callType")


class CallJoinRequest(BaseModel):
    """호스팅 통화 참가 요청 모델."""
    model_config = ConfigDict(populate_by_name=True)

    source: Optional[str] = None
    media_format: Optional[str] = Field(default=None, alias="format")
    call_type: str = Field(default="video", alias="callType")


def _check_call_type(call_type: str) -> None:
    if call_type not in CALL_TYPES:
        raise HTTPException(status_code=422, detail=f"callType must be one of {list(CALL_TYPES)}")


def _describe(session) -> dict:
    stream = session.remote_stream
    return {
        "callId": session.call_id,
        "sessionId": session.session_id,
        "role": session.role.value if session.role else None,
        "status": session.status.value,
        "tracks": stream.kinds if stream else [],
    }


@router.post("")
async def create_call_link(
    request: CallLinkRequest,
    _: bool = Depends(verify_auth_header),
):
    """새 통화 ID와 참가 경로를 생성합니다. 스토어에는 쓰지 않습니다."""
    _check_call_type(request.call_type)
    call_id = str(uuid.uuid4())
    logger.info(f"[Call] 통화 링크 생성: {call_id[:8]} ({request.call_type})")
    return {
        "callId": call_id,
        "callType": request.call_type,
        "path": f"/call/{call_id}?type={request.call_type}",
    }


@router.post("/{call_id}/join")
async def join_call(
    call_id: str,
    request: CallJoinRequest,
    registry: SessionRegistry = Depends(get_registry),
    _: bool = Depends(verify_auth_header),
):
    """서버가 통화 참가자로 입장합니다.

    Raises:
        HTTPException: 422 (미디어 소스 없음/열기 실패, 잘못된 callType)
    """
    _check_call_type(request.call_type)
    source = request.source or media_config.DEFAULT_SOURCE
    if not source:
        raise HTTPException(status_code=422, detail="Media source required")

    try:
        session = await registry.join_call(
            call_id,
            source,
            media_format=request.media_format or media_config.DEFAULT_FORMAT,
            call_type=request.call_type,
        )
    except MediaUnavailableError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return _describe(session)


@router.get("/{call_id}")
async def get_call(
    call_id: str,
    registry: SessionRegistry = Depends(get_registry),
    _: bool = Depends(verify_auth_header),
):
    try:
        return _describe(registry.get_call(call_id))
    except CallNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/{call_id}")
async def leave_call(
    call_id: str,
    registry: SessionRegistry = Depends(get_registry),
    _: bool = Depends(verify_auth_header),
):
    if not await registry.leave_call(call_id):
        raise HTTPException(status_code=404, detail=f"Call '{call_id}' not found")
    return {"success": True, "callId": call_id}
