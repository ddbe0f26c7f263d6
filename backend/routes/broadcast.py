"""호스팅 송출 API 라우터.

서버 프로세스가 로컬 미디어 소스를 룸에 송출하도록 시작/조회/정지합니다.
다른 송출자가 룸을 점유 중이면 409를 반환하고, 클라이언트가
`confirmTakeover: true`로 다시 요청하면 룸을 인계합니다.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from relaycast.shared import MediaUnavailableError, RoomConflictError
from relaycast.webrtc import SessionRegistry, media_config

from .deps import get_registry, verify_auth_header

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/broadcast", tags=["broadcast"])


class BroadcastRequest(BaseModel):
    """송출 시작 요청 모델."""
    model_config = ConfigDict(populate_by_name=True)

    source: Optional[str] = None
    media_format: Optional[str] = Field(default=None, alias="format")
    confirm_takeover: bool = Field(default=False, alias="confirmTakeover")


def _describe(session) -> dict:
    return {
        "roomId": session.room_id,
        "publisherId": session.session_id,
        "status": session.status.value,
        "viewerCount": session.viewer_count,
    }


@router.post("/{room_id}")
async def start_broadcast(
    room_id: str,
    request: BroadcastRequest,
    registry: SessionRegistry = Depends(get_registry),
    _: bool = Depends(verify_auth_header),
):
    """룸 송출을 시작합니다.

    Raises:
        HTTPException: 409 (다른 송출자 점유), 422 (미디어 소스 없음/열기 실패)
    """
    source = request.source or media_config.DEFAULT_SOURCE
    if not source:
        raise HTTPException(status_code=422, detail="Media source required")

    try:
        session = await registry.start_broadcast(
            room_id,
            source,
            media_format=request.media_format or media_config.DEFAULT_FORMAT,
            confirm_takeover=request.confirm_takeover,
        )
    except RoomConflictError as e:
        raise HTTPException(
            status_code=409,
            detail={"message": str(e), "ownerId": e.owner_id},
        )
    except MediaUnavailableError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return _describe(session)


@router.get("/{room_id}")
async def get_broadcast(
    room_id: str,
    registry: SessionRegistry = Depends(get_registry),
    _: bool = Depends(verify_auth_header),
):
    session = registry.get_broadcast(room_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"No hosted broadcast for room '{room_id}'")
    return _describe(session)


@router.delete("/{room_id}")
async def stop_broadcast(
    room_id: str,
    registry: SessionRegistry = Depends(get_registry),
    _: bool = Depends(verify_auth_header),
):
    if not await registry.stop_broadcast(room_id):
        raise HTTPException(status_code=404, detail=f"No hosted broadcast for room '{room_id}'")
    return {"success": True, "roomId": room_id}
