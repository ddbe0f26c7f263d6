"""호스팅 구독 API 라우터.

서버 프로세스가 구독자로 룸에 입장해 수신 미디어를 소비(또는 녹화)합니다.
"""

import logging
import time

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from relaycast.shared import RoomNotFoundError
from relaycast.webrtc import SessionRegistry, media_config

from .deps import get_registry, verify_auth_header

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/view", tags=["view"])


class ViewRequest(BaseModel):
    """구독 입장 요청 모델."""
    record: bool = False


def _describe(session) -> dict:
    stream = session.remote_stream
    return {
        "roomId": session.room_id,
        "viewerId": session.viewer_id,
        "status": session.status.value,
        "tracks": stream.kinds if stream else [],
        "recording": session.sink.record_to if session.sink else None,
    }


@router.post("/{room_id}")
async def join_view(
    room_id: str,
    request: ViewRequest,
    registry: SessionRegistry = Depends(get_registry),
    _: bool = Depends(verify_auth_header),
):
    """룸에 호스팅 구독자로 입장합니다.

    Raises:
        HTTPException: 404 (룸 없음 또는 비활성)
    """
    record_to = None
    if request.record:
        media_config.RECORDINGS_DIR.mkdir(parents=True, exist_ok=True)
        record_to = str(media_config.RECORDINGS_DIR / f"{room_id}_{int(time.time())}.mp4")

    try:
        session = await registry.join_view(room_id, record_to=record_to)
    except RoomNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return _describe(session)


@router.get("/{viewer_id}")
async def get_view(
    viewer_id: str,
    registry: SessionRegistry = Depends(get_registry),
    _: bool = Depends(verify_auth_header),
):
    session = registry.get_view(viewer_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Viewer '{viewer_id}' not found")
    return _describe(session)


@router.delete("/{viewer_id}")
async def leave_view(
    viewer_id: str,
    registry: SessionRegistry = Depends(get_registry),
    _: bool = Depends(verify_auth_header),
):
    if not await registry.leave_view(viewer_id):
        raise HTTPException(status_code=404, detail=f"Viewer '{viewer_id}' not found")
    return {"success": True, "viewerId": viewer_id}
