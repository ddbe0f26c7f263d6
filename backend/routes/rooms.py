"""방송 룸 카탈로그 API 라우터.

설정된 룸 목록과 각 룸의 현재 송출 상태를 스토어에서 읽어 제공합니다.
"""

from fastapi import APIRouter, Depends

from relaycast.shared import RoomDocument
from relaycast.signaling import SignalingStore, room_path, signaling_config, viewers_path

from .deps import get_store

router = APIRouter(prefix="/api/rooms", tags=["rooms"])


async def _room_state(store: SignalingStore, room_id: str, name: str) -> dict:
    fields = await store.get(room_path(room_id))
    room = RoomDocument.model_validate(fields) if fields is not None else None
    viewer_ids = await store.list_ids(viewers_path(room_id)) if room is not None else []
    return {
        "id": room_id,
        "name": name,
        "active": bool(room and room.is_active),
        "publisherId": room.publisher_id if room else None,
        "viewerCount": len(viewer_ids),
    }


@router.get("")
async def list_rooms(store: SignalingStore = Depends(get_store)):
    """카탈로그의 모든 룸과 송출 상태를 조회합니다.

    Returns:
        dict: {"rooms": [{"id", "name", "active", "publisherId", "viewerCount"}, ...]}
    """
    rooms = [
        await _room_state(store, room_id, name)
        for room_id, name in signaling_config.ROOMS
    ]
    return {"rooms": rooms}


@router.get("/{room_id}")
async def get_room(room_id: str, store: SignalingStore = Depends(get_store)):
    """룸 하나의 송출 상태를 조회합니다. 카탈로그에 없는 룸 ID도 허용합니다."""
    name = signaling_config.room_names.get(room_id, room_id)
    return await _room_state(store, room_id, name)
