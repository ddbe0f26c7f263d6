"""세션 상태 값.

UI가 관찰하는 상태 신호입니다. 값은 문자열이라 JSON 응답에 그대로 쓸 수 있습니다.
"""

from enum import Enum


class PublishStatus(str, Enum):
    INITIALIZING = "initializing"
    CONFLICT = "conflict"
    READY = "ready"
    SUPERSEDED = "superseded"
    STOPPED = "stopped"
    ERROR = "error"


class ViewerStatus(str, Enum):
    CONNECTING = "connecting"
    PRESENCE_CREATED = "presence_created"
    OFFER_RECEIVED = "offer_received"
    ANSWER_WRITTEN = "answer_written"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    NOT_FOUND = "not_found"
    LEFT = "left"
    ERROR = "error"


class CallStatus(str, Enum):
    INITIALIZING = "initializing"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


class CallRole(str, Enum):
    CALLER = "caller"
    CALLEE = "callee"


# PeerLink 연결 상태 → 통화 상태 (그 외 상태는 변화 없음)
CALL_STATE_MAP = {
    "connecting": CallStatus.CONNECTING,
    "connected": CallStatus.CONNECTED,
    "disconnected": CallStatus.DISCONNECTED,
    "failed": CallStatus.FAILED,
}
