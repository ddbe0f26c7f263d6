"""Relaycast 예외 정의.

세션 계층에서 호출자에게 전달되는 오류만 예외로 정의합니다.
후보(candidate) 적용 실패와 종료 시 삭제 실패는 로그만 남기고 진행하므로
별도 예외 타입이 없습니다.
"""

from typing import Optional


class RelaycastError(Exception):
    """Relaycast 기본 예외."""


class RoomNotFoundError(RelaycastError):
    """참가하려는 룸 문서가 없거나 활성 상태가 아닐 때 발생합니다."""

    def __init__(self, room_id: str):
        super().__init__(f"Room '{room_id}' not found")
        self.room_id = room_id


class CallNotFoundError(RelaycastError):
    """호스팅 중인 통화 세션을 찾을 수 없을 때 발생합니다."""

    def __init__(self, call_id: str):
        super().__init__(f"Call '{call_id}' not found")
        self.call_id = call_id


class RoomConflictError(RelaycastError):
    """다른 송출자가 이미 룸을 점유하고 있을 때 발생합니다.

    오류가 아니라 결정 지점입니다. 호출자는 인계(takeover)를 확인하거나
    포기해야 합니다.
    """

    def __init__(self, room_id: str, owner_id: Optional[str]):
        super().__init__(f"Room '{room_id}' is owned by another publisher")
        self.room_id = room_id
        self.owner_id = owner_id


class MediaUnavailableError(RelaycastError):
    """로컬 미디어 소스를 열 수 없을 때 발생합니다."""


class SignalingWriteError(RelaycastError):
    """시그널링 스토어 쓰기가 거부되었을 때 발생합니다."""


class DocumentExistsError(SignalingWriteError):
    """create-if-absent 쓰기 대상 문서가 이미 존재할 때 발생합니다."""

    def __init__(self, path: str):
        super().__init__(f"Document '{path}' already exists")
        self.path = path


class DocumentMissingError(SignalingWriteError):
    """존재할 때만 쓰는 연산의 대상 문서가 없을 때 발생합니다."""

    def __init__(self, path: str):
        super().__init__(f"Document '{path}' does not exist")
        self.path = path
