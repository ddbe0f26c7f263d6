"""Shared DTOs and errors."""

from .dto import (
    SessionDescription,
    IceCandidate,
    RoomDocument,
    ViewerRecord,
    CallDocument,
    now_ms,
)
from .errors import (
    RelaycastError,
    RoomNotFoundError,
    CallNotFoundError,
    RoomConflictError,
    MediaUnavailableError,
    SignalingWriteError,
    DocumentExistsError,
    DocumentMissingError,
)

__all__ = [
    "SessionDescription",
    "IceCandidate",
    "RoomDocument",
    "ViewerRecord",
    "CallDocument",
    "now_ms",
    "RelaycastError",
    "RoomNotFoundError",
    "CallNotFoundError",
    "RoomConflictError",
    "MediaUnavailableError",
    "SignalingWriteError",
    "DocumentExistsError",
    "DocumentMissingError",
]
