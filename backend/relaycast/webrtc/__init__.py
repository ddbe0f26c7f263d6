"""WebRTC 모듈.

피어 링크, 미디어 처리, 그리고 송출/구독/1:1 통화 시그널링 세션을 제공합니다.

Classes:
    PeerLink: aiortc RTCPeerConnection 래퍼
    CandidateInbox: 원격 후보 중복 제거/버퍼링
    PublishSession: 방송 송출 세션 (1:N)
    SubscribeSession: 방송 구독 세션
    DirectCallSession: 1:1 통화 세션
    SessionRegistry: 서버 호스팅 세션 관리

Config:
    ice_config: ICE 서버 설정
    media_config: 미디어 소스 설정
"""

from .config import ice_config, media_config, ICEServerConfig, MediaConfig
from .peer_link import PeerLink, build_rtc_configuration, candidates_from_sdp
from .negotiation import CandidateInbox
from .media import LocalMedia, RemoteStream, MediaSink, open_local_media, CALL_TYPES
from .status import PublishStatus, ViewerStatus, CallStatus, CallRole
from .publish import PublishSession
from .subscribe import SubscribeSession
from .direct_call import DirectCallSession
from .registry import SessionRegistry

__all__ = [
    # Classes
    "PeerLink",
    "CandidateInbox",
    "LocalMedia",
    "RemoteStream",
    "MediaSink",
    "PublishSession",
    "SubscribeSession",
    "DirectCallSession",
    "SessionRegistry",
    # Status
    "PublishStatus",
    "ViewerStatus",
    "CallStatus",
    "CallRole",
    # Helpers
    "build_rtc_configuration",
    "candidates_from_sdp",
    "open_local_media",
    "CALL_TYPES",
    # Config
    "ice_config",
    "media_config",
    "ICEServerConfig",
    "MediaConfig",
]
