"""로컬/원격 미디어 모듈.

로컬 미디어 소스 열기, 송출 트랙 팬아웃, 수신 트랙 묶음과 소비(녹화) 기능을
제공합니다.

Classes:
    LocalMedia: 로컬 트랙 묶음 (송출자 팬아웃용 MediaRelay 포함)
    RemoteStream: 원격 피어에게서 받은 트랙 묶음
    MediaSink: 수신 트랙 소비기 (MediaRecorder 또는 MediaBlackhole)
"""

import logging
from typing import List, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder, MediaRelay

from ..shared.errors import MediaUnavailableError

logger = logging.getLogger(__name__)

CALL_TYPES = ("video", "audio")


class LocalMedia:
    """로컬 미디어 트랙 묶음.

    하나의 소스를 여러 피어에게 보내려면 피어마다 독립적인 프레임 버퍼가
    필요하므로 `tracks_for_peer()`는 MediaRelay 구독 트랙을 돌려줍니다.

    Attributes:
        tracks (List[MediaStreamTrack]): 원본 로컬 트랙
        player (Optional[MediaPlayer]): 트랙을 만든 플레이어
        relay (Optional[MediaRelay]): 팬아웃용 릴레이 (None이면 원본 트랙 공유)
    """

    def __init__(
        self,
        tracks: List[MediaStreamTrack],
        player: Optional[MediaPlayer] = None,
        relay: Optional[MediaRelay] = None,
    ):
        self.tracks = list(tracks)
        self.player = player
        self.relay = relay
        self.stopped = False

    def tracks_for_peer(self) -> List[MediaStreamTrack]:
        if self.relay is None:
            return list(self.tracks)
        return [self.relay.subscribe(track) for track in self.tracks]

    def stop(self) -> None:
        """모든 로컬 트랙을 정지합니다. 여러 번 호출해도 안전합니다."""
        if self.stopped:
            return
        self.stopped = True
        for track in self.tracks:
            track.stop()
        logger.info(f"[Media] 로컬 트랙 {len(self.tracks)}개 정지")


def open_local_media(
    source: str,
    media_format: Optional[str] = None,
    options: Optional[dict] = None,
    kind: str = "video",
    fanout: bool = False,
) -> LocalMedia:
    """aiortc MediaPlayer로 로컬 미디어를 엽니다.

    Args:
        source: 파일 경로, 캡처 장치 또는 URL
        media_format: ffmpeg 입력 포맷 (예: "v4l2")
        options: ffmpeg 입력 옵션
        kind: "video"면 오디오+비디오, "audio"면 오디오만
        fanout: 여러 피어에게 보낼 경우 True (MediaRelay 사용)

    Returns:
        LocalMedia: 열린 트랙 묶음

    Raises:
        MediaUnavailableError: 소스를 열 수 없거나 쓸 수 있는 트랙이 없을 때
    """
    if kind not in CALL_TYPES:
        raise MediaUnavailableError(f"Unsupported media kind: {kind}")

    try:
        player = MediaPlayer(source, format=media_format, options=options or {})
    except Exception as e:
        logger.error(f"[Media] 미디어 소스 열기 실패: source={source}, {type(e).__name__}: {e}")
        raise MediaUnavailableError(f"Cannot open media source '{source}': {e}") from e

    tracks = [player.audio]
    if kind == "video":
        tracks.append(player.video)
    tracks = [t for t in tracks if t is not None]
    if not tracks:
        raise MediaUnavailableError(f"No {kind} tracks in media source '{source}'")

    logger.info(f"[Media] 로컬 미디어 열림: source={source}, 트랙={[t.kind for t in tracks]}")
    return LocalMedia(tracks, player=player, relay=MediaRelay() if fanout else None)


class RemoteStream:
    """원격 피어에게서 받은 트랙 묶음."""

    def __init__(self):
        self.tracks: List[MediaStreamTrack] = []

    def add(self, track: MediaStreamTrack) -> None:
        self.tracks.append(track)

    @property
    def kinds(self) -> List[str]:
        return [t.kind for t in self.tracks]


class MediaSink:
    """수신 트랙 소비기.

    aiortc는 소비되지 않은 트랙의 프레임을 계속 쌓으므로, 서버에서 호스팅하는
    구독자/통화 세션은 수신 트랙을 녹화하거나 버려야 합니다. 녹화기는 시작 시점에
    추가된 트랙만 기록하므로 연결이 완료된 뒤 `start()`를 호출합니다.
    """

    def __init__(self, record_to: Optional[str] = None):
        self.record_to = record_to
        self._sink = MediaRecorder(record_to) if record_to else MediaBlackhole()
        self._started = False

    def add(self, track: MediaStreamTrack) -> None:
        self._sink.addTrack(track)

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        await self._sink.start()
        logger.info(f"[Media] 수신 미디어 소비 시작 (녹화: {self.record_to or '없음'})")

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self._sink.stop()
