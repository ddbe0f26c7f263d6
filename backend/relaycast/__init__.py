"""Relaycast: 공유 문서 스토어를 랑데부로 쓰는 WebRTC 시그널링 코어."""

__version__ = "0.1.0"
