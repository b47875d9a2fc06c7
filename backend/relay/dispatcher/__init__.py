"""이벤트 디스패처 모듈.

Classes:
    BaseDispatcher: 두 모드 공통 규칙 (stop, 연결 종료, 오류 응답)
    SignalingDispatcher: offer 저장 + answer/candidate 전달
    MediaDispatcher: 미디어 협력자 위에서 협상

NOTE: aiortc 구현은 media 모드에서만 lazy import합니다.
"""
from typing import Optional

from ..config import RelayConfig, RelayMode
from ..hub import ConnectionHub
from ..media import MediaServer
from ..registry import SessionRegistry
from ..router import ConnectionRouter
from .base import BaseDispatcher
from .media import MediaDispatcher
from .signaling import SignalingDispatcher


def create_dispatcher(
    config: RelayConfig,
    registry: SessionRegistry,
    router: ConnectionRouter,
    hub: ConnectionHub,
    media: Optional[MediaServer] = None,
) -> BaseDispatcher:
    """설정된 모드에 맞는 디스패처를 만듭니다.

    Args:
        config: 릴레이 설정
        registry: 세션 레지스트리
        router: 연결 라우터
        hub: 연결 허브
        media: media 모드 협력자 (None이면 aiortc 구현 사용)
    """
    if config.MODE is RelayMode.SIGNALING:
        return SignalingDispatcher(registry, router, hub, config)

    if media is None:
        from ..media.aiortc_backend import AiortcMediaServer
        media = AiortcMediaServer()
    return MediaDispatcher(registry, router, hub, config, media)


__all__ = [
    "BaseDispatcher",
    "SignalingDispatcher",
    "MediaDispatcher",
    "create_dispatcher",
]
