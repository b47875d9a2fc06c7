"""방송 시그널링 릴레이 패키지.

방송자 한 명이 broadcastId로 방송을 열고, 여러 시청자가 WebSocket으로
참여하도록 WebRTC 협상 메시지를 중계합니다.

Modules:
    config: 환경변수 기반 설정 (모드, 중복 start 정책, ICE 서버, 로그)
    errors: 클라이언트에 돌려주는 오류 종류
    registry: broadcastId → 세션
    router: 연결 → 멤버십
    hub: 연결 ID → WebSocket 전송
    schemas: 인바운드 메시지 검증
    dispatcher: 이벤트 처리 (signaling / media)
    media: 미디어 협력자 인터페이스와 aiortc 구현
"""

from .config import (
    DuplicateStartPolicy,
    ICEServerConfig,
    LogConfig,
    RelayConfig,
    RelayMode,
    ice_config,
    load_relay_config,
    log_config,
    relay_config,
)
from .errors import (
    AlreadyExists,
    ConnectionFailed,
    InvalidMessage,
    NegotiationFailed,
    NotFound,
    RelayError,
)
from .hub import ConnectionHub
from .registry import Session, SessionRegistry, SessionState
from .router import ConnectionRouter, Membership, Role
from .dispatcher import BaseDispatcher, MediaDispatcher, SignalingDispatcher, create_dispatcher

__all__ = [
    # Config
    "DuplicateStartPolicy",
    "ICEServerConfig",
    "LogConfig",
    "RelayConfig",
    "RelayMode",
    "ice_config",
    "load_relay_config",
    "log_config",
    "relay_config",
    # Errors
    "AlreadyExists",
    "ConnectionFailed",
    "InvalidMessage",
    "NegotiationFailed",
    "NotFound",
    "RelayError",
    # State
    "ConnectionHub",
    "ConnectionRouter",
    "Membership",
    "Role",
    "Session",
    "SessionRegistry",
    "SessionState",
    # Dispatch
    "BaseDispatcher",
    "MediaDispatcher",
    "SignalingDispatcher",
    "create_dispatcher",
]
