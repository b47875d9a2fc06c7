"""릴레이 설정.

동작 모드, 중복 start 정책, ICE(STUN/TURN) 서버 등 환경변수 기반 설정.
"""

import os
import logging
from enum import Enum
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional

# 환경변수 로드 (app.py에서도 로드됨)
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent / "config" / ".env"
load_dotenv(_env_path)


class RelayMode(str, Enum):
    """릴레이 동작 모드."""

    SIGNALING = "signaling"
    MEDIA = "media"


class DuplicateStartPolicy(str, Enum):
    """이미 존재하는 broadcastId에 대한 start 처리 정책."""

    IGNORE = "ignore"
    REJECT = "reject"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"[Config] {name}={raw!r} 파싱 실패, 기본값 {default} 사용")
        return default


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정."""

    # TURN 서버
    TURN_SERVER_URL: Optional[str] = field(default_factory=lambda: os.getenv("TURN_SERVER_URL"))
    TURN_USERNAME: Optional[str] = field(default_factory=lambda: os.getenv("TURN_USERNAME"))
    TURN_CREDENTIAL: Optional[str] = field(default_factory=lambda: os.getenv("TURN_CREDENTIAL"))

    # STUN 서버
    STUN_SERVER_URL: Optional[str] = field(default_factory=lambda: os.getenv("STUN_SERVER_URL"))

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    )

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def as_ice_servers(self) -> List[dict]:
        """브라우저 RTCPeerConnection 형식의 ICE 서버 리스트를 반환합니다.

        Returns:
            List[dict]: STUN(커스텀 + 기본) 및 설정된 경우 TURN 항목
        """
        ice_servers = []
        if self.STUN_SERVER_URL:
            ice_servers.append({"urls": self.STUN_SERVER_URL})
        for stun_url in self.DEFAULT_STUN_SERVERS:
            ice_servers.append({"urls": stun_url})
        if self.has_turn_server:
            ice_servers.append({
                "urls": self.TURN_SERVER_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL,
            })
        return ice_servers


# ============================================================
# 릴레이 동작 설정
# ============================================================

@dataclass(frozen=True)
class RelayConfig:
    """릴레이 동작 관련 설정.

    Attributes:
        MODE: signaling(순수 전달) 또는 media(미디어 협력자 사용)
        DUPLICATE_START: 중복 start 정책. 비어 있으면 모드 기본값 사용
            (signaling -> ignore, media -> reject)
        JOIN_READY_TIMEOUT: join이 PENDING 세션의 확정을 기다리는 최대 시간 (초)
    """

    MODE: RelayMode = field(
        default_factory=lambda: RelayMode(os.getenv("RELAY_MODE", "signaling").strip().lower())
    )
    DUPLICATE_START: Optional[DuplicateStartPolicy] = field(
        default_factory=lambda: (
            DuplicateStartPolicy(os.getenv("RELAY_DUPLICATE_START").strip().lower())
            if os.getenv("RELAY_DUPLICATE_START")
            else None
        )
    )
    JOIN_READY_TIMEOUT: float = field(
        default_factory=lambda: _env_float("RELAY_JOIN_READY_TIMEOUT", 10.0)
    )

    @property
    def duplicate_start_policy(self) -> DuplicateStartPolicy:
        """실제로 적용되는 중복 start 정책."""
        if self.DUPLICATE_START is not None:
            return self.DUPLICATE_START
        if self.MODE is RelayMode.MEDIA:
            return DuplicateStartPolicy.REJECT
        return DuplicateStartPolicy.IGNORE


# ============================================================
# 로그 설정
# ============================================================

@dataclass(frozen=True)
class LogConfig:
    """로그 레벨 및 보관 기간 설정."""

    LEVEL: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    LOG_DIR: str = "logs"

    # 로그 보관 기간 (일) - 기본 60일 (2개월)
    RETENTION_DAYS: int = field(
        default_factory=lambda: int(_env_float("LOG_RETENTION_DAYS", 60))
    )


def load_relay_config() -> RelayConfig:
    """현재 환경변수로 RelayConfig를 새로 만듭니다."""
    return RelayConfig()


# ============================================================
# 싱글톤 인스턴스
# ============================================================

ice_config = ICEServerConfig()
relay_config = load_relay_config()
log_config = LogConfig()


# ============================================================
# 설정 로드 확인 로그
# ============================================================

logger.info(f"[Relay Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(f"[Relay Config] 모드: {relay_config.MODE.value}, "
            f"중복 start 정책: {relay_config.duplicate_start_policy.value}")
logger.info(f"[Relay Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
