"""릴레이 에러 정의.

디스패처가 이벤트 단위로 잡아서 발신 연결에 `error` 이벤트로 돌려주는
예외 계층입니다. 어떤 에러도 프로세스에 치명적이지 않습니다.
"""

from typing import Optional


class RelayError(Exception):
    """모든 릴레이 에러의 기본 클래스.

    Attributes:
        kind (str): 클라이언트에 전달되는 에러 종류
        message (str): 사람이 읽을 수 있는 에러 메시지
    """

    kind = "RelayError"
    default_message = "Relay error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> dict:
        """`error` 이벤트의 data 필드로 변환합니다."""
        return {"kind": self.kind, "message": self.message}


class NotFound(RelayError):
    """존재하지 않는 broadcastId."""

    kind = "NotFound"
    default_message = "Broadcast not found"


class AlreadyExists(RelayError):
    """중복 start 또는 이미 다른 방송에 속한 연결."""

    kind = "AlreadyExists"
    default_message = "Broadcast already exists"


class NegotiationFailed(RelayError):
    """미디어 협력자와의 offer/answer/candidate 교환 실패."""

    kind = "NegotiationFailed"
    default_message = "Negotiation failed"


class ConnectionFailed(RelayError):
    """엔드포인트 간 연결 실패 (미디어 모드)."""

    kind = "ConnectionFailed"
    default_message = "Error connecting endpoints"


class InvalidMessage(RelayError):
    """형식이 잘못된 인바운드 메시지."""

    kind = "InvalidMessage"
    default_message = "Invalid message"
