"""시그널링 메시지 스키마.

클라이언트와 주고받는 메시지는 모두 `{"type": ..., "data": {...}}` 형식이며,
인바운드 data는 이벤트 타입별 pydantic 모델로 검증합니다. SDP와 candidate는
릴레이 입장에서 불투명한 값이므로 문자열 또는 객체를 그대로 받습니다.
"""

from typing import Any, Dict, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidMessage

# 브라우저는 SDP를 문자열 또는 {"type": "offer", "sdp": "..."} 객체로 보냄
SdpPayload = Union[str, Dict[str, Any]]


class EventPayload(BaseModel):
    """모든 인바운드 이벤트의 공통 필드."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    broadcast_id: str = Field(alias="broadcastId", min_length=1)


class StartPayload(EventPayload):
    sdp_offer: SdpPayload = Field(alias="sdpOffer")

    @field_validator("sdp_offer")
    @classmethod
    def _check_offer(cls, value: SdpPayload) -> SdpPayload:
        return _check_sdp(value)


class JoinPayload(EventPayload):
    sdp_offer: Optional[SdpPayload] = Field(default=None, alias="sdpOffer")

    @field_validator("sdp_offer")
    @classmethod
    def _check_offer(cls, value: Optional[SdpPayload]) -> Optional[SdpPayload]:
        return None if value is None else _check_sdp(value)


class AnswerPayload(EventPayload):
    # 방송자에게 그대로 전달되므로 내용은 검사하지 않음
    sdp_answer: SdpPayload = Field(alias="sdpAnswer")


class IceCandidatePayload(EventPayload):
    candidate: Union[Dict[str, Any], str]


class StopPayload(EventPayload):
    # disconnect_request는 broadcastId 없이 올 수 있음 → 현재 멤버십 사용
    broadcast_id: Optional[str] = Field(default=None, alias="broadcastId")


EVENT_PAYLOADS: Dict[str, Type[EventPayload]] = {
    "start": StartPayload,
    "join": JoinPayload,
    "answer": AnswerPayload,
    "iceCandidate": IceCandidatePayload,
    "stop": StopPayload,
    "disconnect_request": StopPayload,
    "leave": StopPayload,
}


def _check_sdp(value: SdpPayload) -> SdpPayload:
    if isinstance(value, str):
        if not value.strip():
            raise ValueError("SDP must not be empty")
        return value
    sdp = value.get("sdp")
    if not isinstance(sdp, str) or not sdp.strip():
        raise ValueError("SDP object must contain a non-empty 'sdp' string")
    return value


def sdp_text(value: SdpPayload) -> str:
    """SDP 문자열만 꺼냅니다."""
    if isinstance(value, dict):
        return value["sdp"]
    return value


def parse_message(raw: Any) -> Tuple[str, EventPayload]:
    """인바운드 메시지를 검증합니다.

    Args:
        raw: receive_json()으로 받은 값

    Returns:
        Tuple[str, EventPayload]: (이벤트 타입, 검증된 payload)

    Raises:
        InvalidMessage: 형식이 잘못되었거나 알 수 없는 타입인 경우
    """
    if not isinstance(raw, dict):
        raise InvalidMessage("Message must be a JSON object")

    event_type = raw.get("type")
    payload_model = EVENT_PAYLOADS.get(event_type) if isinstance(event_type, str) else None
    if payload_model is None:
        raise InvalidMessage(f"Unknown message type: {event_type!r}")

    data = raw.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidMessage(f"'{event_type}' data must be a JSON object")

    try:
        payload = payload_model.model_validate(data)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InvalidMessage(f"Invalid '{event_type}' message: {errors}") from e
    return event_type, payload
