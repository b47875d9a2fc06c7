"""미디어 협력자 모듈.

Classes:
    MediaServer / MediaPipeline / MediaEndpoint: 협력자 인터페이스
    MediaResources: 세션이 소유하는 파이프라인과 엔드포인트

aiortc 구현(AiortcMediaServer)은 media 모드에서만 필요하므로
`relay.media.aiortc_backend`에서 직접 import 합니다.
"""

from .base import (
    CandidateCallback,
    MediaEndpoint,
    MediaPipeline,
    MediaResources,
    MediaServer,
)

__all__ = [
    "CandidateCallback",
    "MediaEndpoint",
    "MediaPipeline",
    "MediaResources",
    "MediaServer",
]
