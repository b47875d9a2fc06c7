"""미디어 협력자 인터페이스.

media 모드에서 릴레이는 실제 미디어 처리를 외부 협력자에게 위임합니다.
협력자는 파이프라인(방송 하나) 안에 참가자별 엔드포인트를 만들고,
offer 처리, candidate 수집/추가, 엔드포인트 간 연결을 제공합니다.
모든 연산은 비동기이며 실패할 수 있습니다.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

# candidate dict: {"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0}
CandidateCallback = Callable[[dict], Awaitable[None]]


class MediaEndpoint(ABC):
    """파이프라인 안의 참가자 하나를 위한 미디어 엔드포인트."""

    id: str = ""
    _candidate_callback: Optional[CandidateCallback] = None

    def on_candidate(self, callback: Optional[CandidateCallback]) -> None:
        """candidate 발견 알림 콜백을 등록합니다."""
        self._candidate_callback = callback

    async def _emit_candidate(self, candidate: dict) -> None:
        if self._candidate_callback is None:
            logger.debug(f"[Media] 엔드포인트 {self.id} candidate 콜백 없음")
            return
        await self._candidate_callback(candidate)

    @abstractmethod
    async def process_offer(self, sdp_offer: str) -> str:
        """원격 offer를 적용하고 SDP answer를 반환합니다."""

    @abstractmethod
    async def gather_candidates(self) -> None:
        """로컬 candidate 수집을 시작합니다. 발견된 candidate는 콜백으로 전달됩니다."""

    @abstractmethod
    async def add_candidate(self, candidate: dict) -> None:
        """원격 candidate를 추가합니다."""

    @abstractmethod
    async def connect(self, sink: "MediaEndpoint") -> None:
        """이 엔드포인트의 미디어를 sink 엔드포인트로 보냅니다."""

    @abstractmethod
    async def release(self) -> None:
        """엔드포인트를 해제합니다. 여러 번 호출해도 안전해야 합니다."""


class MediaPipeline(ABC):
    """방송 하나의 미디어 파이프라인."""

    @abstractmethod
    async def create_endpoint(self) -> MediaEndpoint:
        """새 엔드포인트를 만듭니다."""

    @abstractmethod
    async def release(self) -> None:
        """파이프라인과 그 안의 모든 엔드포인트를 해제합니다. 멱등이어야 합니다."""


class MediaServer(ABC):
    """미디어 협력자 진입점."""

    @abstractmethod
    async def create_pipeline(self) -> MediaPipeline:
        """새 파이프라인을 만듭니다."""

    async def close(self) -> None:
        """서버 종료 시 호출됩니다."""


@dataclass
class MediaResources:
    """세션이 소유하는 미디어 리소스.

    Attributes:
        pipeline (MediaPipeline): 방송 파이프라인
        endpoint (Optional[MediaEndpoint]): 방송자 엔드포인트
        viewer_endpoints (Dict[str, MediaEndpoint]): 연결 ID → 시청자 엔드포인트
            (협상 중인 엔드포인트 포함)
    """
    pipeline: MediaPipeline
    endpoint: Optional[MediaEndpoint] = None
    viewer_endpoints: Dict[str, MediaEndpoint] = field(default_factory=dict)
    released: bool = False

    def endpoint_for(self, connection_id: str, broadcaster: str) -> Optional[MediaEndpoint]:
        if connection_id == broadcaster:
            return self.endpoint
        return self.viewer_endpoints.get(connection_id)

    async def release_viewer(self, connection_id: str) -> None:
        endpoint = self.viewer_endpoints.pop(connection_id, None)
        if endpoint is not None:
            await endpoint.release()

    async def release(self) -> None:
        """파이프라인을 정확히 한 번 해제합니다."""
        if self.released:
            return
        self.released = True
        self.viewer_endpoints.clear()
        await self.pipeline.release()
