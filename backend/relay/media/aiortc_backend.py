"""aiortc 기반 미디어 협력자.

이 모듈은 미디어 협력자 인터페이스를 aiortc로 구현합니다. 엔드포인트 하나가
RTCPeerConnection 하나이고, 파이프라인은 MediaRelay 하나를 공유하여 방송자의
트랙을 각 시청자에게 독립적인 구독으로 전달합니다 (SFU 패턴).

WebRTC Flow:
    1. 방송자 엔드포인트가 offer를 처리 → on("track")으로 방송자 트랙 수신
    2. 시청자 엔드포인트 생성
    3. connect(): 방송자 트랙을 MediaRelay.subscribe()로 시청자 연결에 추가
    4. 시청자 offer 처리 → answer 반환
    5. 로컬 SDP에 포함된 candidate를 콜백으로 전달

Note:
    - aiortc는 setLocalDescription() 안에서 candidate 수집을 끝내므로
      gather_candidates()는 로컬 SDP의 a=candidate 라인을 알림으로 보냅니다.
    - 트랙은 시청자 offer 처리 전에 추가되어야 합니다 (answer에 포함되도록).

See Also:
    aiortc Documentation: https://aiortc.readthedocs.io/
"""
import asyncio
import logging
import uuid
from typing import List, Optional

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaRelay
from aiortc.sdp import candidate_from_sdp

from ..config import ICEServerConfig, ice_config as default_ice_config
from .base import MediaEndpoint, MediaPipeline, MediaServer

logger = logging.getLogger(__name__)


def candidates_from_sdp(sdp: str) -> List[dict]:
    """SDP 본문에서 ICE candidate들을 추출합니다.

    Args:
        sdp: SDP 문자열

    Returns:
        List[dict]: {"candidate", "sdpMid", "sdpMLineIndex"} 딕셔너리 리스트

    Examples:
        >>> sdp = "v=0\\r\\nm=audio 9 UDP/TLS/RTP/SAVPF 111\\r\\na=mid:0\\r\\n" \\
        ...       "a=candidate:1 1 udp 2130706431 10.0.0.1 5000 typ host\\r\\n"
        >>> candidates_from_sdp(sdp)[0]["sdpMid"]
        '0'
    """
    candidates = []
    mline_index = -1
    mid: Optional[str] = None
    for line in sdp.splitlines():
        line = line.strip()
        if line.startswith("m="):
            mline_index += 1
            mid = None
        elif line.startswith("a=mid:"):
            mid = line[len("a=mid:"):]
        elif line.startswith("a=candidate:") and mline_index >= 0:
            candidates.append({
                "candidate": line[len("a="):],
                "sdpMid": mid,
                "sdpMLineIndex": mline_index,
            })
    return candidates


def parse_candidate(candidate_data: dict):
    """클라이언트 candidate 딕셔너리를 aiortc RTCIceCandidate로 변환합니다.

    브라우저가 보내는 두 가지 형태를 모두 지원합니다:
        - {"candidate": "candidate:...", "sdpMid": ..., "sdpMLineIndex": ...}
        - {"candidate": {"candidate": "candidate:...", "sdpMid": ..., ...}}

    Returns:
        Optional[RTCIceCandidate]: 빈 candidate(end-of-candidates)이면 None

    Raises:
        ValueError: candidate 형식이 잘못된 경우
    """
    inner_candidate = candidate_data.get("candidate", "")
    if isinstance(inner_candidate, dict):
        candidate_str = inner_candidate.get("candidate", "")
        sdp_mid = inner_candidate.get("sdpMid")
        sdp_mline_index = inner_candidate.get("sdpMLineIndex")
    else:
        candidate_str = inner_candidate or ""
        sdp_mid = candidate_data.get("sdpMid")
        sdp_mline_index = candidate_data.get("sdpMLineIndex")

    if not candidate_str:
        return None

    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[10:]

    try:
        ice_candidate = candidate_from_sdp(candidate_str)
    except (AssertionError, ValueError, IndexError) as e:
        raise ValueError(f"Invalid ICE candidate: {candidate_str!r}") from e
    ice_candidate.sdpMid = sdp_mid
    ice_candidate.sdpMLineIndex = sdp_mline_index
    return ice_candidate


class AiortcEndpoint(MediaEndpoint):
    """RTCPeerConnection 하나로 구현한 엔드포인트.

    Attributes:
        pc (RTCPeerConnection): 클라이언트와의 WebRTC 연결
        tracks (List[MediaStreamTrack]): 클라이언트로부터 수신한 트랙
    """

    def __init__(self, pipeline: "AiortcPipeline", configuration: Optional[RTCConfiguration]):
        self.id = str(uuid.uuid4())[:8]
        self.pipeline = pipeline
        self.pc = RTCPeerConnection(configuration=configuration)
        self.tracks: List[MediaStreamTrack] = []
        self._released = False

        @self.pc.on("track")
        def on_track(track: MediaStreamTrack):
            logger.info(f"[WebRTC] 엔드포인트 {self.id} {track.kind} 트랙 수신")
            self.tracks.append(track)

            @track.on("ended")
            async def on_ended():
                logger.info(f"[WebRTC] 엔드포인트 {self.id} {track.kind} 트랙 종료")

        @self.pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.info(f"[WebRTC] 엔드포인트 {self.id} 연결 상태: {self.pc.connectionState}")

    async def process_offer(self, sdp_offer: str) -> str:
        logger.info(f"[WebRTC] 엔드포인트 {self.id} offer 처리")
        await self.pc.setRemoteDescription(RTCSessionDescription(sdp=sdp_offer, type="offer"))
        answer = await self.pc.createAnswer()
        await self.pc.setLocalDescription(answer)

        candidate_count = self.pc.localDescription.sdp.count("a=candidate:")
        logger.info(f"[WebRTC] 엔드포인트 {self.id} answer 생성: 후보수={candidate_count}, "
                    f"gathering={self.pc.iceGatheringState}")
        return self.pc.localDescription.sdp

    async def gather_candidates(self) -> None:
        if self.pc.localDescription is None:
            raise RuntimeError(f"Endpoint {self.id} has no local description")
        for candidate in candidates_from_sdp(self.pc.localDescription.sdp):
            await self._emit_candidate(candidate)

    async def add_candidate(self, candidate: dict) -> None:
        ice_candidate = parse_candidate(candidate)
        if ice_candidate is None:
            logger.debug(f"[WebRTC] 엔드포인트 {self.id} end-of-candidates 수신")
            return
        await self.pc.addIceCandidate(ice_candidate)
        logger.debug(f"[WebRTC] 엔드포인트 {self.id} ICE candidate 추가 완료")

    async def connect(self, sink: MediaEndpoint) -> None:
        if not isinstance(sink, AiortcEndpoint):
            raise TypeError("AiortcEndpoint can only connect to another AiortcEndpoint")
        if not self.tracks:
            raise RuntimeError(f"Endpoint {self.id} has no media tracks to forward")
        for track in self.tracks:
            # MediaRelay.subscribe() for independent frame buffer per sink
            sink.pc.addTrack(self.pipeline.relay.subscribe(track))
            logger.info(f"[WebRTC] {track.kind} 릴레이: {self.id} -> {sink.id}")

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        if self in self.pipeline.endpoints:
            self.pipeline.endpoints.remove(self)
        await self.pc.close()
        logger.info(f"[WebRTC] 엔드포인트 {self.id} 연결 종료")


class AiortcPipeline(MediaPipeline):
    """방송 하나의 엔드포인트들과 MediaRelay를 묶는 파이프라인."""

    def __init__(self, configuration: Optional[RTCConfiguration]):
        self.id = str(uuid.uuid4())[:8]
        self.configuration = configuration
        self.relay = MediaRelay()
        self.endpoints: List[AiortcEndpoint] = []
        self._released = False

    async def create_endpoint(self) -> AiortcEndpoint:
        if self._released:
            raise RuntimeError(f"Pipeline {self.id} already released")
        endpoint = AiortcEndpoint(self, self.configuration)
        self.endpoints.append(endpoint)
        logger.info(f"[WebRTC] 파이프라인 {self.id} 엔드포인트 {endpoint.id} 생성")
        return endpoint

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        endpoints, self.endpoints = self.endpoints, []
        results = await asyncio.gather(*(ep.release() for ep in endpoints), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning(f"[WebRTC] 파이프라인 {self.id} 엔드포인트 해제 실패: {result}")
        logger.info(f"[WebRTC] 파이프라인 {self.id} 해제 ({len(endpoints)}개 엔드포인트)")


class AiortcMediaServer(MediaServer):
    """aiortc 미디어 협력자 진입점.

    ICE 서버(STUN/TURN) 설정으로 RTCConfiguration을 만들어 모든 파이프라인에
    공유합니다.
    """

    def __init__(self, ice: Optional[ICEServerConfig] = None):
        self.ice = ice or default_ice_config
        self.configuration = self._build_configuration()
        self.pipelines: List[AiortcPipeline] = []

    def _build_configuration(self) -> RTCConfiguration:
        ice_servers = []

        if self.ice.STUN_SERVER_URL:
            ice_servers.append(RTCIceServer(urls=[self.ice.STUN_SERVER_URL]))
            logger.info(f"[WebRTC] STUN 서버 설정: {self.ice.STUN_SERVER_URL}")

        for stun_url in self.ice.DEFAULT_STUN_SERVERS:
            ice_servers.append(RTCIceServer(urls=[stun_url]))

        if self.ice.has_turn_server:
            ice_servers.append(RTCIceServer(
                urls=[self.ice.TURN_SERVER_URL],
                username=self.ice.TURN_USERNAME,
                credential=self.ice.TURN_CREDENTIAL
            ))
            logger.info(f"[WebRTC] TURN 서버 설정: {self.ice.TURN_SERVER_URL}")
        else:
            logger.warning("[WebRTC] TURN 서버 설정 없음 - STUN만 사용")

        return RTCConfiguration(iceServers=ice_servers)

    async def create_pipeline(self) -> AiortcPipeline:
        self.pipelines = [p for p in self.pipelines if not p._released]
        pipeline = AiortcPipeline(self.configuration)
        self.pipelines.append(pipeline)
        logger.info(f"[WebRTC] 파이프라인 {pipeline.id} 생성")
        return pipeline

    async def close(self) -> None:
        pipelines, self.pipelines = self.pipelines, []
        await asyncio.gather(*(p.release() for p in pipelines), return_exceptions=True)
