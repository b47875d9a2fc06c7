"""media 모드 디스패처.

모든 참가자의 연결을 미디어 협력자 위에서 종단합니다. 방송자 하나당 파이프라인
하나와 방송자 엔드포인트 하나를 만들고, 시청자마다 전용 엔드포인트를 만들어
방송자 엔드포인트에 연결합니다.

협상은 단계별 비동기 파이프라인입니다:
    start: create_pipeline → create_endpoint → process_offer → (startResponse)
           → gather_candidates → confirm
    join:  create_endpoint → connect → process_offer → add_viewer
           → (joinResponse) → gather_candidates

어느 단계든 실패하면 그 시도에서 할당한 리소스를 모두 해제한 뒤 클라이언트에
`error`를 보냅니다. 각 await 이후에는 시작할 때의 세션이 여전히 등록되어
있는지 다시 확인하며, 그 사이 세션이 파괴되었으면 자신의 리소스를 정리하고
거절합니다. 레지스트리에 대한 락은 await 동안 잡지 않습니다.
"""
import asyncio
import logging
from typing import Any, Awaitable, Optional, Type

from ..config import RelayConfig, RelayMode
from ..errors import (
    AlreadyExists,
    ConnectionFailed,
    InvalidMessage,
    NegotiationFailed,
    NotFound,
    RelayError,
)
from ..hub import ConnectionHub
from ..media import CandidateCallback, MediaEndpoint, MediaResources, MediaServer
from ..registry import Session, SessionRegistry
from ..router import ConnectionRouter
from ..schemas import (
    AnswerPayload,
    IceCandidatePayload,
    JoinPayload,
    StartPayload,
    sdp_text,
)
from .base import BaseDispatcher

logger = logging.getLogger(__name__)


class MediaDispatcher(BaseDispatcher):
    """미디어 협력자를 사용하는 디스패처.

    Attributes:
        media (MediaServer): 미디어 협력자
    """

    mode = RelayMode.MEDIA

    def __init__(
        self,
        registry: SessionRegistry,
        router: ConnectionRouter,
        hub: ConnectionHub,
        config: RelayConfig,
        media: MediaServer,
    ):
        super().__init__(registry, router, hub, config)
        self.media = media

    async def on_start(self, connection_id: str, payload: StartPayload) -> None:
        broadcast_id = payload.broadcast_id
        if broadcast_id in self.registry:
            await self._duplicate_start(connection_id, broadcast_id)
            return
        self._ensure_free(connection_id, broadcast_id)

        session = self.registry.create_session(broadcast_id, connection_id)
        self.router.set_broadcaster(connection_id, broadcast_id)
        resources: Optional[MediaResources] = None
        try:
            pipeline = await self._stage(
                self.media.create_pipeline(), NegotiationFailed, "Media pipeline error"
            )
            resources = MediaResources(pipeline=pipeline)
            session.media = resources
            self._ensure_current(session)

            endpoint = await self._stage(
                pipeline.create_endpoint(), NegotiationFailed, "WebRtcEndpoint creation error"
            )
            resources.endpoint = endpoint
            self._ensure_current(session)
            endpoint.on_candidate(self._candidate_forwarder(connection_id, broadcast_id))

            sdp_answer = await self._stage(
                endpoint.process_offer(sdp_text(payload.sdp_offer)),
                NegotiationFailed,
                "Error processing offer",
            )
            self._ensure_current(session)
            await self.hub.send(connection_id, "startResponse", {
                "broadcastId": broadcast_id,
                "sdpAnswer": sdp_answer,
            })

            await self._stage(
                endpoint.gather_candidates(), NegotiationFailed, "Error gathering candidates"
            )
            if not self.registry.confirm_session(session):
                raise NotFound(f"Broadcast '{broadcast_id}' ended during negotiation")
        except (Exception, asyncio.CancelledError):
            self.router.clear(connection_id, broadcast_id)
            await self.registry.rollback_session(session)
            if resources is not None:
                await self._quiet_release(resources.release(), f"pipeline of '{broadcast_id}'")
            raise

        logger.info(f"Broadcast '{broadcast_id}' started by {connection_id}")

    async def on_join(self, connection_id: str, payload: JoinPayload) -> None:
        broadcast_id = payload.broadcast_id
        if payload.sdp_offer is None:
            raise InvalidMessage("'join' requires sdpOffer in media mode")

        session = self.registry.get_session(broadcast_id)
        if self._ensure_free(connection_id, broadcast_id) is not None:
            raise AlreadyExists(f"Already watching broadcast '{broadcast_id}'")
        if connection_id == session.broadcaster:
            raise AlreadyExists(f"{connection_id} is the broadcaster of '{broadcast_id}'")

        session = await self._wait_ready(session)
        resources = session.media
        if resources is None or resources.endpoint is None:
            raise NotFound(f"Broadcast '{broadcast_id}' has no media endpoint")
        if connection_id in resources.viewer_endpoints:
            raise AlreadyExists(f"Join for '{broadcast_id}' already in progress")

        endpoint: Optional[MediaEndpoint] = None
        try:
            endpoint = await self._stage(
                resources.pipeline.create_endpoint(),
                NegotiationFailed,
                "WebRtcEndpoint creation error",
            )
            # 협상 중에도 세션이 소유하도록 등록 (세션 파괴 시 함께 해제됨)
            resources.viewer_endpoints[connection_id] = endpoint
            self._ensure_current(session)
            endpoint.on_candidate(self._candidate_forwarder(connection_id, broadcast_id))

            await self._stage(
                resources.endpoint.connect(endpoint),
                ConnectionFailed,
                "Error connecting WebRtcEndpoints",
            )
            self._ensure_current(session)

            sdp_answer = await self._stage(
                endpoint.process_offer(sdp_text(payload.sdp_offer)),
                NegotiationFailed,
                "Error processing offer",
            )
            self._ensure_current(session)
            if not self.hub.is_connected(connection_id):
                raise NotFound(f"Connection {connection_id} closed during negotiation")

            self.registry.add_viewer(broadcast_id, connection_id)
            self.router.set_viewer(connection_id, broadcast_id)
            await self.hub.send(connection_id, "joinResponse", {
                "broadcastId": broadcast_id,
                "sdpAnswer": sdp_answer,
            })

            await self._stage(
                endpoint.gather_candidates(), NegotiationFailed, "Error gathering candidates"
            )
        except (Exception, asyncio.CancelledError):
            if endpoint is not None:
                if resources.viewer_endpoints.get(connection_id) is endpoint:
                    del resources.viewer_endpoints[connection_id]
                self.router.clear(connection_id, broadcast_id)
                if self.registry.find_session(broadcast_id) is session:
                    self.registry.remove_viewer(broadcast_id, connection_id)
                await self._quiet_release(endpoint.release(), f"viewer endpoint of {connection_id}")
            raise

        logger.info(f"User {connection_id} joined broadcast '{broadcast_id}'")

    async def on_answer(self, connection_id: str, payload: AnswerPayload) -> None:
        raise InvalidMessage("'answer' is not used in media mode")

    async def on_ice_candidate(self, connection_id: str, payload: IceCandidatePayload) -> None:
        broadcast_id = payload.broadcast_id
        session = self.registry.get_session(broadcast_id)
        endpoint = None
        if session.media is not None:
            endpoint = session.media.endpoint_for(connection_id, session.broadcaster)
        if endpoint is None:
            raise NotFound(f"No media endpoint for this connection in '{broadcast_id}'")

        candidate = payload.candidate
        if isinstance(candidate, str):
            candidate = {"candidate": candidate}
        await self._stage(endpoint.add_candidate(candidate), NegotiationFailed, "Error adding candidate")
        logger.debug(f"ICE candidate from {connection_id} added to endpoint {endpoint.id}")

    async def _on_viewer_detached(
        self, session: Optional[Session], connection_id: str, removed: bool
    ) -> None:
        if session is None or session.media is None:
            return
        await self._quiet_release(
            session.media.release_viewer(connection_id), f"viewer endpoint of {connection_id}"
        )

    # ------------------------------------------------------------
    # 내부 유틸
    # ------------------------------------------------------------

    async def _wait_ready(self, session: Session) -> Session:
        """PENDING 세션이면 확정될 때까지 기다립니다.

        Raises:
            NotFound: 롤백되었거나 시간 내에 확정되지 않은 경우
        """
        if session.is_active:
            return session
        ready = await session.wait_settled(self.config.JOIN_READY_TIMEOUT)
        if not ready or self.registry.find_session(session.broadcast_id) is not session:
            raise NotFound(f"Broadcast '{session.broadcast_id}' not found")
        return session

    def _ensure_current(self, session: Session) -> None:
        if self.registry.find_session(session.broadcast_id) is not session:
            raise NotFound(f"Broadcast '{session.broadcast_id}' ended during negotiation")

    def _candidate_forwarder(self, connection_id: str, broadcast_id: str) -> CandidateCallback:
        async def forward(candidate: dict) -> None:
            await self.hub.send(connection_id, "iceCandidate", {
                "broadcastId": broadcast_id,
                "candidate": candidate,
            })
        return forward

    @staticmethod
    async def _stage(
        operation: Awaitable[Any],
        error_cls: Type[RelayError],
        message: str,
    ) -> Any:
        """협력자 호출 하나를 실행하고, 실패를 단계별 RelayError로 바꿉니다."""
        try:
            return await operation
        except RelayError:
            raise
        except Exception as e:
            logger.error(f"[Media] {message}: {e}")
            raise error_cls(message) from e

    @staticmethod
    async def _quiet_release(operation: Awaitable[None], what: str) -> None:
        try:
            await operation
        except Exception as e:
            logger.warning(f"[Media] {what} 해제 중 오류 (무시): {e}")
