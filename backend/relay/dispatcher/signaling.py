"""signaling 모드 디스패처.

순수 전달자입니다. 방송자의 offer만 저장해 두었다가 늦게 들어온 시청자에게
넘겨주고, answer와 candidate는 저장하지 않고 즉시 전달합니다. SDP와
candidate 내용은 검사하지 않습니다.
"""
import logging
from typing import Optional

from ..config import RelayMode
from ..errors import InvalidMessage
from ..registry import Session
from ..schemas import AnswerPayload, IceCandidatePayload, JoinPayload, StartPayload
from .base import BaseDispatcher

logger = logging.getLogger(__name__)


class SignalingDispatcher(BaseDispatcher):
    """offer 저장 + answer/candidate 전달 디스패처."""

    mode = RelayMode.SIGNALING

    async def on_start(self, connection_id: str, payload: StartPayload) -> None:
        broadcast_id = payload.broadcast_id
        if broadcast_id in self.registry:
            await self._duplicate_start(connection_id, broadcast_id)
            return
        self._ensure_free(connection_id, broadcast_id)

        session = self.registry.create_session(broadcast_id, connection_id, offer=payload.sdp_offer)
        self.router.set_broadcaster(connection_id, broadcast_id)
        self.registry.confirm_session(session)
        logger.info(f"Broadcast '{broadcast_id}' started by {connection_id}")

        await self.hub.send(connection_id, "startResponse", {"broadcastId": broadcast_id})

    async def on_join(self, connection_id: str, payload: JoinPayload) -> None:
        broadcast_id = payload.broadcast_id
        session = self.registry.get_session(broadcast_id)
        already_viewer = self._ensure_free(connection_id, broadcast_id) is not None

        self.registry.add_viewer(broadcast_id, connection_id)
        self.router.set_viewer(connection_id, broadcast_id)

        # 저장된 방송자의 offer를 시청자에게 전달
        await self.hub.send(connection_id, "offer", {
            "broadcastId": broadcast_id,
            "sdpOffer": session.offer,
        })

        if not already_viewer:
            await self.hub.send(session.broadcaster, "viewerJoined", {
                "broadcastId": broadcast_id,
                "connectionId": connection_id,
                "viewerCount": len(session.viewers),
            })
            logger.info(f"User {connection_id} joined broadcast '{broadcast_id}'")

    async def on_answer(self, connection_id: str, payload: AnswerPayload) -> None:
        broadcast_id = payload.broadcast_id
        session = self.registry.get_session(broadcast_id)
        if connection_id == session.broadcaster:
            raise InvalidMessage("Broadcaster cannot answer its own broadcast")

        # 방송자에게 시청자의 answer 전달
        await self.hub.send(session.broadcaster, "answer", {
            "broadcastId": broadcast_id,
            "sdpAnswer": payload.sdp_answer,
            "connectionId": connection_id,
        })
        logger.info(f"Answer from {connection_id} for broadcast '{broadcast_id}' sent to broadcaster")

    async def on_ice_candidate(self, connection_id: str, payload: IceCandidatePayload) -> None:
        broadcast_id = payload.broadcast_id
        session = self.registry.get_session(broadcast_id)
        members = [session.broadcaster, *session.viewers]

        # 발신자에게는 되돌려 보내지 않음
        delivered = await self.hub.send_many(members, "iceCandidate", {
            "broadcastId": broadcast_id,
            "candidate": payload.candidate,
            "connectionId": connection_id,
        }, exclude=[connection_id])
        logger.debug(f"ICE candidate from {connection_id} for '{broadcast_id}' → {len(delivered)} peers")

    async def _on_viewer_detached(
        self, session: Optional[Session], connection_id: str, removed: bool
    ) -> None:
        if not removed or session is None or not self.hub.is_connected(session.broadcaster):
            return
        await self.hub.send(session.broadcaster, "viewerLeft", {
            "broadcastId": session.broadcast_id,
            "connectionId": connection_id,
            "viewerCount": len(session.viewers),
        })
