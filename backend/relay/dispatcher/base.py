"""이벤트 디스패처 공통 로직.

인바운드 이벤트 하나를 검증하고 타입별 핸들러로 보낸 뒤, 핸들러가 던진
RelayError를 발신 연결에 `error` 이벤트 하나로 돌려줍니다. 방송 종료,
시청자 이탈, 연결 종료 정리처럼 두 모드가 공유하는 규칙도 여기 있습니다.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..config import DuplicateStartPolicy, RelayConfig, RelayMode
from ..errors import AlreadyExists, NotFound, RelayError
from ..hub import ConnectionHub
from ..registry import Session, SessionRegistry
from ..router import ConnectionRouter, Membership
from ..schemas import EventPayload, StopPayload, parse_message

logger = logging.getLogger(__name__)

Handler = Callable[[str, Any], Awaitable[None]]


class BaseDispatcher:
    """두 모드가 공유하는 디스패처.

    Attributes:
        registry (SessionRegistry): 세션 레지스트리
        router (ConnectionRouter): 연결 → 멤버십
        hub (ConnectionHub): 아웃바운드 전송
        config (RelayConfig): 릴레이 설정
    """

    mode: RelayMode

    def __init__(
        self,
        registry: SessionRegistry,
        router: ConnectionRouter,
        hub: ConnectionHub,
        config: RelayConfig,
    ):
        self.registry = registry
        self.router = router
        self.hub = hub
        self.config = config
        self._handlers: Dict[str, Handler] = {
            "start": self.on_start,
            "join": self.on_join,
            "answer": self.on_answer,
            "iceCandidate": self.on_ice_candidate,
            "stop": self.on_stop,
            "disconnect_request": self.on_stop,
            "leave": self.on_stop,
        }

    async def handle(self, connection_id: str, message: Any) -> None:
        """인바운드 메시지 하나를 처리합니다.

        어떤 실패도 호출자에게 전파하지 않습니다. 실패는 발신 연결에
        `error` 이벤트 하나로 전달됩니다.
        """
        try:
            event_type, payload = parse_message(message)
            logger.debug(f"연결 {connection_id} → '{event_type}' ({payload.broadcast_id})")
            await self._handlers[event_type](connection_id, payload)
        except RelayError as e:
            logger.warning(f"연결 {connection_id} 이벤트 처리 실패 [{e.kind}]: {e.message}")
            await self.hub.send(connection_id, "error", e.to_payload())
        except Exception as e:
            logger.error(f"연결 {connection_id} 이벤트 처리 중 예상치 못한 오류: {e}", exc_info=True)
            await self.hub.send(connection_id, "error", {"kind": "InternalError", "message": "Internal error"})

    # ------------------------------------------------------------
    # 모드별 핸들러
    # ------------------------------------------------------------

    async def on_start(self, connection_id: str, payload: EventPayload) -> None:
        raise NotImplementedError

    async def on_join(self, connection_id: str, payload: EventPayload) -> None:
        raise NotImplementedError

    async def on_answer(self, connection_id: str, payload: EventPayload) -> None:
        raise NotImplementedError

    async def on_ice_candidate(self, connection_id: str, payload: EventPayload) -> None:
        raise NotImplementedError

    async def _on_viewer_detached(
        self, session: Optional[Session], connection_id: str, removed: bool
    ) -> None:
        """시청자가 빠진 뒤 모드별 후처리."""

    # ------------------------------------------------------------
    # 공통 규칙
    # ------------------------------------------------------------

    async def on_stop(self, connection_id: str, payload: StopPayload) -> None:
        """stop / disconnect_request / leave 처리.

        방송자이면 방송을 종료하고, 시청자이면 시청만 중단합니다.
        """
        membership = self.router.membership(connection_id)
        broadcast_id = payload.broadcast_id or (membership.broadcast_id if membership else None)
        if not broadcast_id:
            raise NotFound("Not a member of any broadcast")

        if membership is None or membership.broadcast_id != broadcast_id:
            if broadcast_id not in self.registry:
                raise NotFound(f"Broadcast '{broadcast_id}' not found")
            raise NotFound(f"Not a member of broadcast '{broadcast_id}'")

        if membership.is_broadcaster:
            await self._end_broadcast(broadcast_id)
            message = "Broadcast stopped"
        else:
            await self._detach_viewer(connection_id, broadcast_id)
            message = "Left broadcast"

        await self.hub.send(connection_id, "stopResponse", {
            "broadcastId": broadcast_id,
            "message": message,
        })

    async def disconnect(self, connection_id: str) -> None:
        """전송 계층의 연결 종료 처리.

        내부 실패는 로그만 남기고 삼킵니다 (이미 끊긴 연결에 돌려줄 곳이 없음).
        """
        try:
            membership = self.router.membership(connection_id)
            if membership is None:
                return
            logger.info(f"연결 {connection_id} 종료 정리: {membership.role.value} of "
                        f"'{membership.broadcast_id}'")
            if membership.is_broadcaster:
                await self._end_broadcast(membership.broadcast_id)
            else:
                await self._detach_viewer(connection_id, membership.broadcast_id)
        except Exception as e:
            logger.error(f"연결 {connection_id} 종료 정리 중 오류: {e}", exc_info=True)

    async def _end_broadcast(self, broadcast_id: str) -> None:
        """세션을 파괴하고 시청자 전원에게 broadcastEnded를 보냅니다.

        세션 조회부터 레지스트리 제거까지 await가 없으므로, 두 호출이 겹쳐도
        broadcastEnded는 시청자마다 정확히 한 번만 전송됩니다.
        """
        session = self.registry.find_session(broadcast_id)
        if session is None:
            return
        viewers = set(session.viewers)
        self.router.clear_broadcast(broadcast_id, [session.broadcaster, *viewers])
        destroyed = await self.registry.destroy_session(broadcast_id)
        if destroyed is not session:
            return

        delivered = await self.hub.send_many(viewers, "broadcastEnded", {"broadcastId": broadcast_id})
        logger.info(f"Broadcast '{broadcast_id}' ended. broadcastEnded 전송 "
                    f"{len(delivered)}/{len(viewers)}")

    async def _detach_viewer(self, connection_id: str, broadcast_id: str) -> None:
        self.router.clear(connection_id, broadcast_id)
        session = self.registry.find_session(broadcast_id)
        removed = self.registry.remove_viewer(broadcast_id, connection_id)
        await self._on_viewer_detached(session, connection_id, removed)

    def _ensure_free(self, connection_id: str, broadcast_id: str) -> Optional[Membership]:
        """연결이 다른 방송의 멤버가 아닌지 확인합니다.

        같은 방송의 시청자인 경우 그 멤버십을 반환합니다.

        Raises:
            AlreadyExists: 다른 방송의 멤버이거나 같은 방송의 방송자인 경우
        """
        membership = self.router.membership(connection_id)
        if membership is None:
            return None
        if membership.broadcast_id == broadcast_id and not membership.is_broadcaster:
            return membership
        raise AlreadyExists(
            f"Connection is already the {membership.role.value} of broadcast "
            f"'{membership.broadcast_id}'"
        )

    async def _duplicate_start(self, connection_id: str, broadcast_id: str) -> None:
        """이미 존재하는 방송에 대한 start. 기존 세션은 절대 변경하지 않습니다."""
        if self.config.duplicate_start_policy is DuplicateStartPolicy.IGNORE:
            logger.info(f"Broadcast '{broadcast_id}' 중복 start 무시 (요청자 {connection_id})")
            return
        raise AlreadyExists(f"Broadcast '{broadcast_id}' already exists")
