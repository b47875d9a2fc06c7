"""방송 세션 레지스트리 모듈.

이 모듈은 broadcastId 별 방송 세션(Session)을 관리합니다. 레지스트리의 모든
변경 연산은 동기 메서드이므로 asyncio 이벤트 루프 위에서 원자적으로 실행되며,
미디어 리소스 해제처럼 await가 필요한 작업은 세션을 맵에서 제거한 뒤에
수행합니다.

주요 기능:
    - 세션 예약(PENDING) → 확정(CONFIRMED) / 롤백(ROLLED_BACK)
    - 시청자 추가/제거
    - 세션 종료 및 미디어 리소스 1회 해제

Architecture:
    - sessions: Dict[str, Session] - broadcastId → 세션

Classes:
    SessionState: 세션 상태
    Session: 하나의 활성 방송 레코드
    SessionRegistry: 세션 생성/조회/삭제

Examples:
    >>> registry = SessionRegistry()
    >>> session = registry.create_session("room1", "conn-x", offer="v=0...")
    >>> registry.confirm_session(session)
    True
    >>> registry.add_viewer("room1", "conn-y")
    >>> await registry.destroy_session("room1")

See Also:
    router.py: 연결 → 멤버십 매핑
    dispatcher/: 이벤트 처리 규칙
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, TYPE_CHECKING

from .errors import AlreadyExists, NotFound

if TYPE_CHECKING:
    from .media import MediaResources

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """세션 상태.

    PENDING → CONFIRMED → CLOSED
    PENDING → ROLLED_BACK
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"
    CLOSED = "closed"


@dataclass
class Session:
    """하나의 활성 방송을 나타내는 데이터 클래스.

    Attributes:
        broadcast_id (str): 클라이언트가 지정한 방송 식별자
        broadcaster (str): 방송을 소유한 연결 ID (생성 후 변경 불가)
        viewers (Set[str]): 현재 시청 중인 연결 ID 집합
        offer (Any): 방송자의 최신 offer (signaling 모드)
        media (Optional[MediaResources]): 파이프라인과 엔드포인트 (media 모드)
        state (SessionState): 세션 상태
        created_at (float): 생성 시각 (epoch seconds)
    """
    broadcast_id: str
    broadcaster: str
    viewers: Set[str] = field(default_factory=set)
    offer: Any = None
    media: Optional["MediaResources"] = None
    state: SessionState = SessionState.PENDING
    created_at: float = field(default_factory=time.time)
    _settled: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.CONFIRMED

    async def wait_settled(self, timeout: float) -> bool:
        """PENDING 상태가 끝날 때까지 기다립니다.

        Returns:
            bool: 시간 내에 확정되었으면 True. 롤백/종료/타임아웃이면 False
        """
        if self.state is not SessionState.PENDING:
            return self.is_active
        try:
            await asyncio.wait_for(self._settled.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_active

    def _settle(self, state: SessionState) -> None:
        self.state = state
        self._settled.set()

    def to_dict(self) -> dict:
        return {
            "broadcastId": self.broadcast_id,
            "broadcaster": self.broadcaster,
            "viewerCount": len(self.viewers),
            "state": self.state.value,
            "createdAt": self.created_at,
        }


class SessionRegistry:
    """broadcastId → Session 매핑을 관리하는 클래스.

    Thread Safety:
        - asyncio 단일 스레드 환경을 가정
        - 맵 변경은 await 없이 수행되어 원자적
        - 미디어 해제는 맵에서 제거한 뒤 await 하므로 정확히 1회만 실행됨
    """

    def __init__(self):
        # broadcast_id -> Session
        self.sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self.sessions)

    def __contains__(self, broadcast_id: str) -> bool:
        return broadcast_id in self.sessions

    def create_session(self, broadcast_id: str, broadcaster: str, offer: Any = None) -> Session:
        """새 세션을 PENDING 상태로 예약합니다.

        Args:
            broadcast_id: 방송 식별자
            broadcaster: 방송자 연결 ID
            offer: 방송자의 offer (signaling 모드에서 저장)

        Returns:
            Session: 예약된 세션

        Raises:
            AlreadyExists: 같은 broadcastId의 세션이 이미 있는 경우
        """
        if broadcast_id in self.sessions:
            raise AlreadyExists(f"Broadcast '{broadcast_id}' already exists")

        session = Session(broadcast_id=broadcast_id, broadcaster=broadcaster, offer=offer)
        self.sessions[broadcast_id] = session
        logger.info(f"Session '{broadcast_id}' reserved by {broadcaster}")
        return session

    def confirm_session(self, session: Session) -> bool:
        """예약된 세션을 확정합니다.

        세션이 그 사이에 제거되었거나 다른 세션으로 바뀌었으면 False를 반환하며,
        호출자는 자신이 할당한 리소스를 직접 정리해야 합니다.
        """
        if self.sessions.get(session.broadcast_id) is not session:
            return False
        if session.state is not SessionState.PENDING:
            return session.is_active
        session._settle(SessionState.CONFIRMED)
        logger.info(f"Session '{session.broadcast_id}' confirmed (broadcaster={session.broadcaster})")
        return True

    async def rollback_session(self, session: Session) -> None:
        """예약된 세션을 취소하고 미디어 리소스를 해제합니다."""
        if self.sessions.get(session.broadcast_id) is session:
            del self.sessions[session.broadcast_id]
            logger.info(f"Session '{session.broadcast_id}' rolled back")
        if session.state in (SessionState.PENDING, SessionState.CONFIRMED):
            session._settle(SessionState.ROLLED_BACK)
            await self._release_media(session)

    def find_session(self, broadcast_id: str) -> Optional[Session]:
        return self.sessions.get(broadcast_id)

    def get_session(self, broadcast_id: str) -> Session:
        """세션을 조회합니다.

        Raises:
            NotFound: 세션이 없는 경우
        """
        session = self.sessions.get(broadcast_id)
        if session is None:
            raise NotFound(f"Broadcast '{broadcast_id}' not found")
        return session

    def add_viewer(self, broadcast_id: str, connection_id: str) -> None:
        """시청자를 추가합니다. 이미 시청자이면 아무 작업도 하지 않습니다.

        Raises:
            NotFound: 세션이 없는 경우
            AlreadyExists: 방송자가 자신의 방송을 시청하려는 경우
        """
        session = self.get_session(broadcast_id)
        if connection_id == session.broadcaster:
            raise AlreadyExists(f"{connection_id} is the broadcaster of '{broadcast_id}'")
        if connection_id in session.viewers:
            return
        session.viewers.add(connection_id)
        logger.info(f"Viewer {connection_id} joined '{broadcast_id}'. "
                    f"Broadcast has {len(session.viewers)} viewers")

    def remove_viewer(self, broadcast_id: str, connection_id: str) -> bool:
        """시청자를 제거합니다. 세션이나 시청자가 없으면 no-op.

        Returns:
            bool: 실제로 제거되었으면 True
        """
        session = self.sessions.get(broadcast_id)
        if session is None or connection_id not in session.viewers:
            return False
        session.viewers.discard(connection_id)
        logger.info(f"Viewer {connection_id} left '{broadcast_id}'. "
                    f"Broadcast has {len(session.viewers)} viewers")
        return True

    async def destroy_session(self, broadcast_id: str) -> Optional[Session]:
        """세션을 제거하고 미디어 리소스를 해제합니다.

        없는 세션에 대해 호출하면 None을 반환하며, 두 번 호출해도 안전합니다.

        Returns:
            Optional[Session]: 제거된 세션 (이번 호출이 제거한 경우에만)
        """
        session = self.sessions.pop(broadcast_id, None)
        if session is None:
            return None

        was_pending = session.state is SessionState.PENDING
        session._settle(SessionState.ROLLED_BACK if was_pending else SessionState.CLOSED)
        logger.info(f"Session '{broadcast_id}' destroyed ({len(session.viewers)} viewers)")
        await self._release_media(session)
        return session

    def list_sessions(self) -> List[dict]:
        """모든 세션 정보를 반환합니다."""
        return [session.to_dict() for session in self.sessions.values()]

    async def close_all(self) -> None:
        """모든 세션을 종료합니다 (서버 종료 시)."""
        for broadcast_id in list(self.sessions.keys()):
            await self.destroy_session(broadcast_id)

    async def _release_media(self, session: Session) -> None:
        if session.media is None:
            return
        try:
            await session.media.release()
        except Exception as e:
            logger.error(f"Session '{session.broadcast_id}' 미디어 해제 중 오류: {e}")
