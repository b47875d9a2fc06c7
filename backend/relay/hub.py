"""연결 허브 모듈.

전송 계층이 부여한 연결 ID와 실제 WebSocket 연결을 매핑하고, 디스패처가
만든 아웃바운드 이벤트를 `{"type": ..., "data": ...}` 형식으로 전송합니다.
한 연결의 전송 실패는 로그만 남기고 다른 연결로의 전송을 막지 않습니다.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

logger = logging.getLogger(__name__)


class JSONChannel(Protocol):
    """send_json을 제공하는 양방향 채널 (FastAPI WebSocket 등)."""

    async def send_json(self, data: Any) -> None: ...


class ConnectionHub:
    """연결 ID → 채널 매핑 및 메시지 전송.

    Attributes:
        channels (Dict[str, JSONChannel]): 살아있는 연결들
    """

    def __init__(self):
        self.channels: Dict[str, JSONChannel] = {}

    def __len__(self) -> int:
        return len(self.channels)

    def register(self, connection_id: str, channel: JSONChannel) -> None:
        self.channels[connection_id] = channel
        logger.info(f"연결 {connection_id} 등록 (총 {len(self.channels)}개)")

    def unregister(self, connection_id: str) -> bool:
        """연결을 제거합니다.

        Returns:
            bool: 이번 호출에서 제거되었으면 True (정리 작업은 이 경우에만 수행)
        """
        if self.channels.pop(connection_id, None) is None:
            return False
        logger.info(f"연결 {connection_id} 해제 (총 {len(self.channels)}개)")
        return True

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self.channels

    async def send(self, connection_id: str, event_type: str, data: Optional[dict] = None) -> bool:
        """특정 연결에 이벤트를 전송합니다.

        Returns:
            bool: 전송 성공 여부 (연결이 없거나 실패하면 False)
        """
        channel = self.channels.get(connection_id)
        if channel is None:
            logger.debug(f"연결 {connection_id} 없음, '{event_type}' 전송 생략")
            return False
        try:
            await channel.send_json({"type": event_type, "data": data or {}})
        except Exception as e:
            logger.error(f"연결 {connection_id}에 '{event_type}' 전송 중 오류: {e}")
            return False
        return True

    async def send_many(
        self,
        connection_ids: Iterable[str],
        event_type: str,
        data: Optional[dict] = None,
        exclude: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """여러 연결에 같은 이벤트를 전송합니다.

        Args:
            connection_ids: 대상 연결 ID들
            event_type: 이벤트 타입
            data: 이벤트 데이터
            exclude: 받지 않을 연결 ID들

        Returns:
            List[str]: 전송에 성공한 연결 ID 리스트
        """
        excluded = set(exclude or [])
        delivered = []
        for connection_id in list(connection_ids):
            if connection_id in excluded:
                continue
            if await self.send(connection_id, event_type, data):
                delivered.append(connection_id)
        return delivered
