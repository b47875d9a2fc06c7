"""연결 라우터 모듈.

각 연결이 현재 어떤 방송에 어떤 역할(방송자/시청자)로 속해 있는지 추적합니다.
연결 종료 시 멤버십을 O(1)로 조회하여 정리 대상을 결정하는 데 사용됩니다.

Architecture:
    - memberships: Dict[str, Membership] - 연결 ID → (역할, broadcastId)
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class Role(str, Enum):
    BROADCASTER = "broadcaster"
    VIEWER = "viewer"


@dataclass(frozen=True)
class Membership:
    """연결의 현재 멤버십.

    Attributes:
        role (Role): 방송자 또는 시청자
        broadcast_id (str): 소속 방송 ID
    """
    role: Role
    broadcast_id: str

    @property
    def is_broadcaster(self) -> bool:
        return self.role is Role.BROADCASTER


class ConnectionRouter:
    """연결 ID → 멤버십 매핑.

    연결 하나는 최대 하나의 방송에 하나의 역할로만 속합니다.
    """

    def __init__(self):
        # connection_id -> Membership
        self.memberships: Dict[str, Membership] = {}

    def __len__(self) -> int:
        return len(self.memberships)

    def membership(self, connection_id: str) -> Optional[Membership]:
        return self.memberships.get(connection_id)

    def set_broadcaster(self, connection_id: str, broadcast_id: str) -> None:
        self.memberships[connection_id] = Membership(Role.BROADCASTER, broadcast_id)
        logger.debug(f"Router: {connection_id} -> broadcaster of '{broadcast_id}'")

    def set_viewer(self, connection_id: str, broadcast_id: str) -> None:
        self.memberships[connection_id] = Membership(Role.VIEWER, broadcast_id)
        logger.debug(f"Router: {connection_id} -> viewer of '{broadcast_id}'")

    def clear(self, connection_id: str, broadcast_id: Optional[str] = None) -> Optional[Membership]:
        """연결의 멤버십을 제거합니다.

        Args:
            connection_id: 연결 ID
            broadcast_id: 지정하면 해당 방송의 멤버십일 때만 제거

        Returns:
            Optional[Membership]: 제거된 멤버십
        """
        current = self.memberships.get(connection_id)
        if current is None:
            return None
        if broadcast_id is not None and current.broadcast_id != broadcast_id:
            return None
        del self.memberships[connection_id]
        return current

    def clear_broadcast(self, broadcast_id: str, connection_ids: Iterable[str]) -> None:
        """방송 종료 시 방송자와 시청자 전원의 멤버십을 제거합니다."""
        for connection_id in connection_ids:
            self.clear(connection_id, broadcast_id)
