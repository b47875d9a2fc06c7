"""방송 시그널링 WebSocket 라우터.

방송 시작/참여/종료, SDP answer 전달, ICE candidate 중계를 담당합니다.
메시지 처리 규칙은 모두 디스패처에 있고, 이 라우터는 연결 수명만 관리합니다.
"""

import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from relay import BaseDispatcher, ConnectionHub, InvalidMessage

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 참조 (app.py에서 설정됨)
_dispatcher: Optional[BaseDispatcher] = None
_hub: Optional[ConnectionHub] = None


def init_managers(dispatcher: BaseDispatcher, hub: ConnectionHub):
    """디스패처와 연결 허브를 설정합니다.

    Args:
        dispatcher: 모드별 이벤트 디스패처
        hub: 연결 허브
    """
    global _dispatcher, _hub
    _dispatcher = dispatcher
    _hub = hub
    logger.info(f"시그널링 라우터 초기화 완료 (모드: {dispatcher.mode.value})")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """방송 시그널링을 위한 WebSocket 엔드포인트.

    처리하는 메시지 타입:
        - start: 방송 시작 (broadcastId, sdpOffer)
        - join: 방송 참여 (broadcastId[, sdpOffer])
        - answer: 시청자의 SDP answer (signaling 모드)
        - iceCandidate: ICE candidate 전달
        - stop / leave / disconnect_request: 방송 종료 또는 시청 중단

    연결이 끊기면 방송자는 방송을 종료시키고, 시청자는 시청 목록에서 빠집니다.
    """
    if _dispatcher is None or _hub is None:
        logger.error("디스패처가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()

    connection_id = str(uuid.uuid4())
    _hub.register(connection_id, websocket)
    logger.info(f"연결 {connection_id} 수락됨")

    # 클라이언트에 연결 ID 전송
    await _hub.send(connection_id, "connectionId", {"connectionId": connection_id})

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))

            text = frame.get("text")
            if text is None:
                error = InvalidMessage("Binary frames are not supported")
                logger.warning(f"연결 {connection_id} 바이너리 프레임 수신 (무시)")
                await _hub.send(connection_id, "error", error.to_payload())
                continue

            try:
                message = json.loads(text)
            except json.JSONDecodeError as e:
                error = InvalidMessage(f"Malformed JSON: {e.msg}")
                logger.warning(f"연결 {connection_id} 잘못된 JSON 수신: {e.msg}")
                await _hub.send(connection_id, "error", error.to_payload())
                continue

            await _dispatcher.handle(connection_id, message)

    except WebSocketDisconnect:
        logger.info(f"연결 {connection_id} 끊김")
    except Exception as e:
        logger.error(f"연결 {connection_id} WebSocket 오류: {e}", exc_info=True)
    finally:
        # 연결 정리는 한 번만 수행
        if _hub.unregister(connection_id):
            await _dispatcher.disconnect(connection_id)
