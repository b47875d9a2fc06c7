"""방송 조회 API 라우터.

활성 방송 목록과 클라이언트가 RTCPeerConnection에 쓸 ICE 서버 목록을 제공합니다.
"""

from fastapi import APIRouter, Request

router = APIRouter(prefix="/api", tags=["broadcasts"])


@router.get("/broadcasts")
async def list_broadcasts(request: Request):
    """활성 방송 목록을 반환합니다.

    Returns:
        dict: broadcasts 리스트 (broadcastId, broadcaster, viewerCount, state, createdAt)
    """
    registry = request.app.state.registry
    return {"broadcasts": registry.list_sessions()}


@router.get("/ice-servers")
async def get_ice_servers(request: Request):
    """STUN/TURN 서버 목록을 반환합니다."""
    ice = request.app.state.ice_config
    return {
        "iceServers": ice.as_ice_servers(),
        "hasTurnServer": ice.has_turn_server,
    }
