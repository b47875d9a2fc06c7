"""Health Check API 라우터.

서비스 상태 확인을 위한 엔드포인트를 제공합니다.
"""

from fastapi import APIRouter, Request

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check(request: Request):
    """릴레이 상태를 확인합니다.

    Returns:
        dict: 동작 모드, 활성 방송 수, 연결 수
    """
    state = request.app.state
    return {
        "status": "ok",
        "mode": state.relay_config.MODE.value,
        "broadcasts": len(state.registry),
        "connections": len(state.hub),
    }
