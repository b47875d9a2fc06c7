"""FastAPI Broadcast Signaling Relay.

이 모듈은 방송자 한 명과 여러 시청자 사이의 WebRTC 협상을 중계하는
시그널링 서버를 제공합니다. FastAPI와 WebSocket을 사용합니다.

주요 기능:
    - broadcastId 기반 방송 세션 관리
    - 방송자 offer 보관 및 시청자 answer / ICE candidate 중계
    - 방송자 연결 종료 시 모든 시청자에게 broadcastEnded 알림
    - CORS 설정을 통한 크로스 오리진 요청 지원

Architecture:
    - signaling 모드: 순수 메시지 전달
    - media 모드: aiortc 기반 SFU (방송자 트랙을 MediaRelay로 시청자에게 분배)
    - SessionRegistry: broadcastId → 세션
    - ConnectionRouter: 연결 → 멤버십
    - ConnectionHub: WebSocket 전송
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from pathlib import Path

# Load 환경변수 from config/.env
load_dotenv(Path(__file__).parent / "config" / ".env")

from relay import (  # noqa: E402
    ConnectionHub,
    ConnectionRouter,
    MediaDispatcher,
    SessionRegistry,
    create_dispatcher,
    ice_config,
    log_config,
    relay_config,
)
from routes import (  # noqa: E402
    broadcasts_router,
    health_router,
    init_signaling_managers,
    signaling_router,
)

SERVICE_NAME = "Broadcast Signaling Relay"

# 로그 설정
os.makedirs(log_config.LOG_DIR, exist_ok=True)
log_filename = os.path.join(
    log_config.LOG_DIR,
    f"server_{__import__('datetime').datetime.now().strftime('%Y%m%d')}.log",
)


def cleanup_old_logs(log_dir: str = log_config.LOG_DIR,
                     retention_days: int = log_config.RETENTION_DAYS) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    import glob
    from datetime import datetime, timedelta

    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob.glob(os.path.join(log_dir, "server_*.log")):
        try:
            date_str = os.path.basename(log_file).replace("server_", "").replace(".log", "")
            file_date = datetime.strptime(date_str, "%Y%m%d")

            if file_date < cutoff_date:
                os.remove(log_file)
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count


logging.basicConfig(
    level=getattr(logging, log_config.LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),  # 콘솔 출력
        logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
    ]
)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={log_config.LEVEL}, mode={relay_config.MODE.value}")


# 글로벌 인스턴스
registry = SessionRegistry()
connection_router = ConnectionRouter()
hub = ConnectionHub()
dispatcher = create_dispatcher(relay_config, registry, connection_router, hub)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    종료 시 모든 방송 세션을 파괴하고 미디어 협력자를 닫습니다.

    Args:
        app (FastAPI): FastAPI 애플리케이션 인스턴스
    """
    logger.info(f"{SERVICE_NAME} 시작 중... (모드: {relay_config.MODE.value})")

    deleted_logs = cleanup_old_logs()
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 "
                    f"({log_config.RETENTION_DAYS}일 이상)")

    yield

    logger.info("서버 종료 중...")

    state = app.state
    session_count = len(state.registry)
    await state.registry.close_all()
    if session_count:
        logger.info(f"방송 세션 {session_count}개 종료됨")

    if isinstance(state.dispatcher, MediaDispatcher):
        await state.dispatcher.media.close()
        logger.info("미디어 서버 종료됨")


app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)

# CORS - 개발 환경에서는 모든 로컬 네트워크 허용
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}|172\.\d{1,3}\.\d{1,3}\.\d{1,3}):\d+$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# HTTP 라우터가 참조하는 상태
app.state.relay_config = relay_config
app.state.ice_config = ice_config
app.state.registry = registry
app.state.hub = hub
app.state.dispatcher = dispatcher

# 라우터 등록
app.include_router(health_router)
app.include_router(broadcasts_router)
app.include_router(signaling_router)

# WebSocket 시그널링 라우터에 디스패처 전달
init_signaling_managers(dispatcher, hub)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트.

    Returns:
        dict: status, service, mode
    """
    return {"status": "ok", "service": SERVICE_NAME, "mode": relay_config.MODE.value}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level="info",
    )
