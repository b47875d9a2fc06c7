"""공용 테스트 픽스처.

WebSocket 대신 메시지를 기록하는 FakeChannel과, 단계별 실패/대기를 주입할 수
있는 메모리 미디어 협력자(FakeMediaServer)를 제공합니다.
"""
import asyncio
import itertools
from typing import Dict, List, Optional, Set

import pytest

from relay import (
    ConnectionHub,
    ConnectionRouter,
    MediaDispatcher,
    RelayConfig,
    RelayMode,
    SessionRegistry,
    SignalingDispatcher,
)
from relay.media import MediaEndpoint, MediaPipeline, MediaServer

OFFER = "v=0\r\no=- 1 1 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\n"


class FakeChannel:
    """send_json 호출을 기록하는 채널."""

    def __init__(self, fail: bool = False):
        self.sent: List[dict] = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise ConnectionResetError("channel closed")
        self.sent.append(data)

    def events(self, event_type: str) -> List[dict]:
        return [m["data"] for m in self.sent if m["type"] == event_type]

    def types(self) -> List[str]:
        return [m["type"] for m in self.sent]


class FakeMediaControl:
    """FakeMediaServer 동작 제어.

    Attributes:
        fail_on: 실패시킬 단계 이름 집합
        gates: 단계 이름 → 통과 전에 기다릴 Event
        reached: 단계 이름 → 해당 단계 진입 시 set 되는 Event
    """

    def __init__(self):
        self.fail_on: Set[str] = set()
        self.gates: Dict[str, asyncio.Event] = {}
        self.reached: Dict[str, asyncio.Event] = {}

    def gate(self, stage: str) -> asyncio.Event:
        self.gates[stage] = asyncio.Event()
        self.reached[stage] = asyncio.Event()
        return self.gates[stage]

    async def step(self, stage: str) -> None:
        if stage in self.reached:
            self.reached[stage].set()
        if stage in self.gates:
            await self.gates[stage].wait()
        if stage in self.fail_on:
            raise RuntimeError(f"{stage} failed")


class FakeEndpoint(MediaEndpoint):
    _ids = itertools.count(1)

    def __init__(self, control: FakeMediaControl):
        self.id = f"ep-{next(self._ids)}"
        self.control = control
        self.offers: List[str] = []
        self.candidates: List[dict] = []
        self.sinks: List["FakeEndpoint"] = []
        self.released = 0

    async def process_offer(self, sdp_offer: str) -> str:
        await self.control.step("process_offer")
        self.offers.append(sdp_offer)
        return f"answer-from-{self.id}"

    async def gather_candidates(self) -> None:
        await self.control.step("gather")
        await self._emit_candidate({
            "candidate": f"candidate:{self.id} 1 udp 1 10.0.0.1 5000 typ host",
            "sdpMid": "0",
            "sdpMLineIndex": 0,
        })

    async def add_candidate(self, candidate: dict) -> None:
        await self.control.step("add_candidate")
        self.candidates.append(candidate)

    async def connect(self, sink: MediaEndpoint) -> None:
        await self.control.step("connect")
        self.sinks.append(sink)

    async def release(self) -> None:
        self.released += 1


class FakePipeline(MediaPipeline):
    def __init__(self, control: FakeMediaControl):
        self.control = control
        self.endpoints: List[FakeEndpoint] = []
        self.released = 0

    async def create_endpoint(self) -> FakeEndpoint:
        await self.control.step("create_endpoint")
        endpoint = FakeEndpoint(self.control)
        self.endpoints.append(endpoint)
        return endpoint

    async def release(self) -> None:
        self.released += 1
        for endpoint in self.endpoints:
            await endpoint.release()


class FakeMediaServer(MediaServer):
    def __init__(self):
        self.control = FakeMediaControl()
        self.pipelines: List[FakePipeline] = []
        self.closed = False

    async def create_pipeline(self) -> FakePipeline:
        await self.control.step("create_pipeline")
        pipeline = FakePipeline(self.control)
        self.pipelines.append(pipeline)
        return pipeline

    async def close(self) -> None:
        self.closed = True


def make_config(mode: RelayMode, duplicate_start=None, join_ready_timeout: float = 1.0) -> RelayConfig:
    return RelayConfig(
        MODE=mode,
        DUPLICATE_START=duplicate_start,
        JOIN_READY_TIMEOUT=join_ready_timeout,
    )


def message(event_type: str, **data) -> dict:
    return {"type": event_type, "data": data}


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def router():
    return ConnectionRouter()


@pytest.fixture
def hub():
    return ConnectionHub()


@pytest.fixture
def connect(hub):
    """연결 ID로 FakeChannel을 허브에 등록하는 헬퍼."""
    def _connect(connection_id: str, fail: bool = False) -> FakeChannel:
        channel = FakeChannel(fail=fail)
        hub.register(connection_id, channel)
        return channel
    return _connect


@pytest.fixture
def signaling(registry, router, hub):
    return SignalingDispatcher(registry, router, hub, make_config(RelayMode.SIGNALING))


@pytest.fixture
def media_server():
    return FakeMediaServer()


@pytest.fixture
def media(registry, router, hub, media_server):
    return MediaDispatcher(registry, router, hub, make_config(RelayMode.MEDIA), media_server)


@pytest.fixture
def disconnect(hub):
    """전송 계층 연결 종료를 흉내 내는 헬퍼."""
    async def _disconnect(dispatcher, connection_id: str) -> Optional[bool]:
        if hub.unregister(connection_id):
            await dispatcher.disconnect(connection_id)
            return True
        return False
    return _disconnect
