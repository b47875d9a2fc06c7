"""signaling 모드 디스패처 테스트."""
import asyncio

from relay import DuplicateStartPolicy, RelayMode, SignalingDispatcher

from conftest import OFFER, make_config, message


async def start_room1(signaling, connect):
    x = connect("conn-x")
    await signaling.handle("conn-x", message("start", broadcastId="room1", sdpOffer=OFFER))
    return x


class TestStart:
    async def test_start_creates_session(self, signaling, connect, registry, router):
        x = await start_room1(signaling, connect)

        assert x.events("startResponse") == [{"broadcastId": "room1"}]
        session = registry.get_session("room1")
        assert session.is_active
        assert session.offer == OFFER
        assert router.membership("conn-x").is_broadcaster

    async def test_duplicate_start_ignored(self, signaling, connect, registry):
        await start_room1(signaling, connect)
        z = connect("conn-z")

        await signaling.handle("conn-z", message("start", broadcastId="room1", sdpOffer="other"))

        assert z.sent == []
        session = registry.get_session("room1")
        assert session.broadcaster == "conn-x"
        assert session.offer == OFFER

    async def test_duplicate_start_rejected(self, registry, router, hub, connect):
        dispatcher = SignalingDispatcher(
            registry, router, hub,
            make_config(RelayMode.SIGNALING, duplicate_start=DuplicateStartPolicy.REJECT),
        )
        await start_room1(dispatcher, connect)
        z = connect("conn-z")

        await dispatcher.handle("conn-z", message("start", broadcastId="room1", sdpOffer="other"))

        assert z.events("error") == [{"kind": "AlreadyExists", "message": "Broadcast 'room1' already exists"}]
        assert registry.get_session("room1").broadcaster == "conn-x"
        assert router.membership("conn-z") is None

    async def test_broadcaster_cannot_start_second_broadcast(self, signaling, connect, registry):
        x = await start_room1(signaling, connect)

        await signaling.handle("conn-x", message("start", broadcastId="room2", sdpOffer=OFFER))

        assert x.events("error")[0]["kind"] == "AlreadyExists"
        assert "room2" not in registry


class TestJoin:
    async def test_join_unknown_broadcast(self, signaling, connect, registry, router):
        y = connect("conn-y")

        await signaling.handle("conn-y", message("join", broadcastId="unknown"))

        assert y.events("error") == [{"kind": "NotFound", "message": "Broadcast 'unknown' not found"}]
        assert len(registry) == 0
        assert len(router) == 0

    async def test_join_delivers_stored_offer(self, signaling, connect, registry):
        x = await start_room1(signaling, connect)
        y = connect("conn-y")

        await signaling.handle("conn-y", message("join", broadcastId="room1"))

        assert y.events("offer") == [{"broadcastId": "room1", "sdpOffer": OFFER}]
        assert x.events("viewerJoined") == [
            {"broadcastId": "room1", "connectionId": "conn-y", "viewerCount": 1}
        ]
        assert registry.get_session("room1").viewers == {"conn-y"}

    async def test_repeat_join_resends_offer_only(self, signaling, connect, registry):
        x = await start_room1(signaling, connect)
        y = connect("conn-y")

        await signaling.handle("conn-y", message("join", broadcastId="room1"))
        await signaling.handle("conn-y", message("join", broadcastId="room1"))

        assert len(y.events("offer")) == 2
        assert len(x.events("viewerJoined")) == 1
        assert registry.get_session("room1").viewers == {"conn-y"}

    async def test_viewer_cannot_join_second_broadcast(self, signaling, connect, registry):
        await start_room1(signaling, connect)
        connect("conn-w")
        await signaling.handle("conn-w", message("start", broadcastId="room2", sdpOffer=OFFER))
        y = connect("conn-y")
        await signaling.handle("conn-y", message("join", broadcastId="room1"))

        await signaling.handle("conn-y", message("join", broadcastId="room2"))

        assert y.events("error")[0]["kind"] == "AlreadyExists"
        assert registry.get_session("room2").viewers == set()

    async def test_broadcaster_cannot_join_own_broadcast(self, signaling, connect, registry):
        x = await start_room1(signaling, connect)

        await signaling.handle("conn-x", message("join", broadcastId="room1"))

        assert x.events("error")[0]["kind"] == "AlreadyExists"
        assert registry.get_session("room1").viewers == set()


class TestRelay:
    async def test_answer_goes_to_broadcaster(self, signaling, connect):
        x = await start_room1(signaling, connect)
        connect("conn-y")
        await signaling.handle("conn-y", message("join", broadcastId="room1"))

        await signaling.handle("conn-y", message("answer", broadcastId="room1", sdpAnswer="answer-y"))

        assert x.events("answer") == [
            {"broadcastId": "room1", "sdpAnswer": "answer-y", "connectionId": "conn-y"}
        ]

    async def test_answer_from_broadcaster_rejected(self, signaling, connect):
        x = await start_room1(signaling, connect)

        await signaling.handle("conn-x", message("answer", broadcastId="room1", sdpAnswer="a"))

        assert x.events("error")[0]["kind"] == "InvalidMessage"

    async def test_answer_for_unknown_broadcast(self, signaling, connect):
        y = connect("conn-y")

        await signaling.handle("conn-y", message("answer", broadcastId="nope", sdpAnswer="a"))

        assert y.events("error")[0]["kind"] == "NotFound"

    async def test_candidate_never_reaches_sender(self, signaling, connect):
        x = await start_room1(signaling, connect)
        y = connect("conn-y")
        v = connect("conn-v")
        await signaling.handle("conn-y", message("join", broadcastId="room1"))
        await signaling.handle("conn-v", message("join", broadcastId="room1"))

        await signaling.handle("conn-y", message("iceCandidate", broadcastId="room1", candidate="candidate:y"))

        assert y.events("iceCandidate") == []
        assert x.events("iceCandidate") == [
            {"broadcastId": "room1", "candidate": "candidate:y", "connectionId": "conn-y"}
        ]
        assert len(v.events("iceCandidate")) == 1

        await signaling.handle("conn-x", message("iceCandidate", broadcastId="room1", candidate="candidate:x"))

        assert x.events("iceCandidate")[-1]["candidate"] == "candidate:y"
        assert y.events("iceCandidate")[0]["connectionId"] == "conn-x"


class TestStopAndDisconnect:
    async def test_room1_scenario(self, signaling, connect, disconnect, registry, router):
        x = await start_room1(signaling, connect)
        y = connect("conn-y")
        await signaling.handle("conn-y", message("join", broadcastId="room1"))
        await signaling.handle("conn-y", message("answer", broadcastId="room1", sdpAnswer="answer-y"))
        await signaling.handle("conn-y", message("iceCandidate", broadcastId="room1", candidate="candidate:y"))

        assert y.events("offer")[0]["sdpOffer"] == OFFER
        assert x.events("answer")[0]["sdpAnswer"] == "answer-y"
        assert len(x.events("iceCandidate")) == 1

        await disconnect(signaling, "conn-x")

        assert y.events("broadcastEnded") == [{"broadcastId": "room1"}]
        assert "room1" not in registry
        assert len(router) == 0

    async def test_broadcaster_stop(self, signaling, connect, registry):
        x = await start_room1(signaling, connect)
        y = connect("conn-y")
        v = connect("conn-v")
        await signaling.handle("conn-y", message("join", broadcastId="room1"))
        await signaling.handle("conn-v", message("join", broadcastId="room1"))

        await signaling.handle("conn-x", message("stop", broadcastId="room1"))

        assert x.events("stopResponse") == [{"broadcastId": "room1", "message": "Broadcast stopped"}]
        assert y.events("broadcastEnded") == [{"broadcastId": "room1"}]
        assert v.events("broadcastEnded") == [{"broadcastId": "room1"}]
        assert "room1" not in registry

    async def test_viewer_leave(self, signaling, connect, registry, router):
        x = await start_room1(signaling, connect)
        y = connect("conn-y")
        await signaling.handle("conn-y", message("join", broadcastId="room1"))

        await signaling.handle("conn-y", message("leave", broadcastId="room1"))

        assert y.events("stopResponse") == [{"broadcastId": "room1", "message": "Left broadcast"}]
        assert x.events("viewerLeft") == [
            {"broadcastId": "room1", "connectionId": "conn-y", "viewerCount": 0}
        ]
        assert registry.get_session("room1").viewers == set()
        assert router.membership("conn-y") is None

    async def test_disconnect_request_uses_current_membership(self, signaling, connect, registry):
        x = await start_room1(signaling, connect)

        await signaling.handle("conn-x", {"type": "disconnect_request"})

        assert x.events("stopResponse")[0]["message"] == "Broadcast stopped"
        assert "room1" not in registry

    async def test_stop_without_membership(self, signaling, connect):
        await start_room1(signaling, connect)
        y = connect("conn-y")

        await signaling.handle("conn-y", message("stop", broadcastId="room1"))
        await signaling.handle("conn-y", {"type": "leave"})

        assert [e["kind"] for e in y.events("error")] == ["NotFound", "NotFound"]

    async def test_viewer_disconnect_notifies_broadcaster(self, signaling, connect, disconnect, registry):
        x = await start_room1(signaling, connect)
        connect("conn-y")
        await signaling.handle("conn-y", message("join", broadcastId="room1"))

        await disconnect(signaling, "conn-y")

        assert x.events("viewerLeft")[0]["connectionId"] == "conn-y"
        assert registry.get_session("room1").viewers == set()

    async def test_overlapping_end_sends_broadcast_ended_once(self, signaling, connect, disconnect):
        await start_room1(signaling, connect)
        y = connect("conn-y")
        await signaling.handle("conn-y", message("join", broadcastId="room1"))

        await asyncio.gather(
            disconnect(signaling, "conn-x"),
            signaling.handle("conn-x", message("stop", broadcastId="room1")),
            signaling.disconnect("conn-x"),
        )

        assert y.events("broadcastEnded") == [{"broadcastId": "room1"}]

    async def test_broadcast_ended_skips_failed_viewer(self, signaling, connect, disconnect):
        await start_room1(signaling, connect)
        connect("conn-bad", fail=True)
        y = connect("conn-y")
        await signaling.handle("conn-bad", message("join", broadcastId="room1"))
        await signaling.handle("conn-y", message("join", broadcastId="room1"))

        await disconnect(signaling, "conn-x")

        assert y.events("broadcastEnded") == [{"broadcastId": "room1"}]

    async def test_disconnect_swallows_cleanup_errors(self, signaling, connect, registry, monkeypatch):
        await start_room1(signaling, connect)

        async def broken(broadcast_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(registry, "destroy_session", broken)

        await signaling.disconnect("conn-x")


class TestErrors:
    async def test_malformed_message(self, signaling, connect):
        y = connect("conn-y")

        await signaling.handle("conn-y", {"type": "join"})

        [error] = y.events("error")
        assert error["kind"] == "InvalidMessage"

    async def test_unexpected_error_is_internal(self, signaling, connect, registry, monkeypatch):
        y = connect("conn-y")

        def broken(broadcast_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(registry, "get_session", broken)

        await signaling.handle("conn-y", message("join", broadcastId="room1"))

        assert y.events("error") == [{"kind": "InternalError", "message": "Internal error"}]
