"""Tests for the Socket.IO signaling channel.

Tests cover:
- Connect with backoff, disconnect idempotence
- Request/ack correlation, deadlines, decode and rejection errors
- Pending requests failing on connection loss
- Ordered push dispatch and handler isolation
- Lifecycle callbacks
"""

import asyncio

import pytest

from roomclient.exceptions import (
    DecodeError,
    NotConnectedError,
    RequestRejectedError,
    SignalingTimeoutError,
)
from roomclient.signaling.protocol import (
    ConsumerRef,
    CreateTransportRequest,
    JoinRoomRequest,
    JoinRoomResponse,
    TransportInfo,
)

from fakes import NO_ACK, wait_for


class TestConnect:
    """Tests for connection lifecycle."""

    @pytest.mark.asyncio
    async def test_connect(self, channel_factory, signaling_server):
        """Connect opens one Socket.IO client."""
        channel = channel_factory()
        await channel.connect()

        assert channel.is_connected
        assert signaling_server.client.connect_calls == 1
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_connect_retries_then_succeeds(self, channel_factory, signaling_server):
        """Initial connect failures are retried with backoff."""
        signaling_server.fail_connects = 2
        channel = channel_factory(max_retries=3)

        await channel.connect()

        assert channel.is_connected
        assert signaling_server.connect_attempts == 3
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_connect_exhausted(self, channel_factory, signaling_server):
        """Exhausted retries surface as NotConnectedError."""
        signaling_server.fail_connects = 5
        channel = channel_factory(max_retries=2)

        with pytest.raises(NotConnectedError):
            await channel.connect()

        assert not channel.is_connected

    @pytest.mark.asyncio
    async def test_disconnect_idempotent(self, channel_factory):
        """Disconnect is safe repeatedly and before connect."""
        channel = channel_factory()
        await channel.disconnect()

        await channel.connect()
        await channel.disconnect()
        await channel.disconnect()

        assert not channel.is_connected

    @pytest.mark.asyncio
    async def test_lifecycle_callbacks(self, channel_factory, signaling_server):
        """Connect/disconnect callbacks fire on transport events."""
        channel = channel_factory()
        events = []
        channel.on_connect(lambda: events.append("connect"))
        channel.on_disconnect(lambda: events.append("disconnect"))

        await channel.connect()
        await signaling_server.client.drop()
        await signaling_server.client.reconnect()

        assert events == ["connect", "disconnect", "connect"]
        assert channel.is_connected
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_failing_lifecycle_callback_isolated(self, channel_factory):
        """A raising callback does not break the connect."""
        channel = channel_factory()
        calls = []

        def broken():
            raise RuntimeError("observer bug")

        channel.on_connect(broken)
        channel.on_connect(lambda: calls.append(1))
        await channel.connect()

        assert calls == [1]
        await channel.disconnect()


class TestRequests:
    """Tests for correlated requests."""

    @pytest.mark.asyncio
    async def test_request_decodes_response(self, channel_factory, signaling_server):
        """Acks are validated into the response model."""
        channel = channel_factory()
        await channel.connect()

        info = await channel.request(
            "createWebRtcTransport",
            CreateTransportRequest(sender=True),
            response_model=TransportInfo,
        )

        assert info.transport_id == "transport-send"
        assert signaling_server.events("createWebRtcTransport") == [{"sender": True}]
        assert channel.pending_requests == 0
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_payload_serialized_camel_case(self, channel_factory, signaling_server):
        """Models go on the wire with camelCase keys."""
        channel = channel_factory()
        await channel.connect()

        await channel.request("joinRoom", JoinRoomRequest(room_id="1234"), JoinRoomResponse)

        assert signaling_server.events("joinRoom") == [{"roomId": "1234"}]
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_raw_response_without_model(self, channel_factory, signaling_server):
        """Without a model the raw ack is returned."""
        signaling_server.overrides["custom"] = {"value": 7}
        channel = channel_factory()
        await channel.connect()

        assert await channel.request("custom", {"a": 1}) == {"value": 7}
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_concurrent_requests_correlated(self, channel_factory, signaling_server):
        """Each ack resolves its own request."""
        channel = channel_factory()
        await channel.connect()

        send, recv = await asyncio.gather(
            channel.request("createWebRtcTransport", CreateTransportRequest(sender=True), TransportInfo),
            channel.request("createWebRtcTransport", CreateTransportRequest(sender=False), TransportInfo),
        )

        assert send.transport_id == "transport-send"
        assert recv.transport_id == "transport-recv"
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_timeout(self, channel_factory, signaling_server):
        """A missing ack fails after the deadline."""
        signaling_server.overrides["joinRoom"] = NO_ACK
        channel = channel_factory(request_timeout_s=0.05)
        await channel.connect()

        with pytest.raises(SignalingTimeoutError) as exc_info:
            await channel.request("joinRoom", JoinRoomRequest(room_id="1"), JoinRoomResponse)

        assert exc_info.value.operation == "joinRoom"
        assert channel.pending_requests == 0
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_empty_response_is_decode_error(self, channel_factory, signaling_server):
        """An empty ack is a decode error."""
        signaling_server.overrides["joinRoom"] = {}
        channel = channel_factory()
        await channel.connect()

        with pytest.raises(DecodeError):
            await channel.request("joinRoom", JoinRoomRequest(room_id="1"), JoinRoomResponse)
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_malformed_response_is_decode_error(self, channel_factory, signaling_server):
        """An ack not matching the model is a decode error."""
        signaling_server.overrides["createWebRtcTransport"] = {"id": "t1"}
        channel = channel_factory()
        await channel.connect()

        with pytest.raises(DecodeError):
            await channel.request(
                "createWebRtcTransport", CreateTransportRequest(sender=True), TransportInfo
            )
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_error_response_rejected(self, channel_factory, signaling_server):
        """An ack with an error field is a rejection."""
        signaling_server.overrides["joinRoom"] = {"error": "room closed"}
        channel = channel_factory()
        await channel.connect()

        with pytest.raises(RequestRejectedError) as exc_info:
            await channel.request("joinRoom", JoinRoomRequest(room_id="1"), JoinRoomResponse)

        assert exc_info.value.details["reason"] == "room closed"
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_request_without_connection(self, channel_factory):
        """Requests before connect fail immediately."""
        channel = channel_factory()

        with pytest.raises(NotConnectedError):
            await channel.request("joinRoom", JoinRoomRequest(room_id="1"))

    @pytest.mark.asyncio
    async def test_pending_rejected_on_connection_loss(self, channel_factory, signaling_server):
        """A drop fails every pending request with NotConnectedError."""
        signaling_server.overrides["joinRoom"] = NO_ACK
        channel = channel_factory(request_timeout_s=5.0)
        await channel.connect()

        pending = asyncio.create_task(
            channel.request("joinRoom", JoinRoomRequest(room_id="1"), JoinRoomResponse)
        )
        await wait_for(lambda: channel.pending_requests == 1)
        await signaling_server.client.drop()

        with pytest.raises(NotConnectedError):
            await pending
        assert channel.pending_requests == 0
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_pending_rejected_on_disconnect(self, channel_factory, signaling_server):
        """A local disconnect fails pending requests too."""
        signaling_server.overrides["consume"] = NO_ACK
        channel = channel_factory(request_timeout_s=5.0)
        await channel.connect()

        pending = asyncio.create_task(channel.request("consume", {"producerId": "p1"}))
        await wait_for(lambda: channel.pending_requests == 1)
        await channel.disconnect()

        with pytest.raises(NotConnectedError):
            await pending


class TestNotify:
    """Tests for fire-and-forget notifies."""

    @pytest.mark.asyncio
    async def test_notify(self, channel_factory, signaling_server):
        """Notifies are emitted once without waiting for an ack."""
        channel = channel_factory()
        await channel.connect()

        await channel.notify("resume", ConsumerRef(consumer_id="c1"))

        assert signaling_server.events("resume") == [{"consumerId": "c1"}]
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_notify_without_connection(self, channel_factory):
        """Notifies before connect fail."""
        channel = channel_factory()

        with pytest.raises(NotConnectedError):
            await channel.notify("resume", ConsumerRef(consumer_id="c1"))


class TestPushDispatch:
    """Tests for server push delivery."""

    @pytest.mark.asyncio
    async def test_pushes_delivered_in_order(self, channel_factory, signaling_server):
        """Handlers see pushes in arrival order, across events."""
        channel = channel_factory()
        seen = []
        channel.on("peerJoined", lambda data: seen.append(("joined", data["socketId"])))

        async def slow_handler(data):
            await asyncio.sleep(0.01)
            seen.append(("left", data["socketId"]))

        channel.on("peerLeave", slow_handler)
        await channel.connect()

        client = signaling_server.client
        await client.push("peerJoined", {"socketId": "a"})
        await client.push("peerLeave", {"socketId": "a"})
        await client.push("peerJoined", {"socketId": "b"})
        await channel.flush_events()

        assert seen == [("joined", "a"), ("left", "a"), ("joined", "b")]
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_handler_registered_after_connect(self, channel_factory, signaling_server):
        """Handlers added while connected are bound immediately."""
        channel = channel_factory()
        await channel.connect()
        seen = []
        channel.on("producerScore", seen.append)

        await signaling_server.client.push("producerScore", {"producerId": "p1", "score": 7})
        await channel.flush_events()

        assert seen == [{"producerId": "p1", "score": 7}]
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self, channel_factory, signaling_server):
        """A raising handler does not stop later deliveries."""
        channel = channel_factory()
        seen = []

        def broken(data):
            raise ValueError("bad payload")

        channel.on("newProducer", broken)
        channel.on("newProducer", seen.append)
        await channel.connect()

        await signaling_server.client.push("newProducer", {"producerId": "p1"})
        await signaling_server.client.push("newProducer", {"producerId": "p2"})
        await channel.flush_events()

        assert [d["producerId"] for d in seen] == ["p1", "p2"]
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_logging_handler_failure_keeps_dispatching(
        self, channel_factory, signaling_server
    ):
        """A handler failure is logged and the next push is still delivered."""
        channel = channel_factory()
        seen = []

        def handler(data):
            if "id" not in data:
                raise KeyError("id")
            seen.append(data["id"])

        channel.on("peerJoined", handler)
        await channel.connect()
        dispatch_task = channel._dispatch_task

        await signaling_server.client.push("peerJoined", {"kind": "video"})
        await signaling_server.client.push("peerJoined", {"id": "u9"})
        await channel.flush_events()

        assert seen == ["u9"]
        assert not dispatch_task.done()
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_from_handler_stops_dispatch(
        self, channel_factory, signaling_server
    ):
        """Disconnecting inside a handler ends the dispatch task once it returns."""
        channel = channel_factory()
        tasks = []

        async def leave(data):
            tasks.append(asyncio.current_task())
            await channel.disconnect()

        channel.on("peerLeft", leave)
        await channel.connect()

        await signaling_server.client.push("peerLeft", {"id": "u1"})
        await wait_for(lambda: bool(tasks) and tasks[0].done())

        assert not channel.is_connected
        assert channel._dispatch_task is None

    @pytest.mark.asyncio
    async def test_disconnect_deregisters_handlers(self, channel_factory, signaling_server):
        """After disconnect no handler fires for a new connection."""
        channel = channel_factory()
        seen = []
        channel.on("peerJoined", seen.append)
        await channel.connect()
        await channel.disconnect()

        await channel.connect()
        await signaling_server.client.push("peerJoined", {"socketId": "a"})
        await channel.flush_events()

        assert seen == []
        await channel.disconnect()
