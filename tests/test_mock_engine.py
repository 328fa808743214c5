"""Tests for the mock media engine and the engine factory."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from aiortc import AudioStreamTrack, VideoStreamTrack

from roomclient.exceptions import (
    AdapterFailureError,
    InvalidConfigError,
    TransportUnavailableError,
)
from roomclient.media.engine import (
    ConsumeOptions,
    Direction,
    TransportOptions,
    create_media_engine,
)
from roomclient.media.mock_engine import MockMediaEngine


def _options(transport_id: str) -> TransportOptions:
    return TransportOptions(
        transport_id=transport_id,
        ice_parameters={},
        ice_candidates=[],
        dtls_parameters={"role": "auto"},
    )


async def _loaded_engine(**kwargs) -> tuple[MockMediaEngine, AsyncMock, AsyncMock]:
    engine = MockMediaEngine(**kwargs)
    on_connect = AsyncMock()
    on_produce = AsyncMock(side_effect=lambda tid, kind, rtp, app: f"server-{kind}")
    engine.set_callbacks(on_connect, on_produce)
    await engine.load_capabilities({"codecs": []})
    return engine, on_connect, on_produce


class TestFactory:
    """Tests for create_media_engine."""

    def test_create_mock(self):
        """'mock' builds the in-process engine."""
        engine = create_media_engine("mock")
        assert engine.name == "mock"
        assert not engine.loaded

    def test_create_from_settings(self):
        """Without a name the configured engine is used."""
        assert create_media_engine().name == "mock"

    def test_unknown_engine(self):
        """Unknown engines are configuration errors."""
        with pytest.raises(InvalidConfigError):
            create_media_engine("libwebrtc")


class TestCapabilities:
    """Tests for capability negotiation."""

    @pytest.mark.asyncio
    async def test_transport_requires_capabilities(self):
        """Transports cannot be created before load_capabilities."""
        engine = MockMediaEngine()
        with pytest.raises(AdapterFailureError):
            await engine.create_transport(Direction.SEND, _options("t1"))

    @pytest.mark.asyncio
    async def test_local_capabilities_copy(self):
        """local_capabilities returns a copy of the loaded capabilities."""
        engine, _, _ = await _loaded_engine()
        caps = engine.local_capabilities()
        caps["codecs"].append("x")
        assert engine.local_capabilities() == {"codecs": []}

    @pytest.mark.asyncio
    async def test_load_failure(self):
        """Injected load failures raise AdapterFailureError."""
        engine = MockMediaEngine()
        engine.fail_load = True
        with pytest.raises(AdapterFailureError):
            await engine.load_capabilities({})
        assert not engine.loaded


class TestProduce:
    """Tests for producers."""

    @pytest.mark.asyncio
    async def test_produce_uses_server_id(self):
        """The producer id comes from the produce callback."""
        engine, on_connect, on_produce = await _loaded_engine()
        send = await engine.create_transport(Direction.SEND, _options("t-send"))

        producer = await engine.produce(send, VideoStreamTrack(), {"source": "webcam"})

        assert producer.id == "server-video"
        assert producer.kind == "video"
        on_connect.assert_awaited_once_with("t-send", {"role": "auto"})
        args = on_produce.await_args.args
        assert args[0] == "t-send"
        assert args[3] == {"source": "webcam"}

    @pytest.mark.asyncio
    async def test_connect_callback_once_per_transport(self):
        """on_connect fires only on first use of a transport."""
        engine, on_connect, _ = await _loaded_engine()
        send = await engine.create_transport(Direction.SEND, _options("t-send"))

        await engine.produce(send, VideoStreamTrack(), {})
        await engine.produce(send, AudioStreamTrack(), {})

        assert on_connect.await_count == 1

    @pytest.mark.asyncio
    async def test_produce_on_recv_transport_rejected(self):
        """Producing on a receive transport fails."""
        engine, _, _ = await _loaded_engine()
        recv = await engine.create_transport(Direction.RECV, _options("t-recv"))

        with pytest.raises(TransportUnavailableError):
            await engine.produce(recv, VideoStreamTrack(), {})

    @pytest.mark.asyncio
    async def test_pause_resume_replace(self):
        """Producers pause, resume and swap tracks."""
        engine, _, _ = await _loaded_engine()
        send = await engine.create_transport(Direction.SEND, _options("t-send"))
        producer = await engine.produce(send, VideoStreamTrack(), {})

        producer.pause()
        assert producer.paused
        producer.resume()
        assert not producer.paused

        replacement = VideoStreamTrack()
        await producer.replace_track(replacement)
        assert producer.track is replacement

    @pytest.mark.asyncio
    async def test_track_end_notifies_without_closing(self):
        """An ended source track is reported, the producer stays open."""
        engine, _, _ = await _loaded_engine()
        send = await engine.create_transport(Direction.SEND, _options("t-send"))
        track = VideoStreamTrack()
        reasons = []
        producer = await engine.produce(send, track, {}, on_close=reasons.append)

        track.stop()

        assert reasons == ["trackended"]
        assert not producer.closed

    @pytest.mark.asyncio
    async def test_replaced_track_end_ignored(self):
        """Ending a replaced track is not reported."""
        engine, _, _ = await _loaded_engine()
        send = await engine.create_transport(Direction.SEND, _options("t-send"))
        old = VideoStreamTrack()
        reasons = []
        producer = await engine.produce(send, old, {}, on_close=reasons.append)
        await producer.replace_track(VideoStreamTrack())

        old.stop()

        assert reasons == []

    @pytest.mark.asyncio
    async def test_transport_close_notifies_producers(self):
        """A network-closed transport closes its producers with a reason."""
        engine, _, _ = await _loaded_engine()
        send = await engine.create_transport(Direction.SEND, _options("t-send"))
        reasons = []
        producer = await engine.produce(send, VideoStreamTrack(), {}, on_close=reasons.append)

        engine.simulate_transport_close(Direction.SEND)

        assert producer.closed
        assert reasons == ["transportclose"]

    @pytest.mark.asyncio
    async def test_explicit_close_silent(self):
        """Disposing the engine does not report producer closes."""
        engine, _, _ = await _loaded_engine()
        send = await engine.create_transport(Direction.SEND, _options("t-send"))
        reasons = []
        producer = await engine.produce(send, VideoStreamTrack(), {}, on_close=reasons.append)

        engine.dispose()

        assert producer.closed
        assert reasons == []


class TestConsume:
    """Tests for consumers."""

    @pytest.mark.asyncio
    async def test_consume_track_by_kind(self):
        """Consumers expose a remote track of the right kind."""
        engine, _, _ = await _loaded_engine()
        recv = await engine.create_transport(Direction.RECV, _options("t-recv"))

        consumer = await engine.consume(recv, ConsumeOptions("c1", "p1", "audio"))

        assert consumer.id == "c1"
        assert consumer.producer_id == "p1"
        assert consumer.track.kind == "audio"

    @pytest.mark.asyncio
    async def test_consume_failure_injection(self):
        """Listed producers fail to consume."""
        engine, _, _ = await _loaded_engine()
        engine.fail_consume_for.add("p1")
        recv = await engine.create_transport(Direction.RECV, _options("t-recv"))

        with pytest.raises(AdapterFailureError):
            await engine.consume(recv, ConsumeOptions("c1", "p1", "video"))
        assert engine.active_consumes == 0

    @pytest.mark.asyncio
    async def test_concurrency_recorded(self):
        """Overlapping consume() calls are recorded."""
        engine, _, _ = await _loaded_engine(consume_delay_s=0.01)
        recv = await engine.create_transport(Direction.RECV, _options("t-recv"))

        await asyncio.gather(
            engine.consume(recv, ConsumeOptions("c1", "p1", "video")),
            engine.consume(recv, ConsumeOptions("c2", "p2", "video")),
        )

        assert engine.max_concurrent_consumes == 2

    @pytest.mark.asyncio
    async def test_dispose_closes_everything(self):
        """dispose() closes consumers and unloads capabilities."""
        engine, _, _ = await _loaded_engine()
        recv = await engine.create_transport(Direction.RECV, _options("t-recv"))
        consumer = await engine.consume(recv, ConsumeOptions("c1", "p1", "video"))

        engine.dispose()
        engine.dispose()

        assert consumer.closed
        assert recv.closed
        assert not engine.loaded
        assert engine.dispose_count == 2

    @pytest.mark.asyncio
    async def test_consume_on_closed_transport(self):
        """A closed transport cannot consume."""
        engine, _, _ = await _loaded_engine()
        recv = await engine.create_transport(Direction.RECV, _options("t-recv"))
        recv.close()

        with pytest.raises(TransportUnavailableError):
            await engine.consume(recv, ConsumeOptions("c1", "p1", "video"))
