"""Mock Media Engine - For testing and development.

Runs every transport, producer and consumer in-process. Remote tracks are
aiortc synthetic tracks (silence / blank frames). The transport callbacks
fire the way a real engine fires them: on_connect on first use of a
transport, on_produce on every produce().

Test hooks:
- consume_delay_s / produce_delay_s: simulated engine latency
- fail_consume_for / fail_produce_kinds / fail_load: failure injection
- max_concurrent_consumes: highest number of overlapping consume() calls
- simulate_transport_close(): closes a transport as if ICE failed
- calls: ordered record of every engine call
"""

from __future__ import annotations

import asyncio
import copy
import itertools
from typing import Any

from aiortc import AudioStreamTrack, MediaStreamTrack, VideoStreamTrack

from roomclient.exceptions import AdapterFailureError, TransportUnavailableError
from roomclient.media.engine import (
    ConnectCallback,
    ConsumeOptions,
    ConsumerHandle,
    Direction,
    MediaEngine,
    ProduceCallback,
    ProducerCloseCallback,
    ProducerHandle,
    TransportHandle,
    TransportOptions,
)
from roomclient.observability.logging import get_logger

logger = get_logger(__name__)


class MockTransport(TransportHandle):
    def __init__(self, options: TransportOptions, direction: Direction) -> None:
        self._id = options.transport_id
        self._direction = direction
        self.options = options
        self.connected = False
        self._closed = False
        self.producers: list["MockProducer"] = []
        self.consumers: list["MockConsumer"] = []

    @property
    def id(self) -> str:
        return self._id

    @property
    def direction(self) -> Direction:
        return self._direction

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._close("closed")

    def _close(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        # An explicit close() does not notify producer owners
        notify_reason = None if reason == "closed" else reason
        for producer in list(self.producers):
            producer._close_from_engine(notify_reason)
        for consumer in list(self.consumers):
            consumer.close()


class MockProducer(ProducerHandle):
    def __init__(
        self,
        producer_id: str,
        track: MediaStreamTrack,
        app_data: dict[str, Any],
        on_close: ProducerCloseCallback | None,
    ) -> None:
        self._id = producer_id
        self._kind = track.kind
        self._track = track
        self.app_data = dict(app_data)
        self._on_close = on_close
        self._paused = False
        self._closed = False
        self.replaced_tracks: list[MediaStreamTrack] = []
        self._watch(track)

    @property
    def id(self) -> str:
        return self._id

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def track(self) -> MediaStreamTrack:
        return self._track

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def closed(self) -> bool:
        return self._closed

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._unwatch(self._track)

    async def replace_track(self, track: MediaStreamTrack) -> None:
        if self._closed:
            raise AdapterFailureError("replace_track", "producer closed")
        self._unwatch(self._track)
        self._track = track
        self.replaced_tracks.append(track)
        self._watch(track)

    def _watch(self, track: MediaStreamTrack) -> None:
        track.on("ended", self._handle_track_ended)

    def _unwatch(self, track: MediaStreamTrack) -> None:
        try:
            track.remove_listener("ended", self._handle_track_ended)
        except KeyError:
            pass

    def _handle_track_ended(self) -> None:
        # The producer stays open; the owner decides what to do
        if self._closed or self._on_close is None:
            return
        self._on_close("trackended")

    def _close_from_engine(self, reason: str | None) -> None:
        if self._closed:
            return
        self.close()
        if reason and self._on_close is not None:
            self._on_close(reason)


class MockConsumer(ConsumerHandle):
    def __init__(self, options: ConsumeOptions) -> None:
        self._id = options.consumer_id
        self._producer_id = options.producer_id
        self._kind = options.kind
        self._track = AudioStreamTrack() if options.kind == "audio" else VideoStreamTrack()
        self._closed = False

    @property
    def id(self) -> str:
        return self._id

    @property
    def producer_id(self) -> str:
        return self._producer_id

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def track(self) -> MediaStreamTrack:
        return self._track

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._track.stop()


class MockMediaEngine(MediaEngine):
    """In-process media engine.

    Usage:
        engine = MockMediaEngine(consume_delay_s=0.01)
        engine.fail_consume_for.add("p2")
        ...
        assert engine.max_concurrent_consumes == 1
    """

    def __init__(
        self,
        consume_delay_s: float = 0.0,
        produce_delay_s: float = 0.0,
    ) -> None:
        """Initialize mock engine.

        Args:
            consume_delay_s: Time each consume() spends inside the engine
            produce_delay_s: Time each produce() spends before on_produce
        """
        self.consume_delay_s = consume_delay_s
        self.produce_delay_s = produce_delay_s

        self.fail_load = False
        self.fail_consume_for: set[str] = set()
        self.fail_produce_kinds: set[str] = set()
        self.fail_transport: set[Direction] = set()

        self.calls: list[tuple[str, Any]] = []
        self.active_consumes = 0
        self.max_concurrent_consumes = 0
        self.dispose_count = 0

        self._on_connect: ConnectCallback | None = None
        self._on_produce: ProduceCallback | None = None
        self._capabilities: dict[str, Any] | None = None
        self.transports: dict[str, MockTransport] = {}
        self.producers: dict[str, MockProducer] = {}
        self.consumers: dict[str, MockConsumer] = {}
        self._mids = itertools.count()

    @property
    def name(self) -> str:
        return "mock"

    @property
    def loaded(self) -> bool:
        return self._capabilities is not None

    def set_callbacks(
        self,
        on_connect: ConnectCallback,
        on_produce: ProduceCallback,
    ) -> None:
        self._on_connect = on_connect
        self._on_produce = on_produce

    async def load_capabilities(self, capabilities: dict[str, Any]) -> None:
        self.calls.append(("load_capabilities", capabilities))
        if self.fail_load:
            raise AdapterFailureError("load_capabilities", "unsupported capabilities")
        self._capabilities = copy.deepcopy(capabilities)

    def local_capabilities(self) -> dict[str, Any]:
        if self._capabilities is None:
            raise AdapterFailureError("local_capabilities", "capabilities not loaded")
        return copy.deepcopy(self._capabilities)

    async def create_transport(
        self,
        direction: Direction,
        options: TransportOptions,
    ) -> TransportHandle:
        self.calls.append(("create_transport", direction))
        if self._capabilities is None:
            raise AdapterFailureError("create_transport", "capabilities not loaded")
        if direction in self.fail_transport:
            raise AdapterFailureError("create_transport", f"{direction.value} transport rejected")
        transport = MockTransport(options, direction)
        self.transports[transport.id] = transport
        return transport

    async def produce(
        self,
        transport: TransportHandle,
        track: MediaStreamTrack,
        app_data: dict[str, Any],
        on_close: ProducerCloseCallback | None = None,
    ) -> ProducerHandle:
        self.calls.append(("produce", app_data.get("source")))
        mock_transport = self._usable(transport, Direction.SEND)
        if track.kind in self.fail_produce_kinds:
            raise AdapterFailureError("produce", f"{track.kind} encoder unavailable")
        if self._on_produce is None:
            raise AdapterFailureError("produce", "no produce callback registered")

        await self._ensure_connected(mock_transport)
        if self.produce_delay_s:
            await asyncio.sleep(self.produce_delay_s)

        rtp_parameters = {
            "mid": str(next(self._mids)),
            "codecs": [{"mimeType": "audio/opus" if track.kind == "audio" else "video/VP8"}],
            "encodings": [{"ssrc": 1000 + len(self.producers)}],
        }
        producer_id = await self._on_produce(
            mock_transport.id, track.kind, rtp_parameters, dict(app_data)
        )
        producer = MockProducer(producer_id, track, app_data, on_close)
        mock_transport.producers.append(producer)
        self.producers[producer_id] = producer
        return producer

    async def consume(
        self,
        transport: TransportHandle,
        options: ConsumeOptions,
    ) -> ConsumerHandle:
        self.calls.append(("consume", options.producer_id))
        mock_transport = self._usable(transport, Direction.RECV)

        self.active_consumes += 1
        self.max_concurrent_consumes = max(self.max_concurrent_consumes, self.active_consumes)
        try:
            await self._ensure_connected(mock_transport)
            if self.consume_delay_s:
                await asyncio.sleep(self.consume_delay_s)
            if options.producer_id in self.fail_consume_for:
                raise AdapterFailureError("consume", f"cannot consume {options.producer_id}")
            consumer = MockConsumer(options)
        finally:
            self.active_consumes -= 1

        mock_transport.consumers.append(consumer)
        self.consumers[consumer.id] = consumer
        return consumer

    def dispose(self) -> None:
        self.calls.append(("dispose", None))
        self.dispose_count += 1
        for transport in list(self.transports.values()):
            transport.close()
        for consumer in list(self.consumers.values()):
            consumer.close()
        for producer in list(self.producers.values()):
            producer.close()
        self.transports.clear()
        self.producers.clear()
        self.consumers.clear()
        self._capabilities = None

    def simulate_transport_close(self, direction: Direction) -> None:
        """Close every transport of one direction as if the network failed."""
        for transport in list(self.transports.values()):
            if transport.direction == direction:
                transport._close("transportclose")

    def _usable(self, transport: TransportHandle, direction: Direction) -> MockTransport:
        mock_transport = self.transports.get(transport.id)
        if mock_transport is None or mock_transport.closed or mock_transport.direction != direction:
            raise TransportUnavailableError(direction.value)
        return mock_transport

    async def _ensure_connected(self, transport: MockTransport) -> None:
        if transport.connected:
            return
        transport.connected = True
        if self._on_connect is not None:
            await self._on_connect(transport.id, copy.deepcopy(transport.options.dtls_parameters))
        logger.debug("mock_transport_connected", transport_id=transport.id)
