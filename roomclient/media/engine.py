"""MediaEngine Interface - Transport, producer and consumer primitives.

The room client is blind to which engine is used. An engine wraps
capability negotiation, the send/receive transports and the producers and
consumers living on them, and calls back into the room client when a
transport needs its DTLS parameters acknowledged or a new producer needs a
server-assigned id.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from aiortc import MediaStreamTrack

from roomclient.exceptions import InvalidConfigError
from roomclient.signaling.protocol import ConsumeResponse, TransportInfo


class Direction(str, Enum):
    """Transport direction."""

    SEND = "send"
    RECV = "recv"


@dataclass
class TransportOptions:
    """Server-side transport parameters needed to build a local transport."""

    transport_id: str
    ice_parameters: dict[str, Any]
    ice_candidates: list[Any]
    dtls_parameters: dict[str, Any]
    sctp_parameters: dict[str, Any] | None = None

    @classmethod
    def from_info(cls, info: TransportInfo) -> "TransportOptions":
        return cls(
            transport_id=info.transport_id,
            ice_parameters=info.ice_parameters,
            ice_candidates=info.ice_candidates,
            dtls_parameters=info.dtls_parameters,
            sctp_parameters=info.sctp_parameters,
        )


@dataclass
class ConsumeOptions:
    """Server answer to a consume request."""

    consumer_id: str
    producer_id: str
    kind: str
    rtp_parameters: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, response: ConsumeResponse) -> "ConsumeOptions":
        return cls(
            consumer_id=response.consumer_id,
            producer_id=response.producer_id,
            kind=response.kind,
            rtp_parameters=response.rtp_parameters,
        )


# on_connect(transport_id, dtls_parameters)
ConnectCallback = Callable[[str, dict[str, Any]], Awaitable[None]]
# on_produce(transport_id, kind, rtp_parameters, app_data) -> producer_id
ProduceCallback = Callable[[str, str, dict[str, Any], dict[str, Any]], Awaitable[str]]
# on_close(reason): "transportclose" (producer already closed) or
# "trackended" (source track ended, producer left open)
ProducerCloseCallback = Callable[[str], Any]


class TransportHandle(ABC):
    """One negotiated network path."""

    @property
    @abstractmethod
    def id(self) -> str:
        ...

    @property
    @abstractmethod
    def direction(self) -> Direction:
        ...

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the transport and everything on it. Idempotent."""
        ...


class ProducerHandle(ABC):
    """A local track published on the send transport."""

    @property
    @abstractmethod
    def id(self) -> str:
        ...

    @property
    @abstractmethod
    def kind(self) -> str:
        ...

    @property
    @abstractmethod
    def track(self) -> MediaStreamTrack:
        """Current source track."""
        ...

    @property
    @abstractmethod
    def paused(self) -> bool:
        ...

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    def pause(self) -> None:
        ...

    @abstractmethod
    def resume(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        """Stop sending. Does not stop the source track. Idempotent."""
        ...

    @abstractmethod
    async def replace_track(self, track: MediaStreamTrack) -> None:
        """Swap the source track without renegotiation."""
        ...


class ConsumerHandle(ABC):
    """A local subscription to a remote producer."""

    @property
    @abstractmethod
    def id(self) -> str:
        ...

    @property
    @abstractmethod
    def producer_id(self) -> str:
        ...

    @property
    @abstractmethod
    def kind(self) -> str:
        ...

    @property
    @abstractmethod
    def track(self) -> MediaStreamTrack:
        """Renderable remote track."""
        ...

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the consumer and stop its track. Idempotent."""
        ...


class MediaEngine(ABC):
    """Canonical interface for media engines.

    Usage:
        engine = create_media_engine("mock")
        engine.set_callbacks(on_connect=..., on_produce=...)
        await engine.load_capabilities(router_rtp_capabilities)

        send = await engine.create_transport(Direction.SEND, send_options)
        recv = await engine.create_transport(Direction.RECV, recv_options)

        producer = await engine.produce(send, track, {"source": "webcam"})
        consumer = await engine.consume(recv, consume_options)

        engine.dispose()
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Engine name identifier (e.g., "mock")."""
        ...

    @property
    @abstractmethod
    def loaded(self) -> bool:
        """Whether capabilities have been loaded since the last dispose."""
        ...

    @abstractmethod
    def set_callbacks(
        self,
        on_connect: ConnectCallback,
        on_produce: ProduceCallback,
    ) -> None:
        """Register the transport callbacks.

        on_connect must resolve only once signaling has acknowledged the
        DTLS parameters. on_produce must resolve with the server-assigned
        producer id; produce() blocks until it does.
        """
        ...

    @abstractmethod
    async def load_capabilities(self, capabilities: dict[str, Any]) -> None:
        """Negotiate against the server's capabilities.

        Must complete before any transport is created.
        """
        ...

    @abstractmethod
    def local_capabilities(self) -> dict[str, Any]:
        """Capabilities sent with consume requests.

        Raises:
            AdapterFailureError: If capabilities are not loaded
        """
        ...

    @abstractmethod
    async def create_transport(
        self,
        direction: Direction,
        options: TransportOptions,
    ) -> TransportHandle:
        ...

    @abstractmethod
    async def produce(
        self,
        transport: TransportHandle,
        track: MediaStreamTrack,
        app_data: dict[str, Any],
        on_close: ProducerCloseCallback | None = None,
    ) -> ProducerHandle:
        """Publish a track.

        Args:
            transport: Send transport
            track: Local source track
            app_data: Metadata forwarded to the server (carries the source tag)
            on_close: Invoked when the transport closes under the producer
                or when its source track ends
        """
        ...

    @abstractmethod
    async def consume(
        self,
        transport: TransportHandle,
        options: ConsumeOptions,
    ) -> ConsumerHandle:
        """Subscribe to a remote producer.

        Callers must not run two consume() calls on one transport at a time.
        """
        ...

    @abstractmethod
    def dispose(self) -> None:
        """Release transports, producers, consumers and capabilities.

        Idempotent. The engine can be loaded again afterwards.
        """
        ...


def create_media_engine(name: str | None = None) -> MediaEngine:
    """Factory function to create a media engine by name.

    Args:
        name: Engine name. If None, uses MEDIA_ENGINE from settings.

    Raises:
        InvalidConfigError: If the engine is unknown
    """
    if name is None:
        from roomclient.config.settings import get_settings
        name = get_settings().media_engine

    if name == "mock":
        from roomclient.media.mock_engine import MockMediaEngine
        return MockMediaEngine()

    raise InvalidConfigError("media_engine", name, "unknown engine, available: mock")
