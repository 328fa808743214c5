"""Peer & Stream Registry - In-memory room population.

Holds the remote peers and the state of every remote stream, keyed by
peer id and producer id. All values are frozen dataclasses and every
mutation replaces the backing dict, so a snapshot taken at any moment is
never affected by later updates.

The registry performs no I/O and takes no locks; it is only mutated from
the room client's event loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping

from roomclient.config.constants import ROOM


@dataclass(frozen=True)
class LocalMediaState:
    """Local capture/publish flags for the current membership."""

    camera_open: bool = False
    mic_open: bool = False
    screen_share_open: bool = False
    front_camera: bool = True
    volume: int = 0


@dataclass(frozen=True)
class Peer:
    """One remote participant, keyed by server socket id."""

    id: str
    video_producer_id: str | None = None
    audio_producer_id: str | None = None
    screen_producer_id: str | None = None

    @property
    def producer_ids(self) -> list[str]:
        return [
            pid
            for pid in (self.video_producer_id, self.audio_producer_id, self.screen_producer_id)
            if pid
        ]


@dataclass(frozen=True)
class StreamState:
    """State of one remote published stream, keyed by producer id.

    announced is False for a stub created by a pause/resume push that
    arrived before the producer itself was announced.
    """

    producer_id: str
    owner_peer_id: str | None = None
    kind: str | None = None
    is_screen_share: bool = False
    paused: bool = False
    network_score: int = ROOM.NETWORK_SCORE_DEFAULT
    volume: int = 0
    video_track: Any = field(default=None, compare=False)
    screen_track: Any = field(default=None, compare=False)
    audio_track: Any = field(default=None, compare=False)
    announced: bool = True

    @property
    def track(self) -> Any:
        """The rendered track, or None until consumption succeeds."""
        return self.screen_track or self.video_track or self.audio_track

    @property
    def rendering(self) -> bool:
        return self.track is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "producer_id": self.producer_id,
            "owner_peer_id": self.owner_peer_id,
            "kind": self.kind,
            "is_screen_share": self.is_screen_share,
            "paused": self.paused,
            "network_score": self.network_score,
            "volume": self.volume,
            "rendering": self.rendering,
            "announced": self.announced,
        }


@dataclass(frozen=True)
class RoomSnapshot:
    """Immutable view of the session handed to observers."""

    room_id: str | None
    state: str
    local: LocalMediaState
    peers: Mapping[str, Peer]
    streams: Mapping[str, StreamState]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dict (tracks reduced to flags)."""
        return {
            "room_id": self.room_id,
            "state": self.state,
            "local": {
                "camera_open": self.local.camera_open,
                "mic_open": self.local.mic_open,
                "screen_share_open": self.local.screen_share_open,
                "front_camera": self.local.front_camera,
                "volume": self.local.volume,
            },
            "peers": {
                peer_id: {
                    "video_producer_id": peer.video_producer_id,
                    "audio_producer_id": peer.audio_producer_id,
                    "screen_producer_id": peer.screen_producer_id,
                }
                for peer_id, peer in self.peers.items()
            },
            "streams": {pid: stream.to_dict() for pid, stream in self.streams.items()},
        }


def _slot(kind: str | None, is_screen_share: bool) -> str:
    if kind == "audio":
        return "audio_producer_id"
    if is_screen_share:
        return "screen_producer_id"
    return "video_producer_id"


class PeerRegistry:
    """Copy-on-write store of peers and stream states."""

    def __init__(self) -> None:
        self._peers: dict[str, Peer] = {}
        self._streams: dict[str, StreamState] = {}
        # Producers closed during this membership
        self._closed: set[str] = set()

    @property
    def peers(self) -> Mapping[str, Peer]:
        return MappingProxyType(self._peers)

    @property
    def streams(self) -> Mapping[str, StreamState]:
        return MappingProxyType(self._streams)

    def get_peer(self, peer_id: str) -> Peer | None:
        return self._peers.get(peer_id)

    def get_stream(self, producer_id: str) -> StreamState | None:
        return self._streams.get(producer_id)

    def snapshot(
        self,
        room_id: str | None,
        state: str,
        local: LocalMediaState,
    ) -> RoomSnapshot:
        # The backing dicts are never mutated in place, so proxies over the
        # current ones are stable.
        return RoomSnapshot(
            room_id=room_id,
            state=state,
            local=local,
            peers=MappingProxyType(self._peers),
            streams=MappingProxyType(self._streams),
        )

    # -------------------------------------------------------------------------
    # Peers
    # -------------------------------------------------------------------------

    def upsert_peer(self, peer_id: str) -> Peer:
        """Add a peer if absent. Returns the current entry."""
        peer = self._peers.get(peer_id)
        if peer is not None:
            return peer
        peer = Peer(id=peer_id)
        self._put_peer(peer)
        return peer

    def remove_peer(self, peer_id: str) -> list[StreamState]:
        """Remove a peer and every stream it owns. Returns the removed streams."""
        owned = [s for s in self._streams.values() if s.owner_peer_id == peer_id]
        self._closed.update(s.producer_id for s in owned)
        if peer_id in self._peers:
            peers = dict(self._peers)
            del peers[peer_id]
            self._peers = peers
        if owned:
            streams = dict(self._streams)
            for stream in owned:
                del streams[stream.producer_id]
            self._streams = streams
        return owned

    def attach_producer(
        self,
        peer_id: str,
        producer_id: str,
        kind: str | None,
        is_screen_share: bool = False,
    ) -> Peer:
        """Record a producer on its owner (creating the peer if needed)."""
        peer = self.upsert_peer(peer_id)
        peer = replace(peer, **{_slot(kind, is_screen_share): producer_id})
        self._put_peer(peer)
        return peer

    def detach_producer(self, peer_id: str, producer_id: str) -> Peer | None:
        """Clear whichever slot of the peer holds producer_id."""
        peer = self._peers.get(peer_id)
        if peer is None:
            return None
        changes = {
            name: None
            for name in ("video_producer_id", "audio_producer_id", "screen_producer_id")
            if getattr(peer, name) == producer_id
        }
        if changes:
            peer = replace(peer, **changes)
            self._put_peer(peer)
        return peer

    # -------------------------------------------------------------------------
    # Streams
    # -------------------------------------------------------------------------

    def announce_stream(
        self,
        producer_id: str,
        owner_peer_id: str,
        kind: str,
        paused: bool = False,
        is_screen_share: bool = False,
    ) -> StreamState:
        """Register an announced producer.

        An existing entry (a stub, or a repeated announce) keeps its paused
        flag, since it reflects the latest pause/resume push, along with any
        attached tracks, score and volume.
        """
        self.attach_producer(owner_peer_id, producer_id, kind, is_screen_share)
        existing = self._streams.get(producer_id)
        if existing is None:
            stream = StreamState(
                producer_id=producer_id,
                owner_peer_id=owner_peer_id,
                kind=kind,
                is_screen_share=is_screen_share,
                paused=paused,
            )
        else:
            stream = replace(
                existing,
                owner_peer_id=owner_peer_id,
                kind=kind,
                is_screen_share=is_screen_share,
                announced=True,
            )
        self._put_stream(stream)
        return stream

    def remove_stream(self, producer_id: str) -> StreamState | None:
        """Remove a stream and detach it from its owner."""
        self._closed.add(producer_id)
        stream = self._streams.get(producer_id)
        if stream is None:
            return None
        streams = dict(self._streams)
        del streams[producer_id]
        self._streams = streams
        if stream.owner_peer_id:
            self.detach_producer(stream.owner_peer_id, producer_id)
        return stream

    def set_paused(
        self,
        producer_id: str,
        paused: bool,
        owner_peer_id: str | None = None,
        kind: str | None = None,
    ) -> StreamState | None:
        """Set the paused flag, creating a stub if the stream is unknown.

        Returns None for a producer that was already closed.
        """
        stream = self._streams.get(producer_id)
        if stream is None:
            if producer_id in self._closed:
                return None
            stream = StreamState(
                producer_id=producer_id,
                owner_peer_id=owner_peer_id,
                kind=kind,
                paused=paused,
                announced=False,
            )
        elif stream.paused == paused:
            return stream
        else:
            stream = replace(stream, paused=paused)
        self._put_stream(stream)
        return stream

    def set_volume(self, producer_id: str, volume: int) -> bool:
        """Set speaking volume of a known stream. Returns False if unknown."""
        stream = self._streams.get(producer_id)
        if stream is None:
            return False
        if stream.volume != volume:
            self._put_stream(replace(stream, volume=volume))
        return True

    def set_network_score(self, producer_id: str, score: int) -> bool:
        """Set network score of a known stream. Returns False if unknown."""
        stream = self._streams.get(producer_id)
        if stream is None:
            return False
        if stream.network_score != score:
            self._put_stream(replace(stream, network_score=score))
        return True

    def attach_track(self, producer_id: str, track: Any, kind: str) -> StreamState | None:
        """Store a rendered track, classified by kind and screen tag."""
        stream = self._streams.get(producer_id)
        if stream is None:
            return None
        if kind == "audio":
            stream = replace(stream, audio_track=track)
        elif stream.is_screen_share:
            stream = replace(stream, screen_track=track)
        else:
            stream = replace(stream, video_track=track)
        self._put_stream(stream)
        return stream

    def clear(self) -> None:
        self._peers = {}
        self._streams = {}
        self._closed = set()

    def _put_peer(self, peer: Peer) -> None:
        peers = dict(self._peers)
        peers[peer.id] = peer
        self._peers = peers

    def _put_stream(self, stream: StreamState) -> None:
        streams = dict(self._streams)
        streams[stream.producer_id] = stream
        self._streams = streams
