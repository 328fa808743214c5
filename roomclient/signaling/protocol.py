"""Signaling Protocol - Wire names and payload models.

Every payload is a pydantic model serialized with camelCase aliases.
Unknown keys sent by the server are ignored so that newer servers can add
fields without breaking the client.

Requests (ack expected):
- joinRoom, createWebRtcTransport, produce, consume

Notifies (fire-and-forget):
- connectTransport, resume, pauseProducer, resumeProducer, closeProducer

Pushes (server -> client):
- peerJoined, peerLeave, newProducer, consumerClosed,
  producerPaused, producerResumed, activeSpeaker, producerScore
"""

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


class SignalEvent:
    """Socket.IO event names used by the room protocol."""

    # Requests
    JOIN_ROOM = "joinRoom"
    CREATE_TRANSPORT = "createWebRtcTransport"
    PRODUCE = "produce"
    CONSUME = "consume"

    # Notifies
    CONNECT_TRANSPORT = "connectTransport"
    RESUME_CONSUMER = "resume"
    PAUSE_PRODUCER = "pauseProducer"
    RESUME_PRODUCER = "resumeProducer"
    CLOSE_PRODUCER = "closeProducer"

    # Pushes
    PEER_JOINED = "peerJoined"
    PEER_LEAVE = "peerLeave"
    PEER_LEFT = "peerLeft"  # Alternate spelling used by some servers
    NEW_PRODUCER = "newProducer"
    CONSUMER_CLOSED = "consumerClosed"
    PRODUCER_PAUSED = "producerPaused"
    PRODUCER_RESUMED = "producerResumed"
    ACTIVE_SPEAKER = "activeSpeaker"
    PRODUCER_SCORE = "producerScore"


class MediaSource(str, Enum):
    """Application tag carried in a producer's appData.source."""

    WEBCAM = "webcam"
    MIC = "mic"
    SCREEN = "screen"


class WireModel(BaseModel):
    """Base for all signaling payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


def default_source(kind: str) -> MediaSource:
    """Source assumed for a producer that carries no tag."""
    return MediaSource.MIC if kind == "audio" else MediaSource.WEBCAM


# -----------------------------------------------------------------------------
# Requests and responses
# -----------------------------------------------------------------------------


class AppData(WireModel):
    """Producer metadata. Only the source tag is interpreted."""

    source: str | None = None


class ProducerInfo(WireModel):
    """A producer as announced by the server.

    Used both for the existingProducers list of the join response and for
    the newProducer push.
    """

    producer_id: str
    owner_id: str = Field(validation_alias=AliasChoices("ownerId", "socketId", "owner_id"))
    kind: str
    paused: bool = False
    app_data: AppData | None = None
    tag: str | None = None

    @field_validator("paused", mode="before")
    @classmethod
    def _null_paused(cls, value: Any) -> Any:
        return False if value is None else value

    @property
    def source(self) -> MediaSource:
        raw = self.tag or (self.app_data.source if self.app_data else None)
        try:
            return MediaSource(raw) if raw else default_source(self.kind)
        except ValueError:
            return default_source(self.kind)

    @property
    def is_screen_share(self) -> bool:
        return self.source is MediaSource.SCREEN


class JoinRoomRequest(WireModel):
    room_id: str


class JoinRoomResponse(WireModel):
    """Server capabilities plus the current room population."""

    rtp_capabilities: dict[str, Any] = Field(
        validation_alias=AliasChoices("rtpCapabilities", "capabilities", "rtp_capabilities")
    )
    existing_peers: list[str] = Field(default_factory=list)
    existing_producers: list[ProducerInfo] = Field(default_factory=list)

    @field_validator("existing_peers", mode="before")
    @classmethod
    def _peer_ids(cls, value: Any) -> Any:
        # Accept bare socket ids or peer objects
        if not isinstance(value, list):
            return value
        ids = []
        for item in value:
            if isinstance(item, dict):
                ids.append(item.get("socketId") or item.get("id"))
            else:
                ids.append(item)
        return ids


class CreateTransportRequest(WireModel):
    sender: bool


class TransportInfo(WireModel):
    """Connection parameters for one server-side transport."""

    transport_id: str = Field(validation_alias=AliasChoices("transportId", "id", "transport_id"))
    ice_parameters: dict[str, Any]
    ice_candidates: list[Any]
    dtls_parameters: dict[str, Any]
    sctp_parameters: dict[str, Any] | None = None


class ConnectTransportRequest(WireModel):
    transport_id: str
    dtls_parameters: dict[str, Any]


class ProduceRequest(WireModel):
    transport_id: str
    kind: str
    rtp_parameters: dict[str, Any]
    app_data: dict[str, Any] = Field(default_factory=dict)


class ProduceResponse(WireModel):
    producer_id: str = Field(validation_alias=AliasChoices("id", "producerId", "producer_id"))


class ConsumeRequest(WireModel):
    producer_id: str
    transport_id: str
    rtp_capabilities: dict[str, Any]


class ConsumeResponse(WireModel):
    consumer_id: str = Field(validation_alias=AliasChoices("id", "consumerId", "consumer_id"))
    producer_id: str
    kind: str
    rtp_parameters: dict[str, Any]


class ConsumerRef(WireModel):
    """Payload of resume notifies and consumerClosed pushes."""

    consumer_id: str


class ProducerRef(WireModel):
    """Payload of pause/resume/close producer notifies."""

    producer_id: str


# -----------------------------------------------------------------------------
# Pushes
# -----------------------------------------------------------------------------


class PeerEvent(WireModel):
    """peerJoined / peerLeave payload."""

    peer_id: str = Field(validation_alias=AliasChoices("socketId", "id", "peerId", "peer_id"))


class ProducerStateEvent(WireModel):
    """producerPaused / producerResumed payload."""

    producer_id: str
    kind: str | None = None
    owner_id: str | None = Field(
        default=None, validation_alias=AliasChoices("ownerId", "socketId", "owner_id")
    )


class SpeakerLevel(WireModel):
    """One entry of an activeSpeaker push. Level is in dBov (-127..0)."""

    producer_id: str = Field(
        validation_alias=AliasChoices("producerId", "audioProducerId", "producer_id")
    )
    level_db: float = Field(validation_alias=AliasChoices("levelDb", "volume", "level_db"))


class ScoreEntry(WireModel):
    score: int = 0


class ProducerScoreEvent(WireModel):
    """producerScore payload. Only the first score entry is used."""

    producer_id: str
    score: list[ScoreEntry] = Field(default_factory=list)

    @field_validator("score", mode="before")
    @classmethod
    def _single_score(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return [{"score": int(value)}]
        if isinstance(value, dict):
            return [value]
        return value

    @property
    def first_score(self) -> int | None:
        return self.score[0].score if self.score else None


_SPEAKER_LEVELS = TypeAdapter(list[SpeakerLevel])


def parse_active_speakers(payload: Any) -> list[SpeakerLevel]:
    """Parse an activeSpeaker push (a list, or a single entry)."""
    if isinstance(payload, dict):
        payload = [payload]
    return _SPEAKER_LEVELS.validate_python(payload)
