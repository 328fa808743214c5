"""Signaling module - Socket.IO channel and wire protocol.

Provides:
- SignalingChannel: Correlated requests, notifies and push dispatch
- SignalEvent: Event names of the room protocol
- Payload models for every request, response and push
"""

from roomclient.signaling.channel import SignalingChannel
from roomclient.signaling.protocol import (
    ConsumeRequest,
    ConsumeResponse,
    JoinRoomRequest,
    JoinRoomResponse,
    MediaSource,
    ProduceRequest,
    ProduceResponse,
    ProducerInfo,
    SignalEvent,
    TransportInfo,
)

__all__ = [
    "SignalingChannel",
    "SignalEvent",
    "MediaSource",
    "JoinRoomRequest",
    "JoinRoomResponse",
    "ProducerInfo",
    "TransportInfo",
    "ProduceRequest",
    "ProduceResponse",
    "ConsumeRequest",
    "ConsumeResponse",
]
