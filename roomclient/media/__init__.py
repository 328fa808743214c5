"""Media module - Engine adapter, local capture and platform hooks.

Available engines:
- MockMediaEngine: In-process engine with synthetic tracks (testing/dev)
"""

from roomclient.media.capture import CaptureConfig, MediaCapture, MutableAudioTrack
from roomclient.media.engine import (
    ConsumeOptions,
    ConsumerHandle,
    Direction,
    MediaEngine,
    ProducerHandle,
    TransportHandle,
    TransportOptions,
    create_media_engine,
)
from roomclient.media.mock_engine import MockMediaEngine
from roomclient.media.platform import AudioOutput, CallPlatform, NullCallPlatform

__all__ = [
    # Interface
    "MediaEngine",
    "TransportHandle",
    "ProducerHandle",
    "ConsumerHandle",
    "TransportOptions",
    "ConsumeOptions",
    "Direction",
    "create_media_engine",
    # Engines
    "MockMediaEngine",
    # Capture
    "MediaCapture",
    "CaptureConfig",
    "MutableAudioTrack",
    # Platform
    "CallPlatform",
    "NullCallPlatform",
    "AudioOutput",
]
