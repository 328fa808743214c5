"""Room Client - Multi-party audio/video room session client."""

__version__ = "1.0.0"

# Export exception hierarchy for easy importing
from roomclient.exceptions import (
    RoomClientError,
    SignalingError,
    NotConnectedError,
    SignalingTimeoutError,
    DecodeError,
    RequestRejectedError,
    MediaError,
    CaptureUnavailableError,
    TransportUnavailableError,
    AdapterFailureError,
    SessionError,
    SessionStateError,
    ConfigurationError,
    InvalidConfigError,
)

__all__ = [
    "__version__",
    # Base
    "RoomClientError",
    # Signaling
    "SignalingError",
    "NotConnectedError",
    "SignalingTimeoutError",
    "DecodeError",
    "RequestRejectedError",
    # Media
    "MediaError",
    "CaptureUnavailableError",
    "TransportUnavailableError",
    "AdapterFailureError",
    # Session
    "SessionError",
    "SessionStateError",
    # Configuration
    "ConfigurationError",
    "InvalidConfigError",
]
