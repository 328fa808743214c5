"""Room Client Exception Hierarchy.

Provides structured exception classes for signaling, media and session errors.

Hierarchy:
    RoomClientError (base)
    ├── SignalingError
    │   ├── NotConnectedError
    │   ├── SignalingTimeoutError
    │   ├── DecodeError
    │   └── RequestRejectedError
    ├── MediaError
    │   ├── CaptureUnavailableError
    │   ├── TransportUnavailableError
    │   └── AdapterFailureError
    ├── SessionError
    │   └── SessionStateError
    └── ConfigurationError
        └── InvalidConfigError
"""

from typing import Any


class RoomClientError(Exception):
    """Base exception for all room client errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the caller may retry the operation
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# Signaling Errors
# =============================================================================


class SignalingError(RoomClientError):
    """Base exception for signaling channel errors."""

    pass


class NotConnectedError(SignalingError):
    """Raised when no signaling connection is active."""

    def __init__(self, operation: str | None = None, reason: str | None = None) -> None:
        details: dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if reason:
            details["reason"] = reason
        message = "Signaling channel not connected"
        if operation:
            message = f"Cannot send {operation}: signaling channel not connected"
        super().__init__(message=message, details=details, recoverable=True)
        self.operation = operation


class SignalingTimeoutError(SignalingError):
    """Raised when a request gets no response within its deadline."""

    def __init__(self, operation: str, timeout_s: float) -> None:
        super().__init__(
            message=f"{operation} timed out after {timeout_s}s",
            details={"operation": operation, "timeout_s": timeout_s},
            recoverable=True,
        )
        self.operation = operation
        self.timeout_s = timeout_s


class DecodeError(SignalingError):
    """Raised when a response cannot be parsed into the expected shape."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            message=f"Malformed response for {operation}: {reason}",
            details={"operation": operation, "reason": reason},
            recoverable=False,
        )
        self.operation = operation


class RequestRejectedError(SignalingError):
    """Raised when the server answers a request with an error."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            message=f"Server rejected {operation}: {reason}",
            details={"operation": operation, "reason": reason},
            recoverable=False,
        )
        self.operation = operation


# =============================================================================
# Media Errors
# =============================================================================


class MediaError(RoomClientError):
    """Base exception for media engine and capture errors."""

    pass


class CaptureUnavailableError(MediaError):
    """Raised when camera, microphone or screen capture cannot start."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(
            message=f"Capture unavailable for {source}: {reason}",
            details={"source": source, "reason": reason},
            recoverable=True,  # Permission may be granted later
        )
        self.source = source


class TransportUnavailableError(MediaError):
    """Raised when a transport operation runs before transports exist."""

    def __init__(self, direction: str) -> None:
        super().__init__(
            message=f"No {direction} transport available",
            details={"direction": direction},
            recoverable=False,
        )
        self.direction = direction


class AdapterFailureError(MediaError):
    """Raised for opaque media engine failures."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            message=f"Media engine {operation} failed: {reason}",
            details={"operation": operation, "reason": reason},
            recoverable=False,
        )
        self.operation = operation


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(RoomClientError):
    """Base exception for room session errors."""

    def __init__(
        self,
        message: str,
        room_id: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        details = details or {}
        if room_id:
            details["room_id"] = room_id
        super().__init__(message, details, recoverable)
        self.room_id = room_id


class SessionStateError(SessionError):
    """Raised for operations or transitions invalid in the current state."""

    def __init__(
        self,
        message: str,
        room_id: str | None = None,
        current_state: str | None = None,
        target_state: str | None = None,
    ) -> None:
        details = {}
        if current_state:
            details["current_state"] = current_state
        if target_state:
            details["target_state"] = target_state
        super().__init__(message, room_id, details, recoverable=False)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(RoomClientError):
    """Base exception for configuration-related errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value is invalid."""

    def __init__(
        self,
        config_key: str,
        value: Any,
        reason: str,
    ) -> None:
        super().__init__(
            message=f"Invalid configuration for {config_key}: {reason}",
            details={
                "config_key": config_key,
                "value": str(value),
                "reason": reason,
            },
            recoverable=False,
        )
