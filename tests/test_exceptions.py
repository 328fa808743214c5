"""Tests for Exception Hierarchy.

Tests cover:
- RoomClientError base class
- Signaling exceptions
- Media exceptions
- Session exceptions
- Configuration exceptions
"""

import pytest

from roomclient.exceptions import (
    AdapterFailureError,
    CaptureUnavailableError,
    ConfigurationError,
    DecodeError,
    InvalidConfigError,
    MediaError,
    NotConnectedError,
    RequestRejectedError,
    RoomClientError,
    SessionError,
    SessionStateError,
    SignalingError,
    SignalingTimeoutError,
    TransportUnavailableError,
)


class TestRoomClientError:
    """Tests for RoomClientError base class."""

    def test_basic_creation(self):
        """Create basic error with message."""
        error = RoomClientError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.details == {}
        assert error.recoverable is False

    def test_with_details(self):
        """Details are appended to the string form."""
        error = RoomClientError("Operation failed", details={"step": 3}, recoverable=True)
        assert error.details == {"step": 3}
        assert error.recoverable is True
        assert "step" in str(error)

    def test_to_dict(self):
        """Serialize to dictionary."""
        error = RoomClientError("Failed", details={"key": "value"})
        assert error.to_dict() == {
            "type": "RoomClientError",
            "message": "Failed",
            "details": {"key": "value"},
            "recoverable": False,
        }

    def test_can_be_caught_as_exception(self):
        """Base class is a regular Exception."""
        with pytest.raises(Exception):
            raise RoomClientError("boom")


class TestSignalingErrors:
    """Tests for signaling exceptions."""

    def test_not_connected_without_operation(self):
        """Generic message when no operation is known."""
        error = NotConnectedError()
        assert error.message == "Signaling channel not connected"
        assert error.recoverable is True
        assert isinstance(error, SignalingError)

    def test_not_connected_with_operation_and_reason(self):
        """Operation and reason are recorded."""
        error = NotConnectedError("consume", reason="transport close")
        assert "consume" in error.message
        assert error.details == {"operation": "consume", "reason": "transport close"}
        assert error.operation == "consume"

    def test_timeout(self):
        """Timeout carries operation and deadline."""
        error = SignalingTimeoutError("joinRoom", 5.0)
        assert error.timeout_s == 5.0
        assert error.details["operation"] == "joinRoom"
        assert error.recoverable is True

    def test_decode_error(self):
        """Decode errors are not recoverable."""
        error = DecodeError("produce", "empty response")
        assert "produce" in error.message
        assert error.recoverable is False

    def test_request_rejected(self):
        """Rejections keep the server reason."""
        error = RequestRejectedError("joinRoom", "room full")
        assert error.details["reason"] == "room full"
        assert isinstance(error, SignalingError)


class TestMediaErrors:
    """Tests for media exceptions."""

    def test_capture_unavailable(self):
        """Capture errors are recoverable."""
        error = CaptureUnavailableError("camera", "permission denied")
        assert error.source == "camera"
        assert error.recoverable is True
        assert isinstance(error, MediaError)

    def test_transport_unavailable(self):
        """Direction is recorded."""
        error = TransportUnavailableError("send")
        assert error.direction == "send"
        assert error.message == "No send transport available"

    def test_adapter_failure(self):
        """Adapter failures keep the operation."""
        error = AdapterFailureError("consume", "decoder missing")
        assert error.operation == "consume"
        assert isinstance(error, RoomClientError)


class TestSessionErrors:
    """Tests for session exceptions."""

    def test_session_error_records_room(self):
        """Room id lands in details."""
        error = SessionError("failed", room_id="1234")
        assert error.room_id == "1234"
        assert error.details["room_id"] == "1234"

    def test_state_error(self):
        """State error keeps both states."""
        error = SessionStateError(
            "Invalid transition",
            room_id="1234",
            current_state="joined",
            target_state="joined",
        )
        assert error.details == {
            "current_state": "joined",
            "target_state": "joined",
            "room_id": "1234",
        }
        assert isinstance(error, SessionError)


class TestConfigurationErrors:
    """Tests for configuration exceptions."""

    def test_invalid_config(self):
        """Invalid config error stringifies the value."""
        error = InvalidConfigError("media_engine", 42, "unknown engine")
        assert error.details["value"] == "42"
        assert isinstance(error, ConfigurationError)
