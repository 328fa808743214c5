"""Structured Logging - JSON logs with room correlation.

Provides structured logging for:
- Room membership events (join, leave, state changes)
- Remote stream consumption failures
- Best-effort cleanup failures

Logs emitted while a room is joined carry room_id for correlation.
"""

import logging
import sys

import structlog


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
) -> None:
    """Configure structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; else human-readable
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Route stdlib loggers (socketio, engineio, aiortc) to the same stream
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Bound structlog logger
    """
    return structlog.get_logger(name)


def bind_room(room_id: str) -> None:
    """Bind room_id to all logs in current context.

    Args:
        room_id: Room identifier
    """
    structlog.contextvars.bind_contextvars(room_id=room_id)


def unbind_room() -> None:
    """Remove room_id from log context."""
    structlog.contextvars.unbind_contextvars("room_id")


# -----------------------------------------------------------------------------
# Event-specific logging functions
# -----------------------------------------------------------------------------


class RoomLogger:
    """Logger for room membership events."""

    def __init__(self, room_id: str | None = None) -> None:
        self._log = get_logger("room")
        if room_id:
            self._log = self._log.bind(room_id=room_id)

    def bind(self, room_id: str | None) -> "RoomLogger":
        """Return a logger bound to another room."""
        return RoomLogger(room_id)

    def join_started(self, rejoin: bool = False) -> None:
        """Log join attempt start."""
        self._log.info(
            "join_started",
            event_type="room.join_started",
            rejoin=rejoin,
        )

    def join_completed(
        self,
        peers: int,
        streams: int,
        consumed: int,
        elapsed_ms: float,
    ) -> None:
        """Log successful join with seeded state sizes."""
        self._log.info(
            "join_completed",
            event_type="room.join_completed",
            peers=peers,
            streams=streams,
            consumed=consumed,
            elapsed_ms=elapsed_ms,
        )

    def join_failed(self, error: Exception, elapsed_ms: float) -> None:
        """Log aborted join."""
        self._log.error(
            "join_failed",
            event_type="room.join_failed",
            error=str(error),
            error_type=type(error).__name__,
            elapsed_ms=elapsed_ms,
        )

    def state_change(self, old_state: str, new_state: str, reason: str) -> None:
        """Log state transition."""
        self._log.info(
            "state_change",
            event_type="room.state_change",
            old_state=old_state,
            new_state=new_state,
            reason=reason,
        )

    def room_left(self, cleanup_errors: int, elapsed_ms: float) -> None:
        """Log leave completion."""
        self._log.info(
            "room_left",
            event_type="room.left",
            cleanup_errors=cleanup_errors,
            elapsed_ms=elapsed_ms,
        )

    def cleanup_step_failed(self, step: str, error: Exception) -> None:
        """Log a failed best-effort cleanup step."""
        self._log.warning(
            "cleanup_step_failed",
            event_type="room.cleanup_step_failed",
            step=step,
            error=str(error),
            error_type=type(error).__name__,
        )

    def consume_failed(self, producer_id: str, error: Exception) -> None:
        """Log an isolated remote stream consume failure."""
        self._log.warning(
            "consume_failed",
            event_type="stream.consume_failed",
            producer_id=producer_id,
            error=str(error),
            error_type=type(error).__name__,
        )

    def local_media_failed(self, source: str, action: str, error: Exception) -> None:
        """Log a local capture/publish failure."""
        self._log.warning(
            "local_media_failed",
            event_type="local.media_failed",
            source=source,
            action=action,
            error=str(error),
            error_type=type(error).__name__,
        )


# Initialize default logging configuration
def init_logging(json_format: bool = True, level: str = "INFO") -> None:
    """Initialize logging with defaults.

    Call this once at application startup.
    """
    configure_logging(level=level, json_format=json_format)
