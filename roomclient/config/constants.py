"""Room Client Constants - Protocol timings and fixed thresholds.

All timing values in milliseconds unless the name says otherwise.
"""

from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class RoomConstants:
    """Immutable thresholds shared by the signaling and room layers."""

    # Signaling
    REQUEST_TIMEOUT_S: Final[float] = 5.0  # Per-request response deadline
    CONNECT_RETRIES: Final[int] = 3  # Initial connect attempts
    CONNECT_INITIAL_DELAY_S: Final[float] = 0.5
    CONNECT_MAX_DELAY_S: Final[float] = 10.0

    # Active speaker (dB -> 0..10 scale)
    LEVEL_LOUD_DB: Final[int] = -20  # -> 10
    LEVEL_NORMAL_DB: Final[int] = -40  # -> 7
    LEVEL_QUIET_DB: Final[int] = -60  # -> 4
    LEVEL_FAINT_DB: Final[int] = -80  # -> 1
    VOLUME_MAX: Final[int] = 10

    # Network quality
    NETWORK_SCORE_MAX: Final[int] = 10
    NETWORK_SCORE_DEFAULT: Final[int] = 10

    # Camera capture
    CAMERA_WIDTH: Final[int] = 320
    CAMERA_HEIGHT: Final[int] = 240
    CAMERA_FPS: Final[int] = 15

    # Screen capture
    SCREEN_WIDTH: Final[int] = 1280
    SCREEN_HEIGHT: Final[int] = 720
    SCREEN_FPS: Final[int] = 15
    SCREEN_SHARE_SETTLE_MS: Final[int] = 500  # Wait for call indicator upgrade

    # Membership lifecycle
    TASK_CANCEL_TIMEOUT_MS: Final[int] = 2000  # Wait for membership tasks on leave
    STATE_HISTORY_MAX: Final[int] = 100


# Singleton instance for import convenience
ROOM = RoomConstants()
