"""Audio level and network score normalization."""

from __future__ import annotations

from roomclient.config.constants import ROOM


def level_to_volume(level_db: float) -> int:
    """Map an audio level in dBov to the 0..10 speaking-volume scale.

    Fixed thresholds: >= -20 -> 10, >= -40 -> 7, >= -60 -> 4, >= -80 -> 1,
    anything quieter -> 0.
    """
    if level_db >= ROOM.LEVEL_LOUD_DB:
        return ROOM.VOLUME_MAX
    if level_db >= ROOM.LEVEL_NORMAL_DB:
        return 7
    if level_db >= ROOM.LEVEL_QUIET_DB:
        return 4
    if level_db >= ROOM.LEVEL_FAINT_DB:
        return 1
    return 0


def clamp_score(score: int) -> int:
    """Clamp a producer score to 0..10."""
    return max(0, min(ROOM.NETWORK_SCORE_MAX, int(score)))
