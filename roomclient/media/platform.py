"""Call Platform - OS hooks for an active call.

Audio output routing and the ongoing-call indicator are owned by the host
platform. The room client only issues imperative calls and keeps no state
about them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from roomclient.observability.logging import get_logger

logger = get_logger(__name__)


class AudioOutput(str, Enum):
    """Audio output route."""

    SPEAKER = "speaker"
    EARPIECE = "earpiece"
    BLUETOOTH = "bluetooth"
    HEADSET = "headset"


class CallPlatform(ABC):
    """Host platform hooks used during a room membership."""

    @abstractmethod
    def start_call(self) -> None:
        """Raise the ongoing-call indicator and enter call audio mode."""
        ...

    @abstractmethod
    def stop_call(self) -> None:
        """Drop the indicator and restore the previous audio mode."""
        ...

    @abstractmethod
    def set_screen_share_active(self, active: bool) -> None:
        """Upgrade (or downgrade) the indicator for screen capture."""
        ...

    @abstractmethod
    def switch_audio_output(self, output: AudioOutput) -> None:
        ...

    @abstractmethod
    def available_outputs(self) -> list[AudioOutput]:
        ...


class NullCallPlatform(CallPlatform):
    """Platform without call integration. Logs and remembers the selection."""

    def __init__(self, outputs: list[AudioOutput] | None = None) -> None:
        self._outputs = outputs or [AudioOutput.SPEAKER]
        self.output = self._outputs[0]
        self.call_active = False
        self.screen_share_active = False

    def start_call(self) -> None:
        self.call_active = True
        logger.debug("call_started")

    def stop_call(self) -> None:
        self.call_active = False
        self.screen_share_active = False
        logger.debug("call_stopped")

    def set_screen_share_active(self, active: bool) -> None:
        self.screen_share_active = active

    def switch_audio_output(self, output: AudioOutput) -> None:
        if output not in self._outputs:
            logger.warning("audio_output_unavailable", output=output.value)
            return
        self.output = output
        logger.info("audio_output_switched", output=output.value)

    def available_outputs(self) -> list[AudioOutput]:
        return list(self._outputs)
