"""Local Capture - Camera, microphone and screen sources.

Devices are opened with aiortc's MediaPlayer (FFmpeg input formats such as
v4l2, pulse and x11grab). Opening a device blocks while FFmpeg probes it,
so it runs in a worker thread.

The microphone is wrapped in MutableAudioTrack so it can be muted without
tearing down the producer. Muting zeroes outgoing samples; frame timing is
untouched so the remote jitter buffer keeps running.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer

from roomclient.config.constants import ROOM
from roomclient.exceptions import CaptureUnavailableError
from roomclient.observability.logging import get_logger

logger = get_logger(__name__)

PlayerFactory = Callable[..., Any]


@dataclass
class CaptureConfig:
    """Device selection for local capture."""

    camera_front_device: str = "/dev/video0"
    camera_back_device: str | None = None
    camera_format: str | None = "v4l2"
    camera_width: int = ROOM.CAMERA_WIDTH
    camera_height: int = ROOM.CAMERA_HEIGHT
    camera_fps: int = ROOM.CAMERA_FPS
    microphone_device: str = "default"
    microphone_format: str | None = "pulse"
    screen_format: str | None = "x11grab"
    screen_width: int = ROOM.SCREEN_WIDTH
    screen_height: int = ROOM.SCREEN_HEIGHT
    screen_fps: int = ROOM.SCREEN_FPS

    @classmethod
    def from_settings(cls, settings) -> "CaptureConfig":
        return cls(
            camera_front_device=settings.camera_front_device,
            camera_back_device=settings.camera_back_device,
            camera_format=settings.camera_format,
            camera_width=settings.camera_width,
            camera_height=settings.camera_height,
            camera_fps=settings.camera_fps,
            microphone_device=settings.microphone_device,
            microphone_format=settings.microphone_format,
            screen_format=settings.screen_format,
            screen_width=settings.screen_width,
            screen_height=settings.screen_height,
            screen_fps=settings.screen_fps,
        )


class MutableAudioTrack(MediaStreamTrack):
    """Pass-through audio track that outputs silence while muted."""

    kind = "audio"

    def __init__(self, source: MediaStreamTrack, muted: bool = False) -> None:
        super().__init__()
        self._source = source
        self.muted = muted

    async def recv(self):
        frame = await self._source.recv()
        if self.muted:
            for plane in frame.planes:
                plane.update(bytes(plane.buffer_size))
        return frame

    def stop(self) -> None:
        try:
            self._source.stop()
        finally:
            super().stop()


@dataclass
class _Source:
    """An open capture device."""

    player: Any
    track: MediaStreamTrack


class MediaCapture:
    """Owns the local capture devices for one room membership.

    Usage:
        capture = MediaCapture(CaptureConfig.from_settings(get_settings()))
        camera = await capture.open_camera()
        mic = await capture.open_microphone(muted=True)
        screen = await capture.open_screen(":0.0+0,0", on_ended=stop_share)
        capture.dispose()
    """

    def __init__(
        self,
        config: CaptureConfig | None = None,
        player_factory: PlayerFactory = MediaPlayer,
    ) -> None:
        """Initialize capture.

        Args:
            config: Device selection
            player_factory: Called as factory(file, format=..., options=...)
        """
        self._config = config or CaptureConfig()
        self._player_factory = player_factory
        self._camera: _Source | None = None
        self._microphone: _Source | None = None
        self._screen: _Source | None = None
        self._screen_ended: Callable[[], Any] | None = None
        self._front_camera = True

    @property
    def camera_track(self) -> MediaStreamTrack | None:
        return self._camera.track if self._camera else None

    @property
    def microphone_track(self) -> MutableAudioTrack | None:
        return self._microphone.track if self._microphone else None

    @property
    def screen_track(self) -> MediaStreamTrack | None:
        return self._screen.track if self._screen else None

    @property
    def front_camera(self) -> bool:
        return self._front_camera

    @property
    def can_flip(self) -> bool:
        return bool(self._config.camera_back_device)

    # -------------------------------------------------------------------------
    # Camera
    # -------------------------------------------------------------------------

    async def open_camera(self) -> MediaStreamTrack:
        """Open the selected camera, or return the already open track.

        Raises:
            CaptureUnavailableError: If the device cannot be opened
        """
        if self._camera is not None:
            return self._camera.track
        self._camera = await self._open_camera_device(self._front_camera)
        return self._camera.track

    def close_camera(self) -> None:
        """Stop capture and release the camera device."""
        source, self._camera = self._camera, None
        if source is not None:
            _stop(source)
            logger.debug("camera_closed")

    async def flip_camera(self) -> MediaStreamTrack | None:
        """Switch between front and back cameras.

        When the camera is closed only the selection changes and None is
        returned. On failure the previous camera stays open.

        Raises:
            CaptureUnavailableError: No alternate camera, or it cannot be opened
        """
        if not self.can_flip:
            raise CaptureUnavailableError("camera", "no alternate camera configured")

        target_front = not self._front_camera
        if self._camera is None:
            self._front_camera = target_front
            return None

        replacement = await self._open_camera_device(target_front)
        previous, self._camera = self._camera, replacement
        self._front_camera = target_front
        _stop(previous)
        logger.info("camera_flipped", front=target_front)
        return replacement.track

    async def _open_camera_device(self, front: bool) -> _Source:
        cfg = self._config
        device = cfg.camera_front_device if front else cfg.camera_back_device
        if not device:
            raise CaptureUnavailableError("camera", "no camera device configured")
        return await self._open(
            "camera",
            "video",
            device,
            cfg.camera_format,
            {
                "video_size": f"{cfg.camera_width}x{cfg.camera_height}",
                "framerate": str(cfg.camera_fps),
            },
        )

    # -------------------------------------------------------------------------
    # Microphone
    # -------------------------------------------------------------------------

    async def open_microphone(self, muted: bool = False) -> MutableAudioTrack:
        """Open the microphone, or return the already open track.

        Raises:
            CaptureUnavailableError: If the device cannot be opened
        """
        if self._microphone is not None:
            self._microphone.track.muted = muted
            return self._microphone.track
        cfg = self._config
        raw = await self._open(
            "microphone", "audio", cfg.microphone_device, cfg.microphone_format, {}
        )
        self._microphone = _Source(raw.player, MutableAudioTrack(raw.track, muted=muted))
        return self._microphone.track

    def set_microphone_muted(self, muted: bool) -> None:
        if self._microphone is None:
            logger.debug("microphone_mute_ignored", muted=muted)
            return
        self._microphone.track.muted = muted

    def close_microphone(self) -> None:
        source, self._microphone = self._microphone, None
        if source is not None:
            _stop(source)

    # -------------------------------------------------------------------------
    # Screen
    # -------------------------------------------------------------------------

    async def open_screen(
        self,
        token: str,
        on_ended: Callable[[], Any] | None = None,
    ) -> MediaStreamTrack:
        """Start screen capture.

        Args:
            token: One-shot capture grant (the display or window to capture)
            on_ended: Called when capture ends without close_screen()

        Raises:
            CaptureUnavailableError: Missing token or capture failure
        """
        if not token:
            raise CaptureUnavailableError("screen", "missing capture permission token")
        if self._screen is not None:
            return self._screen.track
        cfg = self._config
        source = await self._open(
            "screen",
            "video",
            token,
            cfg.screen_format,
            {
                "video_size": f"{cfg.screen_width}x{cfg.screen_height}",
                "framerate": str(cfg.screen_fps),
            },
        )
        self._screen = source
        self._screen_ended = on_ended
        source.track.on("ended", self._handle_screen_ended)
        return source.track

    def close_screen(self) -> None:
        source, self._screen = self._screen, None
        self._screen_ended = None
        if source is None:
            return
        try:
            source.track.remove_listener("ended", self._handle_screen_ended)
        except KeyError:
            pass
        _stop(source)

    def _handle_screen_ended(self) -> None:
        source, callback = self._screen, self._screen_ended
        if source is None:
            return
        self._screen = None
        self._screen_ended = None
        _stop_player(source.player)
        logger.info("screen_capture_ended")
        if callback is not None:
            callback()

    # -------------------------------------------------------------------------

    def dispose(self) -> None:
        """Release every device. Safe to call repeatedly."""
        self.close_screen()
        self.close_camera()
        self.close_microphone()
        self._front_camera = True

    async def _open(
        self,
        source: str,
        attr: str,
        file: str,
        fmt: str | None,
        options: dict[str, str],
    ) -> _Source:
        try:
            player = await asyncio.to_thread(
                self._player_factory, file, format=fmt, options=options
            )
        except Exception as e:
            logger.warning("capture_open_failed", source=source, device=file, error=str(e))
            raise CaptureUnavailableError(source, str(e)) from e

        track = getattr(player, attr, None)
        if track is None:
            _stop_player(player)
            raise CaptureUnavailableError(source, f"device {file} has no {attr} stream")

        logger.debug("capture_opened", source=source, device=file)
        return _Source(player, track)


def _stop(source: _Source) -> None:
    try:
        source.track.stop()
    finally:
        _stop_player(source.player)


def _stop_player(player: Any) -> None:
    for attr in ("audio", "video"):
        track = getattr(player, attr, None)
        if track is not None and track.readyState != "ended":
            track.stop()
