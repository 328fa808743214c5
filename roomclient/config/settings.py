"""Application Settings - Environment-based configuration.

Uses Pydantic Settings for validation and type coercion.
Every field can be set through an environment variable of the same name
(case-insensitive) or a local .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from roomclient.config.constants import ROOM


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Control API
    api_host: str = Field(default="127.0.0.1", description="Control API bind host")
    api_port: int = Field(default=8090, ge=1024, le=65535, description="Control API port")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment name"
    )

    # Signaling
    signaling_url: str = Field(
        default="http://localhost:3000", description="Socket.IO signaling server URL"
    )
    signaling_path: str = Field(
        default="socket.io", description="Socket.IO endpoint path"
    )
    signaling_request_timeout_s: float = Field(
        default=ROOM.REQUEST_TIMEOUT_S,
        ge=0.5,
        le=60.0,
        description="Deadline for a single signaling request",
    )
    signaling_reconnection: bool = Field(
        default=True, description="Let the Socket.IO client reconnect after drops"
    )
    signaling_connect_retries: int = Field(
        default=ROOM.CONNECT_RETRIES,
        ge=1,
        le=20,
        description="Attempts for the initial signaling connect",
    )

    # Media engine
    media_engine: str = Field(
        default="mock", description="Media engine backend name"
    )

    # Camera capture
    camera_front_device: str = Field(
        default="/dev/video0", description="Front camera device"
    )
    camera_back_device: str | None = Field(
        default=None, description="Back camera device (flip disabled if unset)"
    )
    camera_format: str = Field(default="v4l2", description="Camera input format")
    camera_width: int = Field(default=ROOM.CAMERA_WIDTH, ge=160, le=3840)
    camera_height: int = Field(default=ROOM.CAMERA_HEIGHT, ge=120, le=2160)
    camera_fps: int = Field(default=ROOM.CAMERA_FPS, ge=1, le=60)

    # Microphone capture
    microphone_device: str = Field(default="default", description="Microphone device")
    microphone_format: str = Field(default="pulse", description="Microphone input format")

    # Screen capture
    screen_format: str = Field(default="x11grab", description="Screen capture input format")
    screen_width: int = Field(default=ROOM.SCREEN_WIDTH, ge=320, le=7680)
    screen_height: int = Field(default=ROOM.SCREEN_HEIGHT, ge=240, le=4320)
    screen_fps: int = Field(default=ROOM.SCREEN_FPS, ge=1, le=60)
    screen_share_settle_ms: int = Field(
        default=ROOM.SCREEN_SHARE_SETTLE_MS,
        ge=0,
        le=5000,
        description="Delay between raising the call indicator and starting capture",
    )

    # Observability
    metrics_enabled: bool = Field(default=True, description="Enable Prometheus metrics")

    def model_post_init(self, __context) -> None:
        """Validate cross-field requirements after model creation."""
        if self.camera_back_device and self.camera_back_device == self.camera_front_device:
            raise ValueError(
                "camera_back_device must differ from camera_front_device"
            )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
