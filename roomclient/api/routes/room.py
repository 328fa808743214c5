"""Room API Routes - Local control surface for a UI process.

Intents in, snapshots out:
- GET  /room                 current RoomSnapshot
- POST /room/join            join a room
- POST /room/leave           leave (never fails)
- POST /room/media           start local media
- POST /room/mic             toggle microphone
- POST /room/camera          toggle camera
- POST /room/camera/flip     switch front/back camera
- POST /room/screen          toggle screen share
- POST /room/audio-output    route remote audio
"""

from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from roomclient.exceptions import (
    CaptureUnavailableError,
    RoomClientError,
    SessionStateError,
    TransportUnavailableError,
)
from roomclient.media.platform import AudioOutput
from roomclient.room.client import RoomClient

router = APIRouter(prefix="/room", tags=["room"])

# Global client (initialized on first use)
_room_client: RoomClient | None = None


def get_room_client() -> RoomClient:
    """Get global room client, built from settings."""
    global _room_client
    if _room_client is None:
        from roomclient.config.settings import get_settings
        from roomclient.media.capture import CaptureConfig, MediaCapture
        from roomclient.media.engine import create_media_engine
        from roomclient.media.platform import NullCallPlatform
        from roomclient.room.client import RoomConfig
        from roomclient.signaling.channel import SignalingChannel
        from roomclient.utils.retry import RetryConfig

        settings = get_settings()
        channel = SignalingChannel(
            settings.signaling_url,
            path=settings.signaling_path,
            request_timeout_s=settings.signaling_request_timeout_s,
            reconnection=settings.signaling_reconnection,
            retry_config=RetryConfig(max_retries=settings.signaling_connect_retries),
        )
        _room_client = RoomClient(
            channel,
            create_media_engine(settings.media_engine),
            capture=MediaCapture(CaptureConfig.from_settings(settings)),
            platform=NullCallPlatform(),
            config=RoomConfig.from_settings(settings),
        )
    return _room_client


def set_room_client(client: RoomClient | None) -> None:
    """Replace the global room client (None resets it)."""
    global _room_client
    _room_client = client


# Request/Response models
class JoinRequest(BaseModel):
    """Request to join a room."""

    room_id: str = Field(..., min_length=1, description="Room to join")


class JoinResponse(BaseModel):
    joined: bool
    room_id: str
    state: str


class LocalMediaRequest(BaseModel):
    """Which local sources to publish."""

    camera: bool = Field(True, description="Publish the camera")
    mic: bool = Field(True, description="Start unmuted")


class ScreenShareRequest(BaseModel):
    token: str | None = Field(None, description="Capture grant, required to start")


class AudioOutputRequest(BaseModel):
    output: AudioOutput


class ToggleResponse(BaseModel):
    enabled: bool


def _http_error(error: RoomClientError) -> HTTPException:
    if isinstance(error, (SessionStateError, TransportUnavailableError)):
        code = 409
    elif isinstance(error, CaptureUnavailableError):
        code = 422
    else:
        code = 502
    return HTTPException(status_code=code, detail=error.to_dict())


# Endpoints
@router.get("")
async def get_room() -> dict[str, Any]:
    """Current room snapshot."""
    return get_room_client().snapshot.to_dict()


@router.post("/join", response_model=JoinResponse)
async def join_room(request: JoinRequest) -> JoinResponse:
    """Join a room and wait for the outcome."""
    client = get_room_client()
    try:
        joined = await client.connect_to_room(request.room_id)
    except SessionStateError as e:
        raise _http_error(e)

    return JoinResponse(joined=joined, room_id=request.room_id, state=client.state.value)


@router.post("/leave")
async def leave_room() -> dict[str, Any]:
    """Leave the current room. Safe in any state."""
    client = get_room_client()
    await client.exit_room()
    return {
        "state": client.state.value,
        "cleanup_errors": [str(e) for e in client.last_cleanup_errors],
    }


@router.post("/media")
async def start_media(request: LocalMediaRequest) -> dict[str, Any]:
    """Start publishing local media."""
    client = get_room_client()
    try:
        await client.start_local_media(want_camera=request.camera, want_mic=request.mic)
    except RoomClientError as e:
        raise _http_error(e)
    return client.snapshot.to_dict()["local"]


@router.post("/mic", response_model=ToggleResponse)
async def toggle_mic() -> ToggleResponse:
    try:
        enabled = await get_room_client().toggle_mic()
    except RoomClientError as e:
        raise _http_error(e)
    return ToggleResponse(enabled=enabled)


@router.post("/camera", response_model=ToggleResponse)
async def toggle_camera() -> ToggleResponse:
    try:
        enabled = await get_room_client().toggle_camera()
    except RoomClientError as e:
        raise _http_error(e)
    return ToggleResponse(enabled=enabled)


@router.post("/camera/flip")
async def flip_camera() -> dict[str, bool]:
    try:
        front = await get_room_client().flip_camera()
    except RoomClientError as e:
        raise _http_error(e)
    return {"front_camera": front}


@router.post("/screen", response_model=ToggleResponse)
async def toggle_screen(request: ScreenShareRequest) -> ToggleResponse:
    """Start or stop screen sharing."""
    try:
        enabled = await get_room_client().toggle_screen_share(request.token)
    except RoomClientError as e:
        raise _http_error(e)
    return ToggleResponse(enabled=enabled)


@router.post("/audio-output")
async def switch_audio_output(request: AudioOutputRequest) -> dict[str, str]:
    get_room_client().switch_audio_output(request.output)
    return {"output": request.output.value}
