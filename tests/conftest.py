"""Pytest configuration and shared fixtures."""

import os
from typing import Callable, Generator

import pytest

# Set test environment variables before importing settings
os.environ.update({
    "ENVIRONMENT": "development",
    "MEDIA_ENGINE": "mock",
    "SIGNALING_URL": "http://signaling.test:3000",
    "SCREEN_SHARE_SETTLE_MS": "0",
    "LOG_LEVEL": "DEBUG",
})

from fakes import FakePlayer, FakeSignalingServer  # noqa: E402


@pytest.fixture
def test_settings():
    """Provide test settings instance."""
    from roomclient.config.settings import Settings
    return Settings(
        signaling_url="http://signaling.test:3000",
        media_engine="mock",
        screen_share_settle_ms=0,
    )


@pytest.fixture
def signaling_server() -> FakeSignalingServer:
    return FakeSignalingServer()


@pytest.fixture
def channel_factory(signaling_server):
    """Build SignalingChannels wired to the fake server."""
    from roomclient.signaling.channel import SignalingChannel
    from roomclient.utils.retry import RetryConfig

    def factory(request_timeout_s: float = 1.0, max_retries: int = 1) -> SignalingChannel:
        return SignalingChannel(
            "http://signaling.test:3000",
            request_timeout_s=request_timeout_s,
            retry_config=RetryConfig(
                max_retries=max_retries,
                initial_delay_s=0.001,
                max_delay_s=0.002,
                jitter=False,
            ),
            client_factory=signaling_server.new_client,
        )

    return factory


@pytest.fixture
def capture_config():
    from roomclient.media.capture import CaptureConfig
    return CaptureConfig(
        camera_front_device="front-cam",
        camera_back_device="back-cam",
        microphone_device="mic",
    )


@pytest.fixture
def room_factory(channel_factory, capture_config):
    """Build RoomClients on the mock engine, fake capture and fake server."""
    from roomclient.media.capture import MediaCapture
    from roomclient.media.mock_engine import MockMediaEngine
    from roomclient.media.platform import NullCallPlatform
    from roomclient.room.client import RoomClient, RoomConfig

    def factory(
        engine: MockMediaEngine | None = None,
        player_factory: Callable = FakePlayer,
        request_timeout_s: float = 1.0,
        screen_share_settle_ms: int = 0,
    ) -> RoomClient:
        return RoomClient(
            channel_factory(request_timeout_s=request_timeout_s),
            engine or MockMediaEngine(),
            capture=MediaCapture(capture_config, player_factory=player_factory),
            platform=NullCallPlatform(),
            config=RoomConfig(
                screen_share_settle_ms=screen_share_settle_ms, task_cancel_timeout_ms=500
            ),
        )

    return factory


@pytest.fixture
def client() -> Generator:
    """Provide FastAPI test client."""
    from fastapi.testclient import TestClient

    from roomclient.api.routes.room import set_room_client
    from roomclient.main import app
    with TestClient(app) as c:
        yield c
    set_room_client(None)


@pytest.fixture
def room_api(room_factory) -> Generator:
    """FastAPI test client driving a room client wired to the fake server."""
    from fastapi.testclient import TestClient

    from roomclient.api.routes.room import set_room_client
    from roomclient.main import app
    room = room_factory()
    set_room_client(room)
    with TestClient(app) as c:
        yield c
    set_room_client(None)
