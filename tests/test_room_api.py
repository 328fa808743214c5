"""Tests for the room control API.

Tests the control surface end to end against the fake signaling server:
- Join / leave and the room snapshot
- Local media toggles
- Error mapping to HTTP status codes
"""

from fastapi.testclient import TestClient

from roomclient.api.routes.room import get_room_client
from roomclient.media.platform import AudioOutput


class TestRoomLifecycle:
    """Tests for join, snapshot and leave."""

    def test_snapshot_when_idle(self, room_api: TestClient):
        response = room_api.get("/room")

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "idle"
        assert data["room_id"] is None
        assert data["peers"] == {}
        assert data["local"]["camera_open"] is False

    def test_join_room(self, room_api: TestClient, signaling_server):
        """Joining returns once the room is joined."""
        signaling_server.add_producer("p1", "u1")

        response = room_api.post("/room/join", json={"room_id": "1234"})

        assert response.status_code == 200
        assert response.json() == {"joined": True, "room_id": "1234", "state": "joined"}

        data = room_api.get("/room").json()
        assert data["room_id"] == "1234"
        assert data["peers"]["u1"]["video_producer_id"] == "p1"
        assert data["streams"]["p1"]["rendering"] is True

    def test_join_updates_signaling_health(self, room_api: TestClient):
        room_api.post("/room/join", json={"room_id": "1234"})

        assert room_api.get("/readyz").json()["components"]["signaling"] is True

        room_api.post("/room/leave")
        assert room_api.get("/readyz").json()["components"]["signaling"] is False

    def test_join_failure_reported(self, room_api: TestClient, signaling_server):
        """A rejected join is reported, not raised."""
        signaling_server.overrides["joinRoom"] = {"error": "room is full"}

        response = room_api.post("/room/join", json={"room_id": "1234"})

        assert response.status_code == 200
        assert response.json()["joined"] is False
        assert response.json()["state"] == "idle"

    def test_join_twice_conflicts(self, room_api: TestClient):
        room_api.post("/room/join", json={"room_id": "1234"})

        response = room_api.post("/room/join", json={"room_id": "5678"})

        assert response.status_code == 409
        assert response.json()["detail"]["type"] == "SessionStateError"

    def test_join_requires_room_id(self, room_api: TestClient):
        response = room_api.post("/room/join", json={"room_id": ""})
        assert response.status_code == 422

    def test_leave(self, room_api: TestClient):
        """Leave always succeeds, also when repeated."""
        room_api.post("/room/join", json={"room_id": "1234"})

        first = room_api.post("/room/leave")
        second = room_api.post("/room/leave")

        assert first.status_code == 200
        assert first.json() == {"state": "idle", "cleanup_errors": []}
        assert second.status_code == 200
        assert room_api.get("/room").json()["room_id"] is None


class TestLocalMedia:
    """Tests for local media intents."""

    def test_media_before_join_conflicts(self, room_api: TestClient):
        response = room_api.post("/room/media", json={"camera": True, "mic": True})

        assert response.status_code == 409
        assert response.json()["detail"]["type"] == "TransportUnavailableError"

    def test_start_media(self, room_api: TestClient, signaling_server):
        room_api.post("/room/join", json={"room_id": "1234"})

        response = room_api.post("/room/media", json={"camera": True, "mic": False})

        assert response.status_code == 200
        assert response.json()["camera_open"] is True
        assert response.json()["mic_open"] is False
        assert len(signaling_server.events("produce")) == 2

    def test_toggles(self, room_api: TestClient):
        room_api.post("/room/join", json={"room_id": "1234"})

        assert room_api.post("/room/camera").json() == {"enabled": True}
        assert room_api.post("/room/mic").json() == {"enabled": True}
        assert room_api.post("/room/camera").json() == {"enabled": False}
        assert room_api.post("/room/mic").json() == {"enabled": False}

    def test_screen_share(self, room_api: TestClient, signaling_server):
        room_api.post("/room/join", json={"room_id": "1234"})

        assert room_api.post("/room/screen", json={}).json() == {"enabled": False}
        assert room_api.post("/room/screen", json={"token": ":0.0"}).json() == {"enabled": True}
        assert room_api.post("/room/screen", json={}).json() == {"enabled": False}
        assert len(signaling_server.events("closeProducer")) == 1

    def test_flip_camera(self, room_api: TestClient):
        room_api.post("/room/join", json={"room_id": "1234"})

        response = room_api.post("/room/camera/flip")

        assert response.status_code == 200
        assert response.json() == {"front_camera": False}

    def test_audio_output(self, room_api: TestClient):
        response = room_api.post("/room/audio-output", json={"output": "speaker"})

        assert response.status_code == 200
        assert get_room_client()._platform.output == AudioOutput.SPEAKER

    def test_audio_output_invalid(self, room_api: TestClient):
        response = room_api.post("/room/audio-output", json={"output": "tin-can"})
        assert response.status_code == 422
