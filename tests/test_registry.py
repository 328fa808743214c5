"""Tests for the peer & stream registry.

Tests cover:
- Peer upsert and cascading removal
- Stream announce, stub creation and out-of-order pause/resume
- Track attachment by kind and screen tag
- Snapshot isolation
"""

from roomclient.config.constants import ROOM
from roomclient.room.registry import LocalMediaState, PeerRegistry


class TestPeers:
    """Tests for peer bookkeeping."""

    def test_upsert_idempotent(self):
        """Upserting an existing peer keeps its entry."""
        registry = PeerRegistry()
        registry.attach_producer("s1", "p1", "video")
        peer = registry.upsert_peer("s1")

        assert peer.video_producer_id == "p1"
        assert len(registry.peers) == 1

    def test_remove_peer_cascades(self):
        """Removing a peer removes every stream it owns."""
        registry = PeerRegistry()
        registry.announce_stream("p1", "s1", "video")
        registry.announce_stream("p2", "s1", "audio")
        registry.announce_stream("p3", "s2", "video")

        removed = registry.remove_peer("s1")

        assert sorted(s.producer_id for s in removed) == ["p1", "p2"]
        assert "s1" not in registry.peers
        assert set(registry.streams) == {"p3"}

    def test_remove_unknown_peer(self):
        """Removing an unknown peer is a no-op."""
        registry = PeerRegistry()
        assert registry.remove_peer("ghost") == []

    def test_producer_slots(self):
        """Producers land in the video, audio or screen slot."""
        registry = PeerRegistry()
        registry.announce_stream("v", "s1", "video")
        registry.announce_stream("a", "s1", "audio")
        registry.announce_stream("sc", "s1", "video", is_screen_share=True)

        peer = registry.get_peer("s1")
        assert (peer.video_producer_id, peer.audio_producer_id, peer.screen_producer_id) == (
            "v", "a", "sc",
        )
        assert sorted(peer.producer_ids) == ["a", "sc", "v"]


class TestStreams:
    """Tests for stream state."""

    def test_announce_defaults(self):
        """New streams start with the default score and no track."""
        registry = PeerRegistry()
        stream = registry.announce_stream("p1", "s1", "video", paused=True)

        assert stream.paused is True
        assert stream.network_score == ROOM.NETWORK_SCORE_DEFAULT
        assert stream.volume == 0
        assert stream.announced
        assert not stream.rendering

    def test_remove_stream_detaches_owner(self):
        """Removing a stream clears its slot on the owner."""
        registry = PeerRegistry()
        registry.announce_stream("p1", "s1", "video")

        assert registry.remove_stream("p1").producer_id == "p1"
        assert registry.get_peer("s1").video_producer_id is None
        assert registry.remove_stream("p1") is None

    def test_pause_before_announce_creates_stub(self):
        """A pause for an unknown producer creates a stub."""
        registry = PeerRegistry()
        stub = registry.set_paused("p1", True, owner_peer_id="s1", kind="video")

        assert stub.paused is True
        assert stub.announced is False
        assert "s1" not in registry.peers

    def test_announce_after_pause_keeps_paused(self):
        """The later announce does not clear the earlier pause."""
        registry = PeerRegistry()
        registry.set_paused("p1", True)

        stream = registry.announce_stream("p1", "s1", "video", paused=False)

        assert stream.paused is True
        assert stream.announced is True
        assert stream.owner_peer_id == "s1"

    def test_resume_before_announce(self):
        """A resume stub followed by an announce stays unpaused."""
        registry = PeerRegistry()
        registry.set_paused("p1", False)
        assert registry.announce_stream("p1", "s1", "audio", paused=True).paused is False

    def test_pause_after_close_ignored(self):
        """A pause for a closed producer does not resurrect it as a stub."""
        registry = PeerRegistry()
        registry.announce_stream("p1", "s1", "video")
        registry.announce_stream("p2", "s2", "audio")
        registry.remove_stream("p1")
        registry.remove_peer("s2")

        assert registry.set_paused("p1", True, owner_peer_id="s1") is None
        assert registry.set_paused("p2", False, owner_peer_id="s2") is None
        assert registry.streams == {}

    def test_clear_forgets_closed_producers(self):
        registry = PeerRegistry()
        registry.announce_stream("p1", "s1", "video")
        registry.remove_stream("p1")
        registry.clear()

        assert registry.set_paused("p1", True) is not None

    def test_volume_and_score_unknown(self):
        """Volume and score updates ignore unknown producers."""
        registry = PeerRegistry()
        assert registry.set_volume("p1", 7) is False
        assert registry.set_network_score("p1", 3) is False
        assert registry.streams == {}

    def test_volume_and_score(self):
        """Volume and score are stored on the stream."""
        registry = PeerRegistry()
        registry.announce_stream("p1", "s1", "audio")

        assert registry.set_volume("p1", 7)
        assert registry.set_network_score("p1", 4)
        stream = registry.get_stream("p1")
        assert (stream.volume, stream.network_score) == (7, 4)

    def test_attach_track_by_kind(self):
        """Tracks land in the audio, video or screen field."""
        registry = PeerRegistry()
        registry.announce_stream("a", "s1", "audio")
        registry.announce_stream("v", "s1", "video")
        registry.announce_stream("sc", "s2", "video", is_screen_share=True)

        registry.attach_track("a", "audio-track", "audio")
        registry.attach_track("v", "video-track", "video")
        registry.attach_track("sc", "screen-track", "video")

        assert registry.get_stream("a").audio_track == "audio-track"
        assert registry.get_stream("v").video_track == "video-track"
        screen = registry.get_stream("sc")
        assert screen.screen_track == "screen-track"
        assert screen.video_track is None
        assert screen.track == "screen-track"

    def test_attach_track_unknown(self):
        """Tracks for unknown producers are dropped."""
        registry = PeerRegistry()
        assert registry.attach_track("p1", object(), "video") is None


class TestSnapshots:
    """Tests for snapshot isolation."""

    def test_snapshot_unaffected_by_later_updates(self):
        """A snapshot keeps the state it was taken with."""
        registry = PeerRegistry()
        registry.announce_stream("p1", "s1", "video")
        snapshot = registry.snapshot("1234", "joined", LocalMediaState())

        registry.set_paused("p1", True)
        registry.remove_peer("s1")

        assert snapshot.streams["p1"].paused is False
        assert "s1" in snapshot.peers
        assert registry.streams == {}

    def test_snapshot_to_dict(self):
        """to_dict reduces tracks to a rendering flag."""
        registry = PeerRegistry()
        registry.announce_stream("p1", "s1", "video")
        registry.attach_track("p1", object(), "video")

        data = registry.snapshot("1234", "joined", LocalMediaState(mic_open=True)).to_dict()

        assert data["room_id"] == "1234"
        assert data["local"]["mic_open"] is True
        assert data["streams"]["p1"]["rendering"] is True
        assert data["peers"]["s1"]["video_producer_id"] == "p1"

    def test_clear(self):
        """clear() empties both tables."""
        registry = PeerRegistry()
        registry.announce_stream("p1", "s1", "video")
        registry.clear()

        assert registry.peers == {}
        assert registry.streams == {}
