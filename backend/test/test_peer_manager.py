"""PeerConnectionManager tests with real aiortc connections (host candidates only)."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack

from telehealth.webrtc import PeerConnectionManager, peer_manager
from telehealth.webrtc.config import ICEServerConfig
from telehealth.webrtc.peer_manager import build_ice_servers, parse_ice_candidate

HOST_CANDIDATE = "candidate:842163049 1 udp 1677729535 192.168.1.20 54400 typ host"


class TestParseIceCandidate:

    def test_flat_payload(self):
        candidate = parse_ice_candidate({"candidate": HOST_CANDIDATE, "sdpMid": "0", "sdpMLineIndex": 0})
        assert candidate.ip == "192.168.1.20"
        assert candidate.port == 54400
        assert candidate.type == "host"
        assert candidate.sdpMid == "0"
        assert candidate.sdpMLineIndex == 0

    def test_nested_payload(self):
        candidate = parse_ice_candidate(
            {"candidate": {"candidate": HOST_CANDIDATE, "sdpMid": "1", "sdpMLineIndex": 1}}
        )
        assert candidate.sdpMid == "1"
        assert candidate.protocol == "udp"

    def test_end_of_candidates(self):
        assert parse_ice_candidate({"candidate": "", "sdpMid": "0"}) is None


class TestBuildIceServers:

    def test_stun_only(self, monkeypatch):
        monkeypatch.setattr(peer_manager, "ice_config", ICEServerConfig(
            TURN_SERVER_URL=None, TURN_USERNAME=None, TURN_CREDENTIAL=None, STUN_SERVER_URL=None
        ))
        servers = build_ice_servers()
        assert [s.urls for s in servers] == [
            ["stun:stun.l.google.com:19302"],
            ["stun:stun1.l.google.com:19302"],
        ]

    def test_custom_stun_and_turn(self, monkeypatch):
        monkeypatch.setattr(peer_manager, "ice_config", ICEServerConfig(
            TURN_SERVER_URL="turn:turn.example.org:3478",
            TURN_USERNAME="user",
            TURN_CREDENTIAL="pass",
            STUN_SERVER_URL="stun:stun.example.org:3478",
        ))
        servers = build_ice_servers()
        assert servers[0].urls == ["stun:stun.example.org:3478"]
        assert servers[-1].urls == ["turn:turn.example.org:3478"]
        assert servers[-1].username == "user"
        assert servers[-1].credential == "pass"

    def test_partial_turn_is_ignored(self, monkeypatch):
        monkeypatch.setattr(peer_manager, "ice_config", ICEServerConfig(
            TURN_SERVER_URL="turn:turn.example.org:3478", TURN_USERNAME="user",
            TURN_CREDENTIAL=None, STUN_SERVER_URL=None
        ))
        assert all("turn:" not in s.urls[0] for s in build_ice_servers())


class TestWithoutConnection:

    def test_states_report_closed(self):
        manager = PeerConnectionManager(ice_servers=[])
        assert manager.signaling_state == "closed"
        assert manager.connection_state == "closed"
        assert manager.ice_connection_state == "closed"

    async def test_candidate_dropped(self):
        manager = PeerConnectionManager(ice_servers=[])
        assert await manager.add_ice_candidate({"candidate": HOST_CANDIDATE}) is False

    async def test_close_twice(self):
        manager = PeerConnectionManager(ice_servers=[])
        await manager.close()
        await manager.close()

    async def test_stats_empty(self):
        assert await PeerConnectionManager(ice_servers=[]).get_stats() == {}


class TestNegotiation:

    @pytest.fixture
    async def peers(self):
        a = PeerConnectionManager(ice_servers=[])
        b = PeerConnectionManager(ice_servers=[])
        a.create_peer_connection([AudioStreamTrack(), VideoStreamTrack()])
        b.create_peer_connection([AudioStreamTrack(), VideoStreamTrack()])
        yield a, b
        await a.close()
        await b.close()

    async def test_offer_answer_exchange(self, peers):
        a, b = peers

        offer = await a.create_offer()
        assert offer["type"] == "offer"
        assert a.signaling_state == "have-local-offer"

        answer = await b.accept_offer(offer)
        assert answer["type"] == "answer"
        assert b.signaling_state == "stable"

        await a.accept_answer(answer)
        assert a.signaling_state == "stable"

    async def test_rollback_returns_to_stable(self, peers):
        a, _ = peers
        await a.create_offer()
        await a.rollback()
        assert a.signaling_state == "stable"
        assert [t.kind for t in a.local_tracks] == ["audio", "video"]

    async def test_polite_side_accepts_colliding_offer(self, peers):
        a, b = peers
        await a.create_offer()
        remote_offer = await b.create_offer()

        await a.rollback()
        answer = await a.accept_offer(remote_offer)
        assert a.signaling_state == "stable"

        await b.accept_answer(answer)
        assert b.signaling_state == "stable"

    async def test_rollback_rebuilds_when_state_unchanged(self):
        manager = PeerConnectionManager(ice_servers=[])
        manager.pc = SimpleNamespace(setLocalDescription=AsyncMock(), signalingState="have-local-offer")
        manager.rebuild = AsyncMock()

        await manager.rollback()

        manager.rebuild.assert_awaited_once()

    async def test_native_rollback_kept(self):
        async def roll_back(description):
            manager.pc.signalingState = "stable"

        manager = PeerConnectionManager(ice_servers=[])
        manager.pc = SimpleNamespace(setLocalDescription=roll_back, signalingState="have-local-offer")
        manager.rebuild = AsyncMock()

        await manager.rollback()

        manager.rebuild.assert_not_awaited()

    async def test_rebuild_keeps_tracks_and_drops_old_listeners(self, peers):
        a, _ = peers
        states = []

        async def on_state(state):
            states.append(state)

        a.on_connection_state_callback = on_state
        old_pc = a.pc
        await a.rebuild()

        assert a.pc is not old_pc
        assert old_pc.connectionState == "closed"
        assert "closed" not in states
        assert len(a.pc.getSenders()) == 2


class TestReplaceVideoTrack:

    async def test_replaces_video_sender(self):
        manager = PeerConnectionManager(ice_servers=[])
        camera = SimpleNamespace(kind="video")
        screen = SimpleNamespace(kind="video")
        audio_sender = MagicMock(kind="audio")
        video_sender = MagicMock(kind="video")
        manager.local_tracks = [SimpleNamespace(kind="audio"), camera]
        manager.pc = SimpleNamespace(getSenders=lambda: [audio_sender, video_sender])

        assert await manager.replace_video_track(screen) is True

        video_sender.replaceTrack.assert_called_once_with(screen)
        audio_sender.replaceTrack.assert_not_called()
        assert any(t is screen for t in manager.local_tracks)
        assert all(t is not camera for t in manager.local_tracks)

    async def test_no_video_sender(self):
        manager = PeerConnectionManager(ice_servers=[])
        manager.pc = SimpleNamespace(getSenders=lambda: [MagicMock(kind="audio")])
        assert await manager.replace_video_track(SimpleNamespace(kind="video")) is False
