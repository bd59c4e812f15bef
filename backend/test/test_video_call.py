"""VideoCall signaling flow tests with fake channel, peer and media."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiortc.mediastreams import VideoStreamTrack

from telehealth.webrtc import MediaAcquisitionError, VideoCall
from telehealth.webrtc.config import connection_config

OFFER = {"sdp": "v=0 offer", "type": "offer"}
ANSWER = {"sdp": "v=0 answer", "type": "answer"}


class FakeChannel:
    def __init__(self):
        self.sent = []
        self.is_open = False
        self.connect_error = None
        self._inbox = asyncio.Queue()

    async def connect(self):
        if self.connect_error:
            raise self.connect_error
        self.is_open = True

    async def send(self, message):
        self.sent.append(message)
        return self.is_open

    def push(self, message):
        self._inbox.put_nowait(message)

    async def __aiter__(self):
        while True:
            message = await self._inbox.get()
            if message is None:
                return
            yield message

    async def close(self):
        self.is_open = False
        self._inbox.put_nowait(None)

    def sent_of(self, msg_type):
        return [m for m in self.sent if m.get("type") == msg_type]


class FakePeer:
    def __init__(self):
        self.signaling_state = "stable"
        self.connection_state = "new"
        self.on_track_callback = None
        self.on_ice_candidate_callback = None
        self.on_connection_state_callback = None
        self.on_ice_connection_state_callback = None
        self.create_peer_connection = MagicMock()
        self.create_offer = AsyncMock(return_value=OFFER)
        self.accept_offer = AsyncMock(return_value=ANSWER)
        self.accept_answer = AsyncMock()
        self.rollback = AsyncMock()
        self.rebuild = AsyncMock()
        self.close = AsyncMock()
        self.add_ice_candidate = AsyncMock(return_value=True)
        self.replace_video_track = AsyncMock(return_value=True)
        self.get_stats = AsyncMock(return_value={})


@pytest.fixture
def make_call():
    def factory(user_id="doctor-1", connected=True):
        media = MagicMock()
        media.open.return_value = [media.audio, media.video]
        channel = FakeChannel()
        channel.is_open = connected
        call = VideoCall("room-1", user_id, media=media, channel=channel, peer=FakePeer())
        call.notices = []
        call.on_notice = call.notices.append
        return call
    return factory


class TestStart:

    async def test_start_sets_up_connection(self, make_call):
        call = make_call(connected=False)
        await call.start()

        assert call.channel.is_open
        call.peer.create_peer_connection.assert_called_once_with([call.media.audio, call.media.video])
        assert call.peer.on_ice_candidate_callback is not None
        await call.end_call()

    async def test_media_failure(self, make_call):
        call = make_call(connected=False)
        call.media.open.side_effect = MediaAcquisitionError("no camera")

        with pytest.raises(MediaAcquisitionError):
            await call.start()

        assert call.notices[0].title == "Media Error"
        assert call.notices[0].description == "Failed to access camera/microphone"
        assert call.notices[0].destructive
        assert not call.channel.is_open

    async def test_signaling_failure(self, make_call):
        call = make_call(connected=False)
        call.channel.connect_error = OSError("refused")

        with pytest.raises(OSError):
            await call.start()

        assert call.notices[0].title == "Connection Error"
        assert call.notices[0].description == "Failed to connect to signaling server"
        call.media.stop.assert_called_once()

    async def test_receive_loop_runs_until_channel_closes(self, make_call):
        call = make_call(connected=False)
        received = []
        call.on_chat_message = lambda sender, message, ts: received.append((sender, message))
        await call.start()

        call.channel.push({"type": "chat-message", "senderId": "patient-1", "message": "hi", "timestamp": "t"})
        await call.channel.close()
        await asyncio.wait_for(call.wait_closed(), timeout=5)

        assert received == [("patient-1", "hi")]
        await call.end_call()


class TestNegotiationFlow:

    async def test_user_connected_sends_offer(self, make_call):
        call = make_call("doctor-1")
        await call.handle_message({"type": "user-connected", "userId": "patient-1"})

        offers = call.channel.sent_of("offer")
        assert offers == [{"type": "offer", "offer": OFFER, "targetId": "patient-1"}]
        assert call.coordinator.remote_peer_id == "patient-1"
        assert call.coordinator.making_offer is False

    async def test_own_user_connected_ignored(self, make_call):
        call = make_call("doctor-1")
        await call.handle_message({"type": "user-connected", "userId": "doctor-1"})
        assert call.channel.sent == []

    async def test_no_initial_offer_when_not_stable(self, make_call):
        call = make_call("doctor-1")
        call.peer.signaling_state = "have-remote-offer"
        await call.handle_message({"type": "user-connected", "userId": "patient-1"})
        assert call.channel.sent_of("offer") == []

    async def test_offer_is_answered(self, make_call):
        call = make_call("doctor-1")
        await call.handle_message({"type": "offer", "offer": OFFER, "senderId": "patient-1"})

        call.peer.accept_offer.assert_awaited_once_with(OFFER)
        assert call.channel.sent_of("answer") == [
            {"type": "answer", "answer": ANSWER, "targetId": "patient-1"}
        ]

    async def test_impolite_peer_ignores_colliding_offer(self, make_call):
        call = make_call("a-doctor")
        call.coordinator.assign_remote("b-patient")
        call.peer.signaling_state = "have-local-offer"

        await call.handle_message({"type": "offer", "offer": OFFER, "senderId": "b-patient"})

        call.peer.accept_offer.assert_not_awaited()
        assert call.channel.sent_of("answer") == []

    async def test_polite_peer_rolls_back_and_answers(self, make_call):
        call = make_call("b-patient")
        call.coordinator.assign_remote("a-doctor")
        call.peer.signaling_state = "have-local-offer"

        await call.handle_message({"type": "offer", "offer": OFFER, "senderId": "a-doctor"})

        call.peer.rollback.assert_awaited_once()
        assert len(call.channel.sent_of("answer")) == 1

    async def test_rejected_offer_retried_on_fresh_connection(self, make_call):
        call = make_call("doctor-1")
        call.peer.accept_offer.side_effect = [RuntimeError("DTLS already established"), ANSWER]

        await call.handle_message({"type": "offer", "offer": OFFER, "senderId": "patient-1"})

        call.peer.rebuild.assert_awaited_once()
        assert call.peer.accept_offer.await_count == 2
        assert len(call.channel.sent_of("answer")) == 1

    async def test_offer_on_failed_connection_rebuilds_first(self, make_call):
        call = make_call("doctor-1")
        call.peer.connection_state = "failed"
        await call.handle_message({"type": "offer", "offer": OFFER, "senderId": "patient-1"})
        call.peer.rebuild.assert_awaited_once()

    async def test_answer_applied(self, make_call):
        call = make_call()
        await call.handle_message({"type": "answer", "answer": ANSWER, "senderId": "patient-1"})
        call.peer.accept_answer.assert_awaited_once_with(ANSWER)

    async def test_answer_error_is_logged(self, make_call):
        call = make_call()
        call.peer.accept_answer.side_effect = RuntimeError("wrong state")
        await call.handle_message({"type": "answer", "answer": ANSWER, "senderId": "patient-1"})

    async def test_remote_candidate_added(self, make_call):
        call = make_call()
        candidate = {"candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host", "sdpMid": "0"}
        await call.handle_message({"type": "ice-candidate", "candidate": candidate, "senderId": "patient-1"})
        call.peer.add_ice_candidate.assert_awaited_once_with(candidate)

    async def test_local_candidate_sent_to_remote(self, make_call):
        call = make_call()
        call.coordinator.assign_remote("patient-1")
        await call._on_local_candidate({"candidate": "candidate:1"})
        assert call.channel.sent_of("ice-candidate") == [
            {"type": "ice-candidate", "candidate": {"candidate": "candidate:1"}, "targetId": "patient-1"}
        ]

    async def test_local_candidate_without_remote_dropped(self, make_call):
        call = make_call()
        await call._on_local_candidate({"candidate": "candidate:1"})
        assert call.channel.sent == []

    async def test_user_disconnected(self, make_call):
        call = make_call()
        states = []
        call.on_remote_state = states.append
        await call._on_connection_state("connected")
        call.coordinator.assign_remote("patient-1")

        await call.handle_message({"type": "user-disconnected", "userId": "patient-1"})

        assert call.remote_connected is False
        assert states == [True, False]
        assert call.coordinator.remote_peer_id is None
        call.peer.rebuild.assert_awaited_once()
        assert call.notices[-1].title == "Participant Left"
        await call.end_call()


class TestIceRestart:

    async def test_restart_bounded(self, make_call):
        call = make_call()
        call.coordinator.assign_remote("patient-1")

        results = [await call.restart_ice("failed") for _ in range(connection_config.MAX_ICE_RESTARTS + 1)]

        assert results == [True] * connection_config.MAX_ICE_RESTARTS + [False]
        assert call.peer.rebuild.await_count == connection_config.MAX_ICE_RESTARTS
        assert len(call.channel.sent_of("offer")) == connection_config.MAX_ICE_RESTARTS
        assert call.notices[0].title == "Network issue detected"

    async def test_no_notice_when_rebuild_fails(self, make_call):
        call = make_call()
        call.coordinator.assign_remote("patient-1")
        call.peer.rebuild.side_effect = RuntimeError("closed transport")

        assert await call.restart_ice("failed") is False
        assert call.notices == []
        assert call.channel.sent_of("offer") == []

    async def test_no_notice_when_offer_fails(self, make_call):
        call = make_call()
        call.coordinator.assign_remote("patient-1")
        call.peer.create_offer.side_effect = RuntimeError("no transceivers")

        assert await call.restart_ice("failed") is False
        assert call.notices == []

    async def test_disconnected_restarts_without_notice(self, make_call):
        call = make_call()
        await call._on_ice_connection_state("disconnected")
        assert call.ice_restart_attempts == 1
        assert call.notices == []

    async def test_connected_resets_attempts(self, make_call):
        call = make_call()
        call.ice_restart_attempts = 2
        await call._on_ice_connection_state("completed")
        assert call.ice_restart_attempts == 0

        call.ice_restart_attempts = 2
        await call._on_connection_state("connected")
        assert call.ice_restart_attempts == 0
        assert call.monitor.running
        await call.end_call()


class TestControls:

    async def test_quality_change_reported(self, make_call):
        call = make_call()
        qualities = []
        call.on_quality_change = qualities.append
        await call._on_quality_change("poor")

        assert call.quality == "poor"
        assert qualities == ["poor"]
        assert call.channel.sent_of("connection-quality") == [{"type": "connection-quality", "quality": "poor"}]

    def test_toggles(self, make_call):
        call = make_call()
        call.media.audio.toggle.return_value = False
        call.media.video.toggle.return_value = False

        assert call.toggle_audio() is False
        assert call.toggle_video() is False
        assert call.audio_enabled is False
        assert call.video_enabled is False

    async def test_screen_share_round_trip(self, make_call):
        call = make_call()
        screen = VideoStreamTrack()
        call.media.open_screen.return_value = screen

        assert await call.start_screen_share() is True
        call.peer.replace_video_track.assert_awaited_with(screen)
        assert call.screen_sharing

        await call.stop_screen_share()
        call.peer.replace_video_track.assert_awaited_with(call.media.video)
        assert not call.screen_sharing
        assert screen.readyState == "ended"
        assert [m["type"] for m in call.channel.sent] == ["screen-share-start", "screen-share-stop"]

    async def test_screen_share_unavailable(self, make_call):
        call = make_call()
        call.media.open_screen.side_effect = MediaAcquisitionError("no screen")
        assert await call.start_screen_share() is False
        assert call.channel.sent == []

    async def test_remote_screen_share_and_chat(self, make_call):
        call = make_call()
        events = []
        call.on_remote_screen_share = lambda user_id, active: events.append((user_id, active))
        call.on_chat_message = AsyncMock()

        await call.handle_message({"type": "screen-share-start", "userId": "patient-1"})
        await call.handle_message({"type": "screen-share-stop", "userId": "patient-1"})
        await call.handle_message({"type": "chat-message", "senderId": "patient-1",
                                   "message": "hello", "timestamp": "2024-05-01T09:30:00.000Z"})

        assert events == [("patient-1", True), ("patient-1", False)]
        call.on_chat_message.assert_awaited_once_with("patient-1", "hello", "2024-05-01T09:30:00.000Z")

    async def test_send_chat(self, make_call):
        call = make_call()
        assert await call.send_chat("   ") is False
        assert await call.send_chat("How are you feeling?") is True
        assert call.channel.sent == [{"type": "chat-message", "message": "How are you feeling?"}]

    async def test_end_call_is_idempotent(self, make_call):
        call = make_call()
        await call.end_call()
        await call.end_call()

        call.peer.close.assert_awaited_once()
        call.media.stop.assert_called_once()
        assert call.ended
        await call.handle_message({"type": "user-connected", "userId": "patient-1"})
        assert call.channel.sent == []
