"""SwitchableTrack frame replacement and LocalMedia error paths."""

from types import SimpleNamespace

import pytest
from aiortc import MediaStreamTrack
from aiortc.mediastreams import VideoStreamTrack
from av import AudioFrame

from telehealth.webrtc import media
from telehealth.webrtc.media import LocalMedia, MediaAcquisitionError
from telehealth.webrtc.tracks import SwitchableTrack


class ToneTrack(MediaStreamTrack):
    """Audio source whose samples are never zero."""

    kind = "audio"

    def __init__(self):
        super().__init__()
        self.pts = 0

    async def recv(self):
        frame = AudioFrame(format="s16", layout="mono", samples=960)
        for plane in frame.planes:
            plane.update(b"\x01" * plane.buffer_size)
        frame.sample_rate = 48000
        frame.pts = self.pts
        self.pts += 960
        return frame


class TestSwitchableTrack:

    async def test_enabled_video_passes_through(self):
        track = SwitchableTrack(VideoStreamTrack())
        frame = await track.recv()
        assert track.kind == "video"
        assert frame.to_ndarray(format="rgb24").any()

    async def test_disabled_video_is_black(self):
        track = SwitchableTrack(VideoStreamTrack())
        track.enabled = False

        frame = await track.recv()

        pixels = frame.to_ndarray(format="rgb24")
        assert pixels.shape == (480, 640, 3)
        assert not pixels.any()
        assert frame.pts == 0

    async def test_disabled_audio_is_silent(self):
        track = SwitchableTrack(ToneTrack())
        assert (await track.recv()).to_ndarray().any()

        assert track.toggle() is False
        silent = await track.recv()

        assert not silent.to_ndarray().any()
        assert silent.pts == 960

    def test_source_end_ends_wrapper(self):
        source = VideoStreamTrack()
        track = SwitchableTrack(source)

        source.stop()

        assert track.readyState == "ended"

    def test_stop_ends_source(self):
        source = VideoStreamTrack()
        SwitchableTrack(source).stop()
        assert source.readyState == "ended"


class FakePlayer:
    def __init__(self, audio=None, video=None):
        self.audio = audio
        self.video = video


@pytest.fixture
def devices(monkeypatch):
    config = SimpleNamespace(
        VIDEO_DEVICE=None, VIDEO_FORMAT=None, AUDIO_DEVICE=None, AUDIO_FORMAT=None,
        SCREEN_DEVICE=None, SCREEN_FORMAT=None, FRAMERATE=30, video_size="1280x720",
    )
    monkeypatch.setattr(media, "media_config", config)
    return config


@pytest.fixture
def players(monkeypatch):
    """Records MediaPlayer calls; maps file name -> FakePlayer or exception."""
    opened = []
    sources = {}

    def open_player(file, format=None, options=None):
        opened.append((file, format, options))
        result = sources[file]
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(media, "MediaPlayer", open_player)
    return SimpleNamespace(opened=opened, sources=sources)


class TestLocalMedia:

    def test_unopenable_source(self, devices, players):
        players.sources["missing.mp4"] = OSError("No such file")
        with pytest.raises(MediaAcquisitionError, match="missing.mp4"):
            LocalMedia(source="missing.mp4").open()

    def test_no_devices_configured(self, devices, players):
        with pytest.raises(MediaAcquisitionError, match="No camera or microphone"):
            LocalMedia().open()
        assert players.opened == []

    def test_file_with_video_only(self, devices, players):
        players.sources["consult.mp4"] = FakePlayer(video=VideoStreamTrack())
        local = LocalMedia(source="consult.mp4")

        tracks = local.open()

        assert [t.kind for t in tracks] == ["video"]
        assert isinstance(local.video, SwitchableTrack)
        assert local.audio is None

    def test_devices_use_capture_settings(self, devices, players):
        devices.VIDEO_DEVICE, devices.VIDEO_FORMAT = "/dev/video0", "v4l2"
        players.sources["/dev/video0"] = FakePlayer(video=VideoStreamTrack())

        LocalMedia().open()

        assert players.opened == [("/dev/video0", "v4l2", {"video_size": "1280x720", "framerate": "30"})]

    def test_screen_not_configured(self, devices, players):
        with pytest.raises(MediaAcquisitionError, match="No screen capture source"):
            LocalMedia().open_screen()

    def test_screen_without_video(self, devices, players):
        players.sources[":0.0"] = FakePlayer()
        with pytest.raises(MediaAcquisitionError, match="has no video"):
            LocalMedia().open_screen(":0.0", "x11grab")

    def test_stop_ends_screen_track(self, devices, players):
        devices.SCREEN_DEVICE, devices.SCREEN_FORMAT = ":0.0", "x11grab"
        screen = VideoStreamTrack()
        players.sources[":0.0"] = FakePlayer(video=screen)
        local = LocalMedia()

        assert local.open_screen() is screen
        local.stop()

        assert screen.readyState == "ended"
