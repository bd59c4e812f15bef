"""Local media acquisition.

Opens camera/microphone capture (or a media file) through aiortc's ffmpeg
backed MediaPlayer and exposes the tracks as SwitchableTrack instances.
Screen capture is opened the same way with a grab device.
"""

import logging
from typing import List, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer

from .config import media_config
from .tracks import SwitchableTrack

logger = logging.getLogger(__name__)


class MediaAcquisitionError(RuntimeError):
    """Raised when no local capture device or file could be opened."""


class LocalMedia:
    """Local audio/video capture for one call.

    Attributes:
        audio (Optional[SwitchableTrack]): microphone track
        video (Optional[SwitchableTrack]): camera track

    Examples:
        >>> media = LocalMedia(source="consult.mp4")   # file playback
        >>> media.open()
        >>> [t.kind for t in media.tracks]
        ['audio', 'video']
        >>> media.stop()
    """

    def __init__(self, source: Optional[str] = None, source_format: Optional[str] = None):
        """
        Args:
            source: media file or device URL containing both audio and video.
                When omitted, the VIDEO_/AUDIO_ device settings are used.
            source_format: ffmpeg input format for ``source``
        """
        self.source = source
        self.source_format = source_format
        self.audio: Optional[SwitchableTrack] = None
        self.video: Optional[SwitchableTrack] = None
        self._players: List[MediaPlayer] = []

    @property
    def tracks(self) -> List[MediaStreamTrack]:
        return [t for t in (self.audio, self.video) if t is not None]

    def _open_player(self, file: str, format: Optional[str], options: Optional[dict] = None) -> MediaPlayer:
        try:
            player = MediaPlayer(file, format=format, options=options or {})
        except Exception as e:
            raise MediaAcquisitionError(f"Failed to open media source '{file}': {e}") from e
        self._players.append(player)
        return player

    def open(self) -> List[MediaStreamTrack]:
        """Open capture and return the local tracks.

        Raises:
            MediaAcquisitionError: nothing could be opened
        """
        video_options = {
            "video_size": media_config.video_size,
            "framerate": str(media_config.FRAMERATE),
        }

        if self.source:
            player = self._open_player(self.source, self.source_format)
            if player.audio:
                self.audio = SwitchableTrack(player.audio)
            if player.video:
                self.video = SwitchableTrack(player.video)
        else:
            if media_config.VIDEO_DEVICE:
                player = self._open_player(media_config.VIDEO_DEVICE, media_config.VIDEO_FORMAT, video_options)
                if player.video:
                    self.video = SwitchableTrack(player.video)
            if media_config.AUDIO_DEVICE:
                player = self._open_player(media_config.AUDIO_DEVICE, media_config.AUDIO_FORMAT)
                if player.audio:
                    self.audio = SwitchableTrack(player.audio)

        if not self.tracks:
            raise MediaAcquisitionError("No camera or microphone available")

        logger.info(f"[Media] local tracks opened: {[t.kind for t in self.tracks]}")
        return self.tracks

    def open_screen(self, source: Optional[str] = None, source_format: Optional[str] = None) -> MediaStreamTrack:
        """Open screen capture and return its video track.

        Args:
            source: grab device, defaults to SCREEN_DEVICE
            source_format: ffmpeg format, defaults to SCREEN_FORMAT

        Raises:
            MediaAcquisitionError: no screen source configured or openable
        """
        source = source or media_config.SCREEN_DEVICE
        source_format = source_format or media_config.SCREEN_FORMAT
        if not source:
            raise MediaAcquisitionError("No screen capture source configured")

        player = self._open_player(source, source_format, {"framerate": str(media_config.FRAMERATE)})
        if not player.video:
            raise MediaAcquisitionError(f"Screen source '{source}' has no video")
        logger.info(f"[Media] screen capture opened: {source}")
        return player.video

    def stop(self) -> None:
        """Stop every local track (camera, microphone, screen)."""
        for track in self.tracks:
            track.stop()
        for player in self._players:
            for track in (player.audio, player.video):
                if track is not None and track.readyState != "ended":
                    track.stop()
        self._players.clear()
        logger.info("[Media] local media stopped")
