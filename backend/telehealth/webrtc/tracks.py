"""Switchable media tracks.

Wraps a local capture track so it can be muted (audio) or blanked (video)
without renegotiating the call, the same way a browser track's ``enabled``
flag behaves.
"""

import logging

import numpy as np
from aiortc import MediaStreamTrack
from av import AudioFrame, VideoFrame

logger = logging.getLogger(__name__)


class SwitchableTrack(MediaStreamTrack):
    """Relay frames from a source track, replacing them while disabled.

    While ``enabled`` is False the source keeps being consumed so timestamps
    stay continuous, but audio frames are zeroed and video frames are
    replaced with black frames of the same size.

    Attributes:
        kind (str): "audio" or "video", taken from the source
        source (MediaStreamTrack): wrapped capture track
        enabled (bool): whether real media is forwarded

    Examples:
        >>> player = MediaPlayer("/dev/video0", format="v4l2")
        >>> video = SwitchableTrack(player.video)
        >>> pc.addTrack(video)
        >>> video.enabled = False  # remote sees black frames
    """

    def __init__(self, source: MediaStreamTrack):
        super().__init__()
        self.kind = source.kind
        self.source = source
        self.enabled = True

        @source.on("ended")
        def on_source_ended():
            logger.info(f"[WebRTC] source {self.kind} track ended")
            self.stop()

    def toggle(self) -> bool:
        """Flip ``enabled`` and return the new value."""
        self.enabled = not self.enabled
        logger.info(f"[WebRTC] local {self.kind} {'enabled' if self.enabled else 'disabled'}")
        return self.enabled

    async def recv(self):
        frame = await self.source.recv()
        if self.enabled:
            return frame

        if isinstance(frame, AudioFrame):
            for plane in frame.planes:
                plane.update(bytes(plane.buffer_size))
            return frame

        if isinstance(frame, VideoFrame):
            black = VideoFrame.from_ndarray(
                np.zeros((frame.height, frame.width, 3), dtype=np.uint8), format="rgb24"
            )
            black.pts = frame.pts
            black.time_base = frame.time_base
            return black

        return frame

    def stop(self) -> None:
        super().stop()
        if self.source.readyState != "ended":
            self.source.stop()
