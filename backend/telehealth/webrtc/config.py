"""WebRTC module settings.

TURN/STUN servers, signaling relay address, capture devices and call tuning
constants, read from environment variables.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import List, Optional

# Environment is usually loaded by app.py already
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# ICE server settings
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE server settings."""

    # TURN server
    TURN_SERVER_URL: Optional[str] = os.getenv("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN server
    STUN_SERVER_URL: Optional[str] = os.getenv("STUN_SERVER_URL")

    # Public STUN servers (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    )

    @property
    def has_turn_server(self) -> bool:
        """Whether the TURN server is fully configured."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def as_dicts(self) -> List[dict]:
        """ICE servers in the browser ``RTCIceServer`` JSON shape.

        Returns:
            List[dict]: custom STUN (if set), public STUN fallbacks and TURN
            (only when URL, username and credential are all present).
        """
        servers = []
        if self.STUN_SERVER_URL:
            servers.append({"urls": self.STUN_SERVER_URL})
        for stun_url in self.DEFAULT_STUN_SERVERS:
            servers.append({"urls": stun_url})
        if self.has_turn_server:
            servers.append({
                "urls": self.TURN_SERVER_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL,
            })
        return servers


# ============================================================
# Signaling relay
# ============================================================

@dataclass(frozen=True)
class SignalingConfig:
    """Signaling relay settings used by call clients."""

    SIGNALING_URL: str = os.getenv("SIGNALING_URL", "ws://localhost:8000/ws/signaling")

    # Shared access token (same value as the server's ACCESS_PASSWORD)
    SIGNALING_TOKEN: Optional[str] = os.getenv("SIGNALING_TOKEN")

    # websockets keepalive
    PING_INTERVAL: float = 20.0


# ============================================================
# Capture devices
# ============================================================

@dataclass(frozen=True)
class MediaConfig:
    """Local capture settings (ffmpeg device names and formats for MediaPlayer).

    Examples of device/format pairs:
        Linux:   VIDEO_DEVICE=/dev/video0, VIDEO_FORMAT=v4l2
                 AUDIO_DEVICE=default, AUDIO_FORMAT=pulse
                 SCREEN_DEVICE=:0.0, SCREEN_FORMAT=x11grab
        macOS:   VIDEO_DEVICE=default:none, VIDEO_FORMAT=avfoundation
    """

    VIDEO_DEVICE: Optional[str] = os.getenv("VIDEO_DEVICE")
    VIDEO_FORMAT: Optional[str] = os.getenv("VIDEO_FORMAT")
    AUDIO_DEVICE: Optional[str] = os.getenv("AUDIO_DEVICE")
    AUDIO_FORMAT: Optional[str] = os.getenv("AUDIO_FORMAT")
    SCREEN_DEVICE: Optional[str] = os.getenv("SCREEN_DEVICE")
    SCREEN_FORMAT: Optional[str] = os.getenv("SCREEN_FORMAT")

    VIDEO_WIDTH: int = 1280
    VIDEO_HEIGHT: int = 720
    FRAMERATE: int = 30

    @property
    def video_size(self) -> str:
        return f"{self.VIDEO_WIDTH}x{self.VIDEO_HEIGHT}"


# ============================================================
# Connection settings
# ============================================================

@dataclass(frozen=True)
class ConnectionConfig:
    """Peer connection and quality monitoring settings."""

    # Quality sampling interval (seconds)
    QUALITY_SAMPLE_INTERVAL: float = 3.0

    # Video packet loss thresholds
    FAIR_LOSS_THRESHOLD: float = 0.05
    POOR_LOSS_THRESHOLD: float = 0.10

    # ICE restarts attempted before giving up (reset once connected)
    MAX_ICE_RESTARTS: int = 3

    # Candidate pool size requested by browser peers
    ICE_CANDIDATE_POOL_SIZE: int = 4


# ============================================================
# Singleton instances
# ============================================================

ice_config = ICEServerConfig()
signaling_config = SignalingConfig()
media_config = MediaConfig()
connection_config = ConnectionConfig()


logger.info(f"[WebRTC Config] .env path: {_env_path} (exists: {_env_path.exists()})")
logger.info(f"[WebRTC Config] TURN configured: {ice_config.has_turn_server}")
if ice_config.STUN_SERVER_URL:
    logger.info(f"[WebRTC Config] STUN URL: {ice_config.STUN_SERVER_URL}")
else:
    logger.info("[WebRTC Config] STUN URL: public Google STUN only")
