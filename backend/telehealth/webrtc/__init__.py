"""WebRTC call module.

Call-side logic of a two-party telehealth video call: media capture,
signaling client, peer connection, perfect negotiation and quality monitoring.

Classes:
    VideoCall: call orchestration for one participant
    CallNotice: user facing call event
    PeerConnectionManager: RTCPeerConnection wrapper
    NegotiationCoordinator: polite/impolite offer collision handling
    QualityMonitor: periodic transport stats sampler
    SignalingChannel: WebSocket client for the signaling relay
    LocalMedia: camera/microphone/screen capture
    SwitchableTrack: mutable local track

Config:
    ice_config: ICE server settings
    signaling_config: signaling relay settings
    media_config: capture device settings
    connection_config: connection tuning
"""

from .tracks import SwitchableTrack
from .media import LocalMedia, MediaAcquisitionError
from .negotiation import NegotiationCoordinator, OfferDecision, is_polite
from .quality import QualityMonitor, classify_quality
from .signaling_client import SignalingChannel
from .peer_manager import PeerConnectionManager
from .call import CallNotice, VideoCall
from .config import (
    ice_config,
    signaling_config,
    media_config,
    connection_config,
    ICEServerConfig,
    SignalingConfig,
    MediaConfig,
    ConnectionConfig,
)

__all__ = [
    # Classes
    "VideoCall",
    "CallNotice",
    "PeerConnectionManager",
    "NegotiationCoordinator",
    "OfferDecision",
    "is_polite",
    "QualityMonitor",
    "classify_quality",
    "SignalingChannel",
    "LocalMedia",
    "MediaAcquisitionError",
    "SwitchableTrack",
    # Config
    "ice_config",
    "signaling_config",
    "media_config",
    "connection_config",
    "ICEServerConfig",
    "SignalingConfig",
    "MediaConfig",
    "ConnectionConfig",
]
