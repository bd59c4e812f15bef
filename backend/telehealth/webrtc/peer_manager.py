"""WebRTC peer connection management.

Wraps aiortc's RTCPeerConnection for one side of a two-party telehealth call.
Media transport, DTLS/SRTP and ICE connectivity are handled by aiortc; this
module configures ICE servers, attaches local tracks, relays connection events
to the call layer and exposes the description/candidate operations that the
negotiation logic needs.

Main features:
    - ICE server configuration (custom STUN, public STUN fallback, TURN)
    - local track attachment and outgoing video replacement (screen share)
    - offer / answer / ICE candidate helpers using plain dict payloads
    - rollback of a pending local offer, with a rebuild fallback
    - connection rebuild for ICE restarts
    - transport stats for quality monitoring

Classes:
    PeerConnectionManager: one RTCPeerConnection and its event callbacks

WebRTC Flow:
    1. create_peer_connection(): new RTCPeerConnection with local tracks
    2. create_offer() / accept_offer() / accept_answer(): SDP exchange
    3. add_ice_candidate(): trickled remote candidates
    4. close(): connection teardown

Examples:
    >>> manager = PeerConnectionManager()
    >>> manager.create_peer_connection(local_tracks)
    >>> offer = await manager.create_offer()
    >>> # ... send offer, receive answer ...
    >>> await manager.accept_answer(answer)
    >>> await manager.close()

See Also:
    negotiation.py: polite/impolite collision handling
    aiortc Documentation: https://aiortc.readthedocs.io/
"""
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from .config import ice_config

logger = logging.getLogger(__name__)


def build_ice_servers() -> List[RTCIceServer]:
    """ICE servers for a new peer connection.

    Returns:
        List[RTCIceServer]: custom STUN, public STUN fallbacks and TURN
        (TURN only when URL, username and credential are all configured)
    """
    ice_servers = []

    if ice_config.STUN_SERVER_URL:
        ice_servers.append(RTCIceServer(urls=[ice_config.STUN_SERVER_URL]))
        logger.info(f"[WebRTC] custom STUN server: {ice_config.STUN_SERVER_URL}")

    for stun_url in ice_config.DEFAULT_STUN_SERVERS:
        ice_servers.append(RTCIceServer(urls=[stun_url]))

    if ice_config.has_turn_server:
        ice_servers.append(RTCIceServer(
            urls=[ice_config.TURN_SERVER_URL],
            username=ice_config.TURN_USERNAME,
            credential=ice_config.TURN_CREDENTIAL
        ))
        logger.info(f"[WebRTC] TURN server: {ice_config.TURN_SERVER_URL}")
    else:
        logger.warning("[WebRTC] no TURN server configured, STUN only")

    return ice_servers


def description_to_dict(description: RTCSessionDescription) -> dict:
    return {"sdp": description.sdp, "type": description.type}


def parse_ice_candidate(candidate_data: dict):
    """Convert a browser style candidate payload to an aiortc RTCIceCandidate.

    Accepts both ``{"candidate": "candidate:...", "sdpMid": ..., "sdpMLineIndex": ...}``
    and the nested ``{"candidate": {"candidate": ..., ...}}`` shape.

    Returns:
        RTCIceCandidate or None for an empty (end-of-candidates) payload
    """
    inner_candidate = candidate_data.get("candidate", {})
    if isinstance(inner_candidate, dict):
        candidate_str = inner_candidate.get("candidate", "")
        sdp_mid = inner_candidate.get("sdpMid")
        sdp_mline_index = inner_candidate.get("sdpMLineIndex")
    else:
        candidate_str = candidate_data.get("candidate", "")
        sdp_mid = candidate_data.get("sdpMid")
        sdp_mline_index = candidate_data.get("sdpMLineIndex")

    if not candidate_str:
        return None

    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[10:]

    ice_candidate = candidate_from_sdp(candidate_str)
    ice_candidate.sdpMid = sdp_mid
    ice_candidate.sdpMLineIndex = sdp_mline_index
    return ice_candidate


class PeerConnectionManager:
    """Owner of the call's RTCPeerConnection.

    Attributes:
        pc (Optional[RTCPeerConnection]): current connection
        local_tracks (List[MediaStreamTrack]): tracks sent to the remote peer
        on_track_callback: ``async (track)`` remote track received
        on_ice_candidate_callback: ``async (candidate_dict)`` local candidate
        on_connection_state_callback: ``async (state)`` connectionState change
        on_ice_connection_state_callback: ``async (state)`` iceConnectionState change

    Note:
        A rebuilt connection (rollback fallback, ICE restart) keeps the same
        local tracks and callbacks; listeners of the old connection are
        removed before it is closed so its final "closed" events are not
        reported.
    """

    def __init__(self, ice_servers: Optional[List[RTCIceServer]] = None):
        self.ice_servers = ice_servers
        self.pc: Optional[RTCPeerConnection] = None
        self.local_tracks: List[MediaStreamTrack] = []

        self.on_track_callback: Optional[Callable[[MediaStreamTrack], Awaitable[None]]] = None
        self.on_ice_candidate_callback: Optional[Callable[[dict], Awaitable[None]]] = None
        self.on_connection_state_callback: Optional[Callable[[str], Awaitable[None]]] = None
        self.on_ice_connection_state_callback: Optional[Callable[[str], Awaitable[None]]] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def signaling_state(self) -> str:
        return self.pc.signalingState if self.pc else "closed"

    @property
    def connection_state(self) -> str:
        return self.pc.connectionState if self.pc else "closed"

    @property
    def ice_connection_state(self) -> str:
        return self.pc.iceConnectionState if self.pc else "closed"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_peer_connection(self, local_tracks: Optional[List[MediaStreamTrack]] = None) -> RTCPeerConnection:
        """Create the RTCPeerConnection and register event handlers.

        Args:
            local_tracks: tracks to send; kept for later rebuilds

        Returns:
            RTCPeerConnection: the new connection

        Event Handlers:
            - track: remote media arrived
            - icecandidate: local candidate to trickle to the remote peer
            - connectionstatechange / iceconnectionstatechange: state reports
        """
        if local_tracks is not None:
            self.local_tracks = list(local_tracks)

        ice_servers = self.ice_servers if self.ice_servers is not None else build_ice_servers()
        pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=ice_servers))
        self.pc = pc

        for track in self.local_tracks:
            pc.addTrack(track)

        logger.info(f"[WebRTC] peer connection created, local tracks={[t.kind for t in self.local_tracks]}")

        @pc.on("track")
        async def on_track(track: MediaStreamTrack):
            logger.info(f"[WebRTC] remote {track.kind} track received")
            if self.on_track_callback:
                await self.on_track_callback(track)

        @pc.on("icecandidate")
        async def on_ice_candidate(candidate):
            if candidate and self.on_ice_candidate_callback:
                await self.on_ice_candidate_callback({
                    "candidate": f"candidate:{candidate_to_sdp(candidate)}",
                    "sdpMid": candidate.sdpMid,
                    "sdpMLineIndex": candidate.sdpMLineIndex,
                })

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.info(f"[WebRTC] connection state: {pc.connectionState}")
            if self.on_connection_state_callback:
                await self.on_connection_state_callback(pc.connectionState)

        @pc.on("iceconnectionstatechange")
        async def on_ice_connection_state_change():
            logger.info(f"[WebRTC] ICE state: {pc.iceConnectionState}")
            if self.on_ice_connection_state_callback:
                await self.on_ice_connection_state_callback(pc.iceConnectionState)

        return pc

    async def rebuild(self) -> RTCPeerConnection:
        """Replace the connection with a fresh one carrying the same tracks.

        Used when a pending local offer cannot be rolled back and for ICE
        restarts (aiortc has no ``iceRestart`` offer option, a new connection
        gathers new ICE credentials).
        """
        old_pc = self.pc
        if old_pc is not None:
            old_pc.remove_all_listeners()
            await old_pc.close()
        logger.info("[WebRTC] rebuilding peer connection")
        return self.create_peer_connection()

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self.pc is None:
            return
        pc, self.pc = self.pc, None
        await pc.close()
        logger.info("[WebRTC] peer connection closed")

    # ------------------------------------------------------------------
    # SDP exchange
    # ------------------------------------------------------------------

    async def create_offer(self) -> dict:
        """Create an offer and set it as local description.

        Returns:
            dict: {"sdp": ..., "type": "offer"}
        """
        offer = await self.pc.createOffer()
        await self.pc.setLocalDescription(offer)
        logger.info(f"[WebRTC] offer created (signaling={self.pc.signalingState})")
        return description_to_dict(self.pc.localDescription)

    async def accept_offer(self, offer: dict) -> dict:
        """Apply a remote offer and answer it.

        Args:
            offer: {"sdp": ..., "type": "offer"}

        Returns:
            dict: {"sdp": ..., "type": "answer"}
        """
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=offer["sdp"], type=offer.get("type", "offer"))
        )
        answer = await self.pc.createAnswer()
        await self.pc.setLocalDescription(answer)

        candidate_count = self.pc.localDescription.sdp.count("a=candidate:")
        logger.info(f"[WebRTC] answer created, candidates={candidate_count}, gathering={self.pc.iceGatheringState}")
        return description_to_dict(self.pc.localDescription)

    async def accept_answer(self, answer: dict) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=answer["sdp"], type=answer.get("type", "answer"))
        )
        logger.info(f"[WebRTC] answer applied (signaling={self.pc.signalingState})")

    async def rollback(self) -> None:
        """Discard a pending local offer.

        Tries a native rollback description first. aiortc accepts the
        description without rolling anything back, so whenever the connection
        is not "stable" afterwards (or the stack raised) it is rebuilt, which
        leaves a clean "stable" connection with the same local tracks.
        """
        try:
            await self.pc.setLocalDescription(RTCSessionDescription(sdp="", type="rollback"))
        except Exception as e:
            logger.warning(f"[WebRTC] native rollback rejected ({e})")

        if self.pc.signalingState == "stable":
            logger.info("[WebRTC] local offer rolled back")
            return

        logger.info(f"[WebRTC] rollback left signaling={self.pc.signalingState}, rebuilding connection")
        await self.rebuild()

    async def add_ice_candidate(self, candidate_data: dict) -> bool:
        """Add a trickled remote candidate.

        Returns:
            bool: True when a candidate was added
        """
        if self.pc is None or not candidate_data:
            return False
        ice_candidate = parse_ice_candidate(candidate_data)
        if ice_candidate is None:
            return False
        await self.pc.addIceCandidate(ice_candidate)
        logger.debug("[WebRTC] remote ICE candidate added")
        return True

    # ------------------------------------------------------------------
    # Tracks & stats
    # ------------------------------------------------------------------

    async def replace_video_track(self, track: MediaStreamTrack) -> bool:
        """Swap the outgoing video track without renegotiation.

        Returns:
            bool: False when there is no video sender
        """
        self.local_tracks = [t for t in self.local_tracks if t.kind != "video"] + [track]
        if self.pc is None:
            return False

        for sender in self.pc.getSenders():
            if getattr(sender, "kind", None) == "video" or (sender.track and sender.track.kind == "video"):
                result = sender.replaceTrack(track)
                if inspect.isawaitable(result):
                    await result
                logger.info("[WebRTC] outgoing video track replaced")
                return True

        logger.warning("[WebRTC] no video sender to replace")
        return False

    async def get_stats(self) -> Any:
        """Transport statistics of the current connection (RTCStatsReport)."""
        if self.pc is None:
            return {}
        return await self.pc.getStats()
