"""Telehealth video call orchestration.

VideoCall ties together local media, the signaling channel, the peer
connection and the negotiation coordinator for one participant of a two-party
consultation call.

Signaling flow (both peers run the same code):
    1. A joins the room, B joins afterwards
    2. relay -> A: user-connected(B); A creates an offer for B
    3. B answers; ICE candidates trickle both ways
    4. both sides may offer again (ICE restart); collisions are resolved by
       the polite/impolite roles from NegotiationCoordinator

User facing problems are reported as CallNotice objects through ``on_notice``.

Examples:
    >>> call = VideoCall("room-1700000000000-ab12cd", "doctor-1", "Dr. Kim")
    >>> call.on_notice = lambda notice: print(notice.title)
    >>> await call.start()
    >>> await call.send_chat("Can you hear me?")
    >>> call.toggle_audio()
    False
    >>> await call.end_call()
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from aiortc import MediaStreamTrack

from .config import connection_config, signaling_config
from .media import LocalMedia, MediaAcquisitionError
from .negotiation import NegotiationCoordinator, OfferDecision
from .peer_manager import PeerConnectionManager
from .quality import QUALITY_GOOD, QualityMonitor
from .signaling_client import SignalingChannel

logger = logging.getLogger(__name__)


@dataclass
class CallNotice:
    """A user facing call event (error, warning or information).

    Attributes:
        title (str): short headline, e.g. "Media Error"
        description (str): one sentence for the user
        destructive (bool): True for errors
    """

    title: str
    description: str
    destructive: bool = False


async def _invoke(callback: Optional[Callable], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class VideoCall:
    """One participant's side of a telehealth video call.

    Attributes:
        room_id (str): consultation room id
        user_id (str): local participant id (also decides the polite role)
        user_name (str): display name
        audio_enabled (bool): microphone state
        video_enabled (bool): camera state
        screen_sharing (bool): whether the outgoing video is the screen
        remote_connected (bool): whether the remote peer is connected
        quality (str): last connection quality bucket
        remote_tracks (List[MediaStreamTrack]): media received from the peer
        ice_restart_attempts (int): restarts since the last successful connect

    Callbacks (sync or async):
        on_notice(CallNotice)
        on_remote_track(track)
        on_quality_change(quality)
        on_chat_message(sender_id, message, timestamp)
        on_remote_screen_share(user_id, active)
        on_remote_state(connected)
    """

    def __init__(
        self,
        room_id: str,
        user_id: str,
        user_name: str = "",
        signaling_url: Optional[str] = None,
        token: Optional[str] = None,
        role: Optional[str] = None,
        media: Optional[LocalMedia] = None,
        channel: Optional[SignalingChannel] = None,
        peer: Optional[PeerConnectionManager] = None,
    ):
        self.room_id = room_id
        self.user_id = user_id
        self.user_name = user_name

        self.media = media or LocalMedia()
        self.channel = channel or SignalingChannel(
            signaling_url or signaling_config.SIGNALING_URL,
            room_id,
            user_id,
            token=token or signaling_config.SIGNALING_TOKEN,
            role=role,
        )
        self.peer = peer or PeerConnectionManager()
        self.coordinator = NegotiationCoordinator(user_id)
        self.monitor = QualityMonitor(self.peer.get_stats, self._on_quality_change)

        self.audio_enabled = True
        self.video_enabled = True
        self.screen_sharing = False
        self.remote_connected = False
        self.quality = QUALITY_GOOD
        self.remote_tracks: List[MediaStreamTrack] = []
        self.ice_restart_attempts = 0

        self.on_notice: Optional[Callable] = None
        self.on_remote_track: Optional[Callable] = None
        self.on_quality_change: Optional[Callable] = None
        self.on_chat_message: Optional[Callable] = None
        self.on_remote_screen_share: Optional[Callable] = None
        self.on_remote_state: Optional[Callable] = None

        self._screen_track: Optional[MediaStreamTrack] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Acquire media, connect to the relay and wait for the other peer.

        Raises:
            MediaAcquisitionError: camera/microphone unavailable
            Exception: signaling relay unreachable (after a "Connection Error" notice)
        """
        try:
            tracks = self.media.open()
        except MediaAcquisitionError as e:
            logger.error(f"[WebRTC] error initializing call: {e}")
            await self._notify("Media Error", "Failed to access camera/microphone", destructive=True)
            raise

        try:
            await self.channel.connect()
        except Exception as e:
            logger.error(f"[WebRTC] signaling connection failed: {e}")
            await self._notify("Connection Error", "Failed to connect to signaling server", destructive=True)
            self.media.stop()
            raise

        self._setup_peer_connection(tracks)
        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info(f"[WebRTC] call started: room={self.room_id}, user={self.user_id} ({self.user_name})")

    async def wait_closed(self) -> None:
        """Block until the signaling stream ends or the call is ended."""
        if self._receive_task is None:
            return
        try:
            await self._receive_task
        except asyncio.CancelledError:
            pass

    async def end_call(self) -> None:
        """Tear everything down. Safe to call more than once."""
        if self._ended:
            return
        self._ended = True
        logger.info(f"[WebRTC] ending call: room={self.room_id}, user={self.user_id}")

        await self.monitor.stop()

        if self._screen_track is not None:
            screen, self._screen_track = self._screen_track, None
            screen.stop()
        self.screen_sharing = False
        self.media.stop()

        await self.peer.close()
        await self.channel.close()

        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.remote_connected = False

    # ------------------------------------------------------------------
    # Peer connection events
    # ------------------------------------------------------------------

    def _setup_peer_connection(self, tracks: List[MediaStreamTrack]) -> None:
        self.peer.on_track_callback = self._on_remote_track
        self.peer.on_ice_candidate_callback = self._on_local_candidate
        self.peer.on_connection_state_callback = self._on_connection_state
        self.peer.on_ice_connection_state_callback = self._on_ice_connection_state
        self.peer.create_peer_connection(tracks)

    async def _on_remote_track(self, track: MediaStreamTrack) -> None:
        self.remote_tracks.append(track)
        await self._set_remote_connected(True)
        await _invoke(self.on_remote_track, track)

    async def _on_local_candidate(self, candidate: dict) -> None:
        remote_id = self.coordinator.remote_peer_id
        if not remote_id or not self.channel.is_open:
            return
        logger.debug(f"[WebRTC] sending ICE candidate to: {remote_id}")
        await self.channel.send({"type": "ice-candidate", "candidate": candidate, "targetId": remote_id})

    async def _on_connection_state(self, state: str) -> None:
        if state == "connected":
            self.ice_restart_attempts = 0
            await self._set_remote_connected(True)
            self.monitor.start()
        elif state in ("disconnected", "failed"):
            await self._set_remote_connected(False)

    async def _on_ice_connection_state(self, state: str) -> None:
        if state in ("connected", "completed"):
            self.ice_restart_attempts = 0
        elif state in ("failed", "disconnected"):
            await self.restart_ice(state)

    async def restart_ice(self, state: str = "failed") -> bool:
        """Recover from an ICE failure with a fresh connection and offer.

        Args:
            state: the ICE state that triggered the restart

        Returns:
            bool: False when the call ended, the attempts are exhausted or the
            restart offer could not be sent
        """
        if self._ended:
            return False
        if self.ice_restart_attempts >= connection_config.MAX_ICE_RESTARTS:
            logger.error(f"[WebRTC] ICE restart limit reached ({connection_config.MAX_ICE_RESTARTS})")
            return False

        self.ice_restart_attempts += 1
        logger.warning(f"[WebRTC] ICE {state}, restart attempt {self.ice_restart_attempts}")
        try:
            await self.monitor.stop()
            await self.peer.rebuild()
            remote_id = self.coordinator.remote_peer_id
            if remote_id and not await self._send_offer(remote_id):
                return False
            if state == "failed":
                await self._notify(
                    "Network issue detected",
                    "Connection failed. A TURN server may be required for your network.",
                    destructive=True,
                )
        except Exception as e:
            logger.error(f"[WebRTC] ICE restart error: {e}", exc_info=True)
            return False
        return True

    async def _set_remote_connected(self, connected: bool) -> None:
        if self.remote_connected == connected:
            return
        self.remote_connected = connected
        await _invoke(self.on_remote_state, connected)

    async def _on_quality_change(self, quality: str) -> None:
        self.quality = quality
        await _invoke(self.on_quality_change, quality)
        await self.channel.send({"type": "connection-quality", "quality": quality})

    # ------------------------------------------------------------------
    # Signaling
    # ------------------------------------------------------------------

    async def _receive_loop(self) -> None:
        async for message in self.channel:
            try:
                await self.handle_message(message)
            except Exception as e:
                logger.error(f"[WebRTC] error handling '{message.get('type')}': {e}", exc_info=True)
        logger.info("[WebRTC] signaling stream ended")

    async def handle_message(self, message: dict) -> None:
        """Dispatch one signaling message from the relay."""
        if self._ended:
            return

        msg_type = message.get("type")
        logger.debug(f"[WebRTC] received signaling message: {msg_type}")

        if msg_type == "user-connected":
            await self._handle_user_connected(message)
        elif msg_type == "offer":
            await self._handle_offer(message)
        elif msg_type == "answer":
            await self._handle_answer(message)
        elif msg_type == "ice-candidate":
            await self._handle_ice_candidate(message)
        elif msg_type == "user-disconnected":
            await self._handle_user_disconnected(message)
        elif msg_type == "chat-message":
            await _invoke(
                self.on_chat_message,
                message.get("senderId"),
                message.get("message"),
                message.get("timestamp"),
            )
        elif msg_type in ("screen-share-start", "screen-share-stop"):
            await _invoke(self.on_remote_screen_share, message.get("userId"), msg_type == "screen-share-start")
        else:
            logger.warning(f"[WebRTC] unknown message type: {msg_type}")

    async def _send_offer(self, target_id: str) -> bool:
        try:
            async with self.coordinator.offering():
                offer = await self.peer.create_offer()
                await self.channel.send({"type": "offer", "offer": offer, "targetId": target_id})
            logger.info(f"[WebRTC] sent offer to: {target_id}")
            return True
        except Exception as e:
            logger.error(f"[WebRTC] offer error: {e}", exc_info=True)
            return False

    async def _handle_user_connected(self, message: dict) -> None:
        remote_id = message.get("userId")
        if not remote_id or remote_id == self.user_id:
            return

        self.coordinator.assign_remote(remote_id)
        if self.peer.signaling_state != "stable":
            logger.info("[WebRTC] skip initial offer: signaling not stable")
            return
        await self._send_offer(remote_id)

    async def _handle_offer(self, message: dict) -> None:
        sender_id = message.get("senderId")
        offer = message.get("offer")
        logger.info(f"[WebRTC] received offer from: {sender_id}")

        self.coordinator.adopt_sender(sender_id)
        if not offer or not offer.get("sdp"):
            logger.warning("[WebRTC] offer without SDP ignored")
            return

        if self.peer.connection_state in ("failed", "closed"):
            await self.peer.rebuild()

        decision = self.coordinator.on_remote_offer(self.peer.signaling_state)
        if decision == OfferDecision.IGNORE:
            return

        try:
            if decision == OfferDecision.ROLLBACK_AND_ACCEPT:
                await self.peer.rollback()
            try:
                answer = await self.peer.accept_offer(offer)
            except Exception as e:
                # established connections cannot take a new DTLS session
                logger.warning(f"[WebRTC] offer rejected by current connection ({e}), rebuilding")
                await self.peer.rebuild()
                answer = await self.peer.accept_offer(offer)

            await self.channel.send({"type": "answer", "answer": answer, "targetId": sender_id})
            logger.info(f"[WebRTC] sent answer to: {sender_id}")
        except Exception as e:
            logger.error(f"[WebRTC] error handling offer: {e}", exc_info=True)

    async def _handle_answer(self, message: dict) -> None:
        answer = message.get("answer")
        logger.info(f"[WebRTC] received answer from: {message.get('senderId')}")
        if not answer:
            return
        try:
            await self.peer.accept_answer(answer)
        except Exception as e:
            logger.error(f"[WebRTC] error applying answer: {e}")

    async def _handle_ice_candidate(self, message: dict) -> None:
        candidate = message.get("candidate")
        if not candidate:
            return
        try:
            await self.peer.add_ice_candidate(candidate)
        except Exception as e:
            logger.error(f"[WebRTC] error adding ICE candidate: {e}")

    async def _handle_user_disconnected(self, message: dict) -> None:
        logger.info(f"[WebRTC] user disconnected: {message.get('userId')}")
        await self._set_remote_connected(False)
        self.coordinator.reset_remote()
        self.remote_tracks.clear()

        # fresh connection for a participant who rejoins
        await self.monitor.stop()
        await self.peer.rebuild()

        await self._notify("Participant Left", "The other participant has left the call")

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    def toggle_audio(self) -> bool:
        """Mute/unmute the microphone. Returns the new state."""
        if self.media.audio is not None:
            self.audio_enabled = self.media.audio.toggle()
        return self.audio_enabled

    def toggle_video(self) -> bool:
        """Blank/unblank the camera. Returns the new state."""
        if self.media.video is not None:
            self.video_enabled = self.media.video.toggle()
        return self.video_enabled

    async def start_screen_share(self, source: Optional[str] = None, source_format: Optional[str] = None) -> bool:
        """Send the screen instead of the camera.

        Returns:
            bool: True when screen sharing is active
        """
        if self.screen_sharing:
            return True
        try:
            screen = self.media.open_screen(source, source_format)
        except MediaAcquisitionError as e:
            logger.error(f"[WebRTC] error sharing screen: {e}")
            return False

        self._screen_track = screen

        @screen.on("ended")
        async def on_screen_ended():
            await self.stop_screen_share()

        await self.peer.replace_video_track(screen)
        self.screen_sharing = True
        await self.channel.send({"type": "screen-share-start"})
        logger.info("[WebRTC] screen share started")
        return True

    async def stop_screen_share(self) -> None:
        """Switch the outgoing video back to the camera."""
        if not self.screen_sharing:
            return
        self.screen_sharing = False

        screen, self._screen_track = self._screen_track, None
        if screen is not None and screen.readyState != "ended":
            screen.stop()

        if self._ended:
            return
        if self.media.video is not None:
            await self.peer.replace_video_track(self.media.video)
        await self.channel.send({"type": "screen-share-stop"})
        logger.info("[WebRTC] screen share stopped")

    async def send_chat(self, text: str) -> bool:
        """Send a chat message to the room."""
        if not text or not text.strip():
            return False
        return await self.channel.send({"type": "chat-message", "message": text})

    async def _notify(self, title: str, description: str, destructive: bool = False) -> None:
        await _invoke(self.on_notice, CallNotice(title, description, destructive))
