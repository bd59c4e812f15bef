"""Signaling channel client.

JSON message channel between a call participant and the signaling relay
(``/ws/signaling``). The relay identifies the participant by the ``roomId``
and ``userId`` query parameters.
"""

import json
import logging
from typing import AsyncIterator, Optional
from urllib.parse import urlencode

import websockets

from .config import signaling_config

logger = logging.getLogger(__name__)


class SignalingChannel:
    """WebSocket connection to the signaling relay.

    Attributes:
        room_id (str): call room
        user_id (str): local participant id
        url (str): full relay URL including query parameters

    Examples:
        >>> channel = SignalingChannel("ws://localhost:8000/ws/signaling", "room-1", "doctor-1")
        >>> await channel.connect()
        >>> await channel.send({"type": "chat-message", "message": "hello"})
        >>> async for message in channel:
        ...     print(message["type"])
    """

    def __init__(
        self,
        base_url: str,
        room_id: str,
        user_id: str,
        token: Optional[str] = None,
        role: Optional[str] = None,
    ):
        self.room_id = room_id
        self.user_id = user_id

        params = {"roomId": room_id, "userId": user_id}
        if role:
            params["role"] = role
        if token:
            params["token"] = token
        separator = "&" if "?" in base_url else "?"
        self.url = f"{base_url}{separator}{urlencode(params)}"

        self._ws = None
        self._closed = True

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    async def connect(self) -> None:
        """Open the WebSocket connection.

        Raises:
            OSError / websockets.exceptions.InvalidHandshake: relay unreachable
        """
        logger.info(f"[Signaling] connecting: room={self.room_id}, user={self.user_id}")
        self._ws = await websockets.connect(self.url, ping_interval=signaling_config.PING_INTERVAL)
        self._closed = False
        logger.info("[Signaling] connected to relay")

    async def send(self, message: dict) -> bool:
        """Send one JSON message.

        Returns:
            bool: False when the channel is closed (message dropped)
        """
        if not self.is_open:
            logger.warning(f"[Signaling] channel closed, dropping '{message.get('type')}'")
            return False
        try:
            await self._ws.send(json.dumps(message))
            return True
        except websockets.exceptions.ConnectionClosed as e:
            self._closed = True
            logger.warning(f"[Signaling] send failed, connection closed: {e}")
            return False

    async def __aiter__(self) -> AsyncIterator[dict]:
        if self._ws is None:
            return
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError):
                    logger.warning(f"[Signaling] invalid JSON from relay: {str(raw)[:100]}")
                    continue
                if isinstance(message, dict):
                    yield message
        except websockets.exceptions.ConnectionClosed as e:
            logger.info(f"[Signaling] connection closed: {e}")
        finally:
            self._closed = True

    async def close(self) -> None:
        if self._ws is None:
            return
        ws, self._ws = self._ws, None
        self._closed = True
        await ws.close()
        logger.info("[Signaling] connection closed by client")
