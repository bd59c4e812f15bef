"""Room based participant registry for the signaling relay.

Tracks which WebSocket belongs to which user in which call room. Rooms are
created on the first join and deleted when the last participant leaves.

Architecture:
    - rooms: Dict[str, Dict[str, Participant]] - room id -> participants by user id

Classes:
    Participant: one connected user
    RoomManager: room registry with targeted send and broadcast

Examples:
    >>> manager = RoomManager()
    >>> manager.join_room("room-1", "doctor-1", websocket, role="doctor")
    >>> manager.get_room_count("room-1")
    1

See Also:
    routes/signaling.py: WebSocket relay endpoint
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import WebSocket

from . import messages

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    """A user connected to a call room.

    Attributes:
        user_id (str): id given by the client in the ``userId`` query parameter
        websocket (WebSocket): the user's relay connection
        role (Optional[str]): "doctor" or "patient" when the client sent one
        joined_at (datetime): connect time (UTC)
    """
    user_id: str
    websocket: WebSocket
    role: Optional[str] = None
    joined_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RoomManager:
    """Registry of call rooms and their participants.

    Attributes:
        rooms (Dict[str, Dict[str, Participant]]): room id -> {user id: Participant}

    Thread Safety:
        - only touched from the asyncio event loop
    """

    def __init__(self):
        # room_id -> {user_id: Participant}
        self.rooms: Dict[str, Dict[str, Participant]] = {}

    def join_room(self, room_id: str, user_id: str, websocket: WebSocket, role: Optional[str] = None) -> Participant:
        """Add a user to a room, creating the room if needed.

        A user joining again (reconnect) replaces the previous connection.

        Returns:
            Participant: the registered participant
        """
        if room_id not in self.rooms:
            self.rooms[room_id] = {}
            logger.info(f"[Signaling] room '{room_id}' created")

        participant = Participant(user_id=user_id, websocket=websocket, role=role)
        self.rooms[room_id][user_id] = participant

        logger.info(f"[Signaling] user '{user_id}' joined room '{room_id}'. "
                    f"Room has {len(self.rooms[room_id])} participants")
        return participant

    def leave_room(self, room_id: str, user_id: str, websocket: Optional[WebSocket] = None) -> bool:
        """Remove a user from a room; delete the room when it becomes empty.

        Args:
            room_id: room to leave
            user_id: leaving user
            websocket: when given, only remove the user if this is still the
                registered connection (a reconnect may have replaced it)

        Returns:
            bool: True when a participant was removed
        """
        participants = self.rooms.get(room_id)
        if not participants or user_id not in participants:
            return False
        if websocket is not None and participants[user_id].websocket is not websocket:
            return False

        del participants[user_id]
        if not participants:
            del self.rooms[room_id]
            logger.info(f"[Signaling] room '{room_id}' deleted (empty)")
        else:
            logger.info(f"[Signaling] user '{user_id}' left room '{room_id}'. "
                        f"Room has {len(participants)} participants")
        return True

    def get_participant(self, room_id: str, user_id: str) -> Optional[Participant]:
        return self.rooms.get(room_id, {}).get(user_id)

    def get_room_participants(self, room_id: str) -> List[Participant]:
        return list(self.rooms.get(room_id, {}).values())

    def get_other_participants(self, room_id: str, exclude_user_id: str) -> List[Participant]:
        """Everyone in the room except one user (broadcast targets)."""
        return [p for p in self.rooms.get(room_id, {}).values() if p.user_id != exclude_user_id]

    def get_room_count(self, room_id: str) -> int:
        return len(self.rooms.get(room_id, {}))

    def get_room_list(self) -> List[dict]:
        """All active rooms for monitoring.

        Returns:
            List[dict]: ``room_id``, ``participant_count`` and ``participants``
            (``user_id``, ``role``, ``joined_at``) per room
        """
        return [
            {
                "room_id": room_id,
                "participant_count": len(participants),
                "participants": [
                    {"user_id": p.user_id, "role": p.role, "joined_at": p.joined_at.isoformat()}
                    for p in participants.values()
                ]
            }
            for room_id, participants in self.rooms.items()
        ]

    async def send_to(self, room_id: str, user_id: str, message: dict) -> bool:
        """Send a message to one participant.

        Returns:
            bool: False when the user is not in the room or the send failed
        """
        participant = self.get_participant(room_id, user_id)
        if participant is None:
            logger.info(f"[Signaling] target '{user_id}' not in room '{room_id}', dropping '{message.get('type')}'")
            return False
        try:
            await participant.websocket.send_json(message)
            return True
        except Exception as e:
            logger.error(f"[Signaling] send to '{user_id}' failed: {e}")
            return False

    async def broadcast_to_room(self, room_id: str, message: dict, exclude: Optional[List[str]] = None) -> int:
        """Send a message to every participant of a room.

        Participants whose connection fails are removed from the room and
        announced to the others with ``user-disconnected``.

        Args:
            room_id: target room
            message: JSON serializable message
            exclude: user ids that should not receive the message

        Returns:
            int: number of participants the message was delivered to
        """
        exclude = exclude or []
        delivered = 0
        disconnected = []

        for participant in self.get_room_participants(room_id):
            if participant.user_id in exclude:
                continue
            try:
                await participant.websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.error(f"[Signaling] broadcast to '{participant.user_id}' failed: {e}")
                disconnected.append(participant)

        for participant in disconnected:
            if self.leave_room(room_id, participant.user_id, participant.websocket):
                await self.broadcast_to_room(
                    room_id,
                    messages.presence_message(messages.USER_DISCONNECTED, participant.user_id),
                    exclude=[participant.user_id]
                )

        return delivered
