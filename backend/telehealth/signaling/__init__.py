"""Signaling relay module.

Classes:
    RoomManager: call room registry
    Participant: connected user
"""

from .room_manager import RoomManager, Participant
from . import messages

__all__ = [
    "RoomManager",
    "Participant",
    "messages",
]
