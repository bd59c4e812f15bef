"""Signaling message types and relay message builders.

Wire format: JSON objects with a ``type`` field and camelCase keys.
"""

from datetime import datetime, timezone

# client -> relay -> target peer
OFFER = "offer"
ANSWER = "answer"
ICE_CANDIDATE = "ice-candidate"
FORWARDED_TYPES = (OFFER, ANSWER, ICE_CANDIDATE)

# room broadcasts
USER_CONNECTED = "user-connected"
USER_DISCONNECTED = "user-disconnected"
CHAT_MESSAGE = "chat-message"
SCREEN_SHARE_START = "screen-share-start"
SCREEN_SHARE_STOP = "screen-share-stop"
SCREEN_SHARE_TYPES = (SCREEN_SHARE_START, SCREEN_SHARE_STOP)

# client -> relay only
CONNECTION_QUALITY = "connection-quality"


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string, e.g. ``2024-05-01T09:30:00.123Z``."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def presence_message(msg_type: str, user_id: str) -> dict:
    """``user-connected`` / ``user-disconnected`` / ``screen-share-*`` broadcast."""
    return {"type": msg_type, "userId": user_id, "timestamp": utc_timestamp()}


def chat_message(sender_id: str, message: str) -> dict:
    return {"type": CHAT_MESSAGE, "senderId": sender_id, "message": message, "timestamp": utc_timestamp()}


def forwarded_message(message: dict, sender_id: str) -> dict:
    """Targeted message as delivered: unchanged plus ``senderId``."""
    return {**message, "senderId": sender_id}
