"""WebRTC signaling relay WebSocket router.

Relays perfect-negotiation signaling between the two participants of a call
room. The relay never inspects SDP or candidates; it only routes messages.

Connection:
    /ws/signaling?roomId=<room>&userId=<user>[&role=doctor|patient][&token=<password>]

Message handling:
    - offer / answer / ice-candidate: forwarded to ``targetId`` with ``senderId``
    - chat-message: broadcast to the room and stored for the consultation
    - screen-share-start / screen-share-stop: broadcast to the room
    - connection-quality: logged and cached in Redis
    - connect / disconnect: user-connected / user-disconnected broadcast
"""

import json
import logging
from typing import Optional, TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query

from telehealth.database import cache_quality
from telehealth.signaling import messages
from .deps import verify_ws_token

if TYPE_CHECKING:
    from telehealth.consultation import ConsultationService
    from telehealth.signaling import RoomManager

logger = logging.getLogger(__name__)

router = APIRouter()

# set by app.py
_room_manager: Optional["RoomManager"] = None
_consultation_service: Optional["ConsultationService"] = None


def init_managers(room_manager: "RoomManager", consultation_service: Optional["ConsultationService"] = None):
    """Register the shared room registry and consultation service.

    Args:
        room_manager: RoomManager instance
        consultation_service: used to store chat messages; optional
    """
    global _room_manager, _consultation_service
    _room_manager = room_manager
    _consultation_service = consultation_service
    logger.info("[Signaling] relay managers initialized")


@router.websocket("/ws/signaling")
async def signaling_endpoint(
    websocket: WebSocket,
    roomId: Optional[str] = Query(None),
    userId: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    token: Optional[str] = Query(None),
):
    """Signaling relay endpoint for one call participant.

    Args:
        websocket: FastAPI WebSocket connection
        roomId: call room id
        userId: participant id
        role: "doctor" or "patient" (optional, used for chat storage)
        token: access token (query parameter)

    Close codes:
        1008: roomId or userId missing
        1011: relay not initialized
        4001: invalid token
    """
    if _room_manager is None:
        logger.error("[Signaling] relay not initialized")
        await websocket.close(code=1011, reason="Server not ready")
        return

    if not roomId or not userId:
        await websocket.close(code=1008, reason="Missing roomId or userId")
        return

    if not verify_ws_token(token):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    await websocket.accept()
    logger.info(f"[Signaling] user {userId} connecting to room {roomId}")

    _room_manager.join_room(roomId, userId, websocket, role=role)
    await _room_manager.broadcast_to_room(
        roomId,
        messages.presence_message(messages.USER_CONNECTED, userId),
        exclude=[userId]
    )

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                logger.warning(f"[Signaling] invalid JSON from {userId}: {raw[:100]}")
                continue
            if not isinstance(data, dict):
                logger.warning(f"[Signaling] non-object message from {userId}")
                continue

            try:
                await _handle_message(roomId, userId, role, data)
            except Exception as e:
                logger.error(f"[Signaling] error processing '{data.get('type')}' from {userId}: {e}", exc_info=True)

    except WebSocketDisconnect:
        logger.info(f"[Signaling] user {userId} disconnected from room {roomId}")
    except Exception as e:
        logger.error(f"[Signaling] WebSocket error for user {userId}: {e}")
    finally:
        if _room_manager.leave_room(roomId, userId, websocket):
            await _room_manager.broadcast_to_room(
                roomId,
                messages.presence_message(messages.USER_DISCONNECTED, userId),
                exclude=[userId]
            )
        logger.info(f"[Signaling] user {userId} cleanup done")


async def _handle_message(room_id: str, user_id: str, role: Optional[str], data: dict):
    """Route one client message."""
    message_type = data.get("type")
    logger.debug(f"[Signaling] message from {user_id}: {message_type}")

    if message_type in messages.FORWARDED_TYPES:
        target_id = data.get("targetId")
        if not target_id:
            logger.warning(f"[Signaling] '{message_type}' from {user_id} without targetId")
            return
        await _room_manager.send_to(room_id, target_id, messages.forwarded_message(data, user_id))

    elif message_type == messages.CHAT_MESSAGE:
        text = data.get("message")
        await _room_manager.broadcast_to_room(
            room_id,
            messages.chat_message(user_id, text),
            exclude=[user_id]
        )
        await _store_chat(room_id, user_id, text, role)

    elif message_type in messages.SCREEN_SHARE_TYPES:
        await _room_manager.broadcast_to_room(
            room_id,
            messages.presence_message(message_type, user_id),
            exclude=[user_id]
        )

    elif message_type == messages.CONNECTION_QUALITY:
        quality = data.get("quality")
        logger.info(f"[Signaling] connection quality from {user_id}: {quality}")
        await _cache_quality(room_id, user_id, quality)

    else:
        logger.warning(f"[Signaling] unknown message type: {message_type}")


async def _store_chat(room_id: str, user_id: str, text: Optional[str], role: Optional[str]):
    if _consultation_service is None or not isinstance(text, str):
        return
    try:
        await _consultation_service.record_chat(room_id, user_id, text, role=role)
    except Exception as e:
        logger.error(f"[Signaling] chat storage failed for room {room_id}: {e}")


async def _cache_quality(room_id: str, user_id: str, quality: Optional[str]):
    if not isinstance(quality, str):
        return
    await cache_quality(room_id, user_id, quality, timestamp=messages.utc_timestamp())
