"""Health check API router.

Store connectivity plus what the call server is doing right now.
"""

from typing import Optional, TYPE_CHECKING

from fastapi import APIRouter, Depends

from telehealth.consultation import consultation_settings
from telehealth.database import get_db_manager, get_redis_manager, get_room_quality
from .deps import verify_auth_header

if TYPE_CHECKING:
    from telehealth.signaling import RoomManager

router = APIRouter(prefix="/api/health", tags=["health"])

# set by app.py
_room_manager: Optional["RoomManager"] = None


def init_managers(room_manager: "RoomManager"):
    global _room_manager
    _room_manager = room_manager


async def _store_status(manager) -> str:
    if not manager.is_initialized:
        return "not_initialized"
    return "ok" if await manager.ping() else "error"


def _call_counts() -> dict:
    rooms = _room_manager.get_room_list() if _room_manager else []
    return {
        "active_rooms": len(rooms),
        "participants": sum(room["participant_count"] for room in rooms),
    }


@router.get("")
async def health_check():
    """Overall status.

    Returns:
        dict: ``status`` ("ok" when PostgreSQL and Redis respond, "degraded"
        otherwise; the relay works either way), per store status, active call
        counts and whether AI summaries are configured
    """
    services = {
        "database": await _store_status(get_db_manager()),
        "redis": await _store_status(get_redis_manager()),
    }
    return {
        "status": "ok" if all(s == "ok" for s in services.values()) else "degraded",
        "services": services,
        "calls": _call_counts(),
        "summaries_enabled": consultation_settings.summary_enabled,
    }


@router.get("/calls")
async def call_health(_: bool = Depends(verify_auth_header)):
    """Active rooms with each participant's last reported connection quality.

    Participants that never reported (or whose report expired) get ``None``.
    """
    rooms = _room_manager.get_room_list() if _room_manager else []
    for room in rooms:
        reports = await get_room_quality(room["room_id"])
        for participant in room["participants"]:
            report = reports.get(participant["user_id"])
            participant["quality"] = report.get("quality") if report else None
    return {**_call_counts(), "rooms": rooms}
