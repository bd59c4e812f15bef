"""Telehealth backend package.

This package contains the core modules of the clinic telehealth call system.

Modules:
    webrtc: call-side WebRTC logic (media, negotiation, quality, VideoCall)
    signaling: signaling relay room registry and message builders
    consultation: online consultation lifecycle and AI summaries
    database: PostgreSQL / Redis access
    shared: DTOs shared across modules
"""

from .database import (
    DatabaseManager,
    get_db_manager,
    RedisManager,
    get_redis_manager,
    DatabaseLogHandler,
)
from .signaling import RoomManager, Participant
from .shared import ConsultationSummary

__all__ = [
    "DatabaseManager",
    "get_db_manager",
    "RedisManager",
    "get_redis_manager",
    "DatabaseLogHandler",
    "RoomManager",
    "Participant",
    "ConsultationSummary",
]
