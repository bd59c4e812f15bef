"""Database module.

Asynchronous PostgreSQL (asyncpg) and Redis (redis-py) access.

Main features:
    - PostgreSQL connection pool
    - Redis connection for call quality caching
    - online consultation, chat message, EMR note and e-prescription storage
    - system log storage
"""

from .connection import DatabaseManager, get_db_manager
from .redis_connection import RedisManager, get_redis_manager
from .quality_cache import QUALITY_CACHE_TTL, cache_quality, get_room_quality, quality_key
from .repository import (
    ConsultationRepository,
    ConsultationMessageRepository,
    EMRNoteRepository,
    PrescriptionRepository,
    SystemLogRepository,
)
from .log_handler import DatabaseLogHandler

__all__ = [
    "DatabaseManager",
    "get_db_manager",
    "RedisManager",
    "get_redis_manager",
    "QUALITY_CACHE_TTL",
    "cache_quality",
    "get_room_quality",
    "quality_key",
    "ConsultationRepository",
    "ConsultationMessageRepository",
    "EMRNoteRepository",
    "PrescriptionRepository",
    "SystemLogRepository",
    "DatabaseLogHandler",
]
