"""Latest connection quality per call participant, cached in Redis.

Redis Schema:
    - call_quality:{room_id}:{user_id} - {"quality", "timestamp"} (JSON), 1 h TTL

Every function is a no-op (False / empty) when Redis is not connected.

Usage:
    >>> await cache_quality("room-1", "doctor-1", "poor")
    >>> await get_room_quality("room-1")
    {'doctor-1': {'quality': 'poor', 'timestamp': '2026-10-19T09:30:00.000Z'}}
"""

import json
import logging
from typing import Dict, Optional

from .redis_connection import get_redis_manager

logger = logging.getLogger(__name__)

QUALITY_PREFIX = "call_quality"
QUALITY_CACHE_TTL = 3600


def quality_key(room_id: str, user_id: str) -> str:
    return f"{QUALITY_PREFIX}:{room_id}:{user_id}"


async def cache_quality(room_id: str, user_id: str, quality: str, timestamp: Optional[str] = None) -> bool:
    """Store a participant's latest quality report.

    Returns:
        bool: True when Redis accepted the write
    """
    redis_mgr = get_redis_manager()
    if not redis_mgr.is_initialized or not quality:
        return False
    try:
        await redis_mgr.client.set(
            quality_key(room_id, user_id),
            json.dumps({"quality": quality, "timestamp": timestamp}),
            ex=QUALITY_CACHE_TTL,
        )
        return True
    except Exception as e:
        logger.error(f"[Redis] quality cache write failed ({room_id}/{user_id}): {e}")
        return False


async def get_room_quality(room_id: str) -> Dict[str, dict]:
    """Cached quality reports of a room, keyed by user id."""
    redis_mgr = get_redis_manager()
    if not redis_mgr.is_initialized:
        return {}

    prefix = quality_key(room_id, "")
    try:
        keys = [key async for key in redis_mgr.client.scan_iter(match=f"{prefix}*")]
        if not keys:
            return {}
        values = await redis_mgr.client.mget(keys)
    except Exception as e:
        logger.error(f"[Redis] quality cache read failed ({room_id}): {e}")
        return {}

    reports = {}
    for key, value in zip(keys, values):
        if value is None:
            continue
        try:
            reports[key[len(prefix):]] = json.loads(value)
        except ValueError:
            logger.warning(f"[Redis] unreadable quality entry: {key}")
    return reports
