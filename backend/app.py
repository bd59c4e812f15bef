"""FastAPI telehealth signaling and consultation server.

This module serves the backend of the clinic telehealth video call: the
WebRTC signaling relay used by both call participants and the online
consultation API around a call.

Main features:
    - room based signaling relay (offer/answer/ICE candidate forwarding)
    - participant presence, chat and screen-share notifications
    - online consultation lifecycle, clinical notes, AI summaries
    - ICE server configuration for call clients
    - CORS for the clinic web frontend

Architecture:
    - Peer-to-peer media: the server only relays signaling
    - RoomManager: call rooms and connected participants
    - ConsultationService: consultation records (PostgreSQL)
    - Redis: latest connection quality per participant
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from telehealth.database import (
    DatabaseLogHandler,
    SystemLogRepository,
    get_db_manager,
    get_redis_manager,
)
from telehealth.consultation import get_consultation_service
from telehealth.signaling import RoomManager
from telehealth.webrtc.config import connection_config, ice_config
from routes import (
    health_router, init_health_managers, consultation_router, auth_router,
    signaling_router, init_signaling_managers,
    verify_auth_header
)

load_dotenv(Path(__file__).parent / "config" / ".env")

LOG_DIR = os.getenv("LOG_DIR", "logs")
os.makedirs(LOG_DIR, exist_ok=True)
log_filename = os.path.join(LOG_DIR, f"server_{datetime.now().strftime('%Y%m%d')}.log")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ENV = os.getenv("ENV", "development")

# Log retention (days), applies to log files and system_logs rows
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "60"))


def cleanup_old_logs(log_dir: str = LOG_DIR, retention_days: int = LOG_RETENTION_DAYS) -> int:
    """Delete ``server_YYYYMMDD.log`` files older than the retention period.

    Args:
        log_dir: log directory
        retention_days: days to keep

    Returns:
        int: number of deleted files
    """
    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in Path(log_dir).glob("server_*.log"):
        try:
            file_date = datetime.strptime(log_file.stem.replace("server_", ""), "%Y%m%d")
            if file_date < cutoff_date:
                log_file.unlink()
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(log_filename, encoding="utf-8"),
    ]
)

logger = logging.getLogger(__name__)
logger.info(f"Logging initialized: level={LOG_LEVEL}, env={ENV}")

room_manager = RoomManager()
db_manager = get_db_manager()
redis_manager = get_redis_manager()
db_log_handler: Optional[DatabaseLogHandler] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle.

    Startup: prune old log files, connect PostgreSQL (and start DB logging),
    connect Redis. Both stores are optional; the relay runs without them.
    Shutdown: stop DB logging, close Redis and PostgreSQL.
    """
    global db_log_handler

    logger.info("Telehealth signaling server starting...")

    deleted_logs = cleanup_old_logs()
    if deleted_logs > 0:
        logger.info(f"Removed {deleted_logs} old log files (older than {LOG_RETENTION_DAYS} days)")

    db_initialized = await db_manager.initialize()
    if db_initialized:
        logger.info("Database connected")

        db_log_handler = DatabaseLogHandler(level=logging.INFO)
        logging.getLogger().addHandler(db_log_handler)
        await db_log_handler.start()
        logger.info("Database log handler started")

        await SystemLogRepository().cleanup_old_logs(LOG_RETENTION_DAYS)
    else:
        logger.warning("Database unavailable, running without persistence")

    redis_initialized = await redis_manager.initialize()
    if redis_initialized:
        logger.info("Redis connected")
    else:
        logger.warning("Redis unavailable, connection quality is not cached")

    yield

    logger.info("Server shutting down...")

    if db_log_handler:
        logging.getLogger().removeHandler(db_log_handler)
        await db_log_handler.stop()
        db_log_handler = None
        logger.info("Database log handler stopped")

    if redis_manager.is_initialized:
        await redis_manager.close()

    if db_manager.is_initialized:
        await db_manager.close()


app = FastAPI(title="Telehealth Signaling Server", lifespan=lifespan)

# Local networks and tunnels in development; CORS_ORIGINS adds fixed origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o for o in os.getenv("CORS_ORIGINS", "").split(",") if o],
    allow_origin_regex=r"^http://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}|172\.\d{1,3}\.\d{1,3}\.\d{1,3}):\d+$|^https://.*\.ngrok(-free)?\.(app|dev|io)$|^https://.*\.trycloudflare\.com$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(consultation_router)
app.include_router(auth_router)
app.include_router(signaling_router)

init_signaling_managers(room_manager, get_consultation_service())
init_health_managers(room_manager)


@app.get("/")
async def root():
    """Liveness check for monitoring and load balancers."""
    return {"status": "ok", "service": "Telehealth Signaling Server"}


@app.get("/api/rooms")
async def get_rooms_api(_: bool = Depends(verify_auth_header)):
    """Active call rooms and their participants.

    Returns:
        dict: {"rooms": [{"room_id", "participant_count", "participants"}, ...]}
    """
    return {"rooms": room_manager.get_room_list()}


@app.get("/api/ice-servers")
async def get_ice_servers(_: bool = Depends(verify_auth_header)):
    """ICE server configuration for call clients.

    TURN credentials stay in the backend environment and are handed out only
    to authenticated clients.

    Returns:
        dict: ``iceServers`` (custom STUN, public STUN fallbacks, TURN when
        fully configured) and ``iceCandidatePoolSize``

    Examples:
        {
            "iceServers": [
                {"urls": "stun:stun.l.google.com:19302"},
                {"urls": "stun:stun1.l.google.com:19302"},
                {"urls": "turn:turn.example.org:3478", "username": "u", "credential": "p"}
            ],
            "iceCandidatePoolSize": 4
        }
    """
    if not ice_config.has_turn_server:
        logger.warning("[ICE] TURN server not configured, clients get STUN only")
    return {
        "iceServers": ice_config.as_dicts(),
        "iceCandidatePoolSize": connection_config.ICE_CANDIDATE_POOL_SIZE,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")), log_level="info")
