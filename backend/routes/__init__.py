"""FastAPI routers.

API endpoints split out of app.py.
"""

from .health import router as health_router, init_managers as init_health_managers
from .consultation import router as consultation_router
from .auth import router as auth_router
from .signaling import router as signaling_router, init_managers as init_signaling_managers
from .deps import verify_auth_header, verify_ws_token

__all__ = [
    "health_router",
    "init_health_managers",
    "consultation_router",
    "auth_router",
    "signaling_router",
    "init_signaling_managers",
    "verify_auth_header",
    "verify_ws_token",
]
