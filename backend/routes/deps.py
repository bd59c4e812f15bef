"""Shared router dependencies.

Access control with a single shared password (ACCESS_PASSWORD). When the
variable is empty every request is allowed.
"""

import os
from typing import Optional

from fastapi import Header, HTTPException

ACCESS_PASSWORD = os.getenv("ACCESS_PASSWORD", "")


async def verify_auth_header(authorization: Optional[str] = Header(None)) -> bool:
    """Validate an ``Authorization: Bearer <password>`` header.

    Raises:
        HTTPException: 401 when the header is missing, malformed or wrong
    """
    if not ACCESS_PASSWORD:
        return True
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization format")
    if parts[1] != ACCESS_PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid password")
    return True


def verify_ws_token(token: Optional[str]) -> bool:
    """Validate the ``token`` query parameter of a WebSocket connection."""
    if not ACCESS_PASSWORD:
        return True
    return token == ACCESS_PASSWORD
