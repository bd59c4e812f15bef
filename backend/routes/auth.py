"""Authentication API router."""

from fastapi import APIRouter, HTTPException, Form

from . import deps

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/verify")
async def verify_password(password: str = Form("")):
    """Check the shared access password entered in the client.

    Returns:
        dict: {"success": bool, "message": str}

    Raises:
        HTTPException: 401 on a wrong password
    """
    if not deps.ACCESS_PASSWORD:
        return {"success": True, "message": "No password required"}
    if password == deps.ACCESS_PASSWORD:
        return {"success": True, "message": "Authenticated"}
    raise HTTPException(status_code=401, detail="Invalid password")
