"""Scene Spawner request authentication.

Bearer JWT issued by the main auth service; the `sub` claim is the user id
that owns the credit balance.
"""

from fastapi import HTTPException, Header
from typing import Optional
from pydantic import BaseModel
import logging

from auth import decode_access_token

logger = logging.getLogger(__name__)


class SceneUser(BaseModel):
    user_id: str
    email: Optional[str] = None


async def get_current_scene_user(authorization: Optional[str] = Header(None)) -> SceneUser:
    """Dependency to get the calling user from the bearer token."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization format")

    payload = decode_access_token(authorization[7:])
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return SceneUser(user_id=payload["sub"], email=payload.get("email"))
