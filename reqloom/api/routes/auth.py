"""Session authentication routes.

Exchanges an API key for a session cookie, so browser clients do not
have to send the key on every request.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from ..deps import get_current_user, get_db_manager, lookup_api_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    api_key: str


@router.post("/login")
async def login(data: LoginRequest, request: Request, db_manager=Depends(get_db_manager)):
    """Authenticate with an API key and start a session."""
    user = lookup_api_key(db_manager, data.api_key)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid API key")

    request.session["user_id"] = user["user_id"]
    request.session["username"] = user["username"]
    logger.info(f"User {user['username']} logged in")
    return {"success": True, "user": user}


@router.post("/logout")
async def logout(request: Request):
    """Logout current user."""
    request.session.clear()
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me")
async def me(user: dict = Depends(get_current_user)):
    return {"success": True, "user": user}
