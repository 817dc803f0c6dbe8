"""FastAPI dependencies for reqloom.

Provides shared dependencies (auth, database, engine) via FastAPI's
Depends() injection system.
"""

import logging
from typing import List, Optional

from fastapi import Depends, HTTPException, Request

from reqloom.core.db import User

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


async def get_db_manager(request: Request):
    """Get DatabaseManager from app state."""
    return request.app.state.db_manager


async def get_engine(request: Request):
    """Get AnalysisEngine from app state."""
    engine = request.app.state.engine
    if engine is None:
        raise HTTPException(status_code=503, detail="Analysis engine not available")
    return engine


async def get_signing_keys(request: Request) -> List[str]:
    """Current and next callback signing keys (empty entries dropped)."""
    return [k for k in (request.app.state.signing_keys or []) if k]


def lookup_api_key(db_manager, provided_key: str) -> Optional[dict]:
    """Resolve an API key to its user, or None."""
    if not provided_key:
        return None
    try:
        with db_manager.get_session() as db_session:
            user = db_session.query(User).filter(User.api_key == provided_key).first()
            if user:
                return {"user_id": str(user.user_id), "username": user.username}
    except Exception as e:
        logger.warning(f"Database API key lookup failed: {e}")
    return None


async def get_current_user(request: Request, db_manager=Depends(get_db_manager)) -> dict:
    """FastAPI dependency for authentication.

    Checks the session first, then the X-API-Key header. Returns a user
    dict or raises 401.
    """
    session = request.session
    user_id = session.get("user_id")
    if user_id:
        return {"user_id": user_id, "username": session.get("username")}

    user = lookup_api_key(db_manager, request.headers.get(API_KEY_HEADER, ""))
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user
