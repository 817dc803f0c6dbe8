"""FastAPI application factory for reqloom.

Creates and configures the FastAPI app with CORS, sessions, the domain
error handler and all route modules registered.
"""

import logging
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from reqloom import __version__
from reqloom.core.exceptions import ReqloomError

logger = logging.getLogger(__name__)


def create_app(
    db_manager,
    engine,
    session_secret: str = "reqloom-dev-secret-change-me",
    signing_keys: Optional[List[str]] = None,
    cors_origins: Optional[List[str]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_manager: DatabaseManager instance
        engine: AnalysisEngine instance
        session_secret: Secret for the session cookie
        signing_keys: Current and next delivery signing keys
        cors_origins: Allowed browser origins

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="reqloom API",
        description="Requirements analysis lifecycle orchestrator",
        version=__version__,
    )

    # Session middleware (required for auth sessions)
    app.add_middleware(SessionMiddleware, secret_key=session_secret)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or [
            "http://localhost:3000",
            "http://localhost:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store shared dependencies on app state
    app.state.db_manager = db_manager
    app.state.engine = engine
    app.state.signing_keys = list(signing_keys or [])

    @app.exception_handler(ReqloomError)
    async def reqloom_error_handler(request: Request, exc: ReqloomError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Register routers
    from .routes.analyses import router as analyses_router
    from .routes.auth import router as auth_router
    from .routes.projects import router as projects_router
    from .routes.worker import router as worker_router

    app.include_router(auth_router, prefix="/api")
    app.include_router(analyses_router, prefix="/api")
    app.include_router(projects_router, prefix="/api")
    app.include_router(worker_router, prefix="/api")

    @app.get("/api/health")
    async def health_check():
        return {"status": "ok", "service": "reqloom"}

    @app.get("/api/metrics")
    async def metrics():
        return engine.get_metrics() if engine is not None else {}

    logger.info("FastAPI app created with all routes registered")
    return app
