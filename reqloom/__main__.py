import argparse
import logging
import sys

from .core.config import get_settings
from .core.constants import (
    DEFAULT_API_KEY, DEFAULT_EMAIL, DEFAULT_USER_ID, DEFAULT_USERNAME, INFERENCE_SYNC_WORKERS,
)
from .core.db import DatabaseManager, User, wait_for_db


def setup_logging(log_level: str = "INFO") -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.engine.Engine").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.orm").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("psycopg2").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def _ensure_default_user(db_manager: DatabaseManager) -> None:
    """Create the default admin user (fixed API key) if missing."""
    import uuid

    with db_manager.get_session() as session:
        user_id = uuid.UUID(DEFAULT_USER_ID)
        if session.get(User, user_id) is None:
            session.add(User(
                user_id=user_id,
                username=DEFAULT_USERNAME,
                email=DEFAULT_EMAIL,
                api_key=DEFAULT_API_KEY,
            ))
            logger.info(f"Created default user '{DEFAULT_USERNAME}'")


def _build_inference(settings):
    from .core.gateway import InferenceGateway, LLMGateway
    from .core.model import build_llm

    try:
        llm = LLMGateway(build_llm(settings.inference))
    except Exception as e:
        logger.error(f"Could not initialize LLM provider '{settings.inference.provider}': {e}")
        return None
    # One thread per concurrent job plus headroom for synchronous calls
    return InferenceGateway(
        llm,
        timeout_seconds=settings.inference.timeout_seconds,
        max_workers=settings.queue.max_concurrent + INFERENCE_SYNC_WORKERS,
    )


def _build_embedder(settings):
    from .core.embedding import EmbeddingService
    from .core.model import build_embed_model

    try:
        model = build_embed_model(settings.embedding, settings.inference.ollama_base_url)
    except Exception as e:
        logger.warning(f"Embedding provider unavailable, reuse and signatures disabled: {e}")
        return None
    return EmbeddingService(model, timeout_seconds=settings.embedding.timeout_seconds)


def _build_queue(settings, engine):
    from .core.queue import LocalDeliveryQueue, QStashQueue

    q = settings.queue
    if q.backend == "qstash":
        if not q.qstash_token or not q.current_signing_key:
            raise SystemExit("QStash backend needs QSTASH_TOKEN and QSTASH_CURRENT_SIGNING_KEY")
        logger.info(f"Publishing jobs through QStash to {q.worker_url}")
        return QStashQueue(
            base_url=q.qstash_url,
            token=q.qstash_token,
            callback_url=q.worker_url,
            signing_key=q.current_signing_key,
            max_attempts=q.max_attempts,
        )

    queue = LocalDeliveryQueue(
        engine.process,
        max_attempts=q.max_attempts,
        backoff_base_seconds=q.backoff_base_seconds,
        max_concurrent=q.max_concurrent,
    )
    queue.start()
    logger.info("In-process delivery queue started")
    return queue


def main():
    """Main entry point for reqloom."""
    parser = argparse.ArgumentParser(description="reqloom - Requirements Analysis Orchestrator")
    parser.add_argument(
        "--port",
        type=int,
        default=9010,
        help="Port for the API server"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    parser.add_argument(
        "--queue",
        type=str,
        choices=["local", "qstash"],
        default=None,
        help="Delivery backend (overrides REQLOOM_QUEUE_BACKEND)"
    )
    args = parser.parse_args()

    setup_logging(args.log_level)
    settings = get_settings()
    if args.queue:
        settings.queue.backend = args.queue
    logger.info(
        f"Starting reqloom - llm={settings.inference.provider}/{settings.inference.model} "
        f"queue={settings.queue.backend}"
    )

    db_manager = DatabaseManager(settings.database.url, echo=settings.database.echo)
    if not wait_for_db(db_manager):
        raise SystemExit("Database not reachable")
    db_manager.init_db()
    _ensure_default_user(db_manager)

    from .core.analysis import AnalysisEngine
    engine = AnalysisEngine(
        db_manager,
        inference=_build_inference(settings),
        embedder=_build_embedder(settings),
        limits=settings.limits,
        inference_timeout=settings.inference.timeout_seconds,
    )
    queue = _build_queue(settings, engine)
    engine.set_queue(queue)

    from .api.app import create_app
    app = create_app(
        db_manager=db_manager,
        engine=engine,
        session_secret=settings.session_secret,
        signing_keys=[settings.queue.current_signing_key, settings.queue.next_signing_key],
    )

    import uvicorn

    logger.info(f"Starting FastAPI server on http://0.0.0.0:{args.port}")
    print(f"\n  reqloom is running at: http://localhost:{args.port}")
    print(f"  API docs at: http://localhost:{args.port}/docs\n")

    try:
        uvicorn.run(
            app,
            host="0.0.0.0",
            port=args.port,
            log_level=args.log_level.lower(),
        )
    finally:
        if hasattr(queue, "stop"):
            queue.stop()
        elif hasattr(queue, "close"):
            queue.close()
        engine.shutdown()
        db_manager.dispose()


if __name__ == "__main__":
    main()
