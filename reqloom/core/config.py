"""Configuration loading for reqloom.

Settings are resolved in priority order: environment variables, then
``config/reqloom.yaml`` (optional), then built-in defaults from
``reqloom.core.constants``.

Usage:
    from reqloom.core.config import get_settings, get_config_value

    settings = get_settings()
    timeout = settings.inference.timeout_seconds
    window = get_config_value("reqloom", "chat", "history_window", default=20)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from . import constants

load_dotenv()

logger = logging.getLogger(__name__)

_CONFIG_FILE = "reqloom.yaml"
_unified_config: Optional[dict] = None
_settings: Optional["Settings"] = None


def get_config_path() -> Path:
    """Directory holding YAML config (``REQLOOM_CONFIG_DIR`` or ./config)."""
    override = os.getenv("REQLOOM_CONFIG_DIR")
    if override:
        return Path(override)
    return Path(__file__).parent.parent.parent / "config"


def load_unified_config() -> dict:
    """Load and cache ``config/reqloom.yaml``. Missing file yields ``{}``."""
    global _unified_config
    if _unified_config is not None:
        return _unified_config

    config_file = get_config_path() / _CONFIG_FILE
    if not config_file.exists():
        logger.debug(f"{config_file} not found, using defaults")
        _unified_config = {}
        return _unified_config

    try:
        with open(config_file, "r") as f:
            _unified_config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading {config_file}: {e}")
        _unified_config = {}
    return _unified_config


def reload_configs() -> None:
    """Drop cached YAML and settings so the next access re-reads them."""
    global _unified_config, _settings
    _unified_config = None
    _settings = None
    logger.info("Configuration caches cleared")


def get_config_value(*keys: str, default: Any = None) -> Any:
    """Walk nested YAML keys, returning ``default`` on any missing level."""
    node: Any = load_unified_config()
    for key in keys:
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return node if node is not None else default


def _env_or(name: str, *keys: str, default: Any = None) -> Any:
    value = os.getenv(name)
    if value not in (None, ""):
        return value
    return get_config_value("reqloom", *keys, default=default)


def get_embedding_dim() -> int:
    """Vector width shared by the embedding model and the pgvector column.

    ``REQLOOM_EMBED_DIM`` wins over ``embedding.dim`` in the YAML file.
    """
    return int(_env_or("REQLOOM_EMBED_DIM", "embedding", "dim", default=constants.EMBED_DIM))


# =============================================================================
# Settings tree
# =============================================================================

@dataclass
class DatabaseSettings:
    url: str = "sqlite:///reqloom.db"
    echo: bool = False


@dataclass
class InferenceSettings:
    provider: str = "openai"           # openai | gemini | ollama
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    timeout_seconds: float = constants.INFERENCE_TIMEOUT_SECONDS
    ollama_base_url: str = "http://localhost:11434"


@dataclass
class EmbeddingSettings:
    provider: str = "openai"           # openai | ollama
    model: str = "text-embedding-3-small"
    dim: int = constants.EMBED_DIM
    timeout_seconds: float = constants.EMBEDDING_TIMEOUT_SECONDS


@dataclass
class QueueSettings:
    backend: str = "local"             # local | qstash
    qstash_url: str = "https://qstash.upstash.io"
    qstash_token: Optional[str] = None
    current_signing_key: Optional[str] = None
    next_signing_key: Optional[str] = None
    worker_url: str = "http://localhost:9010/api/worker/process"
    max_attempts: int = constants.DELIVERY_MAX_ATTEMPTS
    backoff_base_seconds: float = constants.DELIVERY_BACKOFF_BASE_SECONDS
    max_concurrent: int = 2


@dataclass
class LimitSettings:
    max_input_chars: int = constants.MAX_INPUT_CHARS
    chat_history_window: int = constants.CHAT_HISTORY_WINDOW
    soft_version_cap: int = constants.SOFT_VERSION_CAP
    enforce_soft_cap: bool = False


@dataclass
class Settings:
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    inference: InferenceSettings = field(default_factory=InferenceSettings)
    embedding: EmbeddingSettings = field(default_factory=EmbeddingSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    limits: LimitSettings = field(default_factory=LimitSettings)
    session_secret: str = "reqloom-dev-secret-change-me"


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def build_settings() -> Settings:
    """Build a fresh Settings tree from env, YAML and defaults."""
    d = Settings()

    database = DatabaseSettings(
        url=_env_or("DATABASE_URL", "database", "url", default=d.database.url),
        echo=_as_bool(get_config_value("reqloom", "database", "echo", default=False)),
    )
    inference = InferenceSettings(
        provider=_env_or("REQLOOM_LLM_PROVIDER", "inference", "provider",
                         default=d.inference.provider),
        model=_env_or("REQLOOM_LLM_MODEL", "inference", "model", default=d.inference.model),
        temperature=float(get_config_value(
            "reqloom", "inference", "temperature", default=d.inference.temperature,
        )),
        timeout_seconds=float(get_config_value(
            "reqloom", "inference", "timeout_seconds", default=d.inference.timeout_seconds,
        )),
        ollama_base_url=_env_or("OLLAMA_BASE_URL", "inference", "ollama_base_url",
                                default=d.inference.ollama_base_url),
    )
    embedding = EmbeddingSettings(
        provider=_env_or("REQLOOM_EMBED_PROVIDER", "embedding", "provider",
                         default=d.embedding.provider),
        model=_env_or("REQLOOM_EMBED_MODEL", "embedding", "model", default=d.embedding.model),
        dim=get_embedding_dim(),
        timeout_seconds=float(get_config_value(
            "reqloom", "embedding", "timeout_seconds", default=d.embedding.timeout_seconds,
        )),
    )
    queue = QueueSettings(
        backend=_env_or("REQLOOM_QUEUE_BACKEND", "queue", "backend", default=d.queue.backend),
        qstash_url=_env_or("QSTASH_URL", "queue", "qstash_url", default=d.queue.qstash_url),
        qstash_token=_env_or("QSTASH_TOKEN", "queue", "qstash_token"),
        current_signing_key=_env_or("QSTASH_CURRENT_SIGNING_KEY", "queue", "current_signing_key"),
        next_signing_key=_env_or("QSTASH_NEXT_SIGNING_KEY", "queue", "next_signing_key"),
        worker_url=_env_or("REQLOOM_WORKER_URL", "queue", "worker_url", default=d.queue.worker_url),
        max_attempts=int(get_config_value(
            "reqloom", "queue", "max_attempts", default=d.queue.max_attempts,
        )),
        backoff_base_seconds=float(get_config_value(
            "reqloom", "queue", "backoff_base_seconds", default=d.queue.backoff_base_seconds,
        )),
        max_concurrent=int(get_config_value(
            "reqloom", "queue", "max_concurrent", default=d.queue.max_concurrent,
        )),
    )
    limits = LimitSettings(
        max_input_chars=int(get_config_value(
            "reqloom", "limits", "max_input_chars", default=d.limits.max_input_chars,
        )),
        chat_history_window=int(get_config_value(
            "reqloom", "chat", "history_window", default=d.limits.chat_history_window,
        )),
        soft_version_cap=int(get_config_value(
            "reqloom", "versions", "soft_cap", default=d.limits.soft_version_cap,
        )),
        enforce_soft_cap=_as_bool(get_config_value(
            "reqloom", "versions", "enforce_soft_cap", default=d.limits.enforce_soft_cap,
        )),
    )

    return Settings(
        database=database,
        inference=inference,
        embedding=embedding,
        queue=queue,
        limits=limits,
        session_secret=_env_or("REQLOOM_SESSION_SECRET", "session_secret",
                               default=d.session_secret),
    )


def get_settings() -> Settings:
    """Return the process-wide Settings, building them on first use."""
    global _settings
    if _settings is None:
        _settings = build_settings()
    return _settings
