"""Embedding service used for similarity reuse and finalization.

Embedding is best-effort everywhere it is used: callers get ``None``
back (never an exception) when the provider fails or is slow.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, List, Optional

from .constants import EMBEDDING_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Wrap a LlamaIndex ``BaseEmbedding`` with a short timeout."""

    def __init__(self, embed_model: Any, timeout_seconds: float = EMBEDDING_TIMEOUT_SECONDS):
        self._model = embed_model
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="reqloom-embed")

    def embed(self, text: str) -> List[float]:
        """Embed ``text``. Raises on provider failure or timeout."""
        future = self._executor.submit(self._model.get_text_embedding, text)
        return [float(x) for x in future.result(timeout=self.timeout_seconds)]

    def try_embed(self, text: str) -> Optional[List[float]]:
        """Embed ``text`` or return None, logging the reason."""
        if not text or not text.strip():
            return None
        try:
            return self.embed(text)
        except FutureTimeout:
            logger.warning(f"Embedding timed out after {self.timeout_seconds}s")
        except Exception as e:
            logger.warning(f"Embedding failed: {e}")
        return None

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
