"""LLM and embedding model factories.

Providers are selected from Settings and the resulting models are handed
to the caller. Nothing here touches ``llama_index.core.Settings``; the
application wires the instances into the gateway and embedding service
explicitly at start-up.
"""

import logging
import os
from typing import Optional

from ..config import EmbeddingSettings, InferenceSettings, get_settings

logger = logging.getLogger(__name__)

_SUPPORTED_LLM_PROVIDERS = ("openai", "gemini", "ollama")
_SUPPORTED_EMBED_PROVIDERS = ("openai", "ollama")


def build_llm(setting: Optional[InferenceSettings] = None):
    """Create a raw LlamaIndex LLM for the configured provider.

    Raises:
        ValueError: unknown provider name.
    """
    setting = setting or get_settings().inference
    provider = setting.provider.lower()

    if provider == "openai":
        from llama_index.llms.openai import OpenAI
        model = OpenAI(
            model=setting.model,
            temperature=setting.temperature,
            timeout=setting.timeout_seconds,
        )
    elif provider == "gemini":
        from llama_index.llms.gemini import Gemini
        # Gemini API requires model names to be prefixed with "models/"
        model_name = setting.model if setting.model.startswith("models/") else f"models/{setting.model}"
        model = Gemini(
            model=model_name,
            api_key=os.getenv("GOOGLE_API_KEY"),
            temperature=setting.temperature,
        )
    elif provider == "ollama":
        from llama_index.llms.ollama import Ollama
        model = Ollama(
            model=setting.model,
            base_url=setting.ollama_base_url,
            temperature=setting.temperature,
            request_timeout=setting.timeout_seconds,
            json_mode=True,
        )
    else:
        raise ValueError(
            f"Unknown LLM provider '{setting.provider}'. "
            f"Expected one of {_SUPPORTED_LLM_PROVIDERS}"
        )

    logger.info(f"Created {provider.upper()} LLM: {setting.model}")
    return model


def build_embed_model(setting: Optional[EmbeddingSettings] = None, ollama_base_url: Optional[str] = None):
    """Create a LlamaIndex embedding model for the configured provider."""
    setting = setting or get_settings().embedding
    provider = setting.provider.lower()

    if provider == "openai":
        from llama_index.embeddings.openai import OpenAIEmbedding
        model = OpenAIEmbedding(model=setting.model, dimensions=setting.dim)
    elif provider == "ollama":
        from llama_index.embeddings.ollama import OllamaEmbedding
        model = OllamaEmbedding(
            model_name=setting.model,
            base_url=ollama_base_url or get_settings().inference.ollama_base_url,
        )
    else:
        raise ValueError(
            f"Unknown embedding provider '{setting.provider}'. "
            f"Expected one of {_SUPPORTED_EMBED_PROVIDERS}"
        )

    logger.info(f"Created {provider.upper()} embedding model: {setting.model}")
    return model
