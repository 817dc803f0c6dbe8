from .model import build_embed_model, build_llm

__all__ = ["build_llm", "build_embed_model"]
