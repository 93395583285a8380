from functools import lru_cache
from typing import Optional

from app.llm.base import ModelProvider, StructuredGeneration, TextGeneration, Usage


@lru_cache(maxsize=None)
def _provider(name: str) -> ModelProvider:
    if name == "gemini":
        from app.llm.gemini import GeminiProvider
        return GeminiProvider()
    from app.llm.openai import OpenAIProvider
    return OpenAIProvider()


def get_provider(model: str) -> ModelProvider:
    """Route a model id to its provider (``gemini-*`` -> Gemini, else OpenAI)."""
    if model.lower().startswith("gemini"):
        return _provider("gemini")
    return _provider("openai")


def get_model_provider() -> Optional[ModelProvider]:
    """
    FastAPI dependency for the provider used by run endpoints.

    None lets each ai node route to its own model's provider.
    """
    return None


__all__ = [
    "ModelProvider",
    "StructuredGeneration",
    "TextGeneration",
    "Usage",
    "get_model_provider",
    "get_provider",
]
