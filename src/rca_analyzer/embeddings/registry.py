"""
Embedding Provider Registry

Maps the `embedding_provider` setting to a concrete EmbeddingProvider. The
choice is made once at startup; callers hold the returned instance.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional

from ..config import Settings, settings as default_settings
from .embedder import EmbeddingProvider, GeminiEmbedder, OpenAIEmbedder


def _gemini(config: Settings) -> EmbeddingProvider:
    return GeminiEmbedder(
        api_key=config.gemini_api_key.get_secret_value(),
        model=config.gemini_embedding_model,
        batch_size=config.embedding_batch_size,
        timeout=config.embedding_timeout,
    )


def _openai(config: Settings) -> EmbeddingProvider:
    return OpenAIEmbedder(
        api_key=config.openai_api_key.get_secret_value(),
        model=config.openai_embedding_model,
        dimensions=config.embedding_dimension,
        batch_size=config.embedding_batch_size,
        timeout=config.embedding_timeout,
    )


_PROVIDERS: Dict[str, Callable[[Settings], EmbeddingProvider]] = {
    "gemini": _gemini,
    "openai": _openai,
}


def create_embedding_provider(config: Optional[Settings] = None) -> EmbeddingProvider:
    """
    Instantiate the provider named by configuration.

    Raises
    ------
    ValueError
        If the configured name is not registered.
    """
    config = config or default_settings
    factory = _PROVIDERS.get(config.embedding_provider.lower())
    if factory is None:
        raise ValueError(
            f"Unknown embedding provider '{config.embedding_provider}'. "
            f"Expected one of: {', '.join(available_providers())}."
        )
    return factory(config)


def available_providers() -> list[str]:
    return sorted(_PROVIDERS)
