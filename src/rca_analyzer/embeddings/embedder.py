"""
Embedding Providers

This module implements the embedding clients used by ingestion and search.
Every provider shares one contract:

- `embed(text)` returns a vector, or an empty list if generation failed
- `embed_batch(texts)` returns a list aligned with `texts`, holding an empty
  list at every position whose embedding failed

Failures never propagate to the caller; they are logged and surface as empty
vectors. Ingestion drops the affected chunks, search returns no results.

Providers are stateless and safe to reuse across requests.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..config import settings

logger = logging.getLogger("rca.embedder")


class EmbeddingError(RuntimeError):
    """Raised internally when an embedding response is unusable."""


class EmbeddingProvider(abc.ABC):
    """
    Interface for embedding generators.
    """

    def __init__(
        self,
        batch_size: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.batch_size = batch_size or settings.embedding_batch_size
        self.timeout = timeout or settings.embedding_timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> List[float]:
        """
        Embed a single text. Returns [] on failure.
        """
        vectors = await self.embed_batch([text])
        return vectors[0] if vectors else []

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed many texts, batching requests by `batch_size`.

        Returns
        -------
        List[List[float]]
            One entry per input text; failed entries are empty lists.
        """
        if not texts:
            return []

        if not self._is_configured():
            logger.warning(
                "%s has no API key configured; returning empty embeddings",
                type(self).__name__,
            )
            return [[] for _ in texts]

        results: List[List[float]] = []

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for start in range(0, len(texts), self.batch_size):
                batch = list(texts[start : start + self.batch_size])
                try:
                    vectors = await self._embed_request(client, batch)
                    if len(vectors) != len(batch):
                        raise EmbeddingError(
                            f"Expected {len(batch)} embeddings, got {len(vectors)}."
                        )
                except (httpx.HTTPError, EmbeddingError, ValueError) as exc:
                    logger.error(
                        "Embedding request failed (%s): batch start=%d, size=%d, error=%s",
                        type(exc).__name__,
                        start,
                        len(batch),
                        str(exc),
                    )
                    vectors = [[] for _ in batch]
                results.extend(vectors)

        return results

    # ------------------------------------------------------------------
    # Provider hooks
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def _is_configured(self) -> bool:
        """Return True when credentials are present."""

    @abc.abstractmethod
    async def _embed_request(
        self,
        client: httpx.AsyncClient,
        batch: List[str],
    ) -> List[List[float]]:
        """Issue one batch request and return its vectors in input order."""


# ---------------------------------------------------------------------
# Shared validation
# ---------------------------------------------------------------------

def _as_vector(values: Any, index: int) -> List[float]:
    if not isinstance(values, list) or not all(
        isinstance(x, (float, int)) for x in values
    ):
        raise EmbeddingError(
            f"Invalid embedding vector at index {index}: must be float list."
        )
    return [float(x) for x in values]


# ---------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------

class GeminiEmbedder(EmbeddingProvider):
    """
    Google Generative Language `batchEmbedContents` client.
    """

    BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key or settings.gemini_api_key.get_secret_value()
        self.model = model or settings.gemini_embedding_model

    def _is_configured(self) -> bool:
        return bool(self.api_key)

    async def _embed_request(
        self,
        client: httpx.AsyncClient,
        batch: List[str],
    ) -> List[List[float]]:
        payload = {
            "requests": [
                {
                    "model": f"models/{self.model}",
                    "content": {"parts": [{"text": text}]},
                    "taskType": "RETRIEVAL_DOCUMENT",
                }
                for text in batch
            ]
        }
        response = await client.post(
            f"{self.BASE_URL}/{self.model}:batchEmbedContents",
            params={"key": self.api_key},
            json=payload,
        )
        response.raise_for_status()
        return self._extract_embeddings(response.json())

    @staticmethod
    def _extract_embeddings(data: Dict[str, Any]) -> List[List[float]]:
        """
        Gemini returns:
            { "embeddings": [ {"values": [...]}, ... ] }
        """
        records = data.get("embeddings")
        if not isinstance(records, list):
            raise EmbeddingError("Embedding response missing 'embeddings' list.")

        embeddings: List[List[float]] = []
        for index, record in enumerate(records):
            if not isinstance(record, dict) or "values" not in record:
                raise EmbeddingError(f"Malformed embedding record at index {index}.")
            embeddings.append(_as_vector(record["values"], index))
        return embeddings


# ---------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------

class OpenAIEmbedder(EmbeddingProvider):
    """
    OpenAI (or compatible) embeddings API client.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1/embeddings",
        dimensions: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key or settings.openai_api_key.get_secret_value()
        self.model = model or settings.openai_embedding_model
        self.base_url = base_url
        self.dimensions = dimensions or settings.embedding_dimension

    def _is_configured(self) -> bool:
        return bool(self.api_key)

    async def _embed_request(
        self,
        client: httpx.AsyncClient,
        batch: List[str],
    ) -> List[List[float]]:
        payload = {
            "model": self.model,
            "input": batch,
            "dimensions": self.dimensions,
        }
        response = await client.post(
            self.base_url,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        response.raise_for_status()
        return self._extract_embeddings(response.json())

    @staticmethod
    def _extract_embeddings(data: Dict[str, Any]) -> List[List[float]]:
        """
        Parse and validate embedding output format.

        OpenAI returns:
            { "data": [ {"embedding": [...], "index": 0}, ... ] }

        Raises
        ------
        EmbeddingError
            If the API returns unexpected structure.
        """
        if "data" not in data:
            raise EmbeddingError("Embedding response missing 'data' field.")

        records = data["data"]
        if not isinstance(records, list):
            raise EmbeddingError("'data' field must be a list.")

        ordered = sorted(
            enumerate(records),
            key=lambda item: item[1].get("index", item[0]) if isinstance(item[1], dict) else item[0],
        )

        embeddings: List[List[float]] = []
        for index, record in ordered:
            if not isinstance(record, dict) or "embedding" not in record:
                raise EmbeddingError(
                    f"Malformed embedding record at index {index}: {record!r}"
                )
            embeddings.append(_as_vector(record["embedding"], index))

        return embeddings
