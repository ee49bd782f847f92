from __future__ import annotations

import hashlib
import math
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Optional

import httpx

TOKEN_PATTERN = re.compile(r"[\w-]+|[^\w\s]")


class EmbeddingError(RuntimeError):
    """Raised when texts cannot be turned into vectors."""


class Embedder(ABC):
    """Turns text into fixed-length, L2-normalized vectors."""

    provider: str
    model_name: str

    @abstractmethod
    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one vector per input text, in input order."""

    async def embed_query(self, text: str) -> list[float]:
        vectors = await self.embed_texts([text])
        if not vectors:
            raise EmbeddingError("Embedding provider returned no vector for the query")
        return vectors[0]


class DeterministicEmbedder(Embedder):
    """Signed feature hashing over word and punctuation tokens.

    Needs no model or network, so the same text always maps to the same
    vector. Good enough for lexical overlap; used offline and in tests.
    """

    provider = "deterministic"

    def __init__(self, dimension: int, model_name: str = "deterministic-v1") -> None:
        if dimension <= 0:
            raise EmbeddingError("Embedding dimension must be > 0")
        self.dimension = int(dimension)
        self.model_name = model_name

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        return [self.vectorize(text) for text in texts]

    def vectorize(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        tokens = TOKEN_PATTERN.findall(text.lower())
        if not tokens:
            vector[0] = 1.0
            return vector
        for token in tokens:
            bucket, sign = self._feature(token)
            vector[bucket] += sign
        return normalize_vector(vector)

    def _feature(self, token: str) -> tuple[int, float]:
        digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
        value = int.from_bytes(digest, byteorder="big")
        return value % self.dimension, (1.0 if value >> 63 == 0 else -1.0)


class OllamaEmbedder(Embedder):
    """Vectors from an Ollama server's ``/api/embed`` endpoint.

    Inputs are sent in batches of ``batch_size``; every returned row must have
    the same length.
    """

    provider = "ollama"

    def __init__(
        self,
        *,
        base_url: str,
        model_name: str,
        timeout_sec: float = 60.0,
        batch_size: int = 64,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not base_url.strip():
            raise EmbeddingError("Ollama base URL is empty")
        self.model_name = model_name
        self._url = f"{base_url.rstrip('/')}/api/embed"
        self._timeout_sec = timeout_sec
        self._batch_size = max(1, batch_size)
        self._client = http_client

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            batch = list(texts[start : start + self._batch_size])
            vectors.extend(await self._embed_batch(batch))

        dimensions = {len(vector) for vector in vectors}
        if len(dimensions) > 1:
            raise EmbeddingError(f"Embedding dimension mismatch: {sorted(dimensions)}")
        return [normalize_vector(vector) for vector in vectors]

    async def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        body = {"model": self.model_name, "input": batch}
        try:
            response = await self._post(body)
            response.raise_for_status()
            data: Any = response.json()
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"Ollama embedding request failed: {exc}") from exc
        except ValueError as exc:
            raise EmbeddingError("Ollama embedding response is not JSON") from exc

        rows = data.get("embeddings") if isinstance(data, dict) else None
        if not isinstance(rows, list) or len(rows) != len(batch):
            raise EmbeddingError("Embedding response shape is invalid")
        return [_as_vector(row) for row in rows]

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self._url, json=body, timeout=self._timeout_sec)
        async with httpx.AsyncClient(timeout=self._timeout_sec) as client:
            return await client.post(self._url, json=body)


def _as_vector(row: Any) -> list[float]:
    if not isinstance(row, list) or not row:
        raise EmbeddingError("Embedding row is missing vector data")
    try:
        return [float(value) for value in row]
    except (TypeError, ValueError) as exc:
        raise EmbeddingError("Embedding contains non-numeric values") from exc


def normalize_vector(vector: list[float]) -> list[float]:
    norm = math.sqrt(sum(item * item for item in vector))
    if norm <= 0:
        return vector
    return [item / norm for item in vector]
