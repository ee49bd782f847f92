from __future__ import annotations

import heapq
import json
import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docqa.index.types import Chunk, ChunkPayload
from docqa.repos.chunk_repo import ChunkRepo


class VectorStore(ABC):
    """Named collections of chunks searchable by vector similarity."""

    @abstractmethod
    async def add_chunks(
        self,
        items: Sequence[ChunkPayload],
        embeddings: Sequence[Sequence[float]],
        *,
        embed_provider: str,
        embed_model: str,
    ) -> int:
        """Store chunks with their vectors; returns rows written."""

    @abstractmethod
    async def search(
        self, *, collection: str, query_embedding: Sequence[float], limit: int
    ) -> list[Chunk]:
        """Up to ``limit`` chunks, most similar first."""

    @abstractmethod
    async def count(self, *, collection: str) -> int: ...

    @abstractmethod
    async def sample(self, *, collection: str, limit: int) -> list[dict]:
        """Inspection rows ``{id, source, chunk_seq, text}``."""

    @abstractmethod
    async def drop_collection(self, *, collection: str) -> int:
        """Remove a collection; returns chunks removed."""


class SQLiteVectorStore(VectorStore):
    """Vectors kept as JSON rows in SQLite, scored in Python.

    Every search reads the whole collection, which is fine for a local
    document folder but not for large corpora.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def add_chunks(
        self,
        items: Sequence[ChunkPayload],
        embeddings: Sequence[Sequence[float]],
        *,
        embed_provider: str,
        embed_model: str,
    ) -> int:
        if len(items) != len(embeddings):
            raise ValueError("Chunk and embedding counts differ")
        async with self._sessionmaker() as db, db.begin():
            repo = ChunkRepo(db)
            for item, embedding in zip(items, embeddings):
                vector = [float(value) for value in embedding]
                await repo.save(
                    item,
                    vector_json=json.dumps(vector, separators=(",", ":")),
                    vector_norm=_norm(vector) or 1.0,
                    dim=len(vector),
                    provider=embed_provider,
                    model_name=embed_model,
                )
        return len(items)

    async def search(
        self, *, collection: str, query_embedding: Sequence[float], limit: int
    ) -> list[Chunk]:
        query = [float(value) for value in query_embedding]
        query_norm = _norm(query)
        if limit <= 0 or query_norm == 0:
            return []

        async with self._sessionmaker() as db:
            rows = await ChunkRepo(db).vectors(collection)

        # Ties keep index order.
        candidates = []
        for position, (chunk, embedding) in enumerate(rows):
            vector = _decode_vector(embedding.vector_json, len(query))
            if vector is None:
                continue
            score = _dot(query, vector) / (query_norm * (embedding.vector_norm or 1.0))
            candidates.append((score, -position, chunk))

        best = heapq.nlargest(limit, candidates, key=lambda row: (row[0], row[1]))
        return [
            Chunk(text=chunk.content, source_id=chunk.source_id, score=score)
            for score, _, chunk in best
        ]

    async def count(self, *, collection: str) -> int:
        async with self._sessionmaker() as db:
            return await ChunkRepo(db).count(collection)

    async def sample(self, *, collection: str, limit: int) -> list[dict]:
        async with self._sessionmaker() as db:
            chunks = await ChunkRepo(db).head(collection, limit)
        return [
            {"id": c.id, "source": c.source_id, "chunk_seq": c.chunk_seq, "text": c.content}
            for c in chunks
        ]

    async def drop_collection(self, *, collection: str) -> int:
        async with self._sessionmaker() as db, db.begin():
            return await ChunkRepo(db).drop(collection)


def _norm(vector: Sequence[float]) -> float:
    return math.sqrt(_dot(vector, vector))


def _dot(left: Sequence[float], right: Sequence[float]) -> float:
    return math.fsum(a * b for a, b in zip(left, right))


def _decode_vector(raw: str, dimension: int) -> Optional[list[float]]:
    """Parse a stored vector; rows of another dimension are skipped."""

    try:
        values: Any = json.loads(raw)
        if not isinstance(values, list) or len(values) != dimension:
            return None
        return [float(value) for value in values]
    except (ValueError, TypeError):
        return None
