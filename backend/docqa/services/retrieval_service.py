from __future__ import annotations

import hashlib
import logging
from collections.abc import Sequence
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from docqa.index.embedder import Embedder, EmbeddingError
from docqa.index.types import Chunk, ChunkPayload, SourceDocument
from docqa.index.vector_store import VectorStore

logger = logging.getLogger(__name__)


class RetrievalError(RuntimeError):
    """Raised when the index cannot be searched or built."""


class RetrievalService:
    """Similarity search and provisioning for one index collection."""

    _EMBED_BATCH_SIZE = 32

    def __init__(
        self,
        *,
        embedder: Embedder,
        vector_store: VectorStore,
        collection: str,
        default_k: int = 4,
    ) -> None:
        self._embedder = embedder
        self._vector_store = vector_store
        self._collection = collection
        self._default_k = max(1, default_k)

    @property
    def collection(self) -> str:
        return self._collection

    async def search(self, query: str, k: Optional[int] = None) -> list[Chunk]:
        """Return up to ``k`` chunks most similar to ``query``, best first."""

        cleaned = query.strip()
        top_k = self._default_k if k is None else k
        if not cleaned or top_k <= 0:
            return []
        try:
            query_embedding = await self._embedder.embed_query(cleaned)
        except EmbeddingError as exc:
            raise RetrievalError(f"Query embedding failed: {exc}") from exc
        try:
            return await self._vector_store.search(
                collection=self._collection,
                query_embedding=query_embedding,
                limit=top_k,
            )
        except SQLAlchemyError as exc:
            raise RetrievalError("Vector index search failed") from exc

    async def count(self) -> int:
        return await self._vector_store.count(collection=self._collection)

    async def show(self, limit: int = 5) -> list[dict]:
        """Return a few stored rows for inspection."""

        return await self._vector_store.sample(collection=self._collection, limit=limit)

    async def index_documents(self, documents: Sequence[SourceDocument]) -> int:
        """Embed and store already-split documents; returns rows written."""

        payloads = self._build_payloads(documents)
        written = 0
        for start in range(0, len(payloads), self._EMBED_BATCH_SIZE):
            batch = payloads[start : start + self._EMBED_BATCH_SIZE]
            embeddings = await self._embedder.embed_texts([item.content for item in batch])
            if len(embeddings) != len(batch):
                raise RetrievalError("Embedding count does not match chunk count")
            written += await self._vector_store.add_chunks(
                batch,
                embeddings,
                embed_provider=self._embedder.provider,
                embed_model=self._embedder.model_name,
            )
        return written

    async def build_or_load(self, documents: Sequence[SourceDocument]) -> int:
        """Reuse a populated collection, otherwise build it from ``documents``."""

        existing = await self.count()
        if existing > 0:
            logger.info(
                "Index collection %s already holds %d chunks; reusing it",
                self._collection,
                existing,
            )
            return existing
        if not documents:
            raise RetrievalError(
                f"Index collection {self._collection!r} is empty and no documents were given."
            )

        logger.info("Building index collection %s from %d chunks", self._collection, len(documents))
        try:
            await self.index_documents(documents)
        except Exception:
            logger.exception("Index build failed; dropping partial collection %s", self._collection)
            await self._vector_store.drop_collection(collection=self._collection)
            raise
        return await self.count()

    async def rebuild(self, documents: Sequence[SourceDocument]) -> int:
        """Drop the collection and build it again."""

        removed = await self._vector_store.drop_collection(collection=self._collection)
        logger.info("Dropped %d chunks from index collection %s", removed, self._collection)
        return await self.build_or_load(documents)

    def _build_payloads(self, documents: Sequence[SourceDocument]) -> list[ChunkPayload]:
        payloads: list[ChunkPayload] = []
        for position, document in enumerate(documents):
            content = document.text.strip()
            if not content:
                continue
            seq = document.metadata.get("chunk_seq", position)
            payloads.append(
                ChunkPayload(
                    collection=self._collection,
                    source_id=document.source_id,
                    chunk_seq=int(seq) if isinstance(seq, int) else position,
                    content=content,
                    content_hash=hashlib.sha256(content.encode("utf-8")).hexdigest(),
                )
            )
        return payloads
