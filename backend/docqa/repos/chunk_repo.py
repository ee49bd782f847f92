from __future__ import annotations

import uuid
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from docqa.db.models import ChunkEmbedding, IndexChunk
from docqa.index.types import ChunkPayload
from docqa.utils.time_utils import utc_now


class ChunkRepo:
    """Index rows of one session; callers own the transaction."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def save(
        self,
        item: ChunkPayload,
        *,
        vector_json: str,
        vector_norm: float,
        dim: int,
        provider: str,
        model_name: str,
    ) -> IndexChunk:
        """Write a chunk and its vector.

        A chunk with the same collection, source and content hash is updated
        in place together with its embedding row.
        """

        chunk = await self._find_chunk(item.collection, item.source_id, item.content_hash)
        if chunk is None:
            chunk = IndexChunk(
                id=uuid.uuid4().hex,
                collection=item.collection,
                source_id=item.source_id,
                content_hash=item.content_hash,
                created_at=utc_now(),
            )
            self._db.add(chunk)
        chunk.chunk_seq = item.chunk_seq
        chunk.content = item.content
        await self._db.flush()

        vector_fields: dict[str, Any] = {
            "provider": provider,
            "model_name": model_name,
            "dim": dim,
            "vector_json": vector_json,
            "vector_norm": vector_norm,
        }
        embedding = await self._find_embedding(chunk.id)
        if embedding is None:
            self._db.add(
                ChunkEmbedding(
                    id=uuid.uuid4().hex, chunk_id=chunk.id, created_at=utc_now(), **vector_fields
                )
            )
        else:
            for name, value in vector_fields.items():
                setattr(embedding, name, value)
        await self._db.flush()
        return chunk

    async def vectors(self, collection: str) -> list[tuple[IndexChunk, ChunkEmbedding]]:
        """Every chunk of ``collection`` with its vector, in source order."""

        rows = await self._db.execute(
            select(IndexChunk, ChunkEmbedding)
            .join(ChunkEmbedding, ChunkEmbedding.chunk_id == IndexChunk.id)
            .where(IndexChunk.collection == collection)
            .order_by(IndexChunk.source_id, IndexChunk.chunk_seq)
        )
        return list(rows.tuples())

    async def count(self, collection: str) -> int:
        total = await self._db.scalar(
            select(func.count(IndexChunk.id)).where(IndexChunk.collection == collection)
        )
        return int(total or 0)

    async def head(self, collection: str, limit: int) -> list[IndexChunk]:
        rows = await self._db.scalars(
            select(IndexChunk)
            .where(IndexChunk.collection == collection)
            .order_by(IndexChunk.source_id, IndexChunk.chunk_seq)
            .limit(limit)
        )
        return list(rows)

    async def drop(self, collection: str) -> int:
        """Delete a collection's embeddings, then its chunks; returns chunks removed."""

        in_collection = select(IndexChunk.id).where(IndexChunk.collection == collection)
        await self._db.execute(delete(ChunkEmbedding).where(ChunkEmbedding.chunk_id.in_(in_collection)))
        removed = await self._db.execute(delete(IndexChunk).where(IndexChunk.collection == collection))
        return int(removed.rowcount or 0)

    async def _find_chunk(
        self, collection: str, source_id: str, content_hash: str
    ) -> Optional[IndexChunk]:
        return await self._db.scalar(
            select(IndexChunk).where(
                IndexChunk.collection == collection,
                IndexChunk.source_id == source_id,
                IndexChunk.content_hash == content_hash,
            )
        )

    async def _find_embedding(self, chunk_id: str) -> Optional[ChunkEmbedding]:
        return await self._db.scalar(select(ChunkEmbedding).where(ChunkEmbedding.chunk_id == chunk_id))
