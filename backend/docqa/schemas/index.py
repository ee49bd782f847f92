from __future__ import annotations

from typing import List

from docqa.schemas.common import APIModel


class IndexRow(APIModel):
    """Inspection row for one stored chunk."""

    id: str
    source: str
    chunk_seq: int
    text: str


class IndexStatusResponse(APIModel):
    """Chunk count and a small sample of the index collection."""

    collection: str
    count: int
    sample: List[IndexRow]


class IndexRebuildResponse(APIModel):
    """Response returned after rebuilding the index."""

    collection: str
    count: int
