from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class SourceDocument:
    """A loaded document before splitting."""

    text: str
    source_id: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChunkPayload:
    """Payload persisted into the vector index."""

    collection: str
    source_id: str
    chunk_seq: int
    content: str
    content_hash: str


@dataclass(frozen=True)
class Chunk:
    """Retrieved chunk handed to the answering step, best match first."""

    text: str
    source_id: str
    score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "source_id": self.source_id, "score": self.score}
