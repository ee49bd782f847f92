from __future__ import annotations

from typing import Any, List, Optional

from pydantic import Field

from docqa.schemas.common import APIModel


class AskRequest(APIModel):
    """Payload for one question in a conversation thread."""

    thread_id: Optional[str] = Field(default=None)
    question: str


class ChunkOut(APIModel):
    """Retrieved context chunk."""

    text: str
    source_id: str
    score: float = 0.0


class AskResponse(APIModel):
    """Answer plus the context it was grounded on."""

    thread_id: str
    answer: str
    context: List[ChunkOut]


class StoredMessageOut(APIModel):
    """One message of a stored thread history."""

    role: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ThreadResponse(APIModel):
    """Stored history for a thread."""

    thread_id: str
    messages: List[StoredMessageOut]


class ThreadDeleteResponse(APIModel):
    """Response returned after clearing a thread."""

    thread_id: str
    deleted: bool
