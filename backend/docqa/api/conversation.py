from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from redis.exceptions import RedisError

from docqa.conversation.store import DEFAULT_THREAD_ID, StoreUnavailableError, serialize_message
from docqa.core.security import sanitize_text
from docqa.schemas.common import error_detail
from docqa.schemas.conversation import (
    AskRequest,
    AskResponse,
    ChunkOut,
    StoredMessageOut,
    ThreadDeleteResponse,
    ThreadResponse,
)
from docqa.services.assistant import Assistant
from docqa.services.conversation_service import ConversationTurnError

router = APIRouter(prefix="/api", tags=["conversation"])

MAX_QUESTION_LEN = 4000
MAX_THREAD_ID_LEN = 200


def get_assistant(request: Request) -> Assistant:
    """Dependency to access the assistant from app state."""

    return request.app.state.assistant


@router.post("/ask", response_model=AskResponse)
async def ask(
    payload: AskRequest,
    assistant: Assistant = Depends(get_assistant),
) -> AskResponse:
    """Answer one question inside a conversation thread."""

    question = sanitize_text(payload.question, MAX_QUESTION_LEN)
    if not question:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_detail("EMPTY_QUESTION", "Question is empty."),
        )
    thread_id = sanitize_text(payload.thread_id or "", MAX_THREAD_ID_LEN) or DEFAULT_THREAD_ID

    try:
        result = await assistant.conversation.ask(thread_id, question)
    except ConversationTurnError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=error_detail("TURN_FAILED", exc.message, retryable=exc.retryable),
        ) from exc

    return AskResponse(
        thread_id=thread_id,
        answer=result.answer,
        context=[
            ChunkOut(text=chunk.text, source_id=chunk.source_id, score=chunk.score)
            for chunk in result.context
        ],
    )


@router.get("/thread/{thread_id}", response_model=ThreadResponse)
async def get_thread(
    thread_id: str,
    assistant: Assistant = Depends(get_assistant),
) -> ThreadResponse:
    """Return the stored history of a thread."""

    try:
        messages = await assistant.store.load(thread_id)
    except (RedisError, StoreUnavailableError, OSError) as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_detail("STORE_UNAVAILABLE", "Conversation store unavailable."),
        ) from exc
    return ThreadResponse(
        thread_id=thread_id,
        messages=[StoredMessageOut(**serialize_message(message)) for message in messages],
    )


@router.delete("/thread/{thread_id}", response_model=ThreadDeleteResponse)
async def delete_thread(
    thread_id: str,
    assistant: Assistant = Depends(get_assistant),
) -> ThreadDeleteResponse:
    """Clear the stored history of a thread."""

    try:
        deleted = await assistant.store.delete(thread_id)
    except (RedisError, StoreUnavailableError, OSError) as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_detail("STORE_UNAVAILABLE", "Conversation store unavailable."),
        ) from exc
    return ThreadDeleteResponse(thread_id=thread_id, deleted=deleted)
