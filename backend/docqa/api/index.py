from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from docqa.api.conversation import get_assistant
from docqa.index.embedder import EmbeddingError
from docqa.schemas.common import error_detail
from docqa.schemas.index import IndexRebuildResponse, IndexRow, IndexStatusResponse
from docqa.services.assistant import Assistant
from docqa.services.retrieval_service import RetrievalError

router = APIRouter(prefix="/api/index", tags=["index"])

SAMPLE_SIZE = 5


@router.get("", response_model=IndexStatusResponse)
async def get_index_status(
    assistant: Assistant = Depends(get_assistant),
) -> IndexStatusResponse:
    """Return chunk count and a few rows of the index collection."""

    retrieval = assistant.retrieval
    rows = await retrieval.show(limit=SAMPLE_SIZE)
    return IndexStatusResponse(
        collection=retrieval.collection,
        count=await retrieval.count(),
        sample=[IndexRow(**row) for row in rows],
    )


@router.post("/rebuild", response_model=IndexRebuildResponse)
async def rebuild_index(
    assistant: Assistant = Depends(get_assistant),
) -> IndexRebuildResponse:
    """Drop the collection and rebuild it from the documents directory."""

    try:
        count = await assistant.rebuild_index()
    except RetrievalError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_detail("INDEX_BUILD_FAILED", str(exc)),
        ) from exc
    except EmbeddingError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=error_detail("EMBEDDING_FAILED", str(exc)),
        ) from exc
    return IndexRebuildResponse(collection=assistant.retrieval.collection, count=count)
