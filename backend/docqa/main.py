from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docqa.api import conversation as conversation_api
from docqa.api import index as index_api
from docqa.core.config import Settings, get_settings
from docqa.core.logging import setup_logging
from docqa.index.embedder import Embedder, EmbeddingError
from docqa.providers.base import LLMAdapter
from docqa.services.assistant import create_assistant
from docqa.services.retrieval_service import RetrievalError

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    adapter: Optional[LLMAdapter] = None,
    embedder: Optional[Embedder] = None,
    redis_client_factory: Optional[Callable[[], Any]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or get_settings()
    setup_logging(settings.log_level)

    assistant = create_assistant(
        settings,
        adapter=adapter,
        embedder=embedder,
        redis_client_factory=redis_client_factory,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            await assistant.start()
            try:
                count = await assistant.ensure_index()
                logger.info(
                    "Index ready: collection=%s chunks=%d", settings.index_collection, count
                )
            except (RetrievalError, EmbeddingError) as exc:
                logger.warning("Index not ready at startup: %s", exc)
            yield
        finally:
            await assistant.close()

    app = FastAPI(title="docqa", lifespan=lifespan)
    app.state.settings = settings
    app.state.assistant = assistant

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(conversation_api.router)
    app.include_router(index_api.router)

    return app
