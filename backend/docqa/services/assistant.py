from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from docqa.conversation.store import ConversationStore, RedisConnection
from docqa.core.config import Settings
from docqa.db.base import create_engine, create_sessionmaker, init_db
from docqa.index.embedder import DeterministicEmbedder, Embedder, OllamaEmbedder
from docqa.index.loader import load_documents
from docqa.index.splitter import split_documents
from docqa.index.vector_store import SQLiteVectorStore
from docqa.providers.base import LLMAdapter, MockAdapter, ProviderError, ProviderRuntimeConfig
from docqa.providers.ollama_adapter import OllamaAdapter
from docqa.providers.openai_adapter import OpenAIAdapter
from docqa.services.answer_service import AnswerService
from docqa.services.conversation_service import ConversationService
from docqa.services.generation_service import GenerationService
from docqa.services.prompt_builder import PromptBuilder
from docqa.services.retrieval_service import RetrievalService
from docqa.services.summarizer import HistorySummarizer

logger = logging.getLogger(__name__)

SUPPORTED_CHAT_PROVIDERS = ("ollama", "openai", "mock")


@dataclass
class Assistant:
    """Owned resources behind one ``ask`` entry point."""

    settings: Settings
    engine: AsyncEngine
    redis: RedisConnection
    store: ConversationStore
    retrieval: RetrievalService
    generation: GenerationService
    conversation: ConversationService

    async def start(self) -> None:
        await init_db(self.engine)

    async def ensure_index(self) -> int:
        """Load documents and build the index unless it is already populated."""

        count = await self.retrieval.count()
        if count > 0:
            return count
        return await self.retrieval.build_or_load(self._load_chunks())

    async def rebuild_index(self) -> int:
        return await self.retrieval.rebuild(self._load_chunks())

    async def close(self) -> None:
        await self.redis.close()
        await self.engine.dispose()

    def _load_chunks(self):
        documents = load_documents(self.settings.docs_dir)
        logger.info("Loaded %d documents", len(documents))
        chunks = split_documents(
            documents,
            chunk_size=self.settings.chunk_size,
            chunk_overlap=self.settings.chunk_overlap,
        )
        logger.info("Split documents into %d chunks", len(chunks))
        return chunks


def create_assistant(
    settings: Settings,
    *,
    adapter: Optional[LLMAdapter] = None,
    embedder: Optional[Embedder] = None,
    redis_client_factory: Optional[Callable[[], Any]] = None,
) -> Assistant:
    """Wire store, index, models and the conversation pipeline."""

    engine = create_engine(settings.index_db_url)
    sessionmaker = create_sessionmaker(engine)

    retrieval = RetrievalService(
        embedder=embedder or create_embedder(settings),
        vector_store=SQLiteVectorStore(sessionmaker),
        collection=settings.index_collection,
        default_k=settings.top_k,
    )
    prompt_builder = PromptBuilder(
        answer_language=settings.answer_language,
        context_max_chars=settings.context_max_chars,
    )
    generation = GenerationService(
        adapter or create_chat_adapter(settings),
        create_runtime_config(settings),
        prompt_builder,
    )
    redis = RedisConnection(
        settings.redis_url,
        username=settings.redis_username,
        password=settings.redis_password,
        db=settings.redis_db,
        client_factory=redis_client_factory,
    )
    store = ConversationStore(
        redis,
        key_prefix=settings.redis_key_prefix,
        ttl_seconds=settings.redis_ttl_seconds,
    )
    conversation = ConversationService(
        store,
        AnswerService(retrieval, generation, prompt_builder, top_k=settings.top_k),
        HistorySummarizer(
            generation,
            max_value_bytes=settings.redis_max_value_bytes,
            keep_last_n=settings.summary_keep_last_n,
            prefix=settings.summary_prefix,
        ),
    )
    return Assistant(
        settings=settings,
        engine=engine,
        redis=redis,
        store=store,
        retrieval=retrieval,
        generation=generation,
        conversation=conversation,
    )


def create_chat_adapter(settings: Settings) -> LLMAdapter:
    provider = settings.chat_provider.strip().lower()
    if provider == "ollama":
        return OllamaAdapter()
    if provider == "openai":
        return OpenAIAdapter()
    if provider == "mock":
        return MockAdapter()
    raise ProviderError(
        "PROVIDER_UNSUPPORTED",
        f"Unsupported CHAT_PROVIDER={provider!r}; expected one of {', '.join(SUPPORTED_CHAT_PROVIDERS)}.",
    )


def create_runtime_config(settings: Settings) -> ProviderRuntimeConfig:
    provider = settings.chat_provider.strip().lower()
    if provider == "openai":
        base_url, api_key = settings.openai_base_url, settings.openai_api_key or None
    else:
        base_url, api_key = settings.ollama_base_url, None
    return ProviderRuntimeConfig(
        provider=provider,
        model_name=settings.chat_model,
        base_url=base_url,
        api_key=api_key,
        temperature=settings.chat_temperature,
    )


def create_embedder(settings: Settings) -> Embedder:
    provider = settings.embed_provider.strip().lower()
    if provider == "ollama":
        return OllamaEmbedder(
            base_url=settings.ollama_base_url,
            model_name=settings.embed_model.strip() or "nomic-embed-text",
        )
    if provider == "deterministic":
        return DeterministicEmbedder(dimension=settings.embed_dim)

    logger.warning("Unknown EMBED_PROVIDER=%s; fallback to deterministic", provider)
    return DeterministicEmbedder(dimension=settings.embed_dim)
