from __future__ import annotations

import logging

import pytest

from docqa.conversation.messages import Message, Role
from docqa.conversation.store import ConversationStore, RedisConnection
from docqa.index.types import Chunk
from docqa.providers.base import ProviderError, ProviderRuntimeConfig
from docqa.services.answer_service import AnswerService
from docqa.services.conversation_service import (
    ConversationService,
    ConversationState,
    ConversationTurnError,
)
from docqa.services.generation_service import GenerationService
from docqa.services.prompt_builder import PromptBuilder
from docqa.services.retrieval_service import RetrievalError
from docqa.services.summarizer import HistorySummarizer

REFUND_CHUNK = Chunk(
    text="Refunds are accepted within 30 days of purchase.",
    source_id="policies/refund.md",
    score=0.92,
)


class FixedRetrieval:
    """Retrieval stub that returns a fixed list of chunks."""

    def __init__(self, chunks: list[Chunk]) -> None:
        self.chunks = chunks
        self.queries: list[tuple[str, int | None]] = []

    async def search(self, query: str, k: int | None = None) -> list[Chunk]:
        self.queries.append((query, k))
        return list(self.chunks)[: k or len(self.chunks)]


def build_service(
    fake_redis,
    stub_adapter,
    chunks: list[Chunk] | None = None,
    max_value_bytes: int = 0,
    keep_last_n: int = 6,
) -> tuple[ConversationService, ConversationStore, FixedRetrieval]:
    store = ConversationStore(RedisConnection("redis://test", client_factory=lambda: fake_redis))
    retrieval = FixedRetrieval([REFUND_CHUNK] if chunks is None else chunks)
    prompt_builder = PromptBuilder(answer_language="en")
    generation = GenerationService(
        stub_adapter,
        ProviderRuntimeConfig(provider="mock", model_name="stub-model"),
        prompt_builder,
    )
    service = ConversationService(
        store,
        AnswerService(retrieval, generation, prompt_builder, top_k=4),
        HistorySummarizer(
            generation,
            max_value_bytes=max_value_bytes,
            keep_last_n=keep_last_n,
            prefix="Summary: ",
        ),
    )
    return service, store, retrieval


def test_stages_run_in_fixed_order(fake_redis, stub_adapter) -> None:
    service, _, _ = build_service(fake_redis, stub_adapter)
    assert service.stage_names == ("hydrate", "ingest", "answer", "summarize", "persist")


@pytest.mark.anyio
async def test_first_turn_persists_question_and_answer(fake_redis, stub_adapter) -> None:
    stub_adapter.replies = ["You can get a refund within 30 days."]
    service, store, retrieval = build_service(fake_redis, stub_adapter)

    result = await service.ask("t1", "What is the refund policy?")

    assert result.answer == "You can get a refund within 30 days."
    assert result.context == [REFUND_CHUNK]
    assert retrieval.queries == [("What is the refund policy?", 4)]

    stored = await store.load("t1")
    assert [(m.role, m.content) for m in stored] == [
        (Role.HUMAN, "What is the refund policy?"),
        (Role.ASSISTANT, "You can get a refund within 30 days."),
    ]

    prompt = stub_adapter.calls[0][-1]["content"]
    assert prompt.startswith("Question: What is the refund policy?")
    assert REFUND_CHUNK.text in prompt


@pytest.mark.anyio
async def test_follow_up_turn_extends_stored_history(fake_redis, stub_adapter) -> None:
    service, store, _ = build_service(fake_redis, stub_adapter)

    await service.ask("t1", "What is the refund policy?")
    result = await service.ask("t1", "Do I need a receipt?")

    stored = await store.load("t1")
    assert len(stored) == 4
    assert stored[2].content == "Do I need a receipt?"
    assert [m.content for m in result.state.messages] == [m.content for m in stored]


@pytest.mark.anyio
async def test_threads_are_isolated(fake_redis, stub_adapter) -> None:
    service, store, _ = build_service(fake_redis, stub_adapter)

    await service.ask("t1", "first thread")
    await service.ask("t2", "second thread")

    assert [m.content for m in await store.load("t1")][0] == "first thread"
    assert [m.content for m in await store.load("t2")][0] == "second thread"


@pytest.mark.anyio
async def test_missing_thread_id_uses_default_thread(fake_redis, stub_adapter) -> None:
    service, _, _ = build_service(fake_redis, stub_adapter)

    result = await service.ask(None, "hello")

    assert result.state.thread_id == "default"
    assert "rag:mem:default" in fake_redis.values


@pytest.mark.anyio
async def test_store_read_failure_still_answers(fake_redis, stub_adapter, caplog) -> None:
    service, store, _ = build_service(fake_redis, stub_adapter)
    fake_redis.fail_get = 1

    with caplog.at_level(logging.WARNING):
        result = await service.ask("t1", "What is the refund policy?")

    assert result.answer == "stub answer"
    assert "Conversation hydrate failed" in caplog.text
    assert len(await store.load("t1")) == 2


@pytest.mark.anyio
async def test_no_retrieved_chunks_still_generates(fake_redis, stub_adapter) -> None:
    stub_adapter.replies = ["I do not have enough information."]
    service, _, _ = build_service(fake_redis, stub_adapter, chunks=[])

    result = await service.ask("t1", "What is the warranty?")

    assert result.answer == "I do not have enough information."
    assert result.context == []
    assert len(stub_adapter.calls) == 1


@pytest.mark.anyio
async def test_generation_failure_aborts_turn_without_writing(fake_redis, stub_adapter) -> None:
    service, store, _ = build_service(fake_redis, stub_adapter)
    await service.ask("t1", "earlier question")
    writes_before = len(fake_redis.set_calls)
    stub_adapter.error = ProviderError("PROVIDER_CONNECTION_ERROR", "Provider connection failed.")

    with pytest.raises(ConversationTurnError) as excinfo:
        await service.ask("t1", "What is the refund policy?")

    assert excinfo.value.thread_id == "t1"
    assert "Provider connection failed." in excinfo.value.message
    assert isinstance(excinfo.value.__cause__, ProviderError)
    assert len(fake_redis.set_calls) == writes_before
    assert [m.content for m in await store.load("t1")][0] == "earlier question"


@pytest.mark.anyio
async def test_store_write_failure_still_returns_answer(fake_redis, stub_adapter, caplog) -> None:
    service, store, _ = build_service(fake_redis, stub_adapter)
    fake_redis.fail_set = 1

    with caplog.at_level(logging.ERROR):
        result = await service.ask("t1", "What is the refund policy?")

    assert result.answer == "stub answer"
    assert "Conversation persist failed" in caplog.text
    assert await store.load("t1") == []


@pytest.mark.anyio
async def test_empty_question_is_rejected(fake_redis, stub_adapter) -> None:
    service, _, _ = build_service(fake_redis, stub_adapter)

    with pytest.raises(ValueError):
        await service.ask("t1", "   ")
    assert stub_adapter.calls == []


@pytest.mark.anyio
async def test_stored_history_replaces_supplied_messages(fake_redis, stub_adapter) -> None:
    service, store, _ = build_service(fake_redis, stub_adapter)
    await store.save("t1", [Message.human("stored q"), Message.assistant("stored a")])
    prior = ConversationState(thread_id="t1", messages=(Message.human("stale"),))

    result = await service.run(prior, "next")

    assert [m.content for m in result.state.messages] == [
        "stored q",
        "stored a",
        "next",
        "stub answer",
    ]


@pytest.mark.anyio
async def test_supplied_messages_kept_when_store_is_empty(fake_redis, stub_adapter) -> None:
    service, _, _ = build_service(fake_redis, stub_adapter)
    prior = ConversationState(thread_id="fresh", messages=(Message.system("be brief"),))

    result = await service.run(prior, "hi")

    assert [m.role for m in result.state.messages] == [Role.SYSTEM, Role.HUMAN, Role.ASSISTANT]


@pytest.mark.anyio
async def test_oversized_history_is_summarized_before_write(fake_redis, stub_adapter) -> None:
    service, store, _ = build_service(fake_redis, stub_adapter, max_value_bytes=1, keep_last_n=2)
    older = []
    for index in range(4):
        older.append(Message.human(f"q{index}"))
        older.append(Message.assistant(f"a{index}"))
    await store.save("t1", older)
    stub_adapter.replies = ["final answer", "compressed"]

    result = await service.ask("t1", "last question")

    stored = await store.load("t1")
    assert [m.content for m in stored] == ["Summary: compressed", "last question", "final answer"]
    assert result.answer == "final answer"
    assert result.state.messages[0].additional_kwargs == {"summary": True}


class BrokenRetrieval:
    async def search(self, query: str, k: int | None = None) -> list[Chunk]:
        raise RetrievalError("Vector index search failed")


@pytest.mark.anyio
async def test_retrieval_failure_aborts_turn_without_writing(fake_redis, stub_adapter) -> None:
    service, store, _ = build_service(fake_redis, stub_adapter)
    await service.ask("t1", "earlier question")
    writes_before = len(fake_redis.set_calls)
    calls_before = len(stub_adapter.calls)
    generation = GenerationService(
        stub_adapter,
        ProviderRuntimeConfig(provider="mock", model_name="stub-model"),
        PromptBuilder(answer_language="en"),
    )
    broken = ConversationService(
        store,
        AnswerService(BrokenRetrieval(), generation, PromptBuilder(answer_language="en"), top_k=4),
        HistorySummarizer(generation),
    )

    with pytest.raises(ConversationTurnError) as excinfo:
        await broken.run("t1", "What is the refund policy?")

    assert isinstance(excinfo.value.__cause__, RetrievalError)
    assert len(stub_adapter.calls) == calls_before
    assert len(fake_redis.set_calls) == writes_before
    assert [m.content for m in await store.load("t1")] == ["earlier question", "stub answer"]


@pytest.mark.anyio
async def test_summary_failure_persists_full_history(fake_redis, stub_adapter, caplog) -> None:
    service, store, _ = build_service(fake_redis, stub_adapter, max_value_bytes=1, keep_last_n=2)
    older = [Message.human("q0"), Message.assistant("a0"), Message.human("q1"), Message.assistant("a1")]
    await store.save("t1", older)
    stub_adapter.replies = [
        "final answer",
        ProviderError("PROVIDER_TIMEOUT", "Provider request timed out."),
    ]

    with caplog.at_level(logging.WARNING):
        result = await service.run("t1", "last question")

    assert result.answer == "final answer"
    assert "History summarization failed" in caplog.text
    stored = await store.load("t1")
    assert [m.content for m in stored] == ["q0", "a0", "q1", "a1", "last question", "final answer"]


@pytest.mark.anyio
async def test_keep_last_zero_leaves_only_the_summary(fake_redis, stub_adapter) -> None:
    service, store, _ = build_service(fake_redis, stub_adapter, max_value_bytes=1, keep_last_n=0)
    await store.save("t1", [Message.system("be brief"), Message.human("q0"), Message.assistant("a0")])
    stub_adapter.replies = ["final answer", "compressed"]

    await service.run("t1", "last question")

    stored = await store.load("t1")
    assert [(m.role, m.content) for m in stored] == [
        (Role.SYSTEM, "be brief"),
        (Role.HUMAN, "Summary: compressed"),
    ]


@pytest.mark.anyio
async def test_keep_window_larger_than_history_keeps_everything(fake_redis, stub_adapter) -> None:
    service, store, _ = build_service(fake_redis, stub_adapter, max_value_bytes=1, keep_last_n=10)
    await store.save("t1", [Message.system("be brief"), Message.human("q0"), Message.assistant("a0")])

    result = await service.run("t1", "last question")

    stored = await store.load("t1")
    assert [m.content for m in stored] == ["be brief", "q0", "a0", "last question", "stub answer"]
    assert [m.content for m in result.state.messages] == [m.content for m in stored]
    # Nothing is older than the kept window, so the model is only asked to answer.
    assert len(stub_adapter.calls) == 1
