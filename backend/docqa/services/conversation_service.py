"""One question/answer turn as an ordered list of stages.

hydrate -> ingest -> answer -> summarize -> persist

Each stage receives the current immutable ``ConversationState`` and returns a
delta that is merged before the next stage runs. Only the answer stage may
abort the turn; hydrate, summarize and persist degrade and log instead.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Protocol, Union

from docqa.conversation.messages import Message
from docqa.conversation.store import DEFAULT_THREAD_ID
from docqa.index.types import Chunk
from docqa.services.answer_service import AnswerResult

logger = logging.getLogger(__name__)


class HistoryStore(Protocol):
    async def load(self, thread_id: Optional[str]) -> list[Message]: ...

    async def save(self, thread_id: Optional[str], messages: Sequence[Message]) -> None: ...


class Answerer(Protocol):
    async def answer(self, question: str, history: Sequence[Message] = ()) -> AnswerResult: ...


class Summarizer(Protocol):
    async def maybe_summarize(self, messages: Sequence[Message]) -> list[Message]: ...


class ConversationTurnError(RuntimeError):
    """Raised when a turn cannot produce an answer."""

    def __init__(self, message: str, thread_id: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.thread_id = thread_id
        self.retryable = retryable


@dataclass(frozen=True)
class ConversationState:
    """State owned by one turn; only ``messages`` outlives it."""

    thread_id: str = DEFAULT_THREAD_ID
    messages: tuple[Message, ...] = ()
    input: str = ""
    answer: str = ""
    context: tuple[Chunk, ...] = ()

    def merge(self, delta: dict[str, Any]) -> "ConversationState":
        if not delta:
            return self
        updates = dict(delta)
        for key in ("messages", "context"):
            if key in updates:
                updates[key] = tuple(updates[key])
        return replace(self, **updates)


@dataclass(frozen=True)
class TurnResult:
    """What ``ask`` hands back to the caller."""

    state: ConversationState
    answer: str
    context: list[Chunk] = field(default_factory=list)


Stage = Callable[[ConversationState], Awaitable[dict[str, Any]]]


class ConversationService:
    """Run question/answer turns against durable per-thread history."""

    def __init__(
        self,
        store: HistoryStore,
        answerer: Answerer,
        summarizer: Summarizer,
    ) -> None:
        self._store = store
        self._answerer = answerer
        self._summarizer = summarizer
        self._stages: tuple[tuple[str, Stage], ...] = (
            ("hydrate", self._hydrate),
            ("ingest", self._ingest),
            ("answer", self._answer),
            ("summarize", self._summarize),
            ("persist", self._persist),
        )

    @property
    def stage_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self._stages)

    async def ask(self, thread_id: Optional[str], question: str) -> TurnResult:
        """Answer ``question`` within the conversation ``thread_id``."""

        return await self.run(thread_id, question)

    async def run(
        self, prior: Union[ConversationState, str, None], question: str
    ) -> TurnResult:
        if not isinstance(question, str) or not question.strip():
            raise ValueError("Question must not be empty.")

        if isinstance(prior, ConversationState):
            state = replace(prior, thread_id=prior.thread_id or DEFAULT_THREAD_ID)
        else:
            state = ConversationState(thread_id=prior or DEFAULT_THREAD_ID)
        state = replace(state, input=question, answer="", context=())

        for name, stage in self._stages:
            logger.debug("Running stage %s for thread %s", name, state.thread_id)
            state = state.merge(await stage(state))

        return TurnResult(state=state, answer=state.answer, context=list(state.context))

    async def _hydrate(self, state: ConversationState) -> dict[str, Any]:
        try:
            restored = await self._store.load(state.thread_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Conversation hydrate failed for thread %s: %s", state.thread_id, exc)
            return {}
        if not restored:
            return {}
        return {"messages": restored}

    async def _ingest(self, state: ConversationState) -> dict[str, Any]:
        return {"messages": [*state.messages, Message.human(state.input)]}

    async def _answer(self, state: ConversationState) -> dict[str, Any]:
        try:
            result = await self._answerer.answer(state.input, state.messages)
        except Exception as exc:
            logger.warning("Answering failed for thread %s: %s", state.thread_id, exc)
            raise ConversationTurnError(
                f"Failed to answer the question: {exc}",
                state.thread_id,
                retryable=getattr(exc, "retryable", False) is True,
            ) from exc
        answer = result.answer if isinstance(result.answer, str) else ""
        return {
            "answer": answer,
            "context": result.context,
            "messages": [*state.messages, Message.assistant(answer)],
        }

    async def _summarize(self, state: ConversationState) -> dict[str, Any]:
        try:
            messages = await self._summarizer.maybe_summarize(state.messages)
        except Exception as exc:  # noqa: BLE001
            logger.warning("History summarization failed for thread %s: %s", state.thread_id, exc)
            return {}
        return {"messages": messages}

    async def _persist(self, state: ConversationState) -> dict[str, Any]:
        try:
            await self._store.save(state.thread_id, state.messages)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Conversation persist failed for thread %s; this turn is not durable: %s",
                state.thread_id,
                exc,
            )
        return {}
