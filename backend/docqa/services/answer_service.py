from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from docqa.conversation.messages import Message
from docqa.index.types import Chunk
from docqa.services.generation_service import GenerationService
from docqa.services.prompt_builder import PromptBuilder

logger = logging.getLogger(__name__)


class ChunkSearcher(Protocol):
    async def search(self, query: str, k: int | None = None) -> list[Chunk]:
        """Return up to ``k`` chunks ranked by similarity."""


@dataclass(frozen=True)
class AnswerResult:
    """Grounded answer plus the chunks it was produced from."""

    answer: str
    context: list[Chunk] = field(default_factory=list)


class AnswerService:
    """Retrieve context for a question and generate a grounded answer."""

    def __init__(
        self,
        retrieval: ChunkSearcher,
        generation: GenerationService,
        prompt_builder: PromptBuilder,
        top_k: int = 4,
        history_messages: int = 0,
    ) -> None:
        self._retrieval = retrieval
        self._generation = generation
        self._prompt_builder = prompt_builder
        self._top_k = max(1, top_k)
        self._history_messages = max(0, history_messages)

    async def answer(self, question: str, history: Sequence[Message] = ()) -> AnswerResult:
        """Answer ``question``; retrieval and generation errors propagate."""

        chunks = await self._retrieval.search(question, self._top_k)
        logger.debug("Retrieved %d chunks for question", len(chunks))
        recent = self._recent_history(history, question)
        text = await self._generation.complete(
            self._prompt_builder.answer_instruction(),
            self._prompt_builder.answer_prompt(question, chunks),
            history=recent,
        )
        return AnswerResult(answer=text, context=list(chunks))

    def _recent_history(self, history: Sequence[Message], question: str) -> list[Message]:
        if not self._history_messages:
            return []
        prior = list(history)
        # The current question is sent separately with its context block.
        if prior and prior[-1].content == question:
            prior = prior[:-1]
        return prior[-self._history_messages :]
