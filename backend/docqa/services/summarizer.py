from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence

from docqa.conversation.messages import Message, partition_system
from docqa.conversation.store import estimate_payload_bytes

logger = logging.getLogger(__name__)


class HistoryCompressor(Protocol):
    async def summarize(
        self, messages: Sequence[Message], keep_last_n: int, prefix: str
    ) -> Optional[list[Message]]:
        """Return ``[summary, *recent]`` or ``None`` when nothing was produced."""


class HistorySummarizer:
    """Compress stored history once its serialized size passes a byte budget.

    System messages are always kept verbatim and in front. Everything else
    older than the last ``keep_last_n`` messages collapses into one summary
    message. Any failure leaves the history untouched.
    """

    def __init__(
        self,
        generation: HistoryCompressor,
        *,
        max_value_bytes: int = 0,
        keep_last_n: int = 6,
        prefix: str = "对话摘要：",
    ) -> None:
        self._generation = generation
        self._max_value_bytes = max_value_bytes
        self._keep_last_n = max(0, keep_last_n)
        self._prefix = prefix

    @property
    def enabled(self) -> bool:
        return self._max_value_bytes is not None and self._max_value_bytes > 0

    async def maybe_summarize(self, messages: Sequence[Message]) -> list[Message]:
        original = list(messages)
        if not self.enabled:
            return original
        estimated = estimate_payload_bytes(original)
        if estimated <= self._max_value_bytes:
            return original

        system_messages, conversation = partition_system(original)
        if not conversation:
            return original

        logger.info(
            "History is %d bytes (limit %d); summarizing %d messages",
            estimated,
            self._max_value_bytes,
            len(conversation),
        )
        try:
            compressed = await self._generation.summarize(
                conversation, self._keep_last_n, self._prefix
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("History summarization failed: %s", exc)
            return original
        if not compressed:
            logger.warning("History summarization produced no output; keeping full history")
            return original
        return [*system_messages, *compressed]
