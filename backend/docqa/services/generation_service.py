from __future__ import annotations

import logging
from typing import Optional, Sequence

from docqa.conversation.messages import Message
from docqa.conversation.store import strip_thinking
from docqa.providers.base import LLMAdapter, ProviderError, ProviderRuntimeConfig
from docqa.services.prompt_builder import PromptBuilder

logger = logging.getLogger(__name__)


class GenerationService:
    """Bind one chat adapter to its runtime config."""

    def __init__(
        self,
        adapter: LLMAdapter,
        runtime_cfg: ProviderRuntimeConfig,
        prompt_builder: Optional[PromptBuilder] = None,
    ) -> None:
        self._adapter = adapter
        self._runtime_cfg = runtime_cfg
        self._prompt_builder = prompt_builder or PromptBuilder()

    @property
    def model_name(self) -> str:
        return self._runtime_cfg.model_name

    async def list_models(self) -> list[str]:
        return await self._adapter.list_models(self._runtime_cfg)

    async def complete(
        self,
        system_instruction: str,
        user_prompt: str,
        history: Optional[Sequence[Message]] = None,
    ) -> str:
        """Run one chat completion and return its text ("" when absent)."""

        messages = [{"role": "system", "content": system_instruction}]
        messages.extend(message.to_chat() for message in history or ())
        messages.append({"role": "user", "content": user_prompt})
        cfg = self._runtime_cfg
        try:
            result = await self._adapter.generate(cfg, messages)
        except ProviderError as exc:
            logger.warning(
                "Chat call to %s/%s failed: code=%s status=%s retryable=%s",
                cfg.provider,
                cfg.model_name,
                exc.code,
                exc.status_code,
                exc.retryable,
            )
            raise
        logger.info(
            "Chat call to %s/%s used prompt_tokens=%s completion_tokens=%s",
            cfg.provider,
            cfg.model_name,
            getattr(result, "prompt_tokens", None),
            getattr(result, "completion_tokens", None),
        )
        content = getattr(result, "content", None)
        return content if isinstance(content, str) else ""

    async def summarize(
        self, messages: Sequence[Message], keep_last_n: int, prefix: str
    ) -> Optional[list[Message]]:
        """Replace all but the last ``keep_last_n`` messages with one summary.

        Returns ``None`` when nothing is older than the kept window or the
        model produced no usable text.
        """

        keep = max(0, keep_last_n)
        cutoff = max(0, len(messages) - keep)
        older, recent = list(messages[:cutoff]), list(messages[cutoff:])
        if not older:
            return None

        text = await self.complete(
            self._prompt_builder.summary_instruction(),
            self._prompt_builder.summary_prompt(older),
        )
        summary_text = strip_thinking(text).strip()
        if not summary_text:
            return None
        summary = Message.human(f"{prefix}{summary_text}", additional_kwargs={"summary": True})
        return [summary, *recent]
