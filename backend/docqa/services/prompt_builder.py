from __future__ import annotations

from typing import Iterable, Sequence

from docqa.conversation.messages import Message, Role
from docqa.index.types import Chunk


class PromptBuilder:
    """Compose prompts for answering and history summarization."""

    def __init__(self, answer_language: str = "zh-cn", context_max_chars: int = 12000) -> None:
        self._answer_language = answer_language
        self._context_max_chars = max(200, context_max_chars)

    def answer_instruction(self) -> str:
        """System instruction that pins the model to the supplied context."""

        language = self._language_name(self._answer_language)
        return "\n".join(
            [
                "You are an assistant that answers questions from the given context.",
                "Only use information found in the context. If the context does not "
                "contain the answer, say that you do not have enough information.",
                f"Answer in {language}.",
            ]
        )

    def answer_prompt(self, question: str, chunks: Iterable[Chunk]) -> str:
        return f"Question: {question}\n\nContext:\n{self.build_context_block(chunks)}"

    def build_context_block(self, chunks: Iterable[Chunk]) -> str:
        """Join chunk texts in rank order without exceeding the char budget."""

        parts: list[str] = []
        total = 0
        for chunk in chunks:
            text = chunk.text.strip()
            if not text:
                continue
            separator = 2 if parts else 0
            remaining = self._context_max_chars - total - separator
            if remaining <= 0:
                break
            if len(text) > remaining:
                if not parts:
                    parts.append(text[:remaining])
                break
            parts.append(text)
            total += separator + len(text)
        return "\n\n".join(parts)

    @staticmethod
    def summary_instruction() -> str:
        return (
            "You compress conversation history. Write a concise summary of the "
            "transcript that keeps facts, decisions, open questions and user "
            "preferences needed to continue the conversation. Reply with the "
            "summary text only."
        )

    @staticmethod
    def summary_prompt(messages: Sequence[Message]) -> str:
        labels = {Role.SYSTEM: "System", Role.HUMAN: "User", Role.ASSISTANT: "Assistant"}
        lines = [f"{labels[message.role]}: {message.content.strip()}" for message in messages]
        transcript = "\n".join(lines) if lines else "(empty)"
        return f"Transcript:\n{transcript}\n\nSummary:"

    @staticmethod
    def _language_name(code: str) -> str:
        normalized = code.strip().lower().replace("_", "-")
        mapping = {
            "en": "English",
            "zh": "Chinese",
            "zh-cn": "Simplified Chinese",
            "zh-tw": "Traditional Chinese",
            "ja": "Japanese",
            "ko": "Korean",
            "es": "Spanish",
            "fr": "French",
            "de": "German",
        }
        return mapping.get(normalized, normalized or "English")
