from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional


class Role(str, Enum):
    """Speaker of one conversational turn."""

    SYSTEM = "system"
    HUMAN = "human"
    ASSISTANT = "assistant"

    @property
    def chat_role(self) -> str:
        """Role name used by chat-completion style provider APIs."""

        return {
            Role.SYSTEM: "system",
            Role.HUMAN: "user",
            Role.ASSISTANT: "assistant",
        }[self]


@dataclass(frozen=True)
class Message:
    """One turn of a conversation, tagged by role."""

    role: Role
    content: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    additional_kwargs: dict[str, Any] = field(default_factory=dict)
    response_metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def system(cls, content: str, **kwargs: Any) -> "Message":
        return cls(role=Role.SYSTEM, content=content, **kwargs)

    @classmethod
    def human(cls, content: str, **kwargs: Any) -> "Message":
        return cls(role=Role.HUMAN, content=content, **kwargs)

    @classmethod
    def assistant(cls, content: str, **kwargs: Any) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, **kwargs)

    def to_chat(self) -> dict[str, str]:
        return {"role": self.role.chat_role, "content": self.content}


def parse_role(value: Any) -> Optional[Role]:
    """Map a stored role name onto ``Role``; unknown names yield ``None``."""

    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    aliases = {"user": Role.HUMAN, "ai": Role.ASSISTANT}
    if normalized in aliases:
        return aliases[normalized]
    try:
        return Role(normalized)
    except ValueError:
        return None


def partition_system(messages: Iterable[Message]) -> tuple[list[Message], list[Message]]:
    """Split messages into (system, non-system), keeping relative order."""

    system: list[Message] = []
    others: list[Message] = []
    for message in messages:
        if message.role is Role.SYSTEM:
            system.append(message)
        else:
            others.append(message)
    return system, others
