"""Durable per-thread conversation history kept in Redis.

One JSON record per thread:

    {"schemaVersion": 1, "updatedAt": <epoch ms>,
     "messages": [{"role": ..., "content": ..., "metadata": {...}}]}

Content and metadata are sanitized on the way in, so what is estimated for
the summarization budget is byte-for-byte what gets written.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, Optional, TypeVar

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from docqa.conversation.messages import Message, parse_role
from docqa.utils.time_utils import epoch_millis

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DEFAULT_THREAD_ID = "default"
DEFAULT_KEY_PREFIX = "rag:mem:"
INTERNAL_METADATA_KEYS = frozenset({"think"})

THINK_PATTERN = re.compile(r"<think>[\s\S]*?</think>\s*", re.IGNORECASE)

T = TypeVar("T")


class StoreUnavailableError(RuntimeError):
    """Raised when the conversation store cannot be reached."""


class RedisConnection:
    """Lazily connected Redis client owned by the application.

    The first caller connects and pings. A failed connect is not cached, and a
    connection error during a command drops the client, so the next call
    reconnects once the server is back.
    """

    def __init__(
        self,
        url: str,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        db: Optional[int] = None,
        client_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self._url = url
        self._username = username or None
        self._password = password or None
        self._db = db
        self._custom_factory = client_factory is not None
        self._client_factory = client_factory or self._default_factory
        self._client: Any = None
        self._lock = asyncio.Lock()

    async def get_client(self) -> Any:
        if self._client is not None:
            return self._client
        async with self._lock:
            if self._client is not None:
                return self._client
            if not self._url and not self._custom_factory:
                raise StoreUnavailableError("Redis url is not configured.")
            client = self._client_factory()
            try:
                await client.ping()
            except Exception as exc:
                await _close_quietly(client)
                logger.warning("Failed to connect to Redis: %s", exc)
                raise
            self._client = client
            return client

    async def run(self, operation: Callable[[Any], Awaitable[T]]) -> T:
        """Run one command, dropping the client if the connection broke."""

        client = await self.get_client()
        try:
            return await operation(client)
        except (RedisConnectionError, RedisTimeoutError, OSError):
            await self._discard(client)
            raise

    async def _discard(self, client: Any) -> None:
        # Another caller may already have reconnected; keep its client.
        if self._client is client:
            self._client = None
        await _close_quietly(client)

    async def reset(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await _close_quietly(client)

    async def close(self) -> None:
        await self.reset()

    def _default_factory(self) -> Redis:
        kwargs: dict[str, Any] = {"decode_responses": True}
        if self._username:
            kwargs["username"] = self._username
        if self._password:
            kwargs["password"] = self._password
        if self._db is not None:
            kwargs["db"] = self._db
        return Redis.from_url(self._url, **kwargs)


async def _close_quietly(client: Any) -> None:
    try:
        await client.aclose()
    except Exception as exc:  # noqa: BLE001
        logger.debug("Ignoring error while closing Redis client: %s", exc)


def strip_thinking(content: Any) -> Any:
    """Remove every ``<think>...</think>`` segment from text content."""

    if not isinstance(content, str):
        return content
    # Overlapping tags can leave a fresh segment behind, so repeat until stable.
    previous = None
    while previous != content:
        previous, content = content, THINK_PATTERN.sub("", content)
    return content


def strip_internal_keys(values: Any) -> dict[str, Any]:
    if not isinstance(values, dict):
        return {}
    return {key: value for key, value in values.items() if key not in INTERNAL_METADATA_KEYS}


def serialize_message(message: Message) -> dict[str, Any]:
    metadata: dict[str, Any] = {"id": message.id}
    additional = strip_internal_keys(message.additional_kwargs)
    response = strip_internal_keys(message.response_metadata)
    if additional:
        metadata["additional_kwargs"] = additional
    if response:
        metadata["response_metadata"] = response
    return {
        "role": message.role.value,
        "content": strip_thinking(message.content),
        "metadata": metadata,
    }


def deserialize_message(entry: Any) -> Optional[Message]:
    if not isinstance(entry, dict):
        return None
    role = parse_role(entry.get("role"))
    content = entry.get("content")
    if role is None or not isinstance(content, str):
        return None
    metadata = entry.get("metadata") if isinstance(entry.get("metadata"), dict) else {}
    kwargs: dict[str, Any] = {
        "additional_kwargs": strip_internal_keys(metadata.get("additional_kwargs")),
        "response_metadata": strip_internal_keys(metadata.get("response_metadata")),
    }
    if isinstance(metadata.get("id"), str) and metadata["id"]:
        kwargs["id"] = metadata["id"]
    return Message(role=role, content=content, **kwargs)


def build_payload(messages: Iterable[Message], updated_at: Optional[int] = None) -> dict[str, Any]:
    return {
        "schemaVersion": SCHEMA_VERSION,
        "updatedAt": epoch_millis() if updated_at is None else updated_at,
        "messages": [serialize_message(message) for message in messages],
    }


def encode_payload(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def estimate_payload_bytes(messages: Sequence[Message]) -> int:
    """Size in bytes of the record ``save`` would write for ``messages``."""

    return len(encode_payload(build_payload(messages)).encode("utf-8"))


def decode_payload(raw: Any) -> list[Message]:
    """Decode a stored record; anything malformed reads as no history."""

    if raw is None:
        return []
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str) or not raw.strip():
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring malformed conversation payload: %s", exc)
        return []
    entries = parsed.get("messages") if isinstance(parsed, dict) else None
    if not isinstance(entries, list):
        logger.warning("Ignoring conversation payload without a message list")
        return []
    messages: list[Message] = []
    for entry in entries:
        message = deserialize_message(entry)
        if message is None:
            logger.warning("Skipping unreadable stored message entry")
            continue
        messages.append(message)
    return messages


class ConversationStore:
    """Load and save message histories keyed by thread identifier."""

    def __init__(
        self,
        connection: RedisConnection,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self._connection = connection
        self._key_prefix = key_prefix if key_prefix is not None else DEFAULT_KEY_PREFIX
        self._ttl_seconds = ttl_seconds

    def key_for(self, thread_id: Optional[str]) -> str:
        return f"{self._key_prefix}{thread_id or DEFAULT_THREAD_ID}"

    async def load(self, thread_id: Optional[str]) -> list[Message]:
        key = self.key_for(thread_id)
        raw = await self._connection.run(lambda client: client.get(key))
        return decode_payload(raw)

    async def save(self, thread_id: Optional[str], messages: Sequence[Message]) -> None:
        key = self.key_for(thread_id)
        value = encode_payload(build_payload(messages))
        ttl = self._ttl_seconds
        if ttl is not None and ttl > 0:
            await self._connection.run(lambda client: client.set(key, value, ex=ttl))
        else:
            await self._connection.run(lambda client: client.set(key, value))

    async def delete(self, thread_id: Optional[str]) -> bool:
        key = self.key_for(thread_id)
        removed = await self._connection.run(lambda client: client.delete(key))
        return bool(removed)
