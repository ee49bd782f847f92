import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import logging

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from docqa.core.config import Settings, get_settings
from docqa.main import create_app
from docqa.providers.base import LLMResult, ProviderRuntimeConfig


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    level = root.level
    targets = [root, *root.handlers]
    saved = {id(target): list(target.filters) for target in targets}
    yield
    root.setLevel(level)
    for target in [root, *root.handlers]:
        target.filters = list(saved.get(id(target), []))


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def stub_adapter():
    return StubAdapter()


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    root = tmp_path / "docs"
    (root / "policies").mkdir(parents=True)
    (root / "policies" / "refund.md").write_text(
        "Refunds are accepted within 30 days of purchase when a receipt is shown.",
        encoding="utf-8",
    )
    (root / "shipping.txt").write_text(
        "Standard shipping takes five business days. Express shipping takes two days.",
        encoding="utf-8",
    )
    (root / "notes.csv").write_text("ignored,file\n", encoding="utf-8")
    return root


@pytest.fixture
def settings(tmp_path: Path, docs_dir: Path, monkeypatch) -> Settings:
    monkeypatch.setenv("INDEX_DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'test_index.db'}")
    monkeypatch.setenv("DOCS_DIR", str(docs_dir))
    monkeypatch.setenv("CHAT_PROVIDER", "mock")
    monkeypatch.setenv("EMBED_PROVIDER", "deterministic")
    monkeypatch.setenv("EMBED_DIM", "64")
    monkeypatch.setenv("REDIS_URL", "redis://127.0.0.1:6379/15")
    monkeypatch.setenv("REDIS_MAX_VALUE_BYTES", "0")
    get_settings.cache_clear()
    return get_settings()


@pytest.fixture
def app(settings, fake_redis, stub_adapter):
    return create_app(
        settings,
        adapter=stub_adapter,
        redis_client_factory=lambda: fake_redis,
    )


@pytest.fixture
async def client(app):
    assistant = app.state.assistant
    await assistant.start()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await assistant.close()


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis``.

    ``fail_ping``/``fail_get``/``fail_set`` count down the number of calls that
    raise a connection error.
    """

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.set_calls: list[tuple[str, str, object]] = []
        self.fail_ping = 0
        self.fail_get = 0
        self.fail_set = 0
        self.ping_count = 0
        self.closed = False

    async def ping(self) -> bool:
        self.ping_count += 1
        if self.fail_ping:
            self.fail_ping -= 1
            raise RedisConnectionError("connection refused")
        return True

    async def get(self, key: str):
        if self.fail_get:
            self.fail_get -= 1
            raise RedisConnectionError("connection reset")
        return self.values.get(key)

    async def set(self, key: str, value: str, ex=None) -> bool:
        if self.fail_set:
            self.fail_set -= 1
            raise RedisConnectionError("connection reset")
        self.set_calls.append((key, value, ex))
        self.values[key] = value
        return True

    async def delete(self, key: str) -> int:
        return 1 if self.values.pop(key, None) is not None else 0

    async def aclose(self) -> None:
        self.closed = True


class StubAdapter:
    """Adapter stub used to avoid external API calls in tests.

    Replies are consumed in order and an exception in the queue is raised;
    once exhausted every call answers ``"stub answer"``.
    """

    def __init__(self) -> None:
        self.replies: list[str | Exception] = []
        self.error: Exception | None = None
        self.calls: list[list[dict]] = []

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        return [cfg.model_name or "stub-model"]

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        content = self.replies.pop(0) if self.replies else "stub answer"
        if isinstance(content, Exception):
            raise content
        return LLMResult(
            content=content,
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            prompt_tokens=1,
            completion_tokens=1,
        )
