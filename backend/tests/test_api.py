from __future__ import annotations

import pytest

from docqa.providers.base import ProviderError


async def build_index(app) -> int:
    return await app.state.assistant.ensure_index()


@pytest.mark.anyio
async def test_ask_returns_answer_and_context(app, client, stub_adapter):
    assert await build_index(app) == 2
    stub_adapter.replies = ["Within 30 days."]

    response = await client.post(
        "/api/ask",
        json={"thread_id": "t1", "question": "  What is the refund policy?  "},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["thread_id"] == "t1"
    assert data["answer"] == "Within 30 days."
    assert 1 <= len(data["context"]) <= 4
    assert {"text", "source_id", "score"} <= set(data["context"][0])
    assert "Question: What is the refund policy?\n" in stub_adapter.calls[0][-1]["content"]


@pytest.mark.anyio
async def test_thread_history_can_be_read_and_cleared(app, client, fake_redis):
    await build_index(app)
    await client.post("/api/ask", json={"thread_id": "t1", "question": "hello"})

    response = await client.get("/api/thread/t1")
    assert response.status_code == 200
    messages = response.json()["messages"]
    assert [(m["role"], m["content"]) for m in messages] == [
        ("human", "hello"),
        ("assistant", "stub answer"),
    ]
    assert messages[0]["metadata"]["id"]

    response = await client.delete("/api/thread/t1")
    assert response.status_code == 200
    assert response.json() == {"thread_id": "t1", "deleted": True}
    assert "rag:mem:t1" not in fake_redis.values

    response = await client.get("/api/thread/t1")
    assert response.json()["messages"] == []


@pytest.mark.anyio
async def test_ask_without_thread_uses_default(app, client, fake_redis):
    await build_index(app)

    response = await client.post("/api/ask", json={"question": "hello"})

    assert response.status_code == 200
    assert response.json()["thread_id"] == "default"
    assert "rag:mem:default" in fake_redis.values


@pytest.mark.anyio
async def test_blank_question_is_rejected(client, stub_adapter):
    response = await client.post("/api/ask", json={"thread_id": "t1", "question": "   "})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "EMPTY_QUESTION"
    assert stub_adapter.calls == []


@pytest.mark.anyio
async def test_long_question_is_clamped(app, client, stub_adapter):
    await build_index(app)

    response = await client.post("/api/ask", json={"question": "q" * 5000})

    assert response.status_code == 200
    prompt = stub_adapter.calls[0][-1]["content"]
    assert ("q" * 4000) in prompt
    assert ("q" * 4001) not in prompt


@pytest.mark.anyio
async def test_generation_failure_returns_502(app, client, stub_adapter, fake_redis):
    await build_index(app)
    stub_adapter.error = ProviderError("PROVIDER_TIMEOUT", "Provider request timed out.")

    response = await client.post("/api/ask", json={"thread_id": "t1", "question": "hello"})

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["code"] == "TURN_FAILED"
    assert "timed out" in detail["message"]
    assert detail["retryable"] is True
    assert fake_redis.set_calls == []


@pytest.mark.anyio
async def test_store_outage_still_answers_but_thread_read_fails(app, client, fake_redis):
    await build_index(app)
    fake_redis.fail_ping = 10

    response = await client.post("/api/ask", json={"thread_id": "t1", "question": "hello"})
    assert response.status_code == 200
    assert response.json()["answer"] == "stub answer"

    response = await client.get("/api/thread/t1")
    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "STORE_UNAVAILABLE"


@pytest.mark.anyio
async def test_index_status_and_rebuild(app, client, docs_dir):
    await build_index(app)

    response = await client.get("/api/index")
    assert response.status_code == 200
    data = response.json()
    assert data["collection"] == "langchain_docs"
    assert data["count"] == 2
    assert len(data["sample"]) == 2
    assert set(data["sample"][0]) == {"id", "source", "chunk_seq", "text"}

    (docs_dir / "warranty.md").write_text("Warranty lasts one year.", encoding="utf-8")
    response = await client.post("/api/index/rebuild")
    assert response.status_code == 200
    assert response.json() == {"collection": "langchain_docs", "count": 3}


@pytest.mark.anyio
async def test_rebuild_without_documents_is_rejected(client, docs_dir):
    for path in sorted(docs_dir.rglob("*"), reverse=True):
        if path.is_file():
            path.unlink()

    response = await client.post("/api/index/rebuild")

    assert response.status_code == 400


@pytest.mark.anyio
async def test_lifespan_releases_resources_when_startup_fails(app, monkeypatch):
    assistant = app.state.assistant
    closed = []

    async def broken_start():
        raise OSError("index directory is read-only")

    async def record_close():
        closed.append(True)

    monkeypatch.setattr(assistant, "start", broken_start)
    monkeypatch.setattr(assistant, "close", record_close)

    with pytest.raises(OSError):
        async with app.router.lifespan_context(app):
            pass
    assert closed == [True]
