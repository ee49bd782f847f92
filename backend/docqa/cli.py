"""Command line entry point.

  docqa chat [--thread ID]       interactive question loop
  docqa ask QUESTION [--thread]  one question, then exit
  docqa models                   list models offered by the chat provider
  docqa serve                    run the HTTP API with uvicorn
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence, TextIO

import uvicorn
from sqlalchemy.exc import SQLAlchemyError

from docqa.api.conversation import MAX_QUESTION_LEN
from docqa.conversation.store import DEFAULT_THREAD_ID
from docqa.core.config import Settings, get_settings
from docqa.core.logging import setup_logging
from docqa.core.security import sanitize_text
from docqa.index.embedder import EmbeddingError
from docqa.providers.base import ProviderError
from docqa.services.assistant import Assistant, create_assistant
from docqa.services.conversation_service import ConversationTurnError
from docqa.services.retrieval_service import RetrievalError

logger = logging.getLogger(__name__)

SHOW_LIMIT = 5
SHOW_TEXT_CHARS = 200
PROMPT = "\n> "
INDEX_ERRORS = (RetrievalError, EmbeddingError, SQLAlchemyError)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docqa", description="Ask questions about local documents")
    sub = parser.add_subparsers(dest="command", required=True)

    chat = sub.add_parser("chat", help="Interactive question loop")
    chat.add_argument("--thread", default=DEFAULT_THREAD_ID, help="Conversation thread id")

    ask = sub.add_parser("ask", help="Ask one question")
    ask.add_argument("question")
    ask.add_argument("--thread", default=DEFAULT_THREAD_ID, help="Conversation thread id")

    sub.add_parser("models", help="List models offered by the chat provider")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    return parser


async def print_index_sample(assistant: Assistant, out: TextIO) -> None:
    rows = await assistant.retrieval.show(limit=SHOW_LIMIT)
    if not rows:
        print("Index is empty.", file=out)
        return
    for row in rows:
        text = row["text"][:SHOW_TEXT_CHARS].replace("\n", " ")
        print(f"[{row['id']}] {row['source']}#{row['chunk_seq']}: {text}", file=out)


async def print_models(assistant: Assistant, out: TextIO) -> bool:
    """Print the chat provider's models, marking the configured one."""

    try:
        models = await assistant.generation.list_models()
    except ProviderError as exc:
        print(f"Error: {exc.message}", file=out)
        return False
    current = assistant.generation.model_name
    for name in models:
        print(f"{'*' if name == current else ' '} {name}", file=out)
    return True


async def ask_once(assistant: Assistant, thread_id: str, question: str, out: TextIO) -> bool:
    """Ask one question and print the answer. Returns False on failure."""

    try:
        result = await assistant.conversation.ask(thread_id, question)
    except ConversationTurnError as exc:
        print(f"Error: {exc.message}", file=out)
        return False
    print(result.answer, file=out)
    return True


async def chat_loop(
    assistant: Assistant,
    thread_id: str,
    *,
    read_line=None,
    out: TextIO = sys.stdout,
) -> None:
    """Read commands until ``exit`` or end of input."""

    read_line = read_line or _read_stdin_line
    print(f"Thread: {thread_id}. Commands: exit, show, rebuild, reset.", file=out)
    while True:
        line = await read_line(PROMPT)
        if line is None:
            break
        question = sanitize_text(line, MAX_QUESTION_LEN)
        if not question:
            continue
        command = question.lower()
        if command == "exit":
            break
        if command == "show":
            try:
                await print_index_sample(assistant, out)
            except INDEX_ERRORS as exc:
                print(f"Error: could not read index: {exc}", file=out)
            continue
        if command == "rebuild":
            try:
                count = await assistant.rebuild_index()
            except INDEX_ERRORS as exc:
                print(f"Error: rebuild failed: {exc}", file=out)
                continue
            print(f"Index rebuilt with {count} chunks.", file=out)
            continue
        if command == "reset":
            try:
                deleted = await assistant.store.delete(thread_id)
            except Exception as exc:  # noqa: BLE001
                print(f"Error: could not clear thread: {exc}", file=out)
                continue
            print("History cleared." if deleted else "History was already empty.", file=out)
            continue
        await ask_once(assistant, thread_id, question, out)


async def _read_stdin_line(prompt: str) -> Optional[str]:
    try:
        return await asyncio.to_thread(input, prompt)
    except EOFError:
        return None


async def _run_chat(settings: Settings, thread_id: str) -> int:
    assistant = create_assistant(settings)
    try:
        await assistant.start()
        try:
            count = await assistant.ensure_index()
        except INDEX_ERRORS as exc:
            print(f"Error: index unavailable: {exc}", file=sys.stderr)
            return 1
        logger.info("Index ready with %d chunks", count)
        await chat_loop(assistant, thread_id)
        return 0
    finally:
        await assistant.close()


async def _run_ask(settings: Settings, thread_id: str, question: str) -> int:
    question = sanitize_text(question, MAX_QUESTION_LEN)
    if not question:
        print("Error: question is empty", file=sys.stderr)
        return 2
    assistant = create_assistant(settings)
    try:
        await assistant.start()
        try:
            await assistant.ensure_index()
        except INDEX_ERRORS as exc:
            print(f"Error: index unavailable: {exc}", file=sys.stderr)
            return 1
        ok = await ask_once(assistant, thread_id, question, sys.stdout)
        return 0 if ok else 1
    finally:
        await assistant.close()


async def _run_models(settings: Settings) -> int:
    assistant = create_assistant(settings)
    try:
        return 0 if await print_models(assistant, sys.stdout) else 1
    finally:
        await assistant.close()


def _serve(settings: Settings, host: Optional[str], port: Optional[int]) -> int:
    from docqa.main import create_app

    app = create_app(settings)
    uvicorn.run(
        app,
        host=host or settings.app_host,
        port=port or settings.app_port,
        log_level=settings.log_level.lower(),
    )
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "chat":
        return asyncio.run(_run_chat(settings, args.thread))
    if args.command == "ask":
        return asyncio.run(_run_ask(settings, args.thread, args.question))
    if args.command == "models":
        return asyncio.run(_run_models(settings))
    return _serve(settings, args.host, args.port)


if __name__ == "__main__":
    sys.exit(main())
