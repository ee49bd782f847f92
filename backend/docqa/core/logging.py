from __future__ import annotations

import logging
from typing import Any

from docqa.core.security import redact_secrets

NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


class RedactionFilter(logging.Filter):
    """Mask secrets in the message template and its string arguments.

    Non-string arguments pass through untouched so ``%d`` and friends still
    format.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = _redact(record.msg)
        if isinstance(record.args, dict):
            record.args = {key: _redact(value) for key, value in record.args.items()}
        elif record.args:
            record.args = tuple(_redact(arg) for arg in record.args)
        return True


def _redact(value: Any) -> Any:
    if isinstance(value, str):
        return redact_secrets(value)
    if value is None or isinstance(value, (bool, int, float)):
        return value
    # Objects such as exceptions are swapped for their text only when it held a secret.
    text = str(value)
    masked = redact_secrets(text)
    return masked if masked != text else value


def setup_logging(level: str) -> None:
    """Configure root logging once; safe to call again."""

    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    root = logging.getLogger()
    root.setLevel(numeric)
    for target in (root, *root.handlers):
        if not any(isinstance(item, RedactionFilter) for item in target.filters):
            target.addFilter(RedactionFilter())
    # Request-level chatter from the HTTP and SQLite drivers.
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))
