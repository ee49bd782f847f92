from __future__ import annotations

import re

# (pattern, replacement) pairs applied in order.
REDACTIONS = (
    (re.compile(r"sk-[A-Za-z0-9_-]{6,}"), "sk-***"),
    (re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]{8,}"), r"\1***"),
    (
        re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)(?P<user>[^:/@\s]*):[^@/\s]+@"),
        r"\g<scheme>\g<user>:***@",
    ),
)
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def redact_secrets(text: str) -> str:
    """Mask API keys, bearer tokens and passwords embedded in URLs."""

    for pattern, replacement in REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def sanitize_text(text: str, max_length: int) -> str:
    """Drop control characters, strip, and clamp to ``max_length`` chars."""

    cleaned = CONTROL_CHARS.sub("", text).strip()
    return cleaned[:max_length]
