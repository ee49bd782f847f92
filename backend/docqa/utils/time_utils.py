from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current timezone-aware UTC datetime."""

    return datetime.now(timezone.utc)


def epoch_millis() -> int:
    """Return the current wall-clock time in epoch milliseconds."""

    return int(time.time() * 1000)
