"""Millisecond wall-clock helpers."""

import time
from datetime import datetime, timezone


def now_ms() -> int:
    return int(time.time() * 1000)


def ms_to_date(ms: int) -> str:
    """UTC calendar date (YYYY-MM-DD) of a ms epoch timestamp."""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
