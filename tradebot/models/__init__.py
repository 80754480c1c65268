"""Database models."""

from tradebot.models.kv_entry import KVEntry

__all__ = [
    "KVEntry",
]
