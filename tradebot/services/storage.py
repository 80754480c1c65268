"""Key-value storage backends.

The trading core only ever calls ``load``/``save``/``delete``; which backend sits
behind them is decided when the services are wired together.
"""

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.engine import Engine
from sqlmodel import Session

from tradebot.models.kv_entry import KVEntry

logger = logging.getLogger(__name__)


class Storage:
    """Durable key-value contract."""

    def load(self, key: str) -> Any | None:
        raise NotImplementedError

    def save(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(Storage):
    """Process-local storage, used in tests and for dry runs."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Any | None:
        with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value)

    def save(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class SqlStorage(Storage):
    """Stores each key as a JSON document in the ``kv_entry`` table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def load(self, key: str) -> Any | None:
        with Session(self.engine) as session:
            entry = session.get(KVEntry, key)
            return entry.value if entry else None

    def save(self, key: str, value: Any) -> None:
        with Session(self.engine) as session:
            entry = session.get(KVEntry, key)
            if entry is None:
                entry = KVEntry(key=key, value=value)
            else:
                entry.value = value
                entry.updated_at = datetime.now(timezone.utc)
            session.add(entry)
            session.commit()
        logger.debug(f"Saved storage key {key}")

    def delete(self, key: str) -> None:
        with Session(self.engine) as session:
            entry = session.get(KVEntry, key)
            if entry:
                session.delete(entry)
                session.commit()
