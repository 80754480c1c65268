"""KVEntry model: one JSON document per storage key."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class KVEntry(SQLModel, table=True):
    __tablename__ = "kv_entry"

    key: str = Field(primary_key=True, max_length=120)
    value: Any = Field(default=None, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
