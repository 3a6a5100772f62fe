from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, Field


class CacheEntry(BaseModel):
    """A serialized upstream response stored under its cache key."""

    key: str
    body: str  # Decoded response text
    status: int
    status_text: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    timestamp: datetime  # UTC time of the successful fetch

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.timestamp >= ttl
