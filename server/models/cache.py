"""SQLite-backed cache model for the persistent tier of the TTL cache."""

import time
from sqlmodel import SQLModel, Field


class CacheEntry(SQLModel, table=True):
    """One cached upstream payload addressed by (namespace, category, key).

    Entries are only ever overwritten whole. Staleness is decided at read
    time from created_at and ttl_seconds.
    """

    __tablename__ = "cache_entries"

    id: str = Field(primary_key=True, max_length=1024)  # namespace:category:key
    namespace: str = Field(index=True, max_length=64)
    category: str = Field(max_length=128)
    key: str = Field(max_length=768)
    payload: str = Field(max_length=5000000)  # JSON serialized
    ttl_seconds: int = Field(default=0)
    created_at: float = Field(default_factory=time.time, index=True)

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds
