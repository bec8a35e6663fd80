"""
Query Result Cache

Bounded, TTL-limited store of finished query results keyed on
(connection, question, schema fingerprint, policy).

Eviction is by insertion order, not access order: reading an entry does not
protect it from being the next one evicted.
"""

import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from config import CACHE_TTL_SECONDS, CACHE_MAX_SIZE
from security import Policy


@dataclass
class CacheEntry:
    sql: str
    rows: List[Dict[str, Any]]
    columns: List[str]
    summary: Optional[str]
    created_at: float


def make_cache_key(connection_id: str, question: str, schema_fingerprint: str, policy: Policy) -> str:
    """
    Deterministic key for a request. The connection string is hashed along
    with everything else, so credentials are never kept as dictionary keys.
    """
    payload = json.dumps(
        [connection_id, question, schema_fingerprint, Policy(policy).value],
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class QueryCache:
    """Thread-safe bounded cache. Construct one and pass it where needed."""

    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        max_size: int = CACHE_MAX_SIZE,
        clock: Callable[[], float] = time.time
    ):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(
        self,
        connection_id: str,
        question: str,
        schema_fingerprint: str,
        policy: Policy
    ) -> Optional[CacheEntry]:
        """Return the cached entry, or None if absent or expired."""
        key = make_cache_key(connection_id, question, schema_fingerprint, policy)

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if self._clock() - entry.created_at > self.ttl_seconds:
                del self._entries[key]
                return None

            return entry

    def set(
        self,
        connection_id: str,
        question: str,
        schema_fingerprint: str,
        policy: Policy,
        sql: str,
        rows: List[Dict[str, Any]],
        columns: List[str],
        summary: Optional[str] = None
    ) -> CacheEntry:
        """
        Store a result. Overwriting keeps the key's original insertion
        position; the oldest-inserted entries go once the store is over size.
        """
        key = make_cache_key(connection_id, question, schema_fingerprint, policy)
        entry = CacheEntry(
            sql=sql,
            rows=rows,
            columns=columns,
            summary=summary,
            created_at=self._clock(),
        )

        with self._lock:
            self._entries[key] = entry
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

        return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def clear_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [
                key for key, entry in self._entries.items()
                if now - entry.created_at > self.ttl_seconds
            ]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def stats(self) -> Dict[str, float]:
        with self._lock:
            size = len(self._entries)
        return {"size": size, "max_size": self.max_size, "ttl_seconds": self.ttl_seconds}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
