"""
Query History

Newest-first record of successful queries with favorites, search and
JSON export/import.
"""

import json
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from config import HISTORY_MAX_ITEMS


@dataclass
class HistoryItem:
    id: str
    question: str
    sql: str
    timestamp: float
    result_count: int
    execution_time_ms: Optional[float] = None
    is_favorite: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "sql": self.sql,
            "timestamp": self.timestamp,
            "resultCount": self.result_count,
            "executionTime": self.execution_time_ms,
            "isFavorite": self.is_favorite,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryItem":
        return cls(
            id=data["id"],
            question=data["question"],
            sql=data["sql"],
            timestamp=float(data["timestamp"]),
            result_count=int(data.get("resultCount", 0)),
            execution_time_ms=data.get("executionTime"),
            is_favorite=bool(data.get("isFavorite", False)),
        )


def _is_valid_item(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and isinstance(data.get("id"), str)
        and isinstance(data.get("question"), str)
        and isinstance(data.get("sql"), str)
        and isinstance(data.get("timestamp"), (int, float))
        and not isinstance(data.get("timestamp"), bool)
    )


class QueryHistory:
    """Thread-safe, bounded query history."""

    def __init__(self, max_items: int = HISTORY_MAX_ITEMS, clock: Callable[[], float] = time.time):
        self.max_items = max_items
        self._clock = clock
        self._items: List[HistoryItem] = []
        self._lock = threading.Lock()

    def add(
        self,
        question: str,
        sql: str,
        result_count: int,
        execution_time_ms: Optional[float] = None
    ) -> HistoryItem:
        """
        Record a query at the top of the history.

        An existing entry with the same question and SQL is replaced;
        its favorite flag carries over.
        """
        item = HistoryItem(
            id=uuid.uuid4().hex,
            question=question,
            sql=sql,
            timestamp=self._clock(),
            result_count=result_count,
            execution_time_ms=execution_time_ms,
        )

        with self._lock:
            for index, existing in enumerate(self._items):
                if existing.question == question and existing.sql == sql:
                    item.is_favorite = existing.is_favorite
                    del self._items[index]
                    break

            self._items.insert(0, item)
            del self._items[self.max_items:]

        return item

    def items(self) -> List[HistoryItem]:
        with self._lock:
            return list(self._items)

    def get(self, item_id: str) -> Optional[HistoryItem]:
        with self._lock:
            for item in self._items:
                if item.id == item_id:
                    return item
        return None

    def toggle_favorite(self, item_id: str) -> Optional[HistoryItem]:
        with self._lock:
            for item in self._items:
                if item.id == item_id:
                    item.is_favorite = not item.is_favorite
                    return item
        return None

    def favorites(self) -> List[HistoryItem]:
        return [item for item in self.items() if item.is_favorite]

    def delete(self, item_id: str) -> bool:
        with self._lock:
            remaining = [item for item in self._items if item.id != item_id]
            deleted = len(remaining) != len(self._items)
            self._items = remaining
        return deleted

    def clear(self, keep_favorites: bool = True) -> None:
        with self._lock:
            if keep_favorites:
                self._items = [item for item in self._items if item.is_favorite]
            else:
                self._items = []

    def search(self, query: str) -> List[HistoryItem]:
        lower_query = query.lower()
        return [
            item for item in self.items()
            if lower_query in item.question.lower() or lower_query in item.sql.lower()
        ]

    def export_json(self) -> str:
        return json.dumps([item.to_dict() for item in self.items()], indent=2, ensure_ascii=False)

    def import_json(self, json_string: str) -> bool:
        """
        Replace the history with items from an export.

        Returns:
            False (and leaves history unchanged) if the JSON is malformed
        """
        try:
            data = json.loads(json_string)
        except (TypeError, ValueError):
            return False

        if not isinstance(data, list) or not all(_is_valid_item(entry) for entry in data):
            return False

        try:
            items = sorted(
                (HistoryItem.from_dict(entry) for entry in data),
                key=lambda item: item.timestamp,
                reverse=True,
            )
        except (TypeError, ValueError):
            return False

        with self._lock:
            self._items = items[:self.max_items]
        return True
