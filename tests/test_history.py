"""
Query History Tests
"""

import json
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pipeline.history import QueryHistory


class TickingClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


class TestQueryHistory:
    """Tests for the bounded history."""

    def setup_method(self):
        self.history = QueryHistory(max_items=3, clock=TickingClock())

    def test_newest_first(self):
        """Test that new items are inserted at the top."""
        self.history.add("first", "SELECT 1", 1)
        self.history.add("second", "SELECT 2", 1)
        assert [item.question for item in self.history.items()] == ["second", "first"]

    def test_bounded(self):
        """Test that the oldest item is dropped past max_items."""
        for i in range(4):
            self.history.add(f"q{i}", f"SELECT {i}", i)
        assert [item.question for item in self.history.items()] == ["q3", "q2", "q1"]

    def test_duplicate_moves_to_top_and_keeps_favorite(self):
        """Test that re-running a query replaces the old entry."""
        first = self.history.add("q", "SELECT 1", 1)
        self.history.toggle_favorite(first.id)
        self.history.add("other", "SELECT 2", 1)
        again = self.history.add("q", "SELECT 1", 5, execution_time_ms=12.5)

        items = self.history.items()
        assert len(items) == 2
        assert items[0] is again
        assert again.is_favorite
        assert again.result_count == 5

    def test_toggle_favorite(self):
        """Test toggling and the favorites view."""
        item = self.history.add("q", "SELECT 1", 1)
        assert self.history.toggle_favorite(item.id).is_favorite
        assert self.history.favorites() == [item]
        assert not self.history.toggle_favorite(item.id).is_favorite
        assert self.history.toggle_favorite("missing") is None

    def test_delete(self):
        """Test deleting by id."""
        item = self.history.add("q", "SELECT 1", 1)
        assert self.history.delete(item.id)
        assert not self.history.delete(item.id)
        assert self.history.items() == []

    def test_clear_keeps_favorites(self):
        """Test that clear keeps favorites unless told otherwise."""
        keep = self.history.add("keep", "SELECT 1", 1)
        self.history.toggle_favorite(keep.id)
        self.history.add("drop", "SELECT 2", 1)

        self.history.clear()
        assert self.history.items() == [keep]

        self.history.clear(keep_favorites=False)
        assert self.history.items() == []

    def test_search_question_and_sql(self):
        """Test case-insensitive search over question and SQL."""
        self.history.add("Top customers", "SELECT name FROM users", 1)
        self.history.add("revenue", "SELECT SUM(total) FROM orders", 1)
        assert [i.question for i in self.history.search("CUSTOMERS")] == ["Top customers"]
        assert [i.question for i in self.history.search("orders")] == ["revenue"]

    def test_export_import(self):
        """Test that an export can be loaded into a fresh history."""
        self.history.add("a", "SELECT 1", 1)
        self.history.add("b", "SELECT 2", 2, execution_time_ms=3.0)
        exported = self.history.export_json()

        restored = QueryHistory()
        assert restored.import_json(exported)
        assert [i.to_dict() for i in restored.items()] == [i.to_dict() for i in self.history.items()]

    def test_import_sorts_newest_first(self):
        """Test that imported items are ordered by timestamp."""
        data = [
            {"id": "1", "question": "old", "sql": "SELECT 1", "timestamp": 1},
            {"id": "2", "question": "new", "sql": "SELECT 2", "timestamp": 5},
        ]
        assert self.history.import_json(json.dumps(data))
        assert [i.question for i in self.history.items()] == ["new", "old"]

    def test_import_rejects_bad_input(self):
        """Test that malformed imports leave history unchanged."""
        self.history.add("keep", "SELECT 1", 1)
        assert not self.history.import_json("not json")
        assert not self.history.import_json(json.dumps({"id": "1"}))
        assert not self.history.import_json(json.dumps([{"id": "1", "question": "q"}]))
        assert [i.question for i in self.history.items()] == ["keep"]

    def test_to_dict_wire_names(self):
        """Test camelCase serialization."""
        item = self.history.add("q", "SELECT 1", 7, execution_time_ms=1.5)
        data = item.to_dict()
        assert data["resultCount"] == 7
        assert data["executionTime"] == 1.5
        assert data["isFavorite"] is False
