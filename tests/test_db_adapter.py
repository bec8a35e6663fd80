"""
Database Adapter Tests

Run against a throwaway SQLite file.
"""

import sqlite3
import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pipeline.errors import ExecutionFailure
from utils.db_adapter import (
    DatabaseType,
    MySQLAdapter,
    PostgreSQLAdapter,
    SQLiteAdapter,
    create_adapter,
    detect_database_type,
)


@pytest.fixture
def sqlite_url(tmp_path):
    path = tmp_path / "shop.db"
    conn = sqlite3.connect(str(path))
    conn.executescript("""
        CREATE TABLE users (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            status TEXT DEFAULT 'active'
        );
        CREATE TABLE orders (
            id INTEGER PRIMARY KEY,
            user_id INTEGER REFERENCES users(id),
            total REAL
        );
        INSERT INTO users (id, name) VALUES (1, 'Ada'), (2, 'Grace'), (3, 'Linus');
        INSERT INTO orders (user_id, total) VALUES (1, 10.5), (1, 20.0), (2, 7.25);
    """)
    conn.commit()
    conn.close()
    return f"sqlite:///{path}"


class TestSQLiteAdapter:
    """Tests for the SQLite adapter."""

    @pytest.fixture(autouse=True)
    def adapter(self, sqlite_url):
        self.adapter = SQLiteAdapter(sqlite_url)
        self.adapter.connect()
        yield
        self.adapter.disconnect()

    def test_get_schema(self):
        """Test that tables, keys and defaults are read from the database."""
        schema = self.adapter.get_schema()
        assert [t.name for t in schema.tables] == ["orders", "users"]

        users = schema.get_table("users")
        assert users.primary_key == ["id"]
        assert users.get_column("id").is_primary_key
        assert not users.get_column("name").nullable
        assert users.get_column("status").default == "'active'"

        fk = schema.get_table("orders").foreign_keys[0]
        assert (fk.column, fk.references_table, fk.references_column) == ("user_id", "users", "id")

    def test_execute_query(self):
        """Test rows come back as dicts keyed by column."""
        result = self.adapter.execute_query("SELECT id, name FROM users ORDER BY id")
        assert result.columns == ["id", "name"]
        assert result.rows[0] == {"id": 1, "name": "Ada"}
        assert len(result.rows) == 3

    def test_row_cap(self):
        """Test that no more than max_rows rows are fetched."""
        result = self.adapter.execute_query("SELECT * FROM users", max_rows=2)
        assert len(result.rows) == 2

    def test_colon_tokens_not_bound(self):
        """Test that ':name' in a literal is not treated as a bind parameter."""
        result = self.adapter.execute_query("SELECT 'a:b' AS v")
        assert result.rows == [{"v": "a:b"}]

    def test_error_message_surfaced(self):
        """Test that the driver's message is carried by ExecutionFailure."""
        with pytest.raises(ExecutionFailure, match="no such column: nmae"):
            self.adapter.execute_query("SELECT nmae FROM users")

    def test_write_statement(self):
        """Test that statements without rows return an empty result and commit."""
        result = self.adapter.execute_query("UPDATE users SET name = 'Ada L' WHERE id = 1")
        assert result.rows == [] and result.columns == []
        assert self.adapter.execute_query("SELECT name FROM users WHERE id = 1").rows == [{"name": "Ada L"}]

    def test_timeout(self):
        """Test that a runaway statement is interrupted."""
        runaway = (
            "WITH RECURSIVE n(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM n) "
            "SELECT COUNT(*) FROM n"
        )
        with pytest.raises(ExecutionFailure, match="interrupted"):
            self.adapter.execute_query(runaway, timeout_ms=50)

    def test_write_access(self):
        """Test that a regular SQLite file is writable."""
        assert self.adapter.check_write_access()


class TestAdapterFactory:
    """Tests for adapter selection."""

    def test_not_connected(self):
        """Test that using an adapter before connect fails cleanly."""
        with pytest.raises(ExecutionFailure, match="Not connected"):
            SQLiteAdapter("sqlite://").execute_query("SELECT 1")

    def test_missing_connection_string(self):
        """Test that an empty connection string is rejected."""
        with pytest.raises(ExecutionFailure):
            SQLiteAdapter("").connect()

    def test_create_adapter(self):
        """Test the type to adapter mapping."""
        assert isinstance(create_adapter("postgresql", "postgresql://x"), PostgreSQLAdapter)
        assert isinstance(create_adapter(DatabaseType.MYSQL, "mysql://x"), MySQLAdapter)
        assert isinstance(create_adapter("sqlite", "sqlite://"), SQLiteAdapter)
        with pytest.raises(ValueError, match="Unsupported database type"):
            create_adapter("oracle", "oracle://x")

    def test_detect_database_type(self):
        """Test detection from the URL scheme."""
        assert detect_database_type("postgres://u@h/db") is DatabaseType.POSTGRESQL
        assert detect_database_type("mysql+pymysql://u@h/db") is DatabaseType.MYSQL
        assert detect_database_type("sqlite:///tmp/x.db") is DatabaseType.SQLITE
        assert detect_database_type("mongodb://h") is None

    def test_url_scheme_rewrites(self):
        """Test the driver URL normalization."""
        assert PostgreSQLAdapter("postgres://u@h/db")._engine_url() == "postgresql://u@h/db"
        assert MySQLAdapter("mysql://u@h/db")._engine_url() == "mysql+pymysql://u@h/db"
