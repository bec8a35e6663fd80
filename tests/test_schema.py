"""
Schema Model and DDL Parsing Tests
"""

import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pipeline.schema import Column, Schema, Table
from pipeline.schema_processor import (
    parse_ddl,
    split_column_definitions,
    build_compact_schema,
    build_schema_description,
    infer_relationships,
)


SAMPLE_DDL = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    email VARCHAR(255) NOT NULL,
    status TEXT DEFAULT 'active',
    created_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS "orders" (
    id INTEGER NOT NULL,
    user_id INTEGER REFERENCES users(id),
    total DECIMAL(10, 2),
    PRIMARY KEY (id),
    CONSTRAINT total_positive CHECK (total > 0)
);

CREATE TABLE order_items (
    order_id INTEGER,
    product_id INTEGER,
    quantity INTEGER,
    PRIMARY KEY (order_id, product_id),
    FOREIGN KEY (order_id) REFERENCES orders(id)
);
"""


class TestSchemaModel:
    """Tests for the schema data model."""

    def test_from_dict(self):
        """Test parsing the JSON wire shape."""
        schema = Schema.from_dict({
            "tables": [{
                "name": "users",
                "columns": [
                    {"name": "id", "type": "integer", "isPrimaryKey": True, "nullable": False},
                    {"name": "email", "type": "varchar"},
                ],
                "foreignKeys": [],
            }],
        })
        users = schema.get_table("users")
        assert users.get_column("id").is_primary_key
        assert not users.get_column("id").nullable
        assert users.get_column("email").nullable
        assert users.foreign_keys == []
        assert schema.get_table("missing") is None

    def test_from_dict_rejects_bad_shape(self):
        """Test that a payload without a tables list is rejected."""
        with pytest.raises(ValueError):
            Schema.from_dict({"tables": "users"})
        with pytest.raises(ValueError):
            Schema.from_dict(["users"])

    def test_duplicate_table_names(self):
        """Test that table names must be unique."""
        with pytest.raises(ValueError, match="Duplicate table name"):
            Schema(tables=[Table(name="a"), Table(name="a")])

    def test_dict_round_trip(self):
        """Test that to_dict output parses back to an equal schema."""
        schema = parse_ddl(SAMPLE_DDL)
        assert Schema.from_dict(schema.to_dict()) == schema

    def test_fingerprint_stable_and_sensitive(self):
        """Test that equal schemas share a fingerprint and any change alters it."""
        a = Schema(tables=[Table(name="t", columns=[Column("id", "integer")])])
        b = Schema(tables=[Table(name="t", columns=[Column("id", "integer")])])
        c = Schema(tables=[Table(name="t", columns=[Column("id", "bigint")])])
        assert a.fingerprint() == b.fingerprint()
        assert a.fingerprint() != c.fingerprint()


class TestParseDDL:
    """Tests for CREATE TABLE parsing."""

    def setup_method(self):
        self.schema = parse_ddl(SAMPLE_DDL)

    def test_tables_in_order(self):
        """Test that tables keep declaration order, quoted names unquoted."""
        assert [t.name for t in self.schema.tables] == ["users", "orders", "order_items"]

    def test_columns(self):
        """Test column names, types, nullability and defaults."""
        users = self.schema.get_table("users")
        assert [c.name for c in users.columns] == ["id", "email", "status", "created_at"]
        assert users.get_column("email").type == "varchar(255)"
        assert not users.get_column("email").nullable
        assert users.get_column("status").default == "'active'"
        assert users.get_column("created_at").nullable

    def test_inline_primary_key(self):
        """Test PRIMARY KEY on the column definition."""
        users = self.schema.get_table("users")
        assert users.primary_key == ["id"]
        assert users.get_column("id").is_primary_key
        assert not users.get_column("id").nullable

    def test_table_level_keys(self):
        """Test composite PRIMARY KEY and FOREIGN KEY clauses."""
        items = self.schema.get_table("order_items")
        assert items.primary_key == ["order_id", "product_id"]
        assert items.get_column("product_id").is_primary_key
        fk = items.foreign_keys[0]
        assert (fk.column, fk.references_table, fk.references_column) == ("order_id", "orders", "id")

    def test_inline_references_and_constraints(self):
        """Test REFERENCES on a column and skipping CHECK constraints."""
        orders = self.schema.get_table("orders")
        assert [c.name for c in orders.columns] == ["id", "user_id", "total"]
        assert orders.get_column("total").type == "decimal(10, 2)"
        fk = orders.foreign_keys[0]
        assert (fk.column, fk.references_table, fk.references_column) == ("user_id", "users", "id")

    def test_no_tables(self):
        """Test that text without CREATE TABLE is rejected."""
        with pytest.raises(ValueError):
            parse_ddl("SELECT 1;")

    def test_split_column_definitions(self):
        """Test that commas inside parentheses do not split."""
        assert split_column_definitions("a DECIMAL(10,2), b INT") == ["a DECIMAL(10,2)", "b INT"]


class TestSchemaFormatting:
    """Tests for the prompt renderings of a schema."""

    def setup_method(self):
        self.schema = parse_ddl(SAMPLE_DDL)

    def test_compact_schema(self):
        """Test the one-line-per-table format."""
        lines = build_compact_schema(self.schema).split("\n")
        assert lines[0] == "users: id, email, status, created_at"
        assert len(lines) == 3

    def test_schema_description(self):
        """Test the detailed block with PK markers and foreign keys."""
        description = build_schema_description(self.schema)
        assert "TABLE: orders" in description
        assert "    - id: integer [PK]" in description
        assert "    - user_id -> users.id" in description

    def test_infer_relationships(self):
        """Test _id naming hints against singular and plural table names."""
        hints = infer_relationships(self.schema)
        assert "orders.user_id -> users.id" in hints
        assert "order_items.order_id -> orders.id" in hints
        assert not any(h.startswith("order_items.product_id") for h in hints)
