"""
Schema Data Model

Tables, columns and foreign keys as the pipeline sees them. Table order is
the declaration order and matters: anonymization indices are derived from it.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Column:
    name: str
    type: str
    nullable: bool = True
    is_primary_key: bool = False
    default: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "nullable": self.nullable,
            "isPrimaryKey": self.is_primary_key,
            "defaultValue": self.default,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        return cls(
            name=data["name"],
            type=data.get("type", ""),
            nullable=data.get("nullable", True) is not False,
            is_primary_key=bool(data.get("isPrimaryKey", False)),
            default=data.get("defaultValue"),
        )


@dataclass
class ForeignKey:
    column: str
    references_table: str
    references_column: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "column": self.column,
            "referencesTable": self.references_table,
            "referencesColumn": self.references_column,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ForeignKey":
        return cls(
            column=data["column"],
            references_table=data["referencesTable"],
            references_column=data["referencesColumn"],
        )


@dataclass
class Table:
    name: str
    columns: List[Column] = field(default_factory=list)
    primary_key: Optional[List[str]] = None
    foreign_keys: Optional[List[ForeignKey]] = None
    row_count: Optional[int] = None

    def get_column(self, name: str) -> Optional[Column]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "columns": [column.to_dict() for column in self.columns],
        }
        if self.primary_key is not None:
            data["primaryKey"] = list(self.primary_key)
        if self.foreign_keys is not None:
            data["foreignKeys"] = [fk.to_dict() for fk in self.foreign_keys]
        if self.row_count is not None:
            data["rowCount"] = self.row_count
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Table":
        foreign_keys = data.get("foreignKeys")
        primary_key = data.get("primaryKey")
        return cls(
            name=data["name"],
            columns=[Column.from_dict(c) for c in data.get("columns", [])],
            primary_key=list(primary_key) if primary_key is not None else None,
            foreign_keys=(
                [ForeignKey.from_dict(fk) for fk in foreign_keys]
                if foreign_keys is not None else None
            ),
            row_count=data.get("rowCount"),
        )


@dataclass
class Schema:
    """Ordered collection of tables with unique names."""
    tables: List[Table] = field(default_factory=list)

    def __post_init__(self):
        seen = set()
        for table in self.tables:
            if table.name in seen:
                raise ValueError(f"Duplicate table name in schema: {table.name}")
            seen.add(table.name)

    def get_table(self, name: str) -> Optional[Table]:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"tables": [table.to_dict() for table in self.tables]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Schema":
        if not isinstance(data, dict) or not isinstance(data.get("tables"), list):
            raise ValueError("Schema must be an object with a 'tables' list")
        return cls(tables=[Table.from_dict(t) for t in data["tables"]])

    def fingerprint(self) -> str:
        """Canonical serialization; changes whenever the schema does."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
