"""
Schema Processor Module

Parses CREATE TABLE statements into a Schema and formats schemas for LLM prompts.
"""

import re
from typing import List, Optional

from pipeline.schema import Column, ForeignKey, Schema, Table


_IDENT = r'[`"\[]?(\w+)[`"\]]?'


def parse_ddl(schema_text: str) -> Schema:
    """
    Parse CREATE TABLE statements into a Schema.

    Args:
        schema_text: Raw SQL schema with CREATE TABLE statements

    Returns:
        Schema with tables in declaration order

    Raises:
        ValueError: If no CREATE TABLE statement is found
    """
    tables = []

    for table_name, columns_text in _find_create_statements(schema_text):
        table = Table(name=table_name)
        primary_key: List[str] = []
        foreign_keys: List[ForeignKey] = []

        # Split by comma, but be careful with nested parentheses
        parts = split_column_definitions(columns_text)

        for part in parts:
            part = part.strip()
            if not part:
                continue

            # Check for PRIMARY KEY constraint
            pk_match = re.match(r'(?:CONSTRAINT\s+\w+\s+)?PRIMARY\s+KEY\s*\(([^)]+)\)', part, re.IGNORECASE)
            if pk_match:
                primary_key.extend(_split_identifiers(pk_match.group(1)))
                continue

            # Check for FOREIGN KEY constraint
            fk_match = re.match(
                r'(?:CONSTRAINT\s+\w+\s+)?FOREIGN\s+KEY\s*\(([^)]+)\)\s*REFERENCES\s+' + _IDENT + r'\s*\(([^)]+)\)',
                part, re.IGNORECASE
            )
            if fk_match:
                for column, ref_column in zip(
                    _split_identifiers(fk_match.group(1)),
                    _split_identifiers(fk_match.group(3)),
                ):
                    foreign_keys.append(ForeignKey(column, fk_match.group(2), ref_column))
                continue

            if re.match(r'(?:CONSTRAINT|UNIQUE|CHECK|INDEX|KEY)\b', part, re.IGNORECASE):
                continue

            # Parse column definition
            col_match = re.match(_IDENT + r'\s+(\w+(?:\s*\([^)]+\))?)\s*(.*)', part, re.IGNORECASE | re.DOTALL)
            if col_match:
                col_name = col_match.group(1)
                constraints = col_match.group(3).strip()
                upper = constraints.upper()

                column = Column(
                    name=col_name,
                    type=col_match.group(2).lower(),
                    nullable='NOT NULL' not in upper,
                    default=_extract_default(constraints),
                )

                # Check for inline PRIMARY KEY
                if 'PRIMARY KEY' in upper:
                    column.nullable = False
                    primary_key.append(col_name)

                # Inline REFERENCES
                ref_match = re.search(r'REFERENCES\s+' + _IDENT + r'\s*\(\s*' + _IDENT + r'\s*\)', constraints, re.IGNORECASE)
                if ref_match:
                    foreign_keys.append(ForeignKey(col_name, ref_match.group(1), ref_match.group(2)))

                table.columns.append(column)

        for column in table.columns:
            column.is_primary_key = column.name in primary_key
        table.primary_key = primary_key or None
        table.foreign_keys = foreign_keys or None
        tables.append(table)

    if not tables:
        raise ValueError("No CREATE TABLE statements found in schema")

    return Schema(tables=tables)


def _find_create_statements(schema_text: str):
    """Yield (table_name, body) pairs, matching the body's closing parenthesis."""
    header = re.compile(
        r'CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?(?:\w+\.)?' + _IDENT + r'\s*\(',
        re.IGNORECASE
    )
    position = 0
    while True:
        match = header.search(schema_text, position)
        if not match:
            return
        depth = 1
        index = match.end()
        while index < len(schema_text) and depth:
            if schema_text[index] == '(':
                depth += 1
            elif schema_text[index] == ')':
                depth -= 1
            index += 1
        yield match.group(1), schema_text[match.end():index - 1]
        position = index


def _split_identifiers(text: str) -> List[str]:
    return [part.strip().strip('`"[]') for part in text.split(',') if part.strip()]


def _extract_default(constraints: str) -> Optional[str]:
    match = re.search(r"DEFAULT\s+('(?:[^']|'')*'|\S+)", constraints, re.IGNORECASE)
    if not match:
        return None
    return match.group(1)


def split_column_definitions(text: str) -> List[str]:
    """Split column definitions handling nested parentheses."""
    parts = []
    current = ""
    depth = 0

    for char in text:
        if char == '(':
            depth += 1
            current += char
        elif char == ')':
            depth -= 1
            current += char
        elif char == ',' and depth == 0:
            parts.append(current.strip())
            current = ""
        else:
            current += char

    if current.strip():
        parts.append(current.strip())

    return parts


def build_compact_schema(schema: Schema) -> str:
    """One `table: col, col` line per table."""
    return "\n".join(
        f"{table.name}: {', '.join(c.name for c in table.columns)}"
        for table in schema.tables
    )


def build_schema_description(schema: Schema) -> str:
    """
    Format schema into a detailed block per table for the LLM prompt.

    Args:
        schema: Schema (real or anonymized)

    Returns:
        Formatted schema string
    """
    parts = []

    for table in schema.tables:
        lines = [f"TABLE: {table.name}"]

        # Columns with types - ONLY show what exists
        lines.append("  COLUMNS (ONLY THESE EXIST):")
        for col in table.columns:
            is_pk = col.is_primary_key or (table.primary_key and col.name in table.primary_key)
            pk_marker = " [PK]" if is_pk else ""
            lines.append(f"    - {col.name}: {col.type}{pk_marker}")

        # Foreign Keys
        if table.foreign_keys:
            lines.append("  FOREIGN KEYS:")
            for fk in table.foreign_keys:
                lines.append(f"    - {fk.column} -> {fk.references_table}.{fk.references_column}")

        parts.append("\n".join(lines))

    return "\n\n".join(parts)


def infer_relationships(schema: Schema) -> List[str]:
    """
    Detect relationships from naming conventions (user_id -> users.id).

    Args:
        schema: Schema to inspect

    Returns:
        List of relationship descriptions
    """
    hints = []
    table_names = {t.name.lower() for t in schema.tables}

    for table in schema.tables:
        for col in table.columns:
            col_lower = col.name.lower()
            if not col_lower.endswith('_id') or col_lower == 'id':
                continue

            potential_table = col_lower[:-3]
            plural_table = potential_table + 's'

            if potential_table in table_names:
                hints.append(f"{table.name}.{col.name} -> {potential_table}.id")
            elif plural_table in table_names:
                hints.append(f"{table.name}.{col.name} -> {plural_table}.id")

    return hints
