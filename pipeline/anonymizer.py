"""
Schema Anonymizer Module

Replaces table and column names with positional placeholders (table_1, col_1)
so the LLM never sees real identifiers, and maps generated SQL back.

A map is built for a single request and must not be shared between requests.

Known limitations of the textual substitution:
- anonymize_sql can rewrite a function name that equals a real column name
  (a column called "count" turns COUNT(*) into col_N(*)). Only repair context
  goes through it; executed SQL never does.
- Unqualified columns resolve against the first referenced table that has
  them, for the statement as a whole. In
  "SELECT col_1 FROM table_1 UNION SELECT col_1 FROM table_2" both col_1
  become table_1's column. Qualified columns (table_2.col_1, alias.col_1)
  resolve correctly.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from pipeline.schema import Column, ForeignKey, Schema, Table


logger = logging.getLogger(__name__)

# Single-quoted SQL string literal, with '' as the escaped quote
_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")

# Words that can follow a table reference without being an alias
_NOT_ALIASES = {
    'AS', 'ON', 'USING', 'WHERE', 'JOIN', 'INNER', 'LEFT', 'RIGHT', 'FULL',
    'OUTER', 'CROSS', 'NATURAL', 'GROUP', 'ORDER', 'HAVING', 'LIMIT', 'OFFSET',
    'UNION', 'INTERSECT', 'EXCEPT', 'SET', 'VALUES', 'WINDOW', 'FETCH', 'FOR',
    'AND', 'OR', 'NOT', 'SELECT', 'FROM', 'RETURNING', 'LATERAL',
}


@dataclass
class AnonymizationMap:
    """Bidirectional real <-> anonymous identifier maps for one request."""
    tables: Dict[str, str] = field(default_factory=dict)  # real -> anonymous
    columns: Dict[str, Dict[str, str]] = field(default_factory=dict)  # real table -> {real -> anonymous}
    reverse_tables: Dict[str, str] = field(default_factory=dict)  # anonymous -> real
    reverse_columns: Dict[str, Dict[str, str]] = field(default_factory=dict)  # anonymous table -> {anonymous -> real}


def anonymize_schema(schema: Schema) -> Tuple[Schema, AnonymizationMap]:
    """
    Build a structurally identical schema with positional identifiers.

    Table i becomes table_<i+1> and its column j becomes col_<j+1>. Types,
    nullability, primary-key flags and row counts are kept. Defaults are
    dropped, as are key references that cannot be mapped.

    Args:
        schema: Real schema

    Returns:
        Tuple of (anonymized schema, map)
    """
    mapping = AnonymizationMap()

    for table_index, table in enumerate(schema.tables):
        anonymous_table = f"table_{table_index + 1}"
        mapping.tables[table.name] = anonymous_table
        mapping.reverse_tables[anonymous_table] = table.name
        mapping.columns[table.name] = {}
        mapping.reverse_columns[anonymous_table] = {}

        for column_index, column in enumerate(table.columns):
            anonymous_column = f"col_{column_index + 1}"
            mapping.columns[table.name][column.name] = anonymous_column
            mapping.reverse_columns[anonymous_table][anonymous_column] = column.name

    anonymized_tables = [
        _anonymize_table(table, mapping) for table in schema.tables
    ]

    return Schema(tables=anonymized_tables), mapping


def _anonymize_table(table: Table, mapping: AnonymizationMap) -> Table:
    column_map = mapping.columns[table.name]

    columns = [
        Column(
            name=column_map[column.name],
            type=column.type,  # the LLM still needs types for comparisons and casts
            nullable=column.nullable,
            is_primary_key=column.is_primary_key,
        )
        for column in table.columns
    ]

    primary_key = None
    if table.primary_key is not None:
        primary_key = []
        for name in table.primary_key:
            if name in column_map:
                primary_key.append(column_map[name])
            else:
                logger.warning("Dropping unmappable primary key column on table %s", mapping.tables[table.name])

    foreign_keys = None
    if table.foreign_keys is not None:
        foreign_keys = []
        for fk in table.foreign_keys:
            anonymized = _anonymize_foreign_key(fk, column_map, mapping)
            if anonymized is None:
                logger.warning("Dropping unmappable foreign key on table %s", mapping.tables[table.name])
                continue
            foreign_keys.append(anonymized)

    return Table(
        name=mapping.tables[table.name],
        columns=columns,
        primary_key=primary_key,
        foreign_keys=foreign_keys,
        row_count=table.row_count,
    )


def _anonymize_foreign_key(fk: ForeignKey, column_map: Dict[str, str],
                           mapping: AnonymizationMap) -> Optional[ForeignKey]:
    # Any name missing from the maps would otherwise leak through unchanged
    referenced_columns = mapping.columns.get(fk.references_table)
    if fk.column not in column_map or referenced_columns is None:
        return None
    if fk.references_column not in referenced_columns:
        return None

    return ForeignKey(
        column=column_map[fk.column],
        references_table=mapping.tables[fk.references_table],
        references_column=referenced_columns[fk.references_column],
    )


def deanonymize_sql(sql: str, mapping: AnonymizationMap) -> str:
    """
    Rewrite anonymous identifiers in generated SQL back to real names.

    Unknown placeholders (e.g. a hallucinated table_99) are left as they are
    so the database rejects them and the repair loop takes over. String
    literals are not touched.

    Args:
        sql: SQL written against the anonymized schema
        mapping: Map returned by anonymize_schema

    Returns:
        SQL against the real schema
    """
    translator = _IdentifierTranslator(mapping.reverse_tables, mapping.reverse_columns)
    return translator.translate(sql, skip_literals=True)


def anonymize_sql(text: str, mapping: AnonymizationMap, skip_literals: bool = True) -> str:
    """
    Rewrite real identifiers to their anonymous placeholders.

    Used on failed SQL and database error messages before they are sent to
    the repair prompt. Error messages quote identifiers in single quotes
    (MySQL), so callers pass skip_literals=False for them.

    Args:
        text: SQL or error text mentioning real identifiers
        mapping: Map returned by anonymize_schema
        skip_literals: Leave single-quoted literals untouched

    Returns:
        Text with real identifiers replaced
    """
    translator = _IdentifierTranslator(mapping.tables, mapping.columns)
    return translator.translate(text, skip_literals=skip_literals)


def _alternation(names: Iterable[str]) -> str:
    # Longest first: table_10 must be tried before table_1
    ordered = sorted(set(names), key=lambda n: (-len(n), n))
    return '|'.join(re.escape(name) for name in ordered)


class _IdentifierTranslator:
    """
    Token substitution between two identifier spaces.

    Columns are resolved through their qualifier (table name or alias) when
    there is one, otherwise against the tables the text references, in order
    of first reference, then against every table in declaration order.
    """

    def __init__(self, tables: Dict[str, str], columns: Dict[str, Dict[str, str]]):
        # Source identifiers are matched case-insensitively
        self.tables = {src.lower(): dst for src, dst in tables.items()}
        self.table_order = [src.lower() for src in tables]
        self.columns = {
            table.lower(): {src.lower(): dst for src, dst in cols.items()}
            for table, cols in columns.items()
        }

        column_names = [name for cols in self.columns.values() for name in cols]
        table_alt = _alternation(self.tables) or r'(?!x)x'
        column_alt = _alternation(column_names) or r'(?!x)x'

        self.table_pattern = re.compile(rf'(?<!\w)(?:{table_alt})(?!\w)', re.IGNORECASE)
        self.alias_pattern = re.compile(
            rf'(?<!\w)(?P<table>{table_alt})(?!\w)[`"\]]?\s+(?:AS\s+)?[`"\[]?(?P<alias>[A-Za-z_]\w*)',
            re.IGNORECASE
        )
        self.token_pattern = re.compile(
            rf'(?<!\w)(?:'
            rf'(?P<qual>[A-Za-z_]\w*)(?P<sep>[`"\]]?\s*\.\s*[`"\[]?)(?P<qcol>{column_alt})'
            rf'|(?P<table>{table_alt})'
            rf'|(?P<col>{column_alt})'
            rf')(?!\w)',
            re.IGNORECASE
        )

    def translate(self, text: str, skip_literals: bool = True) -> str:
        if not self.tables:
            return text

        segments = _split_literals(text) if skip_literals else [(text, False)]
        code = ' '.join(segment for segment, is_literal in segments if not is_literal)
        aliases = self._collect_aliases(code)
        referenced = self._referenced_tables(code)

        def replace(match: re.Match) -> str:
            if match.group('table'):
                return self.tables[match.group('table').lower()]
            if match.group('qcol'):
                qual = match.group('qual')
                qual_table = qual.lower()
                if qual_table not in self.tables:
                    qual_table = aliases.get(qual_table)
                    new_qual = qual
                else:
                    new_qual = self.tables[qual_table]
                if qual_table is not None:
                    column = self.columns.get(qual_table, {}).get(match.group('qcol').lower())
                    return new_qual + match.group('sep') + (column or match.group('qcol'))
                return qual + match.group('sep') + self._resolve(match.group('qcol'), referenced)
            return self._resolve(match.group('col'), referenced)

        return ''.join(
            segment if is_literal else self.token_pattern.sub(replace, segment)
            for segment, is_literal in segments
        )

    def _resolve(self, column: str, referenced: List[str]) -> str:
        key = column.lower()
        for table in referenced + self.table_order:
            mapped = self.columns.get(table, {}).get(key)
            if mapped is not None:
                return mapped
        return column

    def _collect_aliases(self, code: str) -> Dict[str, str]:
        aliases = {}
        for match in self.alias_pattern.finditer(code):
            alias = match.group('alias')
            if alias.upper() in _NOT_ALIASES or alias.lower() in self.tables:
                continue
            aliases[alias.lower()] = match.group('table').lower()
        return aliases

    def _referenced_tables(self, code: str) -> List[str]:
        referenced = []
        for match in self.table_pattern.finditer(code):
            table = match.group(0).lower()
            if table not in referenced:
                referenced.append(table)
        return referenced


def _split_literals(text: str) -> List[Tuple[str, bool]]:
    """Split text into (segment, is_literal) pairs."""
    segments = []
    position = 0
    for match in _STRING_LITERAL.finditer(text):
        if match.start() > position:
            segments.append((text[position:match.start()], False))
        segments.append((match.group(0), True))
        position = match.end()
    if position < len(text):
        segments.append((text[position:], False))
    return segments
