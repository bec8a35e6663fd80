"""
SQL Repair Module

Asks the LLM to fix a statement that the database rejected, using the raw
error message as context.
"""

import re
from typing import List, Optional

from config import SQL_REPAIR_PROMPT, SQL_REPAIR_USER_PROMPT
from pipeline.schema import Schema
from pipeline.schema_processor import build_compact_schema
from pipeline.sql_generator import extract_sql_from_response
from utils.openai_client import get_client


INVALID_COLUMN_PATTERNS = (
    re.compile(r'column "([^"]+)" does not exist', re.IGNORECASE),  # PostgreSQL
    re.compile(r"Unknown column '([^']+)'", re.IGNORECASE),  # MySQL
    re.compile(r'no such column: ([\w.]+)', re.IGNORECASE),  # SQLite
)


def extract_invalid_column(error_message: str) -> Optional[str]:
    """Return the column named in an unknown-column error, if any."""
    for pattern in INVALID_COLUMN_PATTERNS:
        match = pattern.search(error_message)
        if match:
            return match.group(1)
    return None


def find_relevant_tables(failed_sql: str, schema: Schema) -> List[str]:
    """Tables whose name appears in the failed SQL."""
    lowered = failed_sql.lower()
    return [
        table.name for table in schema.tables
        if re.search(rf'(?<!\w){re.escape(table.name.lower())}(?!\w)', lowered)
    ]


def build_repair_prompt(failed_sql: str, error_message: str, schema: Schema, dialect: str) -> str:
    """
    Build the system prompt for a repair call.

    Args:
        failed_sql: Statement the database rejected
        error_message: Raw database error
        schema: Schema shown to the LLM (possibly anonymized)
        dialect: Database type

    Returns:
        System prompt text
    """
    dialect = str(getattr(dialect, "value", dialect))

    column_guidance = ""
    relevant_tables = find_relevant_tables(failed_sql, schema)
    if relevant_tables:
        table_info = []
        for table_name in relevant_tables:
            table = schema.get_table(table_name)
            table_info.append(
                f"{table_name} has ONLY these columns: {', '.join(c.name for c in table.columns)}"
            )
        column_guidance = "\nVALID COLUMNS FOR TABLES IN YOUR QUERY:\n" + "\n".join(table_info) + "\n"

    invalid_column = extract_invalid_column(error_message)
    invalid_column_rule = (
        f'4. The column "{invalid_column}" does NOT exist - don\'t use it'
        if invalid_column else ""
    )

    return SQL_REPAIR_PROMPT.format(
        dialect=dialect.upper(),
        compact_schema=build_compact_schema(schema),
        column_guidance=column_guidance,
        invalid_column_rule=invalid_column_rule,
    )


def fix_sql(
    question: str,
    failed_sql: str,
    error_message: str,
    schema: Schema,
    dialect: str
) -> str:
    """
    Ask the LLM to correct a faulty SQL query.

    Args:
        question: Original question
        failed_sql: The faulty SQL query
        error_message: The database error message
        schema: Database schema (real or anonymized)
        dialect: Database type

    Returns:
        Corrected SQL query
    """
    client = get_client()

    response = client.generate_text(
        SQL_REPAIR_USER_PROMPT.format(question=question, sql=failed_sql, error=error_message),
        system_prompt=build_repair_prompt(failed_sql, error_message, schema, dialect),
    )

    return extract_sql_from_response(response)
