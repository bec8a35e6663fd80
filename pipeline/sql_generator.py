"""
SQL Generator Module

Generates SQL queries from natural language questions using LLM.
"""

import re
import sqlparse

from config import (
    SQL_GENERATION_PROMPT,
    SQL_GENERATION_USER_PROMPT,
    DIALECT_TIPS,
    DEFAULT_ROW_LIMIT,
    READ_ONLY_RULE,
    LIMITED_WRITE_RULE,
)
from pipeline.schema import Schema
from pipeline.schema_processor import build_compact_schema, build_schema_description, infer_relationships
from security import Policy
from utils.openai_client import get_client


# Lines starting with one of these begin the statement; anything above is prose
SQL_START_KEYWORDS = (
    'SELECT', 'WITH', 'INSERT', 'UPDATE', 'DELETE', 'CREATE', 'ALTER', 'DROP',
    'TRUNCATE', 'GRANT', 'REVOKE', 'EXEC', 'EXECUTE', 'CALL', '(',
)


def build_generation_prompt(schema: Schema, dialect: str, policy: Policy) -> str:
    """
    Build the system prompt for SQL generation.

    Args:
        schema: Schema shown to the LLM (possibly anonymized)
        dialect: Database type, e.g. "postgresql"
        policy: Permission policy the SQL must respect

    Returns:
        System prompt text
    """
    dialect = str(getattr(dialect, "value", dialect))
    relationships = infer_relationships(schema)
    relationships_block = (
        "\nRELATIONSHIPS:\n" + "\n".join(relationships) + "\n"
        if relationships else ""
    )
    query_rules = READ_ONLY_RULE if Policy(policy) is Policy.READ_ONLY else LIMITED_WRITE_RULE

    return SQL_GENERATION_PROMPT.format(
        dialect=dialect.upper(),
        query_rules=query_rules,
        row_limit=DEFAULT_ROW_LIMIT,
        dialect_tips=DIALECT_TIPS.get(dialect, ""),
        compact_schema=build_compact_schema(schema),
        schema_description=build_schema_description(schema),
        relationships=relationships_block,
    )


def generate_sql(question: str, schema: Schema, dialect: str, policy: Policy = Policy.READ_ONLY) -> str:
    """
    Generate a SQL query for a question.

    Args:
        question: Natural language question
        schema: Database schema (real or anonymized)
        dialect: Database type, passed through to the prompt
        policy: Permission policy

    Returns:
        Generated SQL query (may be empty if the model returned nothing)
    """
    client = get_client()

    response = client.generate_text(
        SQL_GENERATION_USER_PROMPT.format(question=question),
        system_prompt=build_generation_prompt(schema, dialect, policy),
    )

    return extract_sql_from_response(response)


def extract_sql_from_response(response: str) -> str:
    """
    Extract clean SQL query from LLM response.

    Handles various formats like:
    - Raw SQL
    - SQL in code blocks
    - SQL preceded by an explanation

    Nothing after the start of the statement is dropped, so a second
    statement appended by the model still reaches policy validation.

    Args:
        response: Raw LLM response

    Returns:
        Clean SQL query
    """
    if not response:
        return ""

    text = response.strip()

    # Try to find SQL in code blocks first
    code_block_pattern = r'```(?:sql)?\s*(.*?)```'
    matches = re.findall(code_block_pattern, text, re.DOTALL | re.IGNORECASE)
    if matches:
        return "\n".join(m.strip() for m in matches if m.strip())

    # Unterminated fence
    text = re.sub(r'^```(?:sql)?', '', text, flags=re.IGNORECASE)
    text = re.sub(r'```$', '', text).strip()

    lines = text.split('\n')
    for index, line in enumerate(lines):
        if line.strip().upper().startswith(SQL_START_KEYWORDS):
            return '\n'.join(lines[index:]).strip()

    # Fallback: return cleaned response
    return text


def format_sql(sql: str) -> str:
    """
    Format SQL for better readability.

    Args:
        sql: Raw SQL query

    Returns:
        Formatted SQL query
    """
    return sqlparse.format(
        sql,
        reindent=True,
        keyword_case='upper',
    )
