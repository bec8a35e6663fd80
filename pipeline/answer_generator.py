"""
Answer Generator Module

Generates a short human-readable summary of query results.
"""

from typing import Any, Dict, List

from config import (
    SUMMARY_PROMPTS,
    SUMMARY_USER_PROMPTS,
    SUMMARY_DATA_LABELS,
    SUMMARY_FALLBACKS,
    SUMMARY_MODEL_NAME,
    SUMMARY_MAX_TOKENS,
    SUMMARY_TEMPERATURE,
    SUPPORTED_LOCALES,
    DEFAULT_LOCALE,
)
from utils.openai_client import get_client


SAMPLE_ROWS = 5


def build_summary_prompt(
    question: str,
    rows: List[Dict[str, Any]],
    columns: List[str],
    locale: str = DEFAULT_LOCALE
) -> str:
    """
    Build the user prompt describing the results.

    Only the first few rows are included.
    """
    locale = locale if locale in SUPPORTED_LOCALES else DEFAULT_LOCALE
    data_label, no_data = SUMMARY_DATA_LABELS[locale]

    if rows:
        sample = "\n".join(
            ", ".join(f"{col}: {row.get(col)}" for col in columns)
            for row in rows[:SAMPLE_ROWS]
        )
        data = f"{data_label}\n{sample}"
    else:
        data = no_data

    return SUMMARY_USER_PROMPTS[locale].format(
        question=question,
        row_count=len(rows),
        columns=", ".join(columns),
        data=data,
    )


def generate_summary(
    question: str,
    sql: str,
    rows: List[Dict[str, Any]],
    columns: List[str],
    locale: str = DEFAULT_LOCALE
) -> str:
    """
    Generate a 1-2 sentence summary of what the query returned.

    Args:
        question: Original natural language question
        sql: Executed SQL query
        rows: Result rows
        columns: Result column names
        locale: "en" or "ru"

    Returns:
        Summary text
    """
    locale = locale if locale in SUPPORTED_LOCALES else DEFAULT_LOCALE
    client = get_client()

    response = client.generate_text(
        build_summary_prompt(question, rows, columns, locale),
        system_prompt=SUMMARY_PROMPTS[locale],
        model=SUMMARY_MODEL_NAME,
        max_tokens=SUMMARY_MAX_TOKENS,
        temperature=SUMMARY_TEMPERATURE,
    )

    return clean_answer(response) or SUMMARY_FALLBACKS[locale].format(row_count=len(rows))


def clean_answer(answer: str) -> str:
    """
    Clean up the answer text.

    Args:
        answer: Raw answer from LLM

    Returns:
        Cleaned answer text
    """
    answer = (answer or "").strip()

    # Remove common prefixes the LLM might add
    prefixes_to_remove = [
        "Summary:",
        "Answer:",
        "Итог:",
    ]

    for prefix in prefixes_to_remove:
        if answer.lower().startswith(prefix.lower()):
            answer = answer[len(prefix):].strip()

    return answer
