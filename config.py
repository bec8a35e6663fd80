# HumanQL Pipeline Configuration

import os
from dotenv import load_dotenv


load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# LLM Configuration
# LLM_BASE_URL points the client at any OpenAI-compatible server
# (Ollama, LocalAI, LM Studio, vLLM, ...)

LLM_API_KEY = os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY", "")
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))

# Model Configuration

MODEL_NAME = os.getenv("LLM_MODEL", "gpt-4o")
SUMMARY_MODEL_NAME = os.getenv("LLM_MODEL_FAST") or os.getenv("LLM_MODEL", "gpt-4o-mini")

# Generation Parameters
MAX_NEW_TOKENS = 1000
TEMPERATURE = 0.0  # SQL must be deterministic
SUMMARY_MAX_TOKENS = 200
SUMMARY_TEMPERATURE = 0.3

# Repair loop: one generation plus this many repairs
MAX_REPAIR_ATTEMPTS = int(os.getenv("MAX_REPAIR_ATTEMPTS", "2"))

# Execution Limits
DEFAULT_ROW_LIMIT = int(os.getenv("DEFAULT_ROW_LIMIT", "100"))
QUERY_TIMEOUT_MS = int(os.getenv("QUERY_TIMEOUT_MS", "10000"))
MAX_RESULT_ROWS = int(os.getenv("MAX_RESULT_ROWS", "10000"))

# Result Cache
CACHE_TTL_SECONDS = 5 * 60
CACHE_MAX_SIZE = 20

# Query History
HISTORY_MAX_ITEMS = 50

# Security / Logging
ENABLE_SECURITY_LOGGING = _env_flag("ENABLE_SECURITY_LOGGING", True)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = _env_flag("LOG_JSON", False)

SUPPORTED_LOCALES = ("en", "ru")
DEFAULT_LOCALE = "en"

# Dialect hints passed to the generator verbatim
DIALECT_TIPS = {
    "postgresql": "PostgreSQL: ILIKE for case-insensitive, COALESCE(), NOW() - INTERVAL '1 month'",
    "mysql": "MySQL: backticks for identifiers, IFNULL(), DATE_SUB(NOW(), INTERVAL 1 MONTH)",
    "sqlite": "SQLite: LIKE is case-insensitive for ASCII, IFNULL(), date('now', '-1 month')",
}

READ_ONLY_RULE = "Only SELECT allowed. No INSERT/UPDATE/DELETE."
LIMITED_WRITE_RULE = "SELECT, INSERT, UPDATE, DELETE allowed. No DROP/TRUNCATE/ALTER."

# System Prompts
SQL_GENERATION_PROMPT = """You are a {dialect} SQL generator. Convert questions to SQL.

CRITICAL RULES - VIOLATION CAUSES ERRORS:
1. USE ONLY COLUMNS FROM THE SCHEMA BELOW. Do NOT invent columns.
2. If you're unsure which column to use, use COUNT(*) or SELECT * instead of guessing.
3. Before writing any column name, verify it exists in the schema.
4. {query_rules}
5. Add LIMIT {row_limit} to non-aggregate SELECT queries.
6. Return ONLY raw SQL. No markdown, no backticks, no explanation.

{dialect_tips}

=== VALID TABLES AND COLUMNS (USE ONLY THESE) ===
{compact_schema}

=== DETAILED SCHEMA ===
{schema_description}
{relationships}
EXAMPLES:
Q: "How many users?" -> SELECT COUNT(*) FROM users;
Q: "Show all orders" -> SELECT * FROM orders LIMIT {row_limit};
Q: "Users with their orders" -> SELECT u.*, o.* FROM users u JOIN orders o ON u.id = o.user_id LIMIT {row_limit};

REMEMBER: If a column doesn't appear in the schema above, DO NOT USE IT. Use * or COUNT(*) instead."""

SQL_GENERATION_USER_PROMPT = """Question: {question}

Generate SQL using ONLY columns from the schema. If unsure, use SELECT * or COUNT(*)."""

SQL_REPAIR_PROMPT = """Fix this {dialect} SQL error. The query failed when it was executed.

VALID TABLES AND COLUMNS:
{compact_schema}
{column_guidance}
RULES:
1. Remove or replace any invalid column with one that EXISTS in the schema
2. If you can't find a matching column, use COUNT(*) or SELECT *
3. Return ONLY the fixed SQL - no explanations
{invalid_column_rule}"""

SQL_REPAIR_USER_PROMPT = """Original question: "{question}"

Failed SQL:
{sql}

Error: {error}

Fix by using ONLY columns that exist in the schema above."""

SUMMARY_PROMPTS = {
    "en": """You are a data analyst. Briefly describe the query results in English.

Rules:
- Maximum 1-2 sentences
- Only facts: number of records and key data
- No introductory phrases like "The query returned..."
- No offers of help like "If you need more data..."
- Just dry facts""",
    "ru": """Ты аналитик данных. Кратко опиши результаты запроса на русском.

Правила:
- Максимум 1-2 предложения
- Только факты: количество записей и ключевые данные
- Без вводных фраз типа "В результате запроса..."
- Без предложений помощи типа "Если нужно больше данных..."
- Просто сухие факты""",
}

SUMMARY_USER_PROMPTS = {
    "en": """Question: "{question}"
Rows found: {row_count}
Columns: {columns}
{data}""",
    "ru": """Вопрос: "{question}"
Найдено строк: {row_count}
Колонки: {columns}
{data}""",
}

SUMMARY_DATA_LABELS = {
    "en": ("Data:", "No data."),
    "ru": ("Данные:", "Данных нет."),
}

SUMMARY_FALLBACKS = {
    "en": "Found {row_count} records.",
    "ru": "Найдено {row_count} записей.",
}
