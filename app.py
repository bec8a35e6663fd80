"""
HumanQL - Flask Web Application

Ask questions about a PostgreSQL, MySQL or SQLite database in plain language.

Safety features:
- Read-only policy by default; DROP/TRUNCATE/ALTER are never allowed
- Row limits on every statement, execution timeouts
- Optional schema anonymization (the LLM sees table_1/col_1)
- Optional privacy mode (result rows are never sent to the LLM)
"""

import logging

from flask import Flask, request, jsonify

from config import (
    ENABLE_SECURITY_LOGGING,
    LOG_LEVEL,
    LOG_JSON,
    DEFAULT_LOCALE,
)
from pipeline.cache import QueryCache
from pipeline.core import NL2SQLPipeline, QueryRequest
from pipeline.errors import ExecutionFailure, QueryCancelled
from pipeline.history import QueryHistory
from pipeline.schema import Schema
from pipeline.schema_processor import parse_ddl
from pipeline.sql_generator import format_sql
from utils.db_adapter import DatabaseType, create_adapter, detect_database_type
from utils.logger import configure_logging
from utils.openai_client import is_local_llm


logger = logging.getLogger(__name__)

app = Flask(__name__)

cache = QueryCache()
history = QueryHistory()
pipeline = NL2SQLPipeline(
    cache=cache,
    history=history,
    enable_security_logging=ENABLE_SECURITY_LOGGING,
)

# Demo schema for users to try without their own database
DEMO_SCHEMA = Schema.from_dict({
    "tables": [
        {
            "name": "users",
            "columns": [
                {"name": "id", "type": "integer", "isPrimaryKey": True, "nullable": False},
                {"name": "email", "type": "varchar"},
                {"name": "name", "type": "varchar"},
                {"name": "created_at", "type": "timestamp"},
                {"name": "is_active", "type": "boolean"},
            ],
        },
        {
            "name": "orders",
            "columns": [
                {"name": "id", "type": "integer", "isPrimaryKey": True, "nullable": False},
                {"name": "user_id", "type": "integer"},
                {"name": "total", "type": "decimal"},
                {"name": "status", "type": "varchar"},
                {"name": "created_at", "type": "timestamp"},
            ],
            "foreignKeys": [
                {"column": "user_id", "referencesTable": "users", "referencesColumn": "id"},
            ],
        },
        {
            "name": "products",
            "columns": [
                {"name": "id", "type": "integer", "isPrimaryKey": True, "nullable": False},
                {"name": "name", "type": "varchar"},
                {"name": "price", "type": "decimal"},
                {"name": "category", "type": "varchar"},
                {"name": "stock", "type": "integer"},
            ],
        },
        {
            "name": "order_items",
            "columns": [
                {"name": "id", "type": "integer", "isPrimaryKey": True, "nullable": False},
                {"name": "order_id", "type": "integer"},
                {"name": "product_id", "type": "integer"},
                {"name": "quantity", "type": "integer"},
                {"name": "price", "type": "decimal"},
            ],
            "foreignKeys": [
                {"column": "order_id", "referencesTable": "orders", "referencesColumn": "id"},
                {"column": "product_id", "referencesTable": "products", "referencesColumn": "id"},
            ],
        },
    ],
})


def _error(message: str, status: int, **extra):
    body = {"success": False, "error": message}
    body.update(extra)
    return jsonify(body), status


def _parse_schema(raw) -> Schema:
    """Schema from the JSON shape or from CREATE TABLE text."""
    if isinstance(raw, str):
        return parse_ddl(raw)
    return Schema.from_dict(raw)


def _resolve_database_type(connection_string: str, provided):
    if provided:
        return DatabaseType(provided)
    return detect_database_type(connection_string)


@app.route('/api/connect', methods=['POST'])
def connect():
    """
    Connect to a database and return its schema.

    Expects JSON body with:
    - connectionString: Database URL
    - dbType: Optional; detected from the URL scheme when missing

    Returns JSON with:
    - schema: Tables, columns and keys
    - isReadOnly: True when the user has no write privileges
    - dbType: Database type used
    """
    data = request.get_json(silent=True) or {}
    connection_string = (data.get('connectionString') or '').strip()

    if not connection_string:
        return _error('Connection string is required', 400)

    try:
        db_type = _resolve_database_type(connection_string, data.get('dbType'))
    except ValueError:
        return _error(f"Unsupported database type: {data.get('dbType')}", 400)

    if db_type is None:
        return _error('Could not detect database type. Use postgresql://, mysql:// or sqlite:// prefix.', 400)

    adapter = create_adapter(db_type, connection_string)

    try:
        adapter.connect()
        schema = adapter.get_schema()
        has_write_access = adapter.check_write_access()
    except ExecutionFailure as e:
        logger.error("Connection error: %s", e)
        return _error(str(e), 500)
    finally:
        adapter.disconnect()

    return jsonify({
        'success': True,
        'schema': schema.to_dict(),
        'isReadOnly': not has_write_access,
        'dbType': db_type.value,
    })


@app.route('/api/query', methods=['POST'])
def query():
    """
    Answer a natural language question against a database.

    Expects JSON body with:
    - connectionString, question, schema (JSON or CREATE TABLE text), dbType
    - readOnlyMode (default true), locale, privacyMode, anonymizeSchema

    Returns JSON with:
    - sql / formattedSql: Executed statement
    - results / columns: Rows returned
    - summary: Short description of the results (null in privacy mode)
    - wasRepaired: True if the first statement failed and was fixed
    - cached: True if served from the result cache
    """
    data = request.get_json(silent=True) or {}

    connection_string = data.get('connectionString')
    question = (data.get('question') or '').strip()
    raw_schema = data.get('schema')
    db_type = data.get('dbType')

    if not connection_string or not question or not raw_schema or not db_type:
        return _error('Missing required fields', 400)

    try:
        db_type = DatabaseType(db_type)
        schema = _parse_schema(raw_schema)
    except (ValueError, KeyError, TypeError) as e:
        return _error(f'Invalid request: {e}', 400)

    query_request = QueryRequest(
        connection_id=connection_string,
        question=question,
        schema=schema,
        dialect=db_type.value,
        read_only=data.get('readOnlyMode', True) is not False,
        locale=data.get('locale') or DEFAULT_LOCALE,
        privacy_mode=data.get('privacyMode') is True,
        anonymize=data.get('anonymizeSchema') is True,
    )

    try:
        result = pipeline.run(query_request, create_adapter(db_type, connection_string))
    except QueryCancelled as e:
        return _error(str(e), 499)
    except Exception as e:
        logger.exception("Unexpected error while answering question")
        return _error(f'An unexpected error occurred: {e}', 500)

    body = result.to_dict()
    if not result.success:
        return jsonify(body), 400 if result.policy_violation else 500

    body['formattedSql'] = format_sql(result.sql)
    return jsonify(body)


@app.route('/api/demo')
def demo():
    """Demo schema for trying the app without a database."""
    return jsonify({
        'success': True,
        'schema': DEMO_SCHEMA.to_dict(),
        'isReadOnly': True,
        'dbType': DatabaseType.POSTGRESQL.value,
        'isDemo': True,
    })


@app.route('/api/config')
def llm_config():
    """Which LLM backend is in use."""
    local = is_local_llm()
    return jsonify({
        'isLocalLLM': local,
        'llmProvider': 'local' if local else 'openai',
    })


@app.route('/api/history', methods=['GET'])
def list_history():
    search = request.args.get('search', '').strip()
    if search:
        items = history.search(search)
    elif request.args.get('favorites') in ('1', 'true'):
        items = history.favorites()
    else:
        items = history.items()
    return jsonify({'success': True, 'items': [item.to_dict() for item in items]})


@app.route('/api/history/<item_id>/favorite', methods=['POST'])
def toggle_favorite(item_id):
    item = history.toggle_favorite(item_id)
    if item is None:
        return _error('History item not found', 404)
    return jsonify({'success': True, 'item': item.to_dict()})


@app.route('/api/history/<item_id>', methods=['DELETE'])
def delete_history_item(item_id):
    if not history.delete(item_id):
        return _error('History item not found', 404)
    return jsonify({'success': True})


@app.route('/api/history', methods=['DELETE'])
def clear_history():
    keep_favorites = request.args.get('keepFavorites', 'true') != 'false'
    history.clear(keep_favorites=keep_favorites)
    return jsonify({'success': True})


@app.route('/health')
def health():
    """Health check endpoint."""
    return jsonify({'status': 'ok', 'cache': cache.stats()})


if __name__ == '__main__':
    configure_logging(LOG_LEVEL, LOG_JSON)
    logger.info("HumanQL starting at http://localhost:5000 (LLM provider: %s)",
                'local' if is_local_llm() else 'openai')

    app.run(debug=False, port=5000, threaded=True)
