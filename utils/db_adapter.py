"""
Database Adapters

Thin SQLAlchemy wrappers exposing connect / disconnect / get_schema /
execute_query / check_write_access for each supported database type.
Every database error is raised as ExecutionFailure carrying the driver's
own message, which is what the repair prompt needs.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from config import QUERY_TIMEOUT_MS, MAX_RESULT_ROWS
from pipeline.errors import ExecutionFailure
from pipeline.schema import Column, ForeignKey, Schema, Table


logger = logging.getLogger(__name__)


class DatabaseType(str, Enum):
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"


@dataclass
class QueryResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)


def _error_message(error: Exception) -> str:
    if isinstance(error, DBAPIError) and error.orig is not None:
        return str(error.orig).strip()
    return str(error).strip()


class DatabaseAdapter:
    """
    Base class for all SQLAlchemy-based adapters.
    Implements common logic for connection, execution, and schema fetching.
    """

    database_type: DatabaseType = None

    def __init__(self, connection_string: str):
        self.connection_string = connection_string
        self.engine: Optional[Engine] = None

    def __str__(self):
        return f"{self.database_type.value} adapter"

    def _engine_url(self) -> str:
        return self.connection_string

    def connect(self) -> None:
        if not self.connection_string:
            raise ExecutionFailure(f"Connection string is required for {self}")
        try:
            # One request, one session: no pooling across requests
            self.engine = create_engine(self._engine_url(), poolclass=NullPool)
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("Failed to connect with %s: %s", self, _error_message(e))
            self.disconnect()
            raise ExecutionFailure(_error_message(e)) from e

    def disconnect(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    def _require_engine(self) -> Engine:
        if self.engine is None:
            raise ExecutionFailure("Not connected")
        return self.engine

    def get_schema(self) -> Schema:
        engine = self._require_engine()
        try:
            inspector = inspect(engine)
            tables = []
            for table_name in inspector.get_table_names():
                pk_columns = inspector.get_pk_constraint(table_name).get("constrained_columns") or []

                columns = []
                for col_info in inspector.get_columns(table_name):
                    default = col_info.get("default")
                    columns.append(Column(
                        name=col_info["name"],
                        type=str(col_info["type"]).lower(),
                        nullable=bool(col_info.get("nullable", True)),
                        is_primary_key=col_info["name"] in pk_columns,
                        default=str(default) if default is not None else None,
                    ))

                foreign_keys = []
                for fk_info in inspector.get_foreign_keys(table_name):
                    for column, referred in zip(fk_info["constrained_columns"], fk_info["referred_columns"]):
                        foreign_keys.append(ForeignKey(
                            column=column,
                            references_table=fk_info["referred_table"],
                            references_column=referred,
                        ))

                tables.append(Table(
                    name=table_name,
                    columns=columns,
                    primary_key=list(pk_columns) or None,
                    foreign_keys=foreign_keys or None,
                ))
        except SQLAlchemyError as e:
            logger.error("Failed to fetch schema for %s: %s", self, _error_message(e))
            raise ExecutionFailure(_error_message(e)) from e

        return Schema(tables=tables)

    def execute_query(self, sql: str, timeout_ms: int = QUERY_TIMEOUT_MS,
                      max_rows: int = MAX_RESULT_ROWS) -> QueryResult:
        """
        Run one statement on a fresh connection.

        At most max_rows rows are fetched, whatever the statement's LIMIT.

        Raises:
            ExecutionFailure: On any database error, including timeouts
        """
        engine = self._require_engine()
        try:
            with engine.connect() as conn:
                self._apply_timeout(conn, timeout_ms)
                try:
                    # exec_driver_sql: the statement goes to the driver as-is,
                    # without bind-parameter parsing of ':name' tokens
                    result = conn.exec_driver_sql(sql)
                    if result.returns_rows:
                        columns = list(result.keys())
                        rows = [dict(zip(columns, row)) for row in result.fetchmany(max_rows)]
                        result.close()
                    else:
                        columns, rows = [], []
                    conn.commit()
                finally:
                    self._clear_timeout(conn)
        except SQLAlchemyError as e:
            raise ExecutionFailure(_error_message(e)) from e

        return QueryResult(rows=rows, columns=columns)

    def check_write_access(self) -> bool:
        raise NotImplementedError

    def _apply_timeout(self, conn: Connection, timeout_ms: int) -> None:
        raise NotImplementedError

    def _clear_timeout(self, conn: Connection) -> None:
        pass


class PostgreSQLAdapter(DatabaseAdapter):
    database_type = DatabaseType.POSTGRESQL

    def _engine_url(self) -> str:
        # SQLAlchemy only accepts the postgresql:// scheme
        if self.connection_string.startswith("postgres://"):
            return "postgresql://" + self.connection_string[len("postgres://"):]
        return self.connection_string

    def _apply_timeout(self, conn: Connection, timeout_ms: int) -> None:
        conn.exec_driver_sql(f"SET statement_timeout = {int(timeout_ms)}")

    def check_write_access(self) -> bool:
        engine = self._require_engine()
        try:
            with engine.connect() as conn:
                write_count = conn.execute(text("""
                    SELECT COUNT(*)
                    FROM information_schema.table_privileges
                    WHERE grantee = current_user
                      AND privilege_type IN ('INSERT', 'UPDATE', 'DELETE', 'TRUNCATE')
                      AND table_schema = 'public'
                """)).scalar()
                is_superuser = conn.execute(text(
                    "SELECT rolsuper FROM pg_roles WHERE rolname = current_user"
                )).scalar()
        except SQLAlchemyError as e:
            raise ExecutionFailure(_error_message(e)) from e

        return bool(write_count) or is_superuser is True


class MySQLAdapter(DatabaseAdapter):
    database_type = DatabaseType.MYSQL

    def _engine_url(self) -> str:
        if self.connection_string.startswith("mysql://"):
            return "mysql+pymysql://" + self.connection_string[len("mysql://"):]
        return self.connection_string

    def _apply_timeout(self, conn: Connection, timeout_ms: int) -> None:
        conn.exec_driver_sql(f"SET SESSION MAX_EXECUTION_TIME = {int(timeout_ms)}")

    def check_write_access(self) -> bool:
        engine = self._require_engine()
        try:
            with engine.connect() as conn:
                write_count = conn.execute(text("""
                    SELECT COUNT(*)
                    FROM information_schema.table_privileges
                    WHERE grantee LIKE CONCAT('%', SUBSTRING_INDEX(CURRENT_USER(), '@', 1), '%')
                      AND privilege_type IN ('INSERT', 'UPDATE', 'DELETE')
                      AND table_schema = DATABASE()
                """)).scalar()
        except SQLAlchemyError as e:
            # Privileges could not be read; assume the user can write
            logger.warning("Could not check write access for %s: %s", self, _error_message(e))
            return True

        return bool(write_count)


class SQLiteAdapter(DatabaseAdapter):
    database_type = DatabaseType.SQLITE

    PROGRESS_STEPS = 1000

    def _apply_timeout(self, conn: Connection, timeout_ms: int) -> None:
        # SQLite has no statement timeout; abort from the progress handler instead
        deadline = time.monotonic() + timeout_ms / 1000.0
        driver_connection = conn.connection.driver_connection
        driver_connection.set_progress_handler(
            lambda: 1 if time.monotonic() > deadline else 0,
            self.PROGRESS_STEPS,
        )

    def _clear_timeout(self, conn: Connection) -> None:
        conn.connection.driver_connection.set_progress_handler(None, 0)

    def check_write_access(self) -> bool:
        engine = self._require_engine()
        try:
            with engine.connect() as conn:
                query_only = conn.exec_driver_sql("PRAGMA query_only").scalar()
        except SQLAlchemyError as e:
            raise ExecutionFailure(_error_message(e)) from e
        return not query_only


_ADAPTERS = {
    DatabaseType.POSTGRESQL: PostgreSQLAdapter,
    DatabaseType.MYSQL: MySQLAdapter,
    DatabaseType.SQLITE: SQLiteAdapter,
}


def create_adapter(database_type, connection_string: str) -> DatabaseAdapter:
    try:
        database_type = DatabaseType(database_type)
    except ValueError:
        raise ValueError(f"Unsupported database type: {database_type}")
    return _ADAPTERS[database_type](connection_string)


def detect_database_type(connection_string: str) -> Optional[DatabaseType]:
    if connection_string.startswith(("postgresql://", "postgres://", "postgresql+")):
        return DatabaseType.POSTGRESQL
    if connection_string.startswith(("mysql://", "mysql+")):
        return DatabaseType.MYSQL
    if connection_string.startswith(("sqlite://", "sqlite+")):
        return DatabaseType.SQLITE
    return None
