"""
HumanQL Core Pipeline

Turns a question into executed, policy-checked SQL:

    generate -> validate -> execute -> (on failure) repair -> validate -> execute ...

Validation is static and never retried; execution failures are repaired with
the database error as context, within a fixed attempt budget.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import (
    MAX_REPAIR_ATTEMPTS,
    DEFAULT_ROW_LIMIT,
    QUERY_TIMEOUT_MS,
    MAX_RESULT_ROWS,
    DEFAULT_LOCALE,
)
from pipeline.anonymizer import AnonymizationMap, anonymize_schema, anonymize_sql, deanonymize_sql
from pipeline.answer_generator import generate_summary
from pipeline.cache import QueryCache
from pipeline.errors import ExecutionFailure, GenerationFailure, PolicyViolation, QueryCancelled
from pipeline.history import QueryHistory
from pipeline.repair import fix_sql
from pipeline.schema import Schema
from pipeline.sql_generator import extract_sql_from_response, generate_sql
from security import READ_ONLY_LEADING_PATTERN, Policy, SQLPolicyValidator, ensure_limit


logger = logging.getLogger(__name__)


@dataclass
class QueryRequest:
    """One question against one connection."""
    connection_id: str
    question: str
    schema: Schema
    dialect: str
    read_only: bool = True
    locale: str = DEFAULT_LOCALE
    privacy_mode: bool = False
    anonymize: bool = False

    @property
    def policy(self) -> Policy:
        return Policy.from_read_only(self.read_only)


@dataclass
class PipelineResult:
    """Result from the HumanQL pipeline."""
    success: bool
    sql: str = ""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    summary: Optional[str] = None
    was_repaired: bool = False
    cached: bool = False
    error: str = ""
    policy_violation: bool = False
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {
                "success": False,
                "error": self.error,
                "policyViolation": self.policy_violation,
            }
        return {
            "success": True,
            "sql": self.sql,
            "results": self.rows,
            "columns": self.columns,
            "summary": self.summary,
            "wasRepaired": self.was_repaired,
            "cached": self.cached,
        }


@dataclass
class RetryState:
    """Per-request loop state; never shared."""
    sql: Optional[str] = None
    attempt: int = 0
    last_error: str = ""
    last_execution_error: str = ""
    was_repaired: bool = False


class NL2SQLPipeline:
    """
    Query orchestrator.

    Collaborators are injectable so tests (and alternative backends) can
    replace the LLM calls:
    - generator(question, schema, dialect, policy) -> sql text
    - repairer(question, failed_sql, error_message, schema, dialect) -> sql text
    - summarizer(question, sql, rows, columns, locale) -> prose

    The cache and history are owned by whoever constructs the pipeline.
    """

    def __init__(
        self,
        cache: Optional[QueryCache] = None,
        history: Optional[QueryHistory] = None,
        generator: Callable[..., str] = generate_sql,
        repairer: Callable[..., str] = fix_sql,
        summarizer: Callable[..., str] = generate_summary,
        max_repairs: int = MAX_REPAIR_ATTEMPTS,
        row_limit: int = DEFAULT_ROW_LIMIT,
        timeout_ms: int = QUERY_TIMEOUT_MS,
        max_rows: int = MAX_RESULT_ROWS,
        enable_security_logging: bool = False
    ):
        self.cache = cache
        self.history = history
        self.generator = generator
        self.repairer = repairer
        self.summarizer = summarizer
        self.max_repairs = max_repairs
        self.row_limit = row_limit
        self.timeout_ms = timeout_ms
        self.max_rows = max_rows
        self.validator = SQLPolicyValidator(enable_logging=enable_security_logging)

    def run(self, request: QueryRequest, adapter, cancel_event: Optional[threading.Event] = None) -> PipelineResult:
        """
        Answer one question.

        Args:
            request: The question, schema and flags
            adapter: Database adapter for this request; connected and
                disconnected here
            cancel_event: Set by the caller to abandon the request

        Returns:
            PipelineResult; exactly one of result, policy error, or final
            execution error

        Raises:
            QueryCancelled: If cancel_event was set
        """
        question = request.question.strip() if request.question else ""
        if not question:
            return PipelineResult(success=False, error="Please provide a question")

        fingerprint = request.schema.fingerprint()

        cached = self._cache_get(request, question, fingerprint)
        if cached is not None:
            logger.info("Cache hit for question on %s", request.dialect)
            return PipelineResult(
                success=True,
                sql=cached.sql,
                rows=cached.rows,
                columns=cached.columns,
                summary=None if request.privacy_mode else cached.summary,
                cached=True,
            )

        prompt_schema, mapping = request.schema, None
        if request.anonymize:
            prompt_schema, mapping = anonymize_schema(request.schema)

        self._check_cancelled(cancel_event)
        try:
            adapter.connect()
        except ExecutionFailure as e:
            return PipelineResult(success=False, error=str(e))

        try:
            result, execution_ms = self._retry_loop(
                request, question, prompt_schema, mapping, adapter, cancel_event
            )
        except PolicyViolation as e:
            return PipelineResult(success=False, error=str(e), policy_violation=True)
        finally:
            try:
                adapter.disconnect()
            except Exception:
                logger.warning("Failed to disconnect adapter", exc_info=True)

        if not result.success:
            return result

        if not request.privacy_mode:
            self._check_cancelled(cancel_event)
            result.summary = self._summarize(request, question, result)

        self._cache_set(request, question, fingerprint, result)
        if self.history is not None:
            self.history.add(question, result.sql, len(result.rows), execution_ms)

        return result

    def _retry_loop(
        self,
        request: QueryRequest,
        question: str,
        prompt_schema: Schema,
        mapping: Optional[AnonymizationMap],
        adapter,
        cancel_event: Optional[threading.Event]
    ) -> Tuple[PipelineResult, Optional[float]]:
        state = RetryState()
        max_attempts = 1 + self.max_repairs

        while state.attempt < max_attempts:
            self._check_cancelled(cancel_event)
            repairing = state.sql is not None

            try:
                if repairing:
                    candidate = self._repair(request, question, state, prompt_schema, mapping)
                else:
                    candidate = self._generate(request, question, prompt_schema, mapping)
            except GenerationFailure as e:
                state.attempt += 1
                if state.sql is None:
                    # Nothing has executed yet, so this is the error to report
                    state.last_error = str(e)
                logger.warning("Attempt %d: generation failed: %s", state.attempt, e)
                continue

            decision = self.validator.validate(candidate, request.policy)
            if not decision.valid:
                if not repairing:
                    raise PolicyViolation(decision.reason)
                # Keep the previous SQL and error; the repair still used up an attempt
                state.attempt += 1
                logger.warning("Attempt %d: discarding repaired SQL: %s", state.attempt, decision.reason)
                continue

            state.sql = self._bound(candidate)
            state.was_repaired = state.was_repaired or repairing
            state.attempt += 1

            self._check_cancelled(cancel_event)
            started = time.perf_counter()
            try:
                query_result = adapter.execute_query(
                    state.sql, timeout_ms=self.timeout_ms, max_rows=self.max_rows
                )
            except ExecutionFailure as e:
                state.last_error = state.last_execution_error = str(e)
                logger.info("Attempt %d: execution failed: %s", state.attempt, e)
                continue
            execution_ms = (time.perf_counter() - started) * 1000

            return PipelineResult(
                success=True,
                sql=state.sql,
                rows=query_result.rows,
                columns=query_result.columns,
                was_repaired=state.was_repaired,
                attempts=state.attempt,
            ), execution_ms

        logger.warning("Giving up after %d attempts: %s", state.attempt, state.last_error)
        return PipelineResult(
            success=False,
            sql=state.sql or "",
            error=state.last_error,
            was_repaired=state.was_repaired,
            attempts=state.attempt,
        ), None

    def _generate(self, request: QueryRequest, question: str, prompt_schema: Schema,
                  mapping: Optional[AnonymizationMap]) -> str:
        text = self._call(self.generator, question, prompt_schema, request.dialect, request.policy)
        return self._clean(text, mapping)

    def _repair(self, request: QueryRequest, question: str, state: RetryState,
                prompt_schema: Schema, mapping: Optional[AnonymizationMap]) -> str:
        failed_sql, error = state.sql, state.last_execution_error
        if mapping is not None:
            # The repair prompt must not see real identifiers either
            failed_sql = anonymize_sql(failed_sql, mapping)
            error = anonymize_sql(error, mapping, skip_literals=False)

        text = self._call(self.repairer, question, failed_sql, error, prompt_schema, request.dialect)
        return self._clean(text, mapping)

    def _bound(self, sql: str) -> str:
        # Row limits apply to result-producing statements only
        if READ_ONLY_LEADING_PATTERN.match(sql.strip()):
            return ensure_limit(sql, self.row_limit)
        return sql

    @staticmethod
    def _call(collaborator: Callable[..., str], *args) -> str:
        try:
            return collaborator(*args)
        except GenerationFailure:
            raise
        except Exception as e:
            raise GenerationFailure(str(e) or type(e).__name__) from e

    @staticmethod
    def _clean(text: Optional[str], mapping: Optional[AnonymizationMap]) -> str:
        sql = extract_sql_from_response(text or "")
        if not sql:
            raise GenerationFailure("The model returned no SQL")
        if mapping is not None:
            sql = deanonymize_sql(sql, mapping)
        return sql

    def _summarize(self, request: QueryRequest, question: str, result: PipelineResult) -> Optional[str]:
        try:
            return self.summarizer(question, result.sql, result.rows, result.columns, request.locale)
        except Exception:
            logger.warning("Summary generation failed", exc_info=True)
            return None

    def _cache_get(self, request: QueryRequest, question: str, fingerprint: str):
        if self.cache is None:
            return None
        try:
            return self.cache.get(request.connection_id, question, fingerprint, request.policy)
        except Exception:
            logger.warning("Cache read failed; treating as miss", exc_info=True)
            return None

    def _cache_set(self, request: QueryRequest, question: str, fingerprint: str, result: PipelineResult) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(
                request.connection_id, question, fingerprint, request.policy,
                sql=result.sql, rows=result.rows, columns=result.columns, summary=result.summary,
            )
        except Exception:
            logger.warning("Cache write failed; skipping", exc_info=True)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise QueryCancelled("Request was cancelled")
