"""
Security Module for HumanQL Pipeline

Static checks applied to every generated statement before it reaches a database:
- Permission policy validation (read-only vs. limited-write keyword sets)
- Row-limit enforcement on unbounded statements

Validation is keyword based: the statement is never parsed, and a forbidden
keyword anywhere in the text (subqueries, CTEs, comments) rejects it.
"""

import re
import logging
import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass

from config import DEFAULT_ROW_LIMIT


logger = logging.getLogger(__name__)


class Policy(str, Enum):
    """Permission mode governing which keywords are forbidden."""
    READ_ONLY = "read_only"
    LIMITED_WRITE = "limited_write"

    @classmethod
    def from_read_only(cls, read_only: bool) -> "Policy":
        return cls.READ_ONLY if read_only else cls.LIMITED_WRITE


FORBIDDEN_KEYWORDS_READ_ONLY = (
    'DROP',
    'DELETE',
    'UPDATE',
    'INSERT',
    'TRUNCATE',
    'ALTER',
    'CREATE',
    'GRANT',
    'REVOKE',
    'EXEC',
    'EXECUTE',
    'CALL',
)

# Forbidden even when writes are allowed
ALWAYS_FORBIDDEN = (
    'DROP',
    'TRUNCATE',
    'ALTER',
    'CREATE',
    'GRANT',
    'REVOKE',
)

READ_ONLY_LEADING_PATTERN = re.compile(r'^(?:SELECT|WITH)\b', re.IGNORECASE)
LIMIT_PATTERN = re.compile(r'\bLIMIT\b', re.IGNORECASE)


@dataclass(frozen=True)
class PolicyDecision:
    """Result of policy validation."""
    valid: bool
    reason: Optional[str] = None


class SQLPolicyValidator:
    """
    Classifies SQL strings as permitted or forbidden under a Policy.

    Implements two checks:
    1. Whole-word keyword matching against the policy's forbidden set
    2. Leading-keyword rule (SELECT/WITH) under READ_ONLY
    """

    def __init__(self, enable_logging: bool = False):
        self.enable_logging = enable_logging
        self._security_events = []
        self._keyword_patterns: Dict[Policy, List[Tuple[str, re.Pattern]]] = {
            Policy.READ_ONLY: self._compile(FORBIDDEN_KEYWORDS_READ_ONLY),
            Policy.LIMITED_WRITE: self._compile(ALWAYS_FORBIDDEN),
        }

    @staticmethod
    def _compile(keywords) -> List[Tuple[str, re.Pattern]]:
        # \b keeps identifiers like "dropdown" or "created_at" from matching
        return [
            (keyword, re.compile(rf'\b{keyword}\b', re.IGNORECASE))
            for keyword in keywords
        ]

    def validate(self, sql: str, policy: Policy = Policy.READ_ONLY) -> PolicyDecision:
        """
        Validate a SQL string against a permission policy.

        Args:
            sql: SQL statement to check
            policy: READ_ONLY or LIMITED_WRITE

        Returns:
            PolicyDecision with the first violated rule as the reason
        """
        policy = Policy(policy)

        for keyword, pattern in self._keyword_patterns[policy]:
            if pattern.search(sql):
                return self._reject(sql, policy, f"SQL contains forbidden keyword: {keyword}.")

        if policy is Policy.READ_ONLY:
            if not READ_ONLY_LEADING_PATTERN.match(sql.strip()):
                return self._reject(sql, policy, "Only SELECT queries are allowed.")

        return PolicyDecision(valid=True)

    def _reject(self, sql: str, policy: Policy, reason: str) -> PolicyDecision:
        if self.enable_logging:
            self._log_security_event("POLICY_REJECTED", sql, [policy.value, reason])
        return PolicyDecision(valid=False, reason=reason)

    def _log_security_event(self, event_type: str, content: str, details: List[str]):
        """Log security event for monitoring."""
        event = {
            "timestamp": datetime.datetime.now().isoformat(),
            "type": event_type,
            "content_preview": content[:100] + "..." if len(content) > 100 else content,
            "details": details
        }
        self._security_events.append(event)
        logger.warning("[SECURITY] %s: %s", event_type, details)

    def get_security_events(self) -> List[dict]:
        """Get recorded security events."""
        return self._security_events.copy()


_default_validator = SQLPolicyValidator()


def validate_sql(sql: str, policy: Policy = Policy.READ_ONLY) -> PolicyDecision:
    """
    Validate SQL with the shared, non-logging validator.

    Args:
        sql: SQL statement to check
        policy: Permission policy

    Returns:
        PolicyDecision
    """
    return _default_validator.validate(sql, policy)


def ensure_limit(sql: str, max_rows: int = DEFAULT_ROW_LIMIT) -> str:
    """
    Guarantee a row bound on a statement.

    A statement that already mentions LIMIT is returned unchanged, whatever
    its value. Otherwise a single trailing semicolon is dropped and
    ``LIMIT <max_rows>`` is appended.

    Args:
        sql: SQL statement
        max_rows: Row bound to append

    Returns:
        SQL with a LIMIT clause
    """
    if LIMIT_PATTERN.search(sql):
        return sql

    clean_sql = sql.strip()
    if clean_sql.endswith(';'):
        clean_sql = clean_sql[:-1].rstrip()

    return f"{clean_sql} LIMIT {max_rows}"
