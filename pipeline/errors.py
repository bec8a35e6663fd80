"""
Pipeline Errors

Exception types raised by the pipeline components and the database adapters.
The orchestrator turns them into PipelineResult values.
"""


class NL2SQLError(Exception):
    """Base class for pipeline errors."""


class PolicyViolation(NL2SQLError):
    """SQL was rejected by the permission policy. Never retried."""


class GenerationFailure(NL2SQLError):
    """The generator or repairer errored or returned no SQL."""


class ExecutionFailure(NL2SQLError):
    """The database rejected the statement, timed out, or could not be reached."""


class QueryCancelled(NL2SQLError):
    """The caller abandoned the request."""
