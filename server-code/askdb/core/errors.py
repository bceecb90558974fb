# askdb/core/errors.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    TRANSIENT_CONNECTION = "transient_connection"
    SCHEMA_INTROSPECTION_PARTIAL = "schema_introspection_partial"
    SYNTHESIS_ABSENT = "synthesis_absent"
    SYNTHESIS_INCOMPLETE = "synthesis_incomplete"
    VALIDATION_UNSAFE = "validation_unsafe"
    VALIDATION_MALFORMED = "validation_malformed"
    EXECUTION_SYNTAX_ERROR = "execution_syntax_error"
    EXECUTION_UNKNOWN_IDENTIFIER = "execution_unknown_identifier"
    EXECUTION_TYPE_MISMATCH = "execution_type_mismatch"
    EXECUTION_FAILED = "execution_failed"
    EXECUTION_CONNECTION_EXHAUSTED = "execution_connection_exhausted"
    SCHEMA_UNAVAILABLE = "schema_unavailable"


@dataclass(frozen=True)
class QueryError:
    """Structured failure handed back to the caller instead of an exception."""
    kind: ErrorKind
    message: str
    sql: Optional[str] = None
    hint: Optional[str] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.sql:
            out["sql"] = self.sql
        if self.hint:
            out["hint"] = self.hint
        if self.detail:
            out["detail"] = self.detail
        return out


class RetriesExhausted(Exception):
    """A transient failure persisted through every retry attempt."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        super().__init__(f"{operation} failed after {attempts} attempt(s): {last_error}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class SchemaUnavailableError(Exception):
    """No snapshot could be loaded or introspected."""


class UnvalidatedQueryError(Exception):
    """Raised when something other than an accepted query reaches the executor."""
