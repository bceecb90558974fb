# askdb/core/read_only_db_executor.py
from __future__ import annotations
import logging
from typing import List, Dict, Any, Optional, Union
from decimal import Decimal
from datetime import date, datetime, time, timedelta
from uuid import UUID

from sqlalchemy import text
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncEngine

from askdb.core.db_retry import RetryPolicy, execute_with_retry, sqlstate_of
from askdb.core.errors import ErrorKind, RetriesExhausted, UnvalidatedQueryError
from askdb.core.models import QueryExecutionError, QueryExecutionResult, ValidatedQuery
from askdb.core.sql_guard import apply_default_limit

logger = logging.getLogger(__name__)

SQLSTATE_KINDS = {
    "42601": ErrorKind.EXECUTION_SYNTAX_ERROR,
    "42P01": ErrorKind.EXECUTION_UNKNOWN_IDENTIFIER,
    "42703": ErrorKind.EXECUTION_UNKNOWN_IDENTIFIER,
    "42883": ErrorKind.EXECUTION_TYPE_MISMATCH,
    "42804": ErrorKind.EXECUTION_TYPE_MISMATCH,
}
HINTS = {
    ErrorKind.EXECUTION_SYNTAX_ERROR: "The generated query has a syntax error. Try rephrasing the question.",
    ErrorKind.EXECUTION_UNKNOWN_IDENTIFIER: "The query references a table or column that does not exist. Check the schema.",
    ErrorKind.EXECUTION_TYPE_MISMATCH: "The query compares or combines incompatible types.",
    ErrorKind.EXECUTION_CONNECTION_EXHAUSTED: "The database is unreachable right now. Try again shortly.",
}


def json_safe(v: Any) -> Any:
    """Coerce DB types into JSON-serializable values."""
    if isinstance(v, Decimal):
        # Use float for analytics; switch to str if you need exact precision
        return float(v)
    if isinstance(v, (date, datetime, time)):
        return v.isoformat()
    if isinstance(v, timedelta):
        return v.total_seconds()
    if isinstance(v, UUID):
        return str(v)
    return v


def classify_db_error(exc: BaseException) -> ErrorKind:
    code = sqlstate_of(exc)
    if code in SQLSTATE_KINDS:
        return SQLSTATE_KINDS[code]
    msg = str(exc).lower()
    if "does not exist" in msg:
        return ErrorKind.EXECUTION_UNKNOWN_IDENTIFIER
    if "syntax error" in msg:
        return ErrorKind.EXECUTION_SYNTAX_ERROR
    return ErrorKind.EXECUTION_FAILED


def _error_message(exc: BaseException) -> str:
    s = str(getattr(exc, "orig", None) or exc).strip()
    return s.splitlines()[0] if s else type(exc).__name__


class ReadOnlyDbExecutor:
    def __init__(
        self,
        engine: AsyncEngine,
        default_limit: int,
        statement_timeout_ms: int,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.engine = engine
        self.default_limit = default_limit
        self.statement_timeout_ms = statement_timeout_ms
        self.retry_policy = retry_policy or RetryPolicy()

    async def _run(self, sql: str, params: Optional[Dict[str, Any]] = None, *, driver_sql: bool = False) -> QueryExecutionResult:
        async with self.engine.begin() as conn:
            await conn.exec_driver_sql("SET TRANSACTION READ ONLY")
            await conn.exec_driver_sql(f"SET LOCAL statement_timeout = {int(self.statement_timeout_ms)}")
            if driver_sql:
                # Statement text reaches the driver verbatim (no ':name' bind parsing inside casts/literals)
                res = await conn.exec_driver_sql(sql)
            else:
                res = await conn.execute(text(sql), params or {})
            columns = list(res.keys())
            out: List[Dict[str, Any]] = []
            for r in res.mappings().all():
                out.append({k: json_safe(v) for k, v in dict(r).items()})
            return QueryExecutionResult(rows=out, columns=columns)

    async def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Trusted catalog queries (introspection, health). Retries transient failures."""
        result = await execute_with_retry(
            lambda: self._run(sql, params), self.retry_policy, operation_name="catalog query",
        )
        return result.rows

    async def execute_validated(self, query: ValidatedQuery) -> Union[QueryExecutionResult, QueryExecutionError]:
        if not query.accepted:
            raise UnvalidatedQueryError(f"Refusing to execute a {query.verdict.value} query")

        sql = apply_default_limit(query.sql, self.default_limit)
        try:
            return await execute_with_retry(
                lambda: self._run(sql, driver_sql=True), self.retry_policy, operation_name="query",
            )
        except RetriesExhausted as e:
            return QueryExecutionError(
                error_kind=ErrorKind.EXECUTION_CONNECTION_EXHAUSTED,
                message=str(e.last_error),
                sql=sql,
                hint=HINTS[ErrorKind.EXECUTION_CONNECTION_EXHAUSTED],
            )
        except sa_exc.DBAPIError as e:
            kind = classify_db_error(e)
            logger.warning("Query failed (%s): %s", kind.value, _error_message(e))
            return QueryExecutionError(
                error_kind=kind,
                message=_error_message(e),
                sql=sql,
                hint=HINTS.get(kind),
                sqlstate=sqlstate_of(e),
            )
        except Exception as e:  # noqa: BLE001
            logger.exception("Query failed outside the driver")
            return QueryExecutionError(
                error_kind=ErrorKind.EXECUTION_FAILED,
                message=_error_message(e),
                sql=sql,
                hint=HINTS.get(ErrorKind.EXECUTION_FAILED),
            )
