"""
Tests for transient-error classification, retry and the read-only executor's error mapping
"""

import errno
import socket
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace
from uuid import UUID

import pytest
from sqlalchemy import exc as sa_exc

from askdb.core.db_retry import RetryPolicy, execute_with_retry, is_transient_error, sqlstate_of
from askdb.core.errors import ErrorKind, RetriesExhausted, UnvalidatedQueryError
from askdb.core.models import QueryExecutionError, QueryExecutionResult, ValidatedQuery, Verdict
from askdb.core.read_only_db_executor import ReadOnlyDbExecutor, classify_db_error, json_safe


class PgError(Exception):
    """Driver error carrying a SQLSTATE, like asyncpg's"""

    def __init__(self, message, sqlstate):
        super().__init__(message)
        self.sqlstate = sqlstate


def wrapped(message, sqlstate, cls=sa_exc.ProgrammingError):
    return cls("SELECT ...", {}, PgError(message, sqlstate))


async def no_sleep(_delay):
    return None


class TestClassification:
    """Network-class failures only"""

    @pytest.mark.parametrize("exc", [
        ConnectionRefusedError(errno.ECONNREFUSED, "refused"),
        ConnectionResetError(errno.ECONNRESET, "reset"),
        socket.gaierror(-2, "Name or service not known"),
        TimeoutError("connect timed out"),
        OSError(errno.EHOSTUNREACH, "no route to host"),
        wrapped("server closed the connection unexpectedly", "08006", sa_exc.OperationalError),
        wrapped("terminating connection due to administrator command", "57P01", sa_exc.OperationalError),
    ])
    def test_transient(self, exc):
        assert is_transient_error(exc)

    @pytest.mark.parametrize("exc", [
        wrapped('syntax error at or near "FORM"', "42601"),
        wrapped('relation "nope" does not exist', "42P01"),
        wrapped("canceling statement due to statement timeout", "57014", sa_exc.OperationalError),
        wrapped('password authentication failed for user "ro"', "28P01", sa_exc.OperationalError),
        ValueError("bad value"),
    ])
    def test_not_transient(self, exc):
        assert not is_transient_error(exc)

    def test_sqlstate_through_wrapper(self):
        assert sqlstate_of(wrapped("x", "42703")) == "42703"

    def test_backoff_grows_and_caps(self):
        wait = RetryPolicy(max_attempts=5, base_delay_s=1.0, max_delay_s=3.0, jitter_s=0).wait()
        assert [wait(SimpleNamespace(attempt_number=n)) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]

    def test_jitter_stays_under_cap(self):
        wait = RetryPolicy(base_delay_s=1.0, max_delay_s=1.5, jitter_s=0.2).wait()
        assert 1.0 <= wait(SimpleNamespace(attempt_number=1)) <= 1.2
        assert wait(SimpleNamespace(attempt_number=3)) == 1.5


class TestExecuteWithRetry:
    async def test_recovers_after_transient(self):
        calls = []

        async def op():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionResetError(errno.ECONNRESET, "reset")
            return "ok"

        delays = []

        async def sleep(d):
            delays.append(d)

        assert await execute_with_retry(op, RetryPolicy(jitter_s=0), sleep=sleep) == "ok"
        assert len(calls) == 3
        assert delays == [1.0, 2.0]

    async def test_exhausted(self):
        async def op():
            raise ConnectionRefusedError(errno.ECONNREFUSED, "refused")

        with pytest.raises(RetriesExhausted) as info:
            await execute_with_retry(op, RetryPolicy(max_attempts=2), operation_name="probe", sleep=no_sleep)
        assert info.value.attempts == 2
        assert isinstance(info.value.last_error, ConnectionRefusedError)

    async def test_non_transient_not_retried(self):
        calls = []

        async def op():
            calls.append(1)
            raise wrapped("syntax error", "42601")

        with pytest.raises(sa_exc.ProgrammingError):
            await execute_with_retry(op, RetryPolicy(), sleep=no_sleep)
        assert len(calls) == 1


class TestExecutor:
    """Error mapping and row coercion, with the connection layer stubbed out"""

    def make(self, run):
        ex = ReadOnlyDbExecutor(engine=None, default_limit=50, statement_timeout_ms=1000,
                                retry_policy=RetryPolicy(max_attempts=2, base_delay_s=0, jitter_s=0))
        ex._run = run
        return ex

    async def test_refuses_unvalidated(self):
        ex = self.make(None)
        bad = ValidatedQuery(sql="DROP TABLE x", verdict=Verdict.REJECTED_UNSAFE)
        with pytest.raises(UnvalidatedQueryError):
            await ex.execute_validated(bad)

    async def test_applies_default_limit(self):
        seen = []

        async def run(sql, params=None, *, driver_sql=False):
            seen.append((sql, driver_sql))
            return QueryExecutionResult(rows=[{"id": 1}], columns=["id"])

        ex = self.make(run)
        out = await ex.execute_validated(ValidatedQuery(sql="SELECT id FROM orders", verdict=Verdict.ACCEPTED))
        assert isinstance(out, QueryExecutionResult)
        assert seen == [("SELECT id FROM orders\nLIMIT 50", True)]

    @pytest.mark.parametrize("sqlstate,kind", [
        ("42601", ErrorKind.EXECUTION_SYNTAX_ERROR),
        ("42P01", ErrorKind.EXECUTION_UNKNOWN_IDENTIFIER),
        ("42703", ErrorKind.EXECUTION_UNKNOWN_IDENTIFIER),
        ("42883", ErrorKind.EXECUTION_TYPE_MISMATCH),
        ("22012", ErrorKind.EXECUTION_FAILED),
    ])
    async def test_sqlstate_mapping(self, sqlstate, kind):
        async def run(sql, params=None, *, driver_sql=False):
            raise wrapped("boom", sqlstate)

        out = await self.make(run).execute_validated(
            ValidatedQuery(sql="SELECT COUNT(*) FROM orders", verdict=Verdict.ACCEPTED))
        assert isinstance(out, QueryExecutionError)
        assert out.error_kind is kind
        assert out.sql == "SELECT COUNT(*) FROM orders"
        assert out.message == "boom"

    async def test_connection_exhausted(self):
        async def run(sql, params=None, *, driver_sql=False):
            raise ConnectionRefusedError(errno.ECONNREFUSED, "refused")

        out = await self.make(run).execute_validated(
            ValidatedQuery(sql="SELECT COUNT(*) FROM orders", verdict=Verdict.ACCEPTED))
        assert isinstance(out, QueryExecutionError)
        assert out.error_kind is ErrorKind.EXECUTION_CONNECTION_EXHAUSTED

    async def test_unexpected_error_becomes_failed(self):
        async def run(sql, params=None, *, driver_sql=False):
            raise RuntimeError("result decoding failed")

        out = await self.make(run).execute_validated(
            ValidatedQuery(sql="SELECT COUNT(*) FROM orders", verdict=Verdict.ACCEPTED))
        assert isinstance(out, QueryExecutionError)
        assert out.error_kind is ErrorKind.EXECUTION_FAILED
        assert out.message == "result decoding failed"
        assert out.sql == "SELECT COUNT(*) FROM orders"

    def test_classify_by_message(self):
        assert classify_db_error(Exception('column "x" does not exist')) is ErrorKind.EXECUTION_UNKNOWN_IDENTIFIER

    def test_json_safe(self):
        assert json_safe(Decimal("12.50")) == 12.5
        assert json_safe(date(2024, 1, 31)) == "2024-01-31"
        assert json_safe(datetime(2024, 1, 31, 8, 30)) == "2024-01-31T08:30:00"
        assert json_safe(UUID(int=1)) == "00000000-0000-0000-0000-000000000001"
        assert json_safe("plain") == "plain"
