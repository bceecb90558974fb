"""
Tests for the question -> SQL -> result pipeline

Tests:
- Synthesis path end to end
- Pattern fallback when synthesis yields nothing
- Unsafe and incomplete candidates never reach the database
- Retry with a stronger instruction for explicit data requests
"""

from askdb.core.errors import ErrorKind, SchemaUnavailableError
from askdb.core.models import QueryExecutionError
from askdb.core.oracle_client import OracleClient
from askdb.core.query_pipeline import SOURCE_PATTERN, SOURCE_SYNTHESIS, QueryPipeline
from askdb.core.result_formatter import HEADER
from askdb.core.sql_synthesis import SqlSynthesizer


def build(schema_cache, oracle, executor):
    return QueryPipeline(schema_cache, SqlSynthesizer(oracle), executor)


class TestSynthesisPath:
    async def test_answer(self, snapshot, make_schema_cache, make_oracle, make_executor):
        executor = make_executor(rows=[{"status": "paid", "ordercount": 4}, {"status": "open", "ordercount": 1}])
        oracle = make_oracle(["SQL: SELECT status, COUNT(*) AS ordercount FROM delivery_orders GROUP BY status"])
        p = build(make_schema_cache(snapshot), oracle, executor)

        out = await p.answer("orders by status")
        assert out.ok
        assert out.error is None
        assert out.source == SOURCE_SYNTHESIS
        assert out.sql == "SELECT status, COUNT(*) AS ordercount FROM delivery_orders GROUP BY status"
        assert executor.executed == [out.sql]
        assert out.result.row_count == 2
        assert out.briefing.startswith(HEADER)
        assert out.chart.tuples == [{"name": "paid", "value": 4}, {"name": "open", "value": 1}]
        assert "synthesis" in out.timings_ms

    async def test_context_reaches_prompt(self, snapshot, make_schema_cache, make_oracle, make_executor):
        seen = []
        oracle = make_oracle(["SELECT name FROM customers"], seen)
        p = build(make_schema_cache(snapshot), oracle, make_executor(rows=[{"name": "Ada"}]))
        await p.answer("which customer is oldest", context="customers table is authoritative")
        prompt = seen[0]["json"]["messages"][1]["content"]
        assert "DATABASE BUSINESS CONTEXT:" in prompt
        assert "TABLE SUGGESTIONS" in prompt
        assert "customers table is authoritative" in prompt

    async def test_stronger_retry(self, snapshot, make_schema_cache, make_oracle, make_executor):
        seen = []
        oracle = make_oracle(["You could count the rows in the orders table.",
                              "SQL: SELECT COUNT(*) AS total FROM delivery_orders"], seen)
        p = build(make_schema_cache(snapshot), oracle, make_executor(rows=[{"total": 5000}]))

        out = await p.answer("How many delivery records are there?")
        assert out.ok
        assert len(seen) == 2
        assert not seen[0]["json"]["messages"][1]["content"].lstrip().startswith("IMPORTANT")
        assert seen[1]["json"]["messages"][1]["content"].lstrip().startswith("IMPORTANT")

    async def test_single_attempt_for_open_questions(self, snapshot, make_schema_cache, make_oracle, make_executor):
        seen = []
        p = build(make_schema_cache(snapshot), make_oracle(["no idea"], seen), make_executor())
        out = await p.answer("hello there")
        assert not out.ok
        assert out.error.kind is ErrorKind.SYNTHESIS_ABSENT
        assert len(seen) == 1


class TestPatternFallback:
    async def test_used_when_synthesis_yields_nothing(self, snapshot, make_schema_cache, make_oracle, make_executor):
        executor = make_executor()
        p = build(make_schema_cache(snapshot), make_oracle(["I cannot answer that."]), executor)

        out = await p.answer("orders grouped by month")
        assert out.ok
        assert out.source == SOURCE_PATTERN
        assert "GROUP BY EXTRACT(YEAR FROM \"created_at\"), EXTRACT(MONTH FROM \"created_at\")" in out.sql
        assert executor.executed == [out.sql]
        assert out.chart.tuples == [{"name": "2024-01", "value": 10}]

    async def test_synthesis_wins_and_pattern_still_finishes(self, snapshot, make_schema_cache, make_oracle,
                                                            make_executor):
        executor = make_executor()
        oracle = make_oracle([
            "SQL: SELECT EXTRACT(YEAR FROM created_at) AS year, EXTRACT(MONTH FROM created_at) AS month, "
            "COUNT(*) AS ordercount FROM delivery_orders GROUP BY 1, 2 ORDER BY 1, 2"
        ])
        p = build(make_schema_cache(snapshot), oracle, executor)

        out = await p.answer("orders grouped by month")
        assert out.source == SOURCE_SYNTHESIS
        await p.aclose()
        assert len(executor.executed) == 2

    async def test_oracle_unconfigured(self, snapshot, make_schema_cache, make_executor):
        oracle = OracleClient(api_key=None, base_url="https://llm.test/v1")
        p = build(make_schema_cache(snapshot), oracle, make_executor())
        out = await p.answer("orders grouped by day")
        await oracle.aclose()
        assert out.source == SOURCE_PATTERN
        assert out.sql.startswith('SELECT DATE("created_at") AS day')


class TestFailures:
    async def test_unsafe_never_executed(self, snapshot, make_schema_cache, make_oracle, make_executor):
        executor = make_executor()
        oracle = make_oracle(["WITH gone AS (DELETE FROM delivery_orders RETURNING id) SELECT * FROM gone"])
        p = build(make_schema_cache(snapshot), oracle, executor)

        out = await p.answer("list orders grouped by month")
        await p.aclose()
        assert not out.ok
        assert out.error.kind is ErrorKind.VALIDATION_UNSAFE
        assert out.error.message.startswith("Cannot run this query")
        assert "DELETE" in out.error.detail
        assert all("DELETE" not in sql for sql in executor.executed)

    async def test_incomplete_twice(self, snapshot, make_schema_cache, make_oracle, make_executor):
        executor = make_executor()
        oracle = make_oracle(["SELECT name FROM customers WHERE", "SELECT name FROM customers WHERE city ="])
        p = build(make_schema_cache(snapshot), oracle, executor)

        out = await p.answer("list customers in Paris")
        assert out.error.kind is ErrorKind.SYNTHESIS_INCOMPLETE
        assert executor.executed == []

    async def test_execution_error(self, snapshot, make_schema_cache, make_oracle, make_executor):
        err = QueryExecutionError(ErrorKind.EXECUTION_UNKNOWN_IDENTIFIER, 'column "nme" does not exist',
                                  "SELECT nme FROM customers\nLIMIT 5000", sqlstate="42703")
        oracle = make_oracle(["SELECT nme FROM customers"])
        p = build(make_schema_cache(snapshot), oracle, make_executor(error=err))

        out = await p.answer("customer names")
        assert out.error.kind is ErrorKind.EXECUTION_UNKNOWN_IDENTIFIER
        assert out.error.sql == "SELECT nme FROM customers\nLIMIT 5000"
        assert out.error.detail == "42703"
        assert out.sql == err.sql

    async def test_schema_unavailable(self, make_schema_cache, make_oracle, make_executor):
        cache = make_schema_cache(None, error=SchemaUnavailableError("database down"))
        seen = []
        p = build(cache, make_oracle([], seen), make_executor())
        out = await p.answer("orders grouped by month")
        assert out.error.kind is ErrorKind.SCHEMA_UNAVAILABLE
        assert seen == []

    async def test_rejected_credentials_remembered(self, snapshot, make_schema_cache, make_oracle, make_executor):
        seen = []
        oracle = make_oracle([(401, {"error": {"message": "bad key"}})], seen)
        p = build(make_schema_cache(snapshot), oracle, make_executor())

        await p.answer("hello there")
        assert p.auth.rejected
        await p.answer("hello again")
        assert len(seen) == 1
