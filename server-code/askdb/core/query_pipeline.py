# askdb/core/query_pipeline.py
from __future__ import annotations
import asyncio
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Awaitable, Dict, List, Optional, Set

from askdb.core.concept_resolver import suggest_for_question
from askdb.core.errors import ErrorKind, QueryError, SchemaUnavailableError
from askdb.core.models import (
    ChartData,
    CompletenessState,
    ConceptMatch,
    QueryExecutionError,
    QueryExecutionResult,
    SchemaSnapshot,
    Verdict,
)
from askdb.core.oracle_client import AUTH_OK, OracleAuthState
from askdb.core.pattern_fallback import QuestionShape, detect_question_shape, generate_pattern_sql
from askdb.core.read_only_db_executor import ReadOnlyDbExecutor
from askdb.core.result_formatter import chart_title, format_results, to_chart_data
from askdb.core.schema_cache import SchemaCache
from askdb.core.schema_doc import format_business_context
from askdb.core.sql_guard import validate_sql
from askdb.core.sql_synthesis import SqlSynthesizer, must_have_sql

logger = logging.getLogger(__name__)

SOURCE_SYNTHESIS = "synthesis"
SOURCE_PATTERN = "pattern"

UNSAFE_MESSAGE = "Cannot run this query: only read-only SELECT queries are allowed."


@dataclass
class PathResult:
    """Outcome of one candidate path (synthesis or pattern)."""
    source: str
    sql: Optional[str] = None
    result: Optional[QueryExecutionResult] = None
    error: Optional[QueryError] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.result is not None


@dataclass
class PipelineOutcome:
    question: str
    trace_id: str
    sql: Optional[str] = None
    source: Optional[str] = None
    result: Optional[QueryExecutionResult] = None
    briefing: str = ""
    chart: Optional[ChartData] = None
    error: Optional[QueryError] = None
    suggestions: List[ConceptMatch] = field(default_factory=list)
    timings_ms: Dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.result is not None


def _execution_error(err: QueryExecutionError) -> QueryError:
    return QueryError(kind=err.error_kind, message=err.message, sql=err.sql, hint=err.hint, detail=err.sqlstate)


class QueryPipeline:
    """
    question -> briefing + suggestions -> (synthesis || pattern fallback)
    -> validation -> read-only execution -> formatted result.

    The pattern path starts as soon as a question shape is recognised and runs
    next to synthesis. It is consulted only when synthesis yields no result,
    and it is never cancelled.
    """

    def __init__(
        self,
        schema_cache: SchemaCache,
        synthesizer: SqlSynthesizer,
        executor: ReadOnlyDbExecutor,
        *,
        result_max_rows: int = 30,
        chart_max_points: int = 20,
    ):
        self.schema_cache = schema_cache
        self.synthesizer = synthesizer
        self.executor = executor
        self.result_max_rows = result_max_rows
        self.chart_max_points = chart_max_points
        # Updated from every oracle call's return value
        self.auth: OracleAuthState = AUTH_OK
        self._background: Set[asyncio.Task] = set()

    @contextmanager
    def _step(self, outcome: PipelineOutcome, name: str):
        t0 = time.perf_counter()
        try:
            yield
        finally:
            outcome.timings_ms[name] = int((time.perf_counter() - t0) * 1000)

    def _spawn(self, coro: Awaitable[PathResult]) -> "asyncio.Task[PathResult]":
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # === Main entry ===
    async def answer(self, question: str, context: str = "") -> PipelineOutcome:
        outcome = PipelineOutcome(question=question, trace_id=str(uuid.uuid4()))

        with self._step(outcome, "schema"):
            try:
                snapshot = await self.schema_cache.get_snapshot()
            except SchemaUnavailableError as e:
                logger.error("[%s] Schema unavailable: %s", outcome.trace_id, e)
                outcome.error = QueryError(ErrorKind.SCHEMA_UNAVAILABLE, "Database schema is not available.", detail=str(e))
                return outcome
        context_text = format_business_context(snapshot)
        outcome.suggestions = suggest_for_question(snapshot, question)

        pattern_task: Optional[asyncio.Task] = None
        shape = detect_question_shape(question)
        if shape is not None:
            logger.info("[%s] Question matches pattern %s %s", outcome.trace_id, shape.pattern, shape.params)
            pattern_task = self._spawn(self._run_pattern(shape, snapshot))

        with self._step(outcome, "synthesis"):
            chosen = await self._run_synthesis(question, context_text, outcome.suggestions, context)

        unsafe = chosen.error is not None and chosen.error.kind is ErrorKind.VALIDATION_UNSAFE
        if not chosen.ok and not unsafe and pattern_task is not None:
            with self._step(outcome, "pattern"):
                fallback = await pattern_task
            if fallback.ok:
                logger.info("[%s] Using pattern fallback result (%s)", outcome.trace_id, shape.pattern)
                chosen = fallback
            else:
                chosen.error = chosen.error or fallback.error

        outcome.sql = chosen.sql
        outcome.source = chosen.source if chosen.ok else None
        if not chosen.ok:
            outcome.error = chosen.error or QueryError(
                ErrorKind.SYNTHESIS_ABSENT, "No SQL query could be generated for this question."
            )
            logger.info("[%s] No result: %s", outcome.trace_id, outcome.error.kind.value)
            return outcome

        outcome.result = chosen.result
        outcome.briefing = format_results(chosen.result, max_rows=self.result_max_rows)
        outcome.chart = to_chart_data(chosen.result, title=chart_title(question), max_points=self.chart_max_points)
        logger.info("[%s] Answered via %s (%d rows)", outcome.trace_id, outcome.source, chosen.result.row_count)
        return outcome

    async def _run_synthesis(
        self,
        question: str,
        context_text: str,
        suggestions: List[ConceptMatch],
        additional_context: str,
    ) -> PathResult:
        attempts = 2 if must_have_sql(question) else 1
        path = PathResult(source=SOURCE_SYNTHESIS)
        for n in range(1, attempts + 1):
            path.attempts = n
            candidate, self.auth = await self.synthesizer.synthesize(
                question,
                context_text,
                suggestions=suggestions,
                additional_context=additional_context,
                stronger=n > 1,
                auth=self.auth,
            )
            if candidate.completeness_state is CompletenessState.ABSENT:
                path.error = QueryError(ErrorKind.SYNTHESIS_ABSENT, "No SQL query could be generated for this question.")
                continue
            if candidate.completeness_state is CompletenessState.INCOMPLETE:
                path.error = QueryError(
                    ErrorKind.SYNTHESIS_INCOMPLETE,
                    "The generated SQL query was cut off and could not be completed.",
                    sql=candidate.extracted_sql,
                )
                continue

            verdict = validate_sql(candidate.extracted_sql or "")
            path.sql = verdict.sql
            if verdict.verdict is Verdict.REJECTED_UNSAFE:
                logger.warning("Rejected unsafe query: %s", "; ".join(verdict.reasons))
                path.error = QueryError(ErrorKind.VALIDATION_UNSAFE, UNSAFE_MESSAGE, sql=verdict.sql,
                                        detail="; ".join(verdict.reasons))
                return path
            if verdict.verdict is Verdict.REJECTED_MALFORMED:
                path.error = QueryError(ErrorKind.VALIDATION_MALFORMED, "The generated SQL query is malformed.",
                                        sql=verdict.sql, detail="; ".join(verdict.reasons))
                continue

            executed = await self.executor.execute_validated(verdict)
            if isinstance(executed, QueryExecutionError):
                path.sql = executed.sql
                path.error = _execution_error(executed)
                return path
            path.result = executed
            path.error = None
            return path
        return path

    async def _run_pattern(self, shape: QuestionShape, snapshot: SchemaSnapshot) -> PathResult:
        path = PathResult(source=SOURCE_PATTERN, attempts=1)
        try:
            match = generate_pattern_sql(shape, snapshot)
            if match is None:
                return path
            verdict = validate_sql(match.sql)
            path.sql = verdict.sql
            if not verdict.accepted:
                logger.error("Pattern %s produced a rejected query: %s", shape.pattern, "; ".join(verdict.reasons))
                path.error = QueryError(ErrorKind.VALIDATION_MALFORMED, "Pattern query failed validation.",
                                        sql=verdict.sql, detail="; ".join(verdict.reasons))
                return path
            executed = await self.executor.execute_validated(verdict)
            if isinstance(executed, QueryExecutionError):
                logger.warning("Pattern %s query failed: %s", shape.pattern, executed.message)
                path.error = _execution_error(executed)
                return path
            path.result = executed
            return path
        except Exception as e:  # noqa: BLE001
            logger.exception("Pattern fallback %s crashed", shape.pattern)
            path.error = QueryError(ErrorKind.EXECUTION_FAILED, str(e), sql=path.sql)
            return path

    async def aclose(self) -> None:
        """Let in-flight pattern queries finish."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
