# askdb/routers/query.py
from __future__ import annotations

import logging
from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from askdb.deps import pipeline
from askdb.core.errors import ErrorKind, QueryError
from askdb.core.models import QueryRequest, QueryResponse
from askdb.core.query_pipeline import QueryPipeline

logger = logging.getLogger(__name__)
router = APIRouter(tags=["query"])

STATUS_BY_KIND = {
    ErrorKind.VALIDATION_UNSAFE: 400,
    ErrorKind.VALIDATION_MALFORMED: 400,
    ErrorKind.EXECUTION_SYNTAX_ERROR: 400,
    ErrorKind.EXECUTION_UNKNOWN_IDENTIFIER: 400,
    ErrorKind.EXECUTION_TYPE_MISMATCH: 400,
    ErrorKind.EXECUTION_FAILED: 400,
    ErrorKind.SYNTHESIS_ABSENT: 422,
    ErrorKind.SYNTHESIS_INCOMPLETE: 422,
    ErrorKind.EXECUTION_CONNECTION_EXHAUSTED: 503,
    ErrorKind.TRANSIENT_CONNECTION: 503,
    ErrorKind.SCHEMA_UNAVAILABLE: 503,
}


def error_response(err: QueryError, trace_id: str = "") -> JSONResponse:
    status = STATUS_BY_KIND.get(err.kind, 500)
    return JSONResponse(status_code=status, content={"error": err.to_dict(), "traceId": trace_id})


@router.post("/query", summary="Answer a question with a validated read-only SQL query", response_model=QueryResponse)
async def ask(
    req: QueryRequest = Body(..., description="Question plus optional extra context"),
    p: QueryPipeline = Depends(pipeline),
):
    outcome = await p.answer(req.question, req.context)
    if not outcome.ok:
        return error_response(outcome.error, outcome.trace_id)

    chart = outcome.chart
    body = QueryResponse(
        sql=outcome.sql,
        source=outcome.source,
        columns=outcome.result.columns,
        rows=outcome.result.rows,
        row_count=outcome.result.row_count,
        chart_tuples=chart.tuples if chart else [],
        chart=chart,
        briefing=outcome.briefing,
    )
    logger.info("[%s] /query answered in %s", outcome.trace_id, outcome.timings_ms)
    return JSONResponse(content=body.model_dump(mode="json", by_alias=True))
