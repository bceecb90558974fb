# askdb/core/sql_synthesis.py
from __future__ import annotations
import logging
import re
from typing import Sequence, Tuple

from askdb.core.concept_resolver import format_suggestions
from askdb.core.models import CompletenessState, ConceptMatch, QueryCandidate
from askdb.core.oracle_client import AUTH_OK, Malformed, OracleAuthState, OracleClient
from askdb.core.sql_extraction import extract_sql
from askdb.prompts.versioned.v1.sql_synthesis import (
    CHART_INSTRUCTIONS,
    SQL_SYNTHESIS_PROMPT,
    STRONGER_INSTRUCTION,
)

logger = logging.getLogger(__name__)

CHART_QUESTION = re.compile(r"chart|graph|visuali[sz]|plot|diagram|generate.*chart", re.I)
# Explicit analytical requests get a second, stronger attempt
MUST_HAVE_SQL = re.compile(
    r"^(list|show|display|give me|tell me|which|what|how many|how much|best|top|most|"
    r"highest|lowest|grouped|group|breakdown|total|revenue|growth|rate)",
    re.I,
)


def is_chart_question(question: str) -> bool:
    return bool(CHART_QUESTION.search(question or ""))


def must_have_sql(question: str) -> bool:
    return bool(MUST_HAVE_SQL.match((question or "").strip()))


def build_prompt(
    question: str,
    context_text: str,
    *,
    suggestions: Sequence[ConceptMatch] = (),
    additional_context: str = "",
    stronger: bool = False,
) -> str:
    sugg = format_suggestions(list(suggestions))
    return SQL_SYNTHESIS_PROMPT.format(
        STRONGER_INSTRUCTION=STRONGER_INSTRUCTION if stronger else "",
        BUSINESS_CONTEXT=context_text.strip(),
        QUESTION=question.strip(),
        TABLE_SUGGESTIONS=f"\nIMPORTANT - {sugg}\n" if sugg else "",
        ADDITIONAL_CONTEXT=f"\nADDITIONAL CONTEXT:\n{additional_context.strip()}\n" if additional_context.strip() else "",
        CHART_INSTRUCTIONS=CHART_INSTRUCTIONS if is_chart_question(question) else "",
    )


class SqlSynthesizer:
    """One oracle call per attempt, then extraction. Never raises for a bad reply."""

    def __init__(self, oracle: OracleClient):
        self.oracle = oracle

    async def synthesize(
        self,
        question: str,
        context_text: str,
        *,
        suggestions: Sequence[ConceptMatch] = (),
        additional_context: str = "",
        stronger: bool = False,
        auth: OracleAuthState = AUTH_OK,
    ) -> Tuple[QueryCandidate, OracleAuthState]:
        prompt = build_prompt(
            question,
            context_text,
            suggestions=suggestions,
            additional_context=additional_context,
            stronger=stronger,
        )
        reply, auth = await self.oracle.complete(prompt, auth=auth)
        if isinstance(reply, Malformed):
            logger.warning("No usable oracle reply: %s", reply.reason)
            return QueryCandidate(
                raw_model_text=reply.body or "",
                extracted_sql=None,
                completeness_state=CompletenessState.ABSENT,
            ), auth

        candidate = extract_sql(reply.text)
        if candidate.completeness_state is CompletenessState.ABSENT:
            logger.info("Oracle reply contained no SQL (finish_reason=%s)", reply.finish_reason)
        elif candidate.completeness_state is CompletenessState.INCOMPLETE:
            logger.warning("Extracted SQL is incomplete after %d continuation line(s)", candidate.continuation_lines)
        return candidate, auth
