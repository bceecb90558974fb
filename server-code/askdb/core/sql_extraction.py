# askdb/core/sql_extraction.py
"""
Pulls one SQL statement out of a free-text model reply.

Replies arrive wrapped in prose, code fences or a "SQL:" label, and are
sometimes cut short by the token limit. Extraction walks the reply line by
line through explicit states:

    SCANNING -> FOUND_START -> TRACKING_BALANCE -> COMPLETE | INCOMPLETE
    SCANNING -> ABSENT

The first pass stops at a blank line. Past it, lines are stitched on while
the statement is still open (unclosed quote or parenthesis, dangling
keyword), and once it is complete only lines opening a further clause
(GROUP BY, ORDER BY, ...) are taken, up to MAX_CONTINUATION_LINES.
"""
from __future__ import annotations
import logging
import re
from enum import Enum
from typing import List, Optional, Tuple

from askdb.core.models import CompletenessState, QueryCandidate
from askdb.core.sql_guard import dangling_tail, missing_main_query
from askdb.core.sql_lexer import scan

logger = logging.getLogger(__name__)

MAX_CONTINUATION_LINES = 15

START = re.compile(
    r"^\s*(?:SELECT\b|WITH\s+(?:RECURSIVE\s+)?\"?[A-Za-z_][\w]*\"?\s*(?:\(|AS\b))",
    re.I,
)
EXPLANATION = re.compile(r"^\s*(This|The|Here|Note|Explanation|Query|Result|Returns|Shows|Displays|Finds|Gets)\b")
FENCE = re.compile(r"^\s*```")
OPEN_FENCE = re.compile(r"^\s*```[A-Za-z]*\s*")
LABEL = re.compile(r"^\s*SQL\s*:\s*", re.I)
CLAUSE_START = re.compile(
    r"^\s*(?:FROM|WHERE|(?:INNER|LEFT|RIGHT|FULL|CROSS)(?:\s+OUTER)?\s+JOIN|JOIN|GROUP\s+BY|ORDER\s+BY|HAVING|"
    r"LIMIT|OFFSET|WINDOW|UNION|INTERSECT|EXCEPT)\b",
    re.I,
)


class ExtractionState(Enum):
    SCANNING = "scanning"
    FOUND_START = "found_start"
    TRACKING_BALANCE = "tracking_balance"
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    ABSENT = "absent"


def _clean(line: str) -> Tuple[str, bool]:
    """Drop a "SQL:" label and fence markers. Returns (text, closes_fence)."""
    s = LABEL.sub("", line)
    s = OPEN_FENCE.sub("", s) if FENCE.match(s) else s
    closes = False
    if s.rstrip().endswith("```"):
        s = s.rstrip()[:-3]
        closes = True
    return s.rstrip(), closes


def _is_boundary(line: str) -> bool:
    return bool(FENCE.match(line) or EXPLANATION.match(line))


def is_complete(sql: str) -> bool:
    r = scan(sql)
    if not r.terminated or not r.balanced:
        return False
    if dangling_tail(r.stripped) or missing_main_query(r.stripped):
        return False
    return True


def _has_terminator(body: List[str]) -> bool:
    return bool(scan("\n".join(body)).raw_semicolons)


def _finish(body: List[str]) -> str:
    text = "\n".join(body)
    semis = scan(text).raw_semicolons
    if semis:
        text = text[:semis[0]]
    return text.strip().rstrip(";").strip()


def extract_sql(raw: str, max_continuation_lines: int = MAX_CONTINUATION_LINES) -> QueryCandidate:
    lines = (raw or "").splitlines()
    state = ExtractionState.SCANNING
    body: List[str] = []
    closed = False
    i = 0

    while state is ExtractionState.SCANNING and i < len(lines):
        text, closed = _clean(lines[i])
        i += 1
        if START.match(text):
            body.append(text.strip())
            state = ExtractionState.FOUND_START

    if state is ExtractionState.SCANNING:
        state = ExtractionState.ABSENT
        return QueryCandidate(raw_model_text=raw or "", extracted_sql=None,
                              completeness_state=CompletenessState.ABSENT)

    state = ExtractionState.TRACKING_BALANCE
    ended = closed or _has_terminator(body)

    # First pass: contiguous lines only
    while not ended and i < len(lines):
        line = lines[i]
        if not line.strip() or _is_boundary(line):
            break
        text, closed = _clean(line)
        body.append(text)
        i += 1
        ended = closed or _has_terminator(body)

    # Continuation across blank lines: any line while the statement is still
    # open, only further clauses once it is complete
    added = 0
    while not ended and i < len(lines) and added < max_continuation_lines:
        line = lines[i]
        if not line.strip():
            i += 1
            continue
        if _is_boundary(line):
            break
        if is_complete("\n".join(body)) and not CLAUSE_START.match(line):
            break
        i += 1
        text, closed = _clean(line)
        body.append(text)
        added += 1
        ended = closed or _has_terminator(body)

    sql = _finish(body)
    state = ExtractionState.COMPLETE if is_complete(sql) else ExtractionState.INCOMPLETE
    if added:
        logger.info("Stitched %d continuation line(s); state=%s", added, state.value)
    return QueryCandidate(
        raw_model_text=raw,
        extracted_sql=sql or None,
        completeness_state=CompletenessState(state.value),
        continuation_lines=added,
    )
