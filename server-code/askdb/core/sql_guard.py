# askdb/core/sql_guard.py
import re
from typing import List, Optional

from askdb.core.models import ValidatedQuery, Verdict
from askdb.core.sql_lexer import scan, last_code_line, top_level_words
from askdb.core.sql_policy import should_inject_limit

# Allow only safe, single-statement, read-only queries
ALLOW = re.compile(r"^\s*(?:select|with)\b", re.I)
DANGERS = re.compile(
    r"\b(drop|delete|update|insert|alter|create|truncate|exec|execute|grant|revoke|merge)\b",
    re.I,
)
PSQL_META = re.compile(r"(^|\s)\\\w+", re.I)  # \gdesc, \dt, etc.

# Keywords that cannot end a statement
DANGLING_KEYWORDS = {
    "and", "or", "not", "where", "join", "on", "left", "right", "inner", "outer",
    "full", "cross", "natural", "from", "select", "by", "group", "order", "having",
    "case", "when", "then", "else", "as", "in", "between", "like", "ilike", "is",
    "interval", "limit", "offset", "union", "intersect", "except", "all", "with",
    "distinct", "over", "partition",
}
# Keywords cut off mid-word by a length-limited reply
DANGLING_FRAGMENTS = {
    "lef", "righ", "curren", "inne", "oute", "natura", "wher", "grou", "orde",
    "selec", "havin", "limi", "joi",
}
DANGLING_OPERATORS = ("<>", "!=", "<=", ">=", "||", "=", "<", ">", "+", "-", "/", ",", "(", ".")
_LAST_WORD = re.compile(r"([A-Za-z_][A-Za-z0-9_]*)$")


def dangling_tail(stripped_sql: str) -> Optional[str]:
    """
    Return the token a statement illegally ends with, or None.
    Expects comment/literal-stripped text (see sql_lexer.scan).
    """
    line = last_code_line(stripped_sql).rstrip(";").rstrip()
    if not line:
        return None
    for op in DANGLING_OPERATORS:
        if line.endswith(op):
            return op
    m = _LAST_WORD.search(line)
    if m:
        word = m.group(1).lower()
        if word in DANGLING_KEYWORDS or word in DANGLING_FRAGMENTS:
            return m.group(1)
    return None


def missing_main_query(stripped_sql: str) -> bool:
    words = top_level_words(stripped_sql)
    return bool(words) and words[0] == "with" and "select" not in words[1:]


def _trailing_statement(stripped: str, semicolons: List[int]) -> bool:
    return any(stripped[pos + 1:].strip() for pos in semicolons)


def validate_sql(sql: str) -> ValidatedQuery:
    """Classify a candidate as accepted, unsafe or malformed. Never raises."""
    text = (sql or "").strip()
    if not text:
        return ValidatedQuery(sql=text, verdict=Verdict.REJECTED_MALFORMED, reasons=("Empty query",))

    result = scan(text)
    code = result.stripped

    unsafe: List[str] = []
    m = DANGERS.search(code)
    if m:
        unsafe.append(f"Forbidden keyword: {m.group(1).upper()}")
    if not ALLOW.search(code):
        unsafe.append("Only SELECT or WITH queries are allowed")
    if _trailing_statement(code, result.semicolons):
        unsafe.append("Multiple statements are not allowed")
    if PSQL_META.search(code):
        unsafe.append("psql meta-commands are not allowed")
    if unsafe:
        return ValidatedQuery(sql=text, verdict=Verdict.REJECTED_UNSAFE, reasons=tuple(unsafe))

    malformed: List[str] = []
    if result.open_quote:
        malformed.append("Unterminated quoted literal or identifier")
    if result.open_block_comment:
        malformed.append("Unterminated block comment")
    if not result.balanced:
        malformed.append(f"Unbalanced parentheses (depth {result.paren_depth})")
    tail = dangling_tail(code)
    if tail:
        malformed.append(f"Query ends with dangling '{tail}'")
    if missing_main_query(code):
        malformed.append("WITH clause has no main SELECT")
    if malformed:
        return ValidatedQuery(sql=text, verdict=Verdict.REJECTED_MALFORMED, reasons=tuple(malformed))

    if result.raw_semicolons:
        text = text[:result.raw_semicolons[0]]
    return ValidatedQuery(sql=text.rstrip(), verdict=Verdict.ACCEPTED)


def apply_default_limit(sql: str, default_limit: int) -> str:
    s = sql.strip().rstrip(";").rstrip()
    # Inject LIMIT if missing and query is not aggregate/grouped
    if should_inject_limit(s):
        s = f"{s}\nLIMIT {int(default_limit)}"
    return s
