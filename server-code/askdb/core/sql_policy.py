from __future__ import annotations
from typing import Tuple
import re

import sqlglot
from sqlglot import expressions as exp
from sqlglot.errors import ParseError, TokenError

AGGREGATES = {"sum", "avg", "count", "min", "max"}


def analyze(sql: str) -> Tuple[bool, bool, bool]:
    """Returns (has_group_or_agg, has_outer_limit, parsed_ok). Falls back to regex if parsing fails."""
    try:
        expr = sqlglot.parse_one(sql, read="postgres")
    except (ParseError, TokenError):
        expr = None
    if expr is not None:
        # Detect GROUP BY or aggregate functions
        has_group = expr.find(exp.Group) is not None
        has_agg = any(
            isinstance(f, exp.AggFunc) and (f.key or "").lower() in AGGREGATES
            for f in expr.find_all(exp.Func)
        )
        has_limit = expr.args.get("limit") is not None
        return has_group or has_agg, has_limit, True
    s = sql.lower()
    has_group = bool(re.search(r"\bgroup\s+by\b", s))
    has_agg = bool(re.search(r"\b(sum|avg|count|min|max)\s*\(", s))
    has_limit = bool(re.search(r"\blimit\s+\d+\s*$", s))
    return has_group or has_agg, has_limit, False


def should_inject_limit(sql: str) -> bool:
    has_group_or_agg, has_limit, _ = analyze(sql)
    # Do not inject LIMIT for aggregates, when GROUP BY is present, or when one exists
    return not (has_group_or_agg or has_limit)
