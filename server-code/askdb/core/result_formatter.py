# askdb/core/result_formatter.py
from __future__ import annotations
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from askdb.core.models import ChartData, ChartType, QueryExecutionResult

NO_DATA = "QUERY RESULTS: No data found."
HEADER = "=== QUERY RESULTS (USE THIS DATA TO ANSWER THE QUESTION) ==="
FOOTER = "=== END QUERY RESULTS ==="
INSTRUCTION = ("IMPORTANT: Use the data above to answer the user's question directly. "
               "The query results contain the exact answer.")

LABEL_COLUMN = re.compile(r"name|label|title|category|type|status|date|month|day|year", re.I)
VALUE_COLUMN = re.compile(r"count|total|sum|amount|value|quantity|sales|revenue|\d{4}", re.I)
TIME_LABEL = re.compile(r"date|time|month|day|year|week", re.I)
YEAR_SERIES = re.compile(r"year|\d{4}", re.I)
ISO_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}([T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?([+-]\d{2}:?\d{2}|Z)?)?$")
TITLE_PREFIX = re.compile(r"^(show|display|graph|chart|can you generate|create|generate)\s+(me\s+)?(a\s+)?(bar\s+)?", re.I)

MAX_LABEL = 25


def _human(v: Any) -> Optional[str]:
    if isinstance(v, datetime):
        return v.strftime("%b %d, %Y %H:%M")
    if isinstance(v, date):
        return v.strftime("%b %d, %Y")
    return None


def _format_value(v: Any) -> str:
    if isinstance(v, (date, datetime)):
        return f"{v.isoformat()} ({_human(v)})"
    if isinstance(v, str) and ISO_DATETIME.match(v):
        try:
            parsed = datetime.fromisoformat(v.replace("Z", "+00:00"))
        except ValueError:
            return v
        human = parsed.strftime("%b %d, %Y") if len(v) == 10 else parsed.strftime("%b %d, %Y %H:%M")
        return f"{v} ({human})"
    return str(v)


def _columns(result: QueryExecutionResult) -> List[str]:
    if result.columns:
        return list(result.columns)
    return list(result.rows[0].keys()) if result.rows else []


def format_results(result: QueryExecutionResult, max_rows: int = 30) -> str:
    """Enumerated, labelled block the answer-writing step must treat as authoritative."""
    if not result.rows:
        return NO_DATA
    cols = _columns(result)
    total = len(result.rows)
    shown = min(total, max_rows)

    out: List[str] = [HEADER, "", f"Columns: {', '.join(cols)}", f"Total rows: {total}", ""]
    for i, row in enumerate(result.rows[:shown], start=1):
        out.append(f"[Row {i}]")
        for c in cols:
            v = row.get(c)
            if v is not None:
                out.append(f"  {c}: {_format_value(v)}")
        out.append("")
    if total > shown:
        out.append(f"... and {total - shown} more rows (showing first {shown})")
        out.append("")
    out.append(FOOTER)
    out.append(INSTRUCTION)
    return "\n".join(out) + "\n"


def _to_number(v: Any) -> Optional[float]:
    if isinstance(v, bool):
        return float(v)
    if isinstance(v, (int, float)):
        return v
    if isinstance(v, str):
        try:
            return float(v.strip())
        except ValueError:
            return None
    return None


def _truncate(label: str) -> str:
    return label if len(label) <= MAX_LABEL else label[:MAX_LABEL - 3] + "..."


def chart_title(question: str) -> str:
    return TITLE_PREFIX.sub("", (question or "").strip()).strip() or "Chart Data"


def to_chart_data(result: QueryExecutionResult, title: str = "", max_points: int = 20) -> Optional[ChartData]:
    """
    Name/value tuples for a chart, or None when no numeric column can be found.
    Year + month column pairs are fused into a single YYYY-MM label.
    """
    if not result.rows:
        return None
    cols = _columns(result)
    lower = {c.lower(): c for c in cols}
    fused = "year" in lower and "month" in lower
    rows = result.rows[:max_points]

    if fused:
        label_col = "year-month"
        taken = {lower["year"], lower["month"]}
    else:
        label_col = next((c for c in cols if LABEL_COLUMN.search(c)), cols[0])
        taken = {label_col}

    value_cols = [c for c in cols if c not in taken and VALUE_COLUMN.search(c)]
    if not value_cols:
        value_cols = [c for c in cols if c not in taken and _to_number(rows[0].get(c)) is not None][:1]
    if not value_cols:
        return None

    tuples: List[Dict[str, Any]] = []
    for i, row in enumerate(rows):
        if fused:
            y, m = _to_number(row.get(lower["year"])), _to_number(row.get(lower["month"]))
            label = f"{int(y):04d}-{int(m):02d}" if y is not None and m is not None else f"Item {i + 1}"
        else:
            raw = row.get(label_col)
            label = str(raw).strip() if raw is not None and str(raw).strip() else f"Item {i + 1}"
        point: Dict[str, Any] = {"name": _truncate(label)}
        for c in value_cols:
            v = _to_number(row.get(c))
            point["value" if len(value_cols) == 1 else c] = v if v is not None else 0
        tuples.append(point)

    if len(value_cols) > 1:
        chart_type = ChartType.YEAR_ON_YEAR if any(YEAR_SERIES.search(c) for c in value_cols) else ChartType.BAR
    elif fused or TIME_LABEL.search(label_col):
        chart_type = ChartType.LINE
    elif len(result.rows) <= 10:
        chart_type = ChartType.PIE
    else:
        chart_type = ChartType.BAR

    return ChartData(
        chart_type=chart_type,
        title=title or "Chart Data",
        label_column=label_col,
        series=value_cols,
        tuples=tuples,
    )
