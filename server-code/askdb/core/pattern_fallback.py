# askdb/core/pattern_fallback.py
"""
Deterministic SQL for a handful of common question shapes.

Works purely from the schema snapshot: the orders table, its date, status,
amount and account columns, and the order-line table are discovered by name
and type. When any column a template needs cannot be found the shape yields
no SQL rather than a guess.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence, Tuple

from askdb.core.models import Column, SchemaSnapshot, Table

logger = logging.getLogger(__name__)

ORDERS_GROUPED_BY_MONTH = "orders_grouped_by_month"
ORDERS_GROUPED_BY_DAY = "orders_grouped_by_day"
ORDERS_BY_STATUS = "orders_by_status"
REVENUE_PER_CUSTOMER = "revenue_per_customer"
MONTH_OVER_MONTH_GROWTH = "month_over_month_growth"
ORDERS_WITH_HIGH_QUANTITY = "orders_with_high_quantity"

DEFAULT_MIN_ORDERS = 5
DEFAULT_MONTHS = 6
DEFAULT_MIN_QUANTITY = 10

PREFERRED_ORDER_TABLES = ("delivery_orders", "deliveryorders", "orders")
LINE_TABLE_MARKERS = ("detail", "item", "line")
DATE_COLUMN_NAMES = ("created_at", "createdat", "created", "order_date", "orderdate", "date", "timestamp", "createdon")
AMOUNT_COLUMN_NAMES = ("grandtotal", "grand_total", "total_amount", "totalamount", "total", "amount", "revenue")
NUMERIC_TYPES = ("numeric", "decimal", "money", "integer", "bigint", "smallint", "real", "double", "float")
DATE_TYPES = ("timestamp", "date")


@dataclass(frozen=True)
class QuestionShape:
    pattern: str
    params: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class PatternMatch:
    pattern: str
    sql: str
    table: str
    params: Dict[str, int] = field(default_factory=dict)


def _int_param(question: str, patterns: Sequence[str], default: int) -> int:
    for p in patterns:
        m = re.search(p, question, re.I)
        if m:
            return int(m.group(1))
    return default


def detect_question_shape(question: str) -> Optional[QuestionShape]:
    q = (question or "").lower()
    if not q.strip():
        return None

    if "breakdown" in q and "status" in q and ("current month" in q or "this month" in q):
        return QuestionShape(ORDERS_BY_STATUS)
    if "month-over-month" in q or "month over month" in q or "growth rate" in q:
        months = _int_param(q, (r"last (\d+)",), DEFAULT_MONTHS)
        return QuestionShape(MONTH_OVER_MONTH_GROWTH, {"months": months})
    if ("revenue per customer" in q or "revenue per account" in q
            or ("total revenue" in q and "customer" in q)):
        min_orders = _int_param(q, (r"more than (\d+)", r">\s*(\d+)"), DEFAULT_MIN_ORDERS)
        return QuestionShape(REVENUE_PER_CUSTOMER, {"min_orders": min_orders})
    if "quantity greater than" in q or ("items" in q and "quantity" in q):
        min_qty = _int_param(q, (r"quantity (?:greater than|>|more than) (\d+)",), DEFAULT_MIN_QUANTITY)
        return QuestionShape(ORDERS_WITH_HIGH_QUANTITY, {"min_quantity": min_qty})
    if ("grouped by month" in q or "group by month" in q
            or ("orders" in q and "month" in q and "growth" not in q)):
        return QuestionShape(ORDERS_GROUPED_BY_MONTH)
    if ("grouped by day" in q or "group by day" in q
            or ("orders" in q and ("per day" in q or "by day" in q or "daily" in q))):
        return QuestionShape(ORDERS_GROUPED_BY_DAY)
    return None


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _is_numeric(col: Column) -> bool:
    t = col.type.lower()
    return any(n in t for n in NUMERIC_TYPES)


def _is_temporal(col: Column) -> bool:
    t = col.type.lower()
    return any(n in t for n in DATE_TYPES)


def _usable(t: Table) -> bool:
    return not t.error and bool(t.columns)


def _is_line_table(name: str) -> bool:
    n = name.lower()
    return any(m in n for m in LINE_TABLE_MARKERS)


def detect_order_table(snapshot: SchemaSnapshot) -> Optional[Table]:
    tables = [t for t in snapshot.tables if _usable(t)]
    by_name = {t.name.lower(): t for t in tables}
    for preferred in PREFERRED_ORDER_TABLES:
        if preferred in by_name:
            return by_name[preferred]
    candidates = [
        t for t in tables
        if not _is_line_table(t.name)
        and any(k in t.name.lower() for k in ("order", "delivery", "invoice"))
    ]
    if not candidates:
        return None
    # "order" in the name beats delivery/invoice; then the bigger table
    candidates.sort(key=lambda t: ("order" not in t.name.lower(), -t.row_count, t.name))
    return candidates[0]


def detect_date_column(table: Table) -> Optional[str]:
    # date/timestamp typed columns only, never updated_*
    def usable(c: Column) -> bool:
        return _is_temporal(c) and "update" not in c.name.lower()

    found = _find_column(table, DATE_COLUMN_NAMES, pred=usable, contains=("created", "date"))
    if found:
        return found
    for c in table.columns:
        if usable(c):
            return c.name
    return None


def _find_column(table: Table, names: Sequence[str], *, pred: Callable[[Column], bool] = lambda c: True,
                 contains: Sequence[str] = ()) -> Optional[str]:
    lower = {c.name.lower(): c for c in table.columns}
    for name in names:
        c = lower.get(name)
        if c is not None and pred(c):
            return c.name
    for c in table.columns:
        n = c.name.lower()
        if any(k in n for k in contains) and pred(c):
            return c.name
    return None


def detect_status_column(table: Table) -> Optional[str]:
    return _find_column(table, ("status", "state", "order_status", "orderstatus"), contains=("status", "state"))


def detect_amount_column(table: Table) -> Optional[str]:
    return _find_column(table, AMOUNT_COLUMN_NAMES, pred=_is_numeric,
                        contains=("grandtotal", "total", "amount", "revenue"))


def detect_account_column(table: Table) -> Optional[str]:
    return _find_column(
        table,
        ("accountid", "account_id", "customerid", "customer_id", "clientid", "client_id"),
        contains=("account", "customer", "client"),
    )


def detect_quantity_column(table: Table) -> Optional[str]:
    return _find_column(table, ("quantity", "qty"), pred=_is_numeric, contains=("quantity", "qty"))


def detect_line_table(snapshot: SchemaSnapshot, orders: Table) -> Optional[Tuple[Table, str, str]]:
    """(line table, orders join column, line join column). Real foreign keys win over names."""
    others = [t for t in snapshot.tables if _usable(t) and t.name != orders.name]
    for t in sorted(others, key=lambda t: (not _is_line_table(t.name), t.name)):
        if detect_quantity_column(t) is None:
            continue
        for fk in t.foreign_keys:
            if fk.references_table == orders.name and orders.column(fk.references_column):
                return t, fk.references_column, fk.column

    id_col = orders.column("id")
    if id_col is None:
        return None
    base = orders.name.lower().replace("_", "")
    for t in sorted(others, key=lambda t: t.name):
        n = t.name.lower().replace("_", "")
        if not (n.startswith(base.rstrip("s")) and _is_line_table(t.name)):
            continue
        if detect_quantity_column(t) is None:
            continue
        for c in t.columns:
            if c.name.lower().replace("_", "").endswith("orderid"):
                return t, id_col.name, c.name
    return None


# --- templates ---

def _grouped_by_month(snapshot: SchemaSnapshot, shape: QuestionShape) -> Optional[PatternMatch]:
    t = detect_order_table(snapshot)
    date_col = detect_date_column(t) if t else None
    if not t or not date_col:
        return None
    d, tbl = quote_ident(date_col), quote_ident(t.name)
    sql = (
        f"SELECT EXTRACT(YEAR FROM {d}) AS year, EXTRACT(MONTH FROM {d}) AS month, COUNT(*) AS ordercount "
        f"FROM {tbl} "
        f"GROUP BY EXTRACT(YEAR FROM {d}), EXTRACT(MONTH FROM {d}) "
        f"ORDER BY year, month"
    )
    return PatternMatch(shape.pattern, sql, t.name, shape.params)


def _grouped_by_day(snapshot: SchemaSnapshot, shape: QuestionShape) -> Optional[PatternMatch]:
    t = detect_order_table(snapshot)
    date_col = detect_date_column(t) if t else None
    if not t or not date_col:
        return None
    d, tbl = quote_ident(date_col), quote_ident(t.name)
    sql = f"SELECT DATE({d}) AS day, COUNT(*) AS ordercount FROM {tbl} GROUP BY DATE({d}) ORDER BY day DESC"
    return PatternMatch(shape.pattern, sql, t.name, shape.params)


def _by_status(snapshot: SchemaSnapshot, shape: QuestionShape) -> Optional[PatternMatch]:
    t = detect_order_table(snapshot)
    if not t:
        return None
    date_col, status_col, amount_col = detect_date_column(t), detect_status_column(t), detect_amount_column(t)
    if not (date_col and status_col and amount_col):
        return None
    d, s, a = quote_ident(date_col), quote_ident(status_col), quote_ident(amount_col)
    sql = (
        f"SELECT {s} AS status, COUNT(*) AS ordercount, COALESCE(SUM({a}), 0) AS totalrevenue "
        f"FROM {quote_ident(t.name)} "
        f"WHERE DATE_TRUNC('month', {d}) = DATE_TRUNC('month', CURRENT_DATE) "
        f"GROUP BY {s} ORDER BY ordercount DESC"
    )
    return PatternMatch(shape.pattern, sql, t.name, shape.params)


def _revenue_per_customer(snapshot: SchemaSnapshot, shape: QuestionShape) -> Optional[PatternMatch]:
    t = detect_order_table(snapshot)
    if not t:
        return None
    account_col, amount_col = detect_account_column(t), detect_amount_column(t)
    if not (account_col and amount_col):
        return None
    min_orders = int(shape.params.get("min_orders", DEFAULT_MIN_ORDERS))
    acc, a = quote_ident(account_col), quote_ident(amount_col)
    sql = (
        f"SELECT {acc} AS accountid, COUNT(*) AS ordercount, COALESCE(SUM({a}), 0) AS totalrevenue "
        f"FROM {quote_ident(t.name)} "
        f"GROUP BY {acc} HAVING COUNT(*) > {min_orders} ORDER BY totalrevenue DESC"
    )
    return PatternMatch(shape.pattern, sql, t.name, shape.params)


def _month_over_month(snapshot: SchemaSnapshot, shape: QuestionShape) -> Optional[PatternMatch]:
    t = detect_order_table(snapshot)
    date_col = detect_date_column(t) if t else None
    if not t or not date_col:
        return None
    months = int(shape.params.get("months", DEFAULT_MONTHS))
    d = quote_ident(date_col)
    sql = (
        "WITH monthly_orders AS (\n"
        f"  SELECT EXTRACT(YEAR FROM {d}) AS year, EXTRACT(MONTH FROM {d}) AS month, COUNT(*) AS ordercount\n"
        f"  FROM {quote_ident(t.name)}\n"
        f"  WHERE {d} >= CURRENT_DATE - INTERVAL '{months} months'\n"
        f"  GROUP BY EXTRACT(YEAR FROM {d}), EXTRACT(MONTH FROM {d})\n"
        "),\n"
        "with_previous AS (\n"
        "  SELECT year, month, ordercount, LAG(ordercount) OVER (ORDER BY year, month) AS previous_count\n"
        "  FROM monthly_orders\n"
        ")\n"
        "SELECT year, month, ordercount, previous_count,\n"
        "  CASE WHEN previous_count > 0\n"
        "    THEN ROUND(((ordercount - previous_count)::numeric / previous_count * 100)::numeric, 2)\n"
        "    ELSE NULL\n"
        "  END AS growth_rate_percent\n"
        "FROM with_previous\n"
        "ORDER BY year, month"
    )
    return PatternMatch(shape.pattern, sql, t.name, shape.params)


def _high_quantity(snapshot: SchemaSnapshot, shape: QuestionShape) -> Optional[PatternMatch]:
    t = detect_order_table(snapshot)
    if not t:
        return None
    found = detect_line_table(snapshot, t)
    if not found:
        return None
    line, order_key, line_key = found
    qty_col = detect_quantity_column(line)
    if not qty_col:
        return None
    min_qty = int(shape.params.get("min_quantity", DEFAULT_MIN_QUANTITY))
    account_col, amount_col = detect_account_column(t), detect_amount_column(t)

    ok, q = quote_ident(order_key), quote_ident(qty_col)
    select = [f"o.{ok} AS orderid"]
    group = [f"o.{ok}"]
    if account_col:
        select.append(f"o.{quote_ident(account_col)} AS accountid")
        group.append(f"o.{quote_ident(account_col)}")
    if amount_col:
        select.append(f"o.{quote_ident(amount_col)} AS totalordervalue")
        group.append(f"o.{quote_ident(amount_col)}")
    select.append(f"MAX(d.{q}) AS maxquantity")
    order_by = "totalordervalue DESC" if amount_col else "maxquantity DESC"
    sql = (
        f"SELECT {', '.join(select)} "
        f"FROM {quote_ident(t.name)} o "
        f"JOIN {quote_ident(line.name)} d ON o.{ok} = d.{quote_ident(line_key)} "
        f"WHERE d.{q} > {min_qty} "
        f"GROUP BY {', '.join(group)} "
        f"ORDER BY {order_by}"
    )
    return PatternMatch(shape.pattern, sql, t.name, shape.params)


TEMPLATES: Dict[str, Callable[[SchemaSnapshot, QuestionShape], Optional[PatternMatch]]] = {
    ORDERS_GROUPED_BY_MONTH: _grouped_by_month,
    ORDERS_GROUPED_BY_DAY: _grouped_by_day,
    ORDERS_BY_STATUS: _by_status,
    REVENUE_PER_CUSTOMER: _revenue_per_customer,
    MONTH_OVER_MONTH_GROWTH: _month_over_month,
    ORDERS_WITH_HIGH_QUANTITY: _high_quantity,
}


def generate_pattern_sql(shape: QuestionShape, snapshot: Optional[SchemaSnapshot]) -> Optional[PatternMatch]:
    if snapshot is None:
        return None
    template = TEMPLATES.get(shape.pattern)
    if template is None:
        return None
    match = template(snapshot, shape)
    if match is None:
        logger.info("Pattern %s detected but the schema lacks the columns it needs", shape.pattern)
    return match