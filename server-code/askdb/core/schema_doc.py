# askdb/core/schema_doc.py
from __future__ import annotations
from typing import Dict, List, Optional, Tuple

from askdb.core.models import Column, SchemaSnapshot, Table
from askdb.core.schema_graph import build_relationship_graph

# (group key, heading, name substrings); first match wins
DOMAINS: Tuple[Tuple[str, str, Tuple[str, ...]], ...] = (
    ("orders", "Order Management", ("order",)),
    ("customers", "Customer Management", ("customer", "client")),
    ("products", "Product Catalog", ("product", "item")),
    ("inventory", "Inventory", ("inventory", "stock")),
    ("financial", "Financial Transactions", ("bank", "transfer", "payment", "credit", "debit")),
    ("delivery", "Delivery/Shipping", ("delivery", "ship")),
    ("discounts", "Promotions/Discounts", ("discount", "promo")),
)
OTHER = ("other", "Other")

NO_SCHEMA = "Database schema not available."


def domain_of(table_name: str) -> str:
    name = table_name.lower()
    for key, _, needles in DOMAINS:
        if any(n in name for n in needles):
            return key
    return OTHER[0]


def group_by_domain(snapshot: SchemaSnapshot) -> Dict[str, List[str]]:
    groups: Dict[str, List[str]] = {key: [] for key, _, _ in DOMAINS}
    groups[OTHER[0]] = []
    for t in snapshot.tables:
        groups[domain_of(t.name)].append(t.name)
    return groups


def _column_line(col: Column) -> str:
    parts = [col.type]
    if col.is_primary_key:
        parts.append("PRIMARY KEY")
    if col.is_foreign_key and col.foreign_key_ref:
        parts.append(f"FOREIGN KEY -> {col.foreign_key_ref}")
    if not col.nullable:
        parts.append("NOT NULL")
    return f"    - {col.name} ({', '.join(parts)})"


def _table_block(table: Table, incoming: List[Dict[str, str]]) -> List[str]:
    lines = [f"Table: {table.name} ({table.row_count} rows)"]
    if table.error:
        lines.append(f"  (structure unavailable: {table.error})")
        return lines
    if table.primary_key:
        lines.append(f"  Primary Key: {', '.join(table.primary_key)}")
    lines.append("  Columns:")
    lines.extend(_column_line(c) for c in table.columns)
    if table.foreign_keys:
        lines.append("  Relationships:")
        for fk in table.foreign_keys:
            lines.append(f"    - {fk.column} -> {fk.references_table}.{fk.references_column}")
    if incoming:
        lines.append("  Referenced by:")
        for rel in incoming:
            lines.append(f"    - {rel['table']}.{rel['referencingColumn']} -> {table.name}.{rel['column']}")
    return lines


def format_business_context(snapshot: Optional[SchemaSnapshot]) -> str:
    """
    Human-readable briefing of the schema for the synthesis prompt:

    DATABASE BUSINESS CONTEXT:
    Total tables: 3
    ...
    BUSINESS DOMAINS:
    - Order Management: orders, order_items
    ...
    Table: orders (1200 rows)
      Primary Key: id
      Columns:
        - id (integer, PRIMARY KEY, NOT NULL)
        - customer_id (integer, FOREIGN KEY -> customers.id)
      Relationships:
        - customer_id -> customers.id
      Referenced by:
        - order_items.order_id -> orders.id
    """
    if snapshot is None or not snapshot.tables:
        return NO_SCHEMA

    graph = build_relationship_graph(snapshot)
    out: List[str] = [
        "DATABASE BUSINESS CONTEXT:",
        f"Total tables: {snapshot.total_tables}",
        f"Database: {snapshot.database_name or 'unknown'}",
        "",
        "BUSINESS DOMAINS:",
    ]
    groups = group_by_domain(snapshot)
    for key, heading, _ in (*DOMAINS, (OTHER[0], OTHER[1], ())):
        if groups[key]:
            out.append(f"- {heading}: {', '.join(groups[key])}")
    out.append("")
    out.append("DETAILED TABLE SCHEMA WITH RELATIONSHIPS:")
    out.append("")
    for t in snapshot.tables:
        out.extend(_table_block(t, graph[t.name].incoming))
        out.append("")
    return "\n".join(out).rstrip() + "\n"
