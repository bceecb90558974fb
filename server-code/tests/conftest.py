import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest

from askdb.core import schema_catalog as sc
from askdb.core.models import Column, ForeignKey, QueryExecutionResult, SchemaSnapshot, Table
from askdb.core.oracle_client import OracleClient

# name -> (row count, columns, primary key, foreign keys)
# columns: (name, data_type, nullable)
# foreign keys: (column, referenced table, referenced column)
SHOP_CATALOG: Dict[str, Dict[str, Any]] = {
    "customers": {
        "rows": 120,
        "columns": [
            ("id", "integer", False),
            ("name", "character varying", True),
            ("email", "character varying", True),
            ("city", "character varying", True),
        ],
        "pk": ["id"],
        "fks": [],
    },
    "delivery_orders": {
        "rows": 5000,
        "columns": [
            ("id", "integer", False),
            ("customer_id", "integer", False),
            ("status", "character varying", True),
            ("total_amount", "numeric", True),
            ("created_at", "timestamp without time zone", False),
            ("updated_at", "timestamp without time zone", True),
        ],
        "pk": ["id"],
        "fks": [("customer_id", "customers", "id")],
    },
    "order_items": {
        "rows": 14000,
        "columns": [
            ("id", "integer", False),
            ("order_id", "integer", False),
            ("product_id", "integer", False),
            ("quantity", "integer", False),
            ("unit_price", "numeric", True),
        ],
        "pk": ["id"],
        "fks": [("order_id", "delivery_orders", "id"), ("product_id", "products", "id")],
    },
    "products": {
        "rows": 300,
        "columns": [
            ("id", "integer", False),
            ("name", "character varying", False),
            ("category", "character varying", True),
            ("price", "numeric", True),
        ],
        "pk": ["id"],
        "fks": [],
    },
}


class FakeCatalogReader:
    """Answers the introspection queries from a dict catalog."""

    def __init__(self, catalog: Dict[str, Dict[str, Any]], fail_tables=(), fail_listing: bool = False):
        self.catalog = catalog
        self.fail_tables = set(fail_tables)
        self.fail_listing = fail_listing
        self.calls: List[str] = []

    async def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        params = params or {}
        table = params.get("table")
        self.calls.append(table or sql.split()[1])
        if sql == sc.LIST_TABLES_SQL:
            if self.fail_listing:
                raise ConnectionError("connection refused")
            return [{"table_name": n} for n in self.catalog]
        if sql == sc.ROW_COUNTS_SQL:
            return [{"table_name": n, "row_count": t["rows"]} for n, t in self.catalog.items()]
        if sql == sc.VECTOR_EXTENSION_SQL:
            return []
        if sql == sc.DATABASE_INFO_SQL:
            return [{"name": "shop", "size": "42 MB"}]

        if table in self.fail_tables:
            raise PermissionError(f"permission denied for table {table}")
        t = self.catalog[table]
        if sql == sc.COLUMNS_SQL:
            return [
                {
                    "column_name": name,
                    "data_type": dtype,
                    "character_maximum_length": 255 if "character" in dtype else None,
                    "is_nullable": "YES" if nullable else "NO",
                    "column_default": None,
                    "ordinal_position": pos,
                }
                for pos, (name, dtype, nullable) in enumerate(t["columns"], start=1)
            ]
        if sql == sc.INDEXES_SQL:
            return [{"indexname": f"{table}_pkey", "indexdef": f"CREATE UNIQUE INDEX {table}_pkey ON {table} (id)"}]
        if sql == sc.FOREIGN_KEYS_SQL:
            return [
                {
                    "column_name": col,
                    "foreign_table_name": ref_t,
                    "foreign_column_name": ref_c,
                    "constraint_name": f"{table}_{col}_fkey",
                }
                for col, ref_t, ref_c in t["fks"]
            ]
        if sql == sc.PRIMARY_KEY_SQL:
            return [{"column_name": c} for c in t["pk"]]
        raise AssertionError(f"unexpected query: {sql}")


class FakeExecutor:
    """Stands in for ReadOnlyDbExecutor.execute_validated; records what it ran."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, error=None):
        self.rows = rows if rows is not None else [{"year": 2024, "month": 1, "ordercount": 10}]
        self.error = error
        self.executed: List[str] = []

    async def execute_validated(self, query):
        assert query.accepted
        self.executed.append(query.sql)
        if self.error is not None:
            return self.error
        return QueryExecutionResult(rows=list(self.rows), columns=list(self.rows[0].keys()) if self.rows else [])


class StaticSchemaCache:
    def __init__(self, snapshot: Optional[SchemaSnapshot], error: Optional[Exception] = None):
        self.snapshot = snapshot
        self.error = error

    async def get_snapshot(self, use_cache=True, force_refresh=False, max_age_hours=None):
        if self.error is not None:
            raise self.error
        return self.snapshot


def chat_reply(text: str, finish_reason: str = "stop") -> Dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": text}, "finish_reason": finish_reason}]}


def scripted_oracle(replies: List[Any], seen: Optional[List[Dict[str, Any]]] = None) -> OracleClient:
    """
    OracleClient over httpx.MockTransport. Each item in `replies` is either
    reply text (200 response) or an (status_code, body) tuple.
    """
    queue = list(replies)

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append({"path": request.url.path, "json": json.loads(request.content),
                         "auth": request.headers.get("authorization")})
        item = queue.pop(0) if queue else ""
        if isinstance(item, tuple):
            status, body = item
            return httpx.Response(status, json=body)
        return httpx.Response(200, json=chat_reply(item))

    return OracleClient(
        api_key="sk-test-0000000000",
        base_url="https://llm.test/v1",
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def catalog():
    return SHOP_CATALOG


@pytest.fixture
def reader(catalog):
    return FakeCatalogReader(catalog)


@pytest.fixture
def make_reader():
    def _make(catalog=SHOP_CATALOG, **kwargs):
        return FakeCatalogReader(catalog, **kwargs)
    return _make


def snapshot_from_catalog(catalog: Dict[str, Dict[str, Any]]) -> SchemaSnapshot:
    tables = []
    for name in sorted(catalog):
        t = catalog[name]
        fks = [ForeignKey(column=c, references_table=rt, references_column=rc) for c, rt, rc in t["fks"]]
        refs = {fk.column: f"{fk.references_table}.{fk.references_column}" for fk in fks}
        columns = [
            Column(name=c, type=dtype, nullable=nullable, is_primary_key=c in t["pk"],
                   is_foreign_key=c in refs, foreign_key_ref=refs.get(c), position=pos)
            for pos, (c, dtype, nullable) in enumerate(t["columns"], start=1)
        ]
        tables.append(Table(name=name, row_count=t["rows"], columns=columns, primary_key=t["pk"], foreign_keys=fks))
    return SchemaSnapshot(
        tables=tables,
        total_tables=len(tables),
        cached_at=datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc),
        database_name="shop",
    )


@pytest.fixture
def snapshot(catalog) -> SchemaSnapshot:
    return snapshot_from_catalog(catalog)


@pytest.fixture
def fixed_now():
    return datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_executor():
    return FakeExecutor


@pytest.fixture
def make_oracle():
    return scripted_oracle


@pytest.fixture
def make_schema_cache():
    return StaticSchemaCache
