# askdb/core/schema_catalog.py
from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from askdb.core.models import Column, ExtensionInfo, ForeignKey, Index, SchemaSnapshot, Table

logger = logging.getLogger(__name__)

SCHEMA = "public"

LIST_TABLES_SQL = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = :schema
      AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

ROW_COUNTS_SQL = """
    SELECT relname AS table_name, n_live_tup AS row_count
    FROM pg_stat_user_tables
    WHERE schemaname = :schema
"""

COLUMNS_SQL = """
    SELECT column_name, data_type, character_maximum_length, is_nullable,
           column_default, ordinal_position
    FROM information_schema.columns
    WHERE table_schema = :schema AND table_name = :table
    ORDER BY ordinal_position
"""

INDEXES_SQL = """
    SELECT indexname, indexdef
    FROM pg_indexes
    WHERE schemaname = :schema AND tablename = :table
    ORDER BY indexname
"""

FOREIGN_KEYS_SQL = """
    SELECT kcu.column_name,
           ccu.table_name AS foreign_table_name,
           ccu.column_name AS foreign_column_name,
           tc.constraint_name
    FROM information_schema.table_constraints AS tc
    JOIN information_schema.key_column_usage AS kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage AS ccu
      ON ccu.constraint_name = tc.constraint_name
     AND ccu.table_schema = tc.table_schema
    WHERE tc.constraint_type = 'FOREIGN KEY'
      AND tc.table_schema = :schema
      AND tc.table_name = :table
    ORDER BY kcu.column_name, tc.constraint_name
"""

PRIMARY_KEY_SQL = """
    SELECT kcu.column_name
    FROM information_schema.table_constraints AS tc
    JOIN information_schema.key_column_usage AS kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema = kcu.table_schema
    WHERE tc.constraint_type = 'PRIMARY KEY'
      AND tc.table_schema = :schema
      AND tc.table_name = :table
    ORDER BY kcu.ordinal_position
"""

VECTOR_EXTENSION_SQL = "SELECT extversion FROM pg_extension WHERE extname = 'vector'"
DATABASE_INFO_SQL = """
    SELECT current_database() AS name,
           pg_size_pretty(pg_database_size(current_database())) AS size
"""


class CatalogReader(Protocol):
    async def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]: ...


class SchemaIntrospector:
    """
    Reads the live catalog into a SchemaSnapshot.

    Each table's columns, indexes, foreign keys and primary key are fetched
    as independent concurrent queries; at most `concurrency` tables are in
    flight at once. A table whose queries fail is kept, flagged with `error`.
    """

    def __init__(self, reader: CatalogReader, concurrency: int = 4,
                 schema: str = SCHEMA, database_name: Optional[str] = None):
        self.reader = reader
        self.concurrency = max(1, concurrency)
        self.schema = schema
        self.database_name = database_name

    async def _row_counts(self) -> Dict[str, int]:
        try:
            rows = await self.reader.fetch_all(ROW_COUNTS_SQL, {"schema": self.schema})
        except Exception as e:  # noqa: BLE001
            logger.warning("Row count statistics unavailable, defaulting to 0: %s", e)
            return {}
        return {r["table_name"]: int(r["row_count"] or 0) for r in rows}

    async def _extension_info(self) -> ExtensionInfo:
        try:
            rows = await self.reader.fetch_all(VECTOR_EXTENSION_SQL)
        except Exception as e:  # noqa: BLE001
            return ExtensionInfo(installed=False, error=str(e))
        if rows:
            return ExtensionInfo(installed=True, version=rows[0].get("extversion"))
        return ExtensionInfo(installed=False)

    async def _database_info(self) -> Dict[str, Optional[str]]:
        try:
            rows = await self.reader.fetch_all(DATABASE_INFO_SQL)
        except Exception as e:  # noqa: BLE001
            logger.warning("Could not read database name/size: %s", e)
            return {"name": None, "size": None}
        return rows[0] if rows else {"name": None, "size": None}

    async def _describe_table(self, name: str, row_count: int) -> Table:
        params = {"schema": self.schema, "table": name}
        cols, idx, fks, pk = await asyncio.gather(
            self.reader.fetch_all(COLUMNS_SQL, params),
            self.reader.fetch_all(INDEXES_SQL, params),
            self.reader.fetch_all(FOREIGN_KEYS_SQL, params),
            self.reader.fetch_all(PRIMARY_KEY_SQL, params),
        )
        primary_key = [r["column_name"] for r in pk]
        foreign_keys = sorted(
            (
                ForeignKey(
                    column=r["column_name"],
                    references_table=r["foreign_table_name"],
                    references_column=r["foreign_column_name"],
                    constraint_name=r.get("constraint_name"),
                )
                for r in fks
            ),
            key=lambda fk: (fk.column, fk.references_table, fk.references_column),
        )
        fk_by_col = {fk.column: fk for fk in foreign_keys}
        columns: List[Column] = []
        for r in cols:
            cname = r["column_name"]
            fk = fk_by_col.get(cname)
            columns.append(Column(
                name=cname,
                type=r["data_type"],
                nullable=(r["is_nullable"] == "YES"),
                is_primary_key=cname in primary_key,
                is_foreign_key=fk is not None,
                foreign_key_ref=f"{fk.references_table}.{fk.references_column}" if fk else None,
                position=r.get("ordinal_position"),
                default=r.get("column_default"),
                max_length=r.get("character_maximum_length"),
            ))
        columns.sort(key=lambda c: (c.position or 0, c.name))
        indexes = sorted((Index(name=r["indexname"], definition=r["indexdef"]) for r in idx),
                         key=lambda i: i.name)
        return Table(name=name, row_count=row_count, columns=columns, primary_key=primary_key,
                     foreign_keys=foreign_keys, indexes=indexes)

    async def introspect(self) -> SchemaSnapshot:
        # The listing itself must succeed; without it there is nothing to serve
        listed = await self.reader.fetch_all(LIST_TABLES_SQL, {"schema": self.schema})
        names = sorted(r["table_name"] for r in listed)
        counts = await self._row_counts()
        sem = asyncio.Semaphore(self.concurrency)

        async def one(name: str) -> Table:
            async with sem:
                try:
                    return await self._describe_table(name, counts.get(name, 0))
                except Exception as e:  # noqa: BLE001
                    logger.warning("Introspection failed for table %s: %s", name, e)
                    return Table(name=name, row_count=counts.get(name, 0), error=str(e))

        tables = list(await asyncio.gather(*(one(n) for n in names)))
        ext, info = await asyncio.gather(self._extension_info(), self._database_info())

        snapshot = SchemaSnapshot(
            tables=tables,
            total_tables=len(names),
            cached_at=datetime.now(timezone.utc),
            database_name=self.database_name or info.get("name"),
            pg_extension_info=ext,
            database_size=info.get("size"),
            partial=any(t.error for t in tables),
        )
        if snapshot.partial:
            logger.warning("Schema snapshot is partial; failed tables: %s", ", ".join(snapshot.failed_tables))
        logger.info("Introspected %d table(s)", snapshot.total_tables)
        return snapshot
