# askdb/jobs/refresh_schema.py
"""
Introspects the live database, rewrites the schema cache file and prints a
per-table summary. Tables that could not be described are listed last.
"""
from __future__ import annotations
import asyncio
import logging

from askdb import deps
from askdb.core.errors import SchemaUnavailableError


async def _refresh() -> int:
    s = deps.settings()
    cache = deps.schema_cache()
    try:
        snap = await cache.get_snapshot(force_refresh=True)
    except SchemaUnavailableError as ex:
        print(f"Schema refresh failed: {ex}")
        return 1
    finally:
        await deps.engine().dispose()

    for t in snap.tables:
        if t.error is None:
            print(f"{t.name}: {len(t.columns)} columns, {t.row_count} rows")
    for name in snap.failed_tables:
        print(f"Skip {name}: {snap.table(name).error}")
    print(f"Wrote {snap.total_tables} tables to {s.SCHEMA_CACHE_PATH} (partial={snap.partial})")
    return 0


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    raise SystemExit(asyncio.run(_refresh()))


if __name__ == "__main__":
    main()
