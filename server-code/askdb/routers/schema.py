# askdb/routers/schema.py
from __future__ import annotations

import logging
from fastapi import APIRouter, Depends, HTTPException, Query

from askdb.deps import schema_cache
from askdb.core.errors import SchemaUnavailableError
from askdb.core.schema_cache import SchemaCache

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/schema", tags=["schema"])


@router.get("", summary="Schema snapshot (cached unless cache=false)")
async def get_schema(
    cache: bool = Query(True, description="Serve the cached snapshot when one exists"),
    sc: SchemaCache = Depends(schema_cache),
):
    try:
        snap = await sc.get_snapshot(use_cache=cache)
    except SchemaUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return snap.model_dump(mode="json", by_alias=True)


@router.get("/cached", summary="Cached snapshot only; never introspects")
async def get_cached_schema(sc: SchemaCache = Depends(schema_cache)):
    snap = await sc.load_cached()
    if snap is None:
        raise HTTPException(status_code=404, detail="No cached schema available.")
    return snap.model_dump(mode="json", by_alias=True)


@router.post("/refresh", summary="Force a fresh introspection")
async def refresh_schema(sc: SchemaCache = Depends(schema_cache)):
    try:
        snap = await sc.get_snapshot(force_refresh=True)
    except SchemaUnavailableError as e:
        logger.error("Forced schema refresh failed: %s", e)
        raise HTTPException(status_code=503, detail=str(e))
    return {
        "refreshed": True,
        "cachedAt": snap.cached_at.isoformat(),
        "totalTables": snap.total_tables,
        "partial": snap.partial,
        "failedTables": snap.failed_tables,
    }
