# askdb/routers/health.py
from __future__ import annotations

import logging
from fastapi import APIRouter, Depends, Query

from askdb.deps import health_monitor, schema_cache
from askdb.core.db_health import HealthMonitor
from askdb.core.schema_cache import SchemaCache

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", summary="Liveness check")
def health_check():
    return {"status": "ok"}


@router.get("/health/db", summary="Database connectivity (read-only pool)")
async def db_health(
    probe: bool = Query(False, description="Run a probe now instead of reporting the last one"),
    monitor: HealthMonitor = Depends(health_monitor),
):
    health = await monitor.check_once() if probe else monitor.health
    return health.to_dict()


@router.get("/health/schema", summary="Schema snapshot cache status")
def schema_health(sc: SchemaCache = Depends(schema_cache)):
    return sc.status()
