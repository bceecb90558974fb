# askdb/core/schema_cache.py
from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import anyio

from askdb.core.errors import SchemaUnavailableError
from askdb.core.models import SchemaSnapshot
from askdb.core.schema_catalog import SchemaIntrospector

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshHandle:
    """A scheduled background refresh. Failures land in `error` instead of vanishing."""

    def __init__(self, task: "asyncio.Task[SchemaSnapshot]"):
        self.task = task
        self.started_at = _utcnow()

    @property
    def done(self) -> bool:
        return self.task.done()

    @property
    def error(self) -> Optional[BaseException]:
        if not self.task.done() or self.task.cancelled():
            return None
        return self.task.exception()

    @property
    def result(self) -> Optional[SchemaSnapshot]:
        if not self.task.done() or self.task.cancelled() or self.task.exception():
            return None
        return self.task.result()

    async def wait(self) -> None:
        await asyncio.wait({self.task})


class SchemaCache:
    """
    Process-wide schema snapshot backed by one JSON file.

    Readers always get a whole snapshot: a refresh builds a new one and swaps
    it in. A stale snapshot is still served while at most one background
    refresh runs.
    """

    def __init__(
        self,
        introspector: SchemaIntrospector,
        cache_path: str,
        max_age_hours: float = 1.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.introspector = introspector
        self.cache_path = cache_path
        self.max_age_hours = max_age_hours
        self.clock = clock
        self._snapshot: Optional[SchemaSnapshot] = None
        self._lock = asyncio.Lock()
        self._refresh: Optional[RefreshHandle] = None
        self.last_refresh_error: Optional[BaseException] = None

    @property
    def current(self) -> Optional[SchemaSnapshot]:
        return self._snapshot

    @property
    def refresh_handle(self) -> Optional[RefreshHandle]:
        return self._refresh

    def is_stale(self, snapshot: SchemaSnapshot, max_age_hours: Optional[float] = None) -> bool:
        limit = self.max_age_hours if max_age_hours is None else max_age_hours
        return snapshot.age_hours(self.clock()) >= limit

    async def load_cached(self) -> Optional[SchemaSnapshot]:
        """In-memory snapshot, else the on-disk artifact. Never introspects."""
        if self._snapshot is not None:
            return self._snapshot
        path = anyio.Path(self.cache_path)
        if not await path.exists():
            return None
        try:
            raw = await path.read_text(encoding="utf-8")
            snapshot = SchemaSnapshot.model_validate_json(raw)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable schema cache %s: %s", self.cache_path, e)
            return None
        self._snapshot = snapshot
        logger.info("Loaded schema cache from %s (cachedAt=%s)", self.cache_path, snapshot.cached_at.isoformat())
        return snapshot

    async def _save(self, snapshot: SchemaSnapshot) -> None:
        path = anyio.Path(self.cache_path)
        await path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        await tmp.write_text(snapshot.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        await tmp.replace(path)

    async def _introspect_and_commit(self) -> SchemaSnapshot:
        snapshot = await self.introspector.introspect()
        try:
            await self._save(snapshot)
        except OSError as e:
            logger.warning("Could not write schema cache %s: %s", self.cache_path, e)
        self._snapshot = snapshot
        return snapshot

    async def refresh(self) -> SchemaSnapshot:
        """Forced introspection; concurrent callers share the lock."""
        async with self._lock:
            return await self._introspect_and_commit()

    async def get_snapshot(
        self,
        use_cache: bool = True,
        force_refresh: bool = False,
        max_age_hours: Optional[float] = None,
    ) -> SchemaSnapshot:
        if force_refresh or not use_cache:
            try:
                return await self.refresh()
            except Exception as e:  # noqa: BLE001
                raise SchemaUnavailableError(f"Schema introspection failed: {e}") from e

        snapshot = await self.load_cached()
        if snapshot is None:
            async with self._lock:
                # Another waiter may have introspected while we queued
                snapshot = self._snapshot
                if snapshot is None:
                    try:
                        snapshot = await self._introspect_and_commit()
                    except Exception as e:  # noqa: BLE001
                        raise SchemaUnavailableError(f"Schema introspection failed: {e}") from e
            return snapshot

        if self.is_stale(snapshot, max_age_hours):
            self.schedule_refresh()
        return snapshot

    def schedule_refresh(self) -> RefreshHandle:
        if self._refresh is not None and not self._refresh.done:
            return self._refresh
        logger.info("Schema snapshot is stale; refreshing in the background")
        task = asyncio.create_task(self.refresh(), name="schema-refresh")
        task.add_done_callback(self._on_refresh_done)
        self._refresh = RefreshHandle(task)
        return self._refresh

    def _on_refresh_done(self, task: "asyncio.Task[SchemaSnapshot]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.last_refresh_error = exc
            logger.error("Background schema refresh failed: %s", exc)
        else:
            self.last_refresh_error = None
            logger.info("Background schema refresh committed (%d tables)", task.result().total_tables)

    def status(self) -> Dict[str, Any]:
        snap = self._snapshot
        return {
            "loaded": snap is not None,
            "cachedAt": snap.cached_at.isoformat() if snap else None,
            "ageHours": round(snap.age_hours(self.clock()), 3) if snap else None,
            "stale": self.is_stale(snap) if snap else None,
            "totalTables": snap.total_tables if snap else 0,
            "partial": snap.partial if snap else False,
            "failedTables": snap.failed_tables if snap else [],
            "refreshing": bool(self._refresh and not self._refresh.done),
            "lastRefreshError": str(self.last_refresh_error) if self.last_refresh_error else None,
        }

    async def aclose(self) -> None:
        if self._refresh is not None and not self._refresh.done:
            self._refresh.task.cancel()
            await asyncio.gather(self._refresh.task, return_exceptions=True)
