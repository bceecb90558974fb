# askdb/core/db_health.py
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from askdb.core.db_retry import is_transient_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionHealth:
    healthy: bool
    checked_at: Optional[datetime] = None
    error: Optional[str] = None
    # False when the failure was not network-class (bad credentials, dropped database, ...)
    recoverable: bool = True
    consecutive_failures: int = 0

    def to_dict(self) -> dict:
        return {
            "ok": self.healthy,
            "checkedAt": self.checked_at.isoformat() if self.checked_at else None,
            "error": self.error,
            "recoverable": self.recoverable,
            "consecutiveFailures": self.consecutive_failures,
        }


UNKNOWN = ConnectionHealth(healthy=False, error="not probed yet")


async def probe_connection(engine: AsyncEngine, previous: ConnectionHealth = UNKNOWN) -> ConnectionHealth:
    """One idle round-trip. Never raises; the outcome is the returned value."""
    now = datetime.now(timezone.utc)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return ConnectionHealth(healthy=True, checked_at=now)
    except Exception as e:  # noqa: BLE001
        return ConnectionHealth(
            healthy=False,
            checked_at=now,
            error=str(e),
            recoverable=is_transient_error(e),
            consecutive_failures=previous.consecutive_failures + 1,
        )


class HealthMonitor:
    """
    Periodic pool probe. Network-class failures only mark the pool unhealthy
    (the next tick probes again); anything else is handed to `on_fatal`.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        interval_s: float = 30.0,
        on_fatal: Optional[Callable[[ConnectionHealth], None]] = None,
    ):
        self.engine = engine
        self.interval_s = interval_s
        self.on_fatal = on_fatal
        self.health: ConnectionHealth = UNKNOWN
        self._task: Optional[asyncio.Task] = None

    async def check_once(self) -> ConnectionHealth:
        health = await probe_connection(self.engine, self.health)
        if health.healthy and not self.health.healthy and self.health.checked_at:
            logger.info("Database connection recovered")
        elif not health.healthy:
            logger.warning("Database health check failed (%d in a row): %s",
                           health.consecutive_failures, health.error)
        self.health = health
        if not health.healthy and not health.recoverable and self.on_fatal is not None:
            logger.error("Unrecoverable database error: %s", health.error)
            self.on_fatal(health)
        return health

    async def _loop(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self.interval_s)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="db-health-monitor")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
