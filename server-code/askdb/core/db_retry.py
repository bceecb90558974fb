# askdb/core/db_retry.py
"""
Retry policy for database round-trips.

Only network-class failures are retried (refused/reset connections, DNS
failures, timeouts while connecting, server shutdown). Syntax errors,
permission errors and statement timeouts propagate on the first attempt.
"""
from __future__ import annotations
import asyncio
import errno
import logging
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import exc as sa_exc
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from askdb.core.errors import RetriesExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")

NETWORK_ERRNOS = {
    errno.ETIMEDOUT,
    errno.EHOSTUNREACH,
    errno.ECONNREFUSED,
    errno.ECONNRESET,
    errno.ECONNABORTED,
    errno.ENETUNREACH,
    errno.EPIPE,
}
# SQLSTATE class 08 (connection exception) plus server shutdown codes
TRANSIENT_SQLSTATE_PREFIXES = ("08",)
TRANSIENT_SQLSTATES = {"57P01", "57P02", "57P03"}
# 57014 is a statement timeout / cancel: the query itself is the problem
NON_TRANSIENT_SQLSTATES = {"57014"}
TRANSIENT_MESSAGES = ("connection terminated", "connection was closed", "connection is closed",
                      "connection refused", "connection reset", "timeout expired", "timed out")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with jitter.

    delay(attempt) = min(base * 2**(attempt-1) + uniform(0, jitter), cap), attempt starting at 1
    """
    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 10.0
    jitter_s: float = 0.2

    def wait(self) -> wait_exponential_jitter:
        return wait_exponential_jitter(initial=self.base_delay_s, max=self.max_delay_s, jitter=self.jitter_s)

    def __str__(self):
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, "
            f"base={self.base_delay_s}s, cap={self.max_delay_s}s)"
        )


def sqlstate_of(exc: BaseException) -> Optional[str]:
    """Best effort SQLSTATE lookup across SQLAlchemy wrappers and asyncpg/psycopg errors."""
    seen = set()
    cur: Optional[BaseException] = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        for attr in ("sqlstate", "pgcode"):
            code = getattr(cur, attr, None)
            if isinstance(code, str) and code:
                return code
        cur = getattr(cur, "orig", None) or cur.__cause__
    return None


def is_transient_error(exc: BaseException) -> bool:
    code = sqlstate_of(exc)
    if code in NON_TRANSIENT_SQLSTATES:
        return False
    if code and (code in TRANSIENT_SQLSTATES or code.startswith(TRANSIENT_SQLSTATE_PREFIXES)):
        return True

    if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
        return True
    # Pool checkout timeout
    if isinstance(exc, sa_exc.TimeoutError):
        return True

    inner = getattr(exc, "orig", None) or exc.__cause__
    for e in (exc, inner):
        if e is None:
            continue
        if isinstance(e, socket.gaierror):
            return True
        if isinstance(e, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
            return True
        if isinstance(e, OSError) and e.errno in NETWORK_ERRNOS:
            return True

    msg = str(exc).lower()
    return any(m in msg for m in TRANSIENT_MESSAGES)


async def execute_with_retry(
    op: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation_name: str = "db operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run `op` until it succeeds, a non-transient error occurs, or attempts run out.
    Raises RetriesExhausted wrapping the last transient error.
    """
    attempts = max(1, policy.max_attempts)

    def _log_retry(state: RetryCallState) -> None:
        logger.warning(
            "%s failed with a transient error (attempt %d/%d), retrying in %.2fs: %s",
            operation_name, state.attempt_number, attempts,
            state.next_action.sleep if state.next_action else 0.0,
            state.outcome.exception() if state.outcome else None,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=policy.wait(),
        retry=retry_if_exception(is_transient_error),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=False,
    )
    try:
        async for attempt in retrying:
            with attempt:
                return await op()
    except RetryError as e:
        last = e.last_attempt.exception()
        logger.error("%s failed after %d attempt(s): %s", operation_name, attempts, last)
        raise RetriesExhausted(operation_name, attempts, last) from last
    raise AssertionError("unreachable")
