# askdb/core/oracle_client.py
from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple, Union

import httpx

from askdb.core.redact import redact

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a SQL expert. Generate only SQL queries, no explanations."


@dataclass(frozen=True)
class Choices:
    text: str
    finish_reason: Optional[str] = None


@dataclass(frozen=True)
class Malformed:
    reason: str
    body: Optional[str] = None


OracleReply = Union[Choices, Malformed]


@dataclass(frozen=True)
class OracleAuthState:
    """Whether the service has rejected our credentials, and when."""
    rejected: bool = False
    rejected_at: Optional[float] = None
    status_code: Optional[int] = None

    def blocks(self, now: float, backoff_s: float) -> bool:
        return self.rejected and self.rejected_at is not None and (now - self.rejected_at) < backoff_s


AUTH_OK = OracleAuthState()


def _content_text(content: Any) -> Optional[str]:
    if isinstance(content, str):
        return content
    # Some providers return a list of typed parts
    if isinstance(content, list):
        parts = [p.get("text", "") for p in content if isinstance(p, dict) and isinstance(p.get("text"), str)]
        return "".join(parts) if parts else None
    return None


def parse_reply(payload: Any) -> OracleReply:
    """Classify a decoded chat-completions body before anyone touches the text."""
    if not isinstance(payload, dict):
        return Malformed("response is not a JSON object")
    if payload.get("error"):
        err = payload["error"]
        msg = err.get("message") if isinstance(err, dict) else str(err)
        return Malformed(f"service error: {msg}")
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return Malformed("no choices in response")
    first = choices[0]
    if not isinstance(first, dict):
        return Malformed("choice is not an object")
    message = first.get("message")
    text = _content_text(message.get("content")) if isinstance(message, dict) else None
    if text is None:
        return Malformed("choice has no message content")
    if not text.strip():
        return Malformed("empty message content")
    return Choices(text=text, finish_reason=first.get("finish_reason"))


@dataclass
class OracleClient:
    """
    Chat-completions client for the text-generation service.

    Failures never raise: transport problems, HTTP errors and odd payloads all
    come back as Malformed so the caller can fall back. Credential rejection is
    reported through the returned OracleAuthState.
    """
    api_key: Optional[str]
    base_url: str
    model: str = "qwen-plus"
    temperature: float = 0.1
    max_tokens: int = 500
    timeout_s: float = 60.0
    auth_backoff_s: float = 300.0
    system_prompt: str = SYSTEM_PROMPT
    transport: Optional[httpx.AsyncBaseTransport] = None
    clock: Callable[[], float] = field(default=time.monotonic)

    def __post_init__(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.base_url.rstrip("/"),
            timeout=self.timeout_s,
            transport=self.transport,
        )

    async def complete(
        self,
        prompt: str,
        *,
        auth: OracleAuthState = AUTH_OK,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Tuple[OracleReply, OracleAuthState]:
        if not self.api_key:
            return Malformed("LLM_API_KEY is not configured"), auth
        now = self.clock()
        if auth.blocks(now, self.auth_backoff_s):
            return Malformed(f"credentials rejected (HTTP {auth.status_code}); call skipped"), auth

        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": self.max_tokens if max_tokens is None else max_tokens,
        }
        try:
            resp = await self._client.post(
                "/chat/completions",
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            logger.warning("Oracle request failed: %s", redact(f"{type(e).__name__}: {e}"))
            return Malformed(f"transport error: {type(e).__name__}"), auth

        if resp.status_code in (401, 403):
            logger.error("Oracle rejected credentials (HTTP %d); pausing calls for %.0fs",
                         resp.status_code, self.auth_backoff_s)
            rejected = OracleAuthState(rejected=True, rejected_at=now, status_code=resp.status_code)
            return Malformed(f"HTTP {resp.status_code}: credentials rejected", redact(resp.text[:500])), rejected
        if resp.status_code >= 400:
            logger.warning("Oracle returned HTTP %d: %s", resp.status_code, redact(resp.text[:300]))
            return Malformed(f"HTTP {resp.status_code}", redact(resp.text[:500])), auth

        try:
            payload = resp.json()
        except ValueError:
            return Malformed("response body is not JSON", redact(resp.text[:500])), AUTH_OK
        reply = parse_reply(payload)
        if isinstance(reply, Malformed):
            logger.warning("Oracle reply malformed: %s", reply.reason)
        return reply, AUTH_OK

    async def aclose(self) -> None:
        await self._client.aclose()
