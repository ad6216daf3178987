"""Endpoint rotation for exchanges that block some client regions or hosts.

An adapter owns one `EndpointFailover` with its ordered base URLs. When a
call fails with a blocked-class error the cursor moves to the next URL and
the same call is retried there, once per remaining endpoint. A blocked
error on the last endpoint raises `AllEndpointsBlockedError`. Other errors
are left for the retry policy.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

import httpx

from spreadscan.core.exceptions import AllEndpointsBlockedError, FatalExchangeError
from spreadscan.utils.logging import get_logger


logger = get_logger("failover")

T = TypeVar("T")

BLOCKED_MARKERS = ("blocked", "forbidden")


def is_blocked_error(exc: BaseException) -> bool:
    """HTTP 403, connection refused, or a body mentioning blocked/forbidden."""
    if isinstance(exc, FatalExchangeError):
        return False
    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code == 403:
            return True
        try:
            body = exc.response.text.lower()
        except (httpx.ResponseNotRead, UnicodeDecodeError):
            body = ""
        if any(marker in body for marker in BLOCKED_MARKERS):
            return True
    if isinstance(exc, ConnectionRefusedError):
        return True
    if isinstance(exc, httpx.ConnectError):
        cause = exc.__cause__ or exc.__context__
        if isinstance(cause, ConnectionRefusedError) or "refused" in str(exc).lower():
            return True
    message = str(exc).lower()
    return any(marker in message for marker in BLOCKED_MARKERS)


class EndpointFailover:
    def __init__(
        self,
        name: str,
        endpoints: Sequence[str],
        on_switch: Optional[Callable[[str], None]] = None,
    ) -> None:
        if not endpoints:
            raise ValueError(f"{name}: at least one endpoint is required")
        self.name = name
        self.endpoints = [e.rstrip("/") for e in endpoints]
        self._cursor = 0
        self._lock = asyncio.Lock()
        self._on_switch = on_switch

    @property
    def current(self) -> str:
        return self.endpoints[self._cursor]

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def exhausted(self) -> bool:
        return self._cursor >= len(self.endpoints) - 1

    async def call(self, operation: Callable[[str], Awaitable[T]]) -> T:
        """Run `operation(base_url)`, walking the remaining endpoints on blocked-class errors.

        Raises `AllEndpointsBlockedError` once the last endpoint is blocked too.
        """
        endpoint = self.current
        while True:
            try:
                return await operation(endpoint)
            except Exception as exc:
                if not is_blocked_error(exc):
                    raise
                endpoint = await self._advance(endpoint, exc)

    async def _advance(self, failed: str, exc: BaseException) -> str:
        async with self._lock:
            if self.current != failed:
                # A concurrent call already rotated past the failed endpoint.
                return self.current
            if self.exhausted:
                logger.error("%s: endpoint %s blocked and no fallback left", self.name, failed)
                raise AllEndpointsBlockedError(self.name, exc) from exc
            self._cursor += 1
            new_endpoint = self.current
            logger.warning(
                "%s: endpoint %s blocked (%s), switching to %s",
                self.name,
                failed,
                exc,
                new_endpoint,
            )
            if self._on_switch:
                self._on_switch(new_endpoint)
            return new_endpoint

    async def reset(self) -> None:
        async with self._lock:
            if self._cursor != 0:
                self._cursor = 0
                logger.info("%s: endpoint rotation reset to %s", self.name, self.current)
                if self._on_switch:
                    self._on_switch(self.current)
