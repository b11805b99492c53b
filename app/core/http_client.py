"""
Shared HTTP client for outbound provider calls.

Provides a singleton httpx.AsyncClient so provider syncs reuse pooled
connections. Retries are not configured on the transport; provider code
goes through `BaseIntegration.fetch_with_retry`, which owns backoff.
"""
import asyncio
from typing import Optional

import httpx

from app.core.config import settings
from app.core.logging_config import log_info

_client: Optional[httpx.AsyncClient] = None
_client_lock: Optional[asyncio.Lock] = None
_client_loop: Optional[asyncio.AbstractEventLoop] = None
_client_limits = httpx.Limits(max_connections=50, max_keepalive_connections=20)


def _get_lock() -> asyncio.Lock:
    """Get or create the client lock."""
    global _client_lock
    if _client_lock is None:
        _client_lock = asyncio.Lock()
    return _client_lock


def build_timeout() -> httpx.Timeout:
    """Timeout applied to every provider request."""
    total = settings.integration_http_timeout
    return httpx.Timeout(total, connect=min(10.0, total))


async def get_http_client() -> httpx.AsyncClient:
    """
    Get the shared AsyncClient instance.

    Creates a new instance if one doesn't exist or is closed. Celery workers
    run each task in a fresh event loop via asyncio.run, so a client bound to
    a previous loop is discarded and rebuilt.
    """
    global _client, _client_lock, _client_loop
    if _client is not None and not _client.is_closed and _bound_to_running_loop():
        return _client

    if not _bound_to_running_loop():
        _client = None
        _client_lock = None

    async with _get_lock():
        if _client is None or _client.is_closed:
            _client = httpx.AsyncClient(
                timeout=build_timeout(),
                limits=_client_limits,
                follow_redirects=True,
            )
            _client_loop = asyncio.get_running_loop()
            log_info("HTTP client created", timeout=settings.integration_http_timeout)
    return _client


def _bound_to_running_loop() -> bool:
    if _client is None:
        return True
    try:
        return _client_loop is asyncio.get_running_loop()
    except RuntimeError:
        return False


async def close_http_client():
    """Close the shared client if it exists."""
    global _client
    async with _get_lock():
        if _client and not _client.is_closed:
            await _client.aclose()
            _client = None
            log_info("HTTP client closed")
