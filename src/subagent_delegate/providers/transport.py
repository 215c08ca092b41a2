from __future__ import annotations

import asyncio
import random
from typing import Any, Dict

import httpx

RETRYABLE_STATUS = {408, 425, 429, 502, 503, 504}


def build_httpx_client(
    *,
    base_url: str,
    headers: Dict[str, str],
    connect_timeout_sec: float,
    read_timeout_sec: float,
    max_connections: int = 10,
    max_keepalive_connections: int = 5,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    timeout = httpx.Timeout(connect=connect_timeout_sec, read=read_timeout_sec, write=read_timeout_sec, pool=5.0)
    limits = httpx.Limits(
        max_connections=max(1, int(max_connections)),
        max_keepalive_connections=max(1, int(max_keepalive_connections)),
    )
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers,
        timeout=timeout,
        limits=limits,
        transport=transport,
    )


async def post_json_with_retries(
    client: httpx.AsyncClient,
    *,
    path: str,
    payload: Dict[str, Any],
    attempts: int = 2,
    base_backoff_sec: float = 0.5,
) -> httpx.Response:
    """POST ``payload`` and return the final response.

    Only transient network failures and gateway-style statuses are retried.
    Whatever status the last attempt produced is returned unchanged; callers
    decide what a non-2xx response means.
    """
    last_exc: Exception | None = None
    max_attempts = max(1, int(attempts))
    for idx in range(max_attempts):
        try:
            resp = await client.post(path, json=payload)
        except httpx.TransportError as exc:
            last_exc = exc
            if idx + 1 >= max_attempts or not _is_transient_error(exc):
                raise
            await _sleep_backoff(idx, base_backoff_sec)
            continue
        if resp.status_code in RETRYABLE_STATUS and idx + 1 < max_attempts:
            await _sleep_backoff(idx, base_backoff_sec)
            continue
        return resp
    if last_exc is not None:
        raise last_exc
    raise RuntimeError("post_json_with_retries exhausted without result")


def _is_transient_error(exc: Exception) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    text = type(exc).__name__.lower() + " " + str(exc).lower()
    transient_markers = ["timeout", "readerror", "connecterror", "network", "tempor", "name or service not known"]
    return any(marker in text for marker in transient_markers)


async def _sleep_backoff(attempt_idx: int, base_backoff_sec: float) -> None:
    # bounded exponential backoff with jitter
    delay = min(8.0, max(0.05, float(base_backoff_sec)) * (2 ** attempt_idx))
    delay = delay * (0.8 + random.random() * 0.4)
    await asyncio.sleep(delay)
