"""JSON HTTP transport for custom data sources.

Uses a module-level shared httpx.AsyncClient so every source polled in a
cycle reuses one connection pool.
"""

from __future__ import annotations

from typing import Any

import httpx

from candlebar.config import settings
from candlebar.utils.errors import TransportFailure

# Created lazily on first use; lives for the entire app lifecycle.
_shared_client: httpx.AsyncClient | None = None


async def _get_shared_client() -> httpx.AsyncClient:
    """Get or create the shared httpx.AsyncClient."""
    global _shared_client  # noqa: PLW0603
    if _shared_client is None or _shared_client.is_closed:
        _shared_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.HTTP_TIMEOUT, connect=5.0),
            limits=httpx.Limits(
                max_connections=20,
                max_keepalive_connections=10,
            ),
            follow_redirects=True,
            headers={"Accept": "application/json"},
        )
    return _shared_client


async def close_shared_client() -> None:
    global _shared_client  # noqa: PLW0603
    if _shared_client is not None and not _shared_client.is_closed:
        await _shared_client.aclose()
    _shared_client = None


async def fetch_json(url: str, client: httpx.AsyncClient | None = None) -> Any:
    """GET ``url`` and decode the body as JSON.

    Any network error, non-2xx status or undecodable body is raised as
    TransportFailure.
    """
    client = client or await _get_shared_client()
    try:
        resp = await client.get(url)
        resp.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise TransportFailure(
            f"HTTP {exc.response.status_code} from source",
            context={"url": url},
            cause=exc,
        ) from exc
    except httpx.HTTPError as exc:
        raise TransportFailure(
            f"Request failed: {exc.__class__.__name__}",
            context={"url": url},
            cause=exc,
        ) from exc

    try:
        return resp.json()
    except ValueError as exc:
        raise TransportFailure(
            "Response is not valid JSON", context={"url": url}, cause=exc,
        ) from exc
