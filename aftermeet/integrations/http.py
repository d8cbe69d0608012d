"""Shared aiohttp request helper mapping transport and HTTP failures to UpstreamError."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Tuple

import aiohttp

from aftermeet.config import HTTP_TIMEOUT_SECONDS
from aftermeet.utils import get_logger
from .base import UpstreamError, UpstreamNotReadyError

logger = get_logger(__name__)


async def request_json(
    service: str,
    method: str,
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    json: Optional[Any] = None,
    params: Optional[Dict[str, Any]] = None,
    timeout: Optional[float] = None,
) -> Tuple[int, Any]:
    """Perform a request and return ``(status, body)``.

    Raises:
        UpstreamNotReadyError: on 404
        UpstreamError: on timeouts, connection errors and other non-2xx statuses
    """
    client_timeout = aiohttp.ClientTimeout(total=timeout or HTTP_TIMEOUT_SECONDS)
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.request(method, url, headers=headers, json=json, params=params) as response:
                status = response.status
                if status == 204:
                    return status, None
                try:
                    body: Any = await response.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    body = await response.text()
    except asyncio.TimeoutError:
        logger.warning("Upstream request timed out", service=service, method=method, url=url)
        raise UpstreamError(service, "request timed out") from None
    except aiohttp.ClientError as e:
        logger.warning("Upstream request failed", service=service, method=method, url=url, error=str(e))
        raise UpstreamError(service, f"connection error: {e}") from e

    if status == 404:
        raise UpstreamNotReadyError(service)
    if status >= 400:
        detail = body.get("error") if isinstance(body, dict) else body
        logger.warning("Upstream returned error status", service=service, method=method, url=url, status_code=status)
        raise UpstreamError(service, f"HTTP {status}: {detail or 'request failed'}", status_code=status)
    return status, body


__all__ = ["request_json"]
