from __future__ import annotations

import logging
import os
from typing import Any, Dict, Mapping, Optional

import httpx

from dealforge_lookup.settings import LookupSettings
from dealforge_lookup.sources.base import AdapterError


logger = logging.getLogger("dfl.sources")


def build_http_client(settings: LookupSettings, transport: Optional[httpx.BaseTransport] = None) -> httpx.Client:
    """Shared client for all sources. The timeout bounds every request."""

    use_no_proxy = (
        os.environ.get("NO_PROXY_LOOKUP") == "1"
        or os.environ.get("CI") == "1"
    )
    return httpx.Client(
        timeout=httpx.Timeout(settings.http_timeout_s),
        follow_redirects=True,
        trust_env=not use_no_proxy,
        headers={
            "User-Agent": settings.user_agent,
            "Accept": "application/json",
        },
        transport=transport,
    )


def get_json(
    client: httpx.Client,
    url: str,
    *,
    source: str,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Single GET returning a JSON object, or AdapterError. No retries."""

    try:
        response = client.get(url, params=params, headers=headers)
    except httpx.TimeoutException as exc:
        raise AdapterError(source, "timeout", detail=str(exc) or type(exc).__name__) from exc
    except httpx.HTTPError as exc:
        raise AdapterError(source, "network", detail=str(exc) or type(exc).__name__) from exc

    status = response.status_code
    logger.debug("%s GET %s -> %s", source, url, status)
    if status == 404:
        raise AdapterError(source, "not_found", status=status)
    if not (200 <= status < 300):
        raise AdapterError(source, "http_status", status=status, detail=response.text[:200])

    try:
        data = response.json()
    except ValueError as exc:
        raise AdapterError(source, "bad_body", status=status, detail="response is not JSON") from exc
    if not isinstance(data, dict):
        raise AdapterError(source, "bad_body", status=status, detail="expected a JSON object")
    return data
