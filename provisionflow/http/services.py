"""Preconfigured clients for the administrative services steps talk to."""

from __future__ import annotations

import base64
from typing import Optional

import httpx

from ..config import HttpClientConfig
from ..constants import DEFAULT_BASE_DELAY_MS, DEFAULT_MAX_ATTEMPTS, SERVICE_TIMEOUT_MS
from .client import ResilientClient

_JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


def _service_client(
    base_url: str,
    authorization: str,
    extra_headers: Optional[dict] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ResilientClient:
    headers = {"Authorization": authorization, **_JSON_HEADERS, **(extra_headers or {})}
    config = HttpClientConfig(
        base_url=base_url,
        default_headers=headers,
        timeout_ms=SERVICE_TIMEOUT_MS,
        max_attempts=DEFAULT_MAX_ATTEMPTS,
        base_delay_ms=DEFAULT_BASE_DELAY_MS,
    )
    return ResilientClient(config, transport=transport)


def create_devops_client(
    organization: str,
    pat: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ResilientClient:
    """Client for the work-tracking service, authenticated with a PAT."""
    token = base64.b64encode(f":{pat}".encode()).decode()
    return _service_client(
        f"https://dev.azure.com/{organization}", f"Basic {token}", transport=transport
    )


def create_dataverse_client(
    environment_url: str,
    access_token: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ResilientClient:
    """Client for a low-code platform environment's data API."""
    return _service_client(
        f"{environment_url.rstrip('/')}/api/data/v9.2",
        f"Bearer {access_token}",
        extra_headers={"OData-MaxVersion": "4.0", "OData-Version": "4.0"},
        transport=transport,
    )


def create_platform_admin_client(
    access_token: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ResilientClient:
    """Client for the low-code platform's environment administration API."""
    return _service_client(
        "https://api.powerplatform.com", f"Bearer {access_token}", transport=transport
    )


def create_graph_client(
    access_token: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ResilientClient:
    """Client for the identity directory's application registration API."""
    return _service_client(
        "https://graph.microsoft.com/v1.0",
        f"Bearer {access_token}",
        transport=transport,
    )
