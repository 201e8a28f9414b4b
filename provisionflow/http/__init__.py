"""Resilient remote-call primitive."""

from __future__ import annotations

from .client import (
    CallOptions,
    CallRequest,
    CallResult,
    ResilientClient,
    classify_status,
    redact_headers,
)
from .services import (
    create_dataverse_client,
    create_devops_client,
    create_graph_client,
    create_platform_admin_client,
)

__all__ = [
    "CallOptions",
    "CallRequest",
    "CallResult",
    "ResilientClient",
    "classify_status",
    "redact_headers",
    "create_dataverse_client",
    "create_devops_client",
    "create_graph_client",
    "create_platform_admin_client",
]
