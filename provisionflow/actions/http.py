from __future__ import annotations

from typing import Any, Dict

from ..http import CallOptions, CallRequest
from .base import ActionContext, StepAction


class HttpRequestAction(StepAction):
    """Issue the call described by the step configuration.

    Config:
        url: Target URL, absolute or relative to the client base URL (required)
        method: HTTP method (default: GET)
        headers: Extra request headers
        body: JSON-serialisable payload
        timeout_ms / max_attempts / base_delay_ms: per-call overrides
    """

    tag = "http_request"

    async def execute(self, config: Dict[str, Any], context: ActionContext) -> Any:
        if context.client is None:
            raise RuntimeError(f"Step {context.step_id} has no HTTP client configured")
        if not config.get("url"):
            raise ValueError(f"Step {context.step_id} configuration is missing 'url'")

        request = CallRequest(
            method=config.get("method", "GET"),
            url=config["url"],
            headers=config.get("headers") or {},
            body=config.get("body"),
        )
        options = CallOptions(
            timeout_ms=config.get("timeout_ms"),
            max_attempts=config.get("max_attempts"),
            base_delay_ms=config.get("base_delay_ms"),
        )
        result = await context.client.execute(request, options)
        return {
            "status_code": result.status_code,
            "body": result.body,
            "request_id": result.request_id,
        }
