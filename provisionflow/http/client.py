"""Resilient HTTP call primitive used by every step action."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx
from pydantic import BaseModel, Field

from ..config import HttpClientConfig
from ..constants import REDACTED, SENSITIVE_HEADERS
from ..errors import (
    CallError,
    CallTimeoutError,
    FailureKind,
    RetryExhaustedError,
)
from ..utils import retry

logger = logging.getLogger(__name__)


class CallRequest(BaseModel):
    """One remote operation: target, method, headers and optional payload."""

    method: str = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None


class CallOptions(BaseModel):
    """Per-call overrides of the client defaults."""

    timeout_ms: Optional[int] = Field(default=None, gt=0)
    max_attempts: Optional[int] = Field(default=None, ge=1)
    base_delay_ms: Optional[int] = Field(default=None, ge=0)


class CallResult(BaseModel):
    """Successful response of a remote call."""

    status_code: int
    reason: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    request_id: str
    attempts: int = 1


def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Return a copy of ``headers`` with credentials masked."""
    return {
        key: REDACTED if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def classify_status(status_code: int) -> FailureKind:
    """Map an unsuccessful HTTP status to a failure classification."""
    if status_code == 429:
        return FailureKind.RATE_LIMITED
    if status_code >= 500:
        return FailureKind.SERVER_ERROR
    return FailureKind.CLIENT_ERROR


def _generate_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


class ResilientClient:
    """Issue HTTP calls with a deadline, linear backoff and error classification.

    Client-level defaults come from :class:`HttpClientConfig`; every value in a
    call's :class:`CallOptions` overrides the matching default. Retryable
    failures (timeouts, 429, 5xx, transport errors) are retried up to
    ``max_attempts``; any other failure is raised on the attempt it happened.
    """

    def __init__(
        self,
        config: Optional[HttpClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or HttpClientConfig()
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url, transport=transport
        )

    async def __aenter__(self) -> "ResilientClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    async def execute(
        self, request: CallRequest, options: Optional[CallOptions] = None
    ) -> CallResult:
        """Execute ``request`` and return its result.

        Raises:
            CallError: A fatal failure, raised on the attempt it occurred.
            RetryExhaustedError: Every attempt failed with a retryable error.
        """
        merged = self._merge_request(request)
        timeout_ms, max_attempts, base_delay_ms = self._merge_options(options)

        attempt = 1
        while True:
            self._log_request(merged, attempt)
            try:
                result = await self._send(merged, timeout_ms, attempt)
            except CallError as exc:
                self._log_error(exc, attempt, max_attempts)
                if not exc.retryable:
                    raise
                if attempt >= max_attempts:
                    raise RetryExhaustedError(max_attempts, exc) from exc
                await retry.schedule_retry(attempt, base_delay_ms)
                attempt += 1
                continue
            self._log_response(result)
            return result

    async def get(
        self, url: str, headers: Optional[Dict[str, str]] = None, **options: Any
    ) -> CallResult:
        return await self.execute(
            CallRequest(method="GET", url=url, headers=headers or {}),
            CallOptions(**options),
        )

    async def post(
        self,
        url: str,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        **options: Any,
    ) -> CallResult:
        return await self.execute(
            CallRequest(method="POST", url=url, headers=headers or {}, body=body),
            CallOptions(**options),
        )

    async def patch(
        self,
        url: str,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        **options: Any,
    ) -> CallResult:
        return await self.execute(
            CallRequest(method="PATCH", url=url, headers=headers or {}, body=body),
            CallOptions(**options),
        )

    async def delete(
        self, url: str, headers: Optional[Dict[str, str]] = None, **options: Any
    ) -> CallResult:
        return await self.execute(
            CallRequest(method="DELETE", url=url, headers=headers or {}),
            CallOptions(**options),
        )

    # ------------------------------------------------------------------
    def _merge_request(self, request: CallRequest) -> CallRequest:
        headers = {**self.config.default_headers, **request.headers}
        if request.body is not None and not any(
            key.lower() == "content-type" for key in headers
        ):
            headers["Content-Type"] = "application/json"
        return request.model_copy(
            update={"method": request.method.upper(), "headers": headers}
        )

    def _merge_options(self, options: Optional[CallOptions]) -> Tuple[int, int, int]:
        options = options or CallOptions()
        return (
            options.timeout_ms or self.config.timeout_ms,
            options.max_attempts or self.config.max_attempts,
            options.base_delay_ms
            if options.base_delay_ms is not None
            else self.config.base_delay_ms,
        )

    async def _send(
        self, request: CallRequest, timeout_ms: int, attempt: int
    ) -> CallResult:
        content: Optional[bytes] = None
        if request.body is not None:
            if isinstance(request.body, bytes):
                content = request.body
            elif isinstance(request.body, str):
                content = request.body.encode()
            else:
                content = json.dumps(request.body).encode()

        timeout_s = timeout_ms / 1000
        try:
            response = await asyncio.wait_for(
                self._client.request(
                    request.method,
                    request.url,
                    headers=request.headers,
                    content=content,
                    timeout=timeout_s,
                ),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise CallTimeoutError(timeout_ms, attempts=attempt) from exc
        except httpx.TransportError as exc:
            raise CallError(
                f"Network failure calling {request.url}: {exc}",
                kind=FailureKind.CONNECTIVITY,
                attempts=attempt,
            ) from exc
        except httpx.HTTPError as exc:
            raise CallError(
                f"Request to {request.url} failed: {exc}",
                kind=FailureKind.UNKNOWN,
                attempts=attempt,
            ) from exc

        headers = dict(response.headers)
        request_id = headers.get("x-request-id") or _generate_request_id()

        if not response.is_success:
            raise CallError(
                f"Request failed with status {response.status_code}: "
                f"{response.reason_phrase}",
                kind=classify_status(response.status_code),
                status_code=response.status_code,
                body=self._decode_error_body(response),
                request_id=request_id,
                attempts=attempt,
            )

        return CallResult(
            status_code=response.status_code,
            reason=response.reason_phrase,
            headers=headers,
            body=self._decode_body(response, request_id, attempt),
            request_id=request_id,
            attempts=attempt,
        )

    @staticmethod
    def _is_json(response: httpx.Response) -> bool:
        return "application/json" in response.headers.get("content-type", "")

    @classmethod
    def _decode_body(
        cls, response: httpx.Response, request_id: str, attempt: int
    ) -> Any:
        if not response.content:
            return None
        if not cls._is_json(response):
            return response.text
        try:
            return response.json()
        except ValueError as exc:
            raise CallError(
                f"Invalid JSON in response with status {response.status_code}",
                kind=FailureKind.UNKNOWN,
                status_code=response.status_code,
                body=response.text,
                request_id=request_id,
                attempts=attempt,
            ) from exc

    @classmethod
    def _decode_error_body(cls, response: httpx.Response) -> Any:
        """Decode an error payload; gateways often mislabel HTML as JSON."""
        if not response.content:
            return None
        if cls._is_json(response):
            try:
                return response.json()
            except ValueError:
                logger.debug(
                    f"Status {response.status_code} body is not valid JSON; keeping text"
                )
        return response.text

    # ------------------------------------------------------------------
    def _log_request(self, request: CallRequest, attempt: int) -> None:
        if not self.config.enable_logging:
            return
        log_data = {
            "method": request.method,
            "url": request.url,
            "attempt": attempt,
            "headers": redact_headers(request.headers),
        }
        logger.info(f"Request: {json.dumps(log_data)}", extra={"http": log_data})

    def _log_response(self, result: CallResult) -> None:
        if not self.config.enable_logging:
            return
        log_data = {
            "status": result.status_code,
            "reason": result.reason,
            "request_id": result.request_id,
            "attempt": result.attempts,
            "headers": redact_headers(result.headers),
        }
        logger.info(f"Response: {json.dumps(log_data)}", extra={"http": log_data})

    def _log_error(self, error: CallError, attempt: int, max_attempts: int) -> None:
        if not self.config.enable_logging:
            return
        log_data = {
            "error": str(error),
            "kind": error.kind.value,
            "status": error.status_code,
            "attempt": attempt,
            "max_attempts": max_attempts,
            "will_retry": error.retryable and attempt < max_attempts,
        }
        logger.warning(f"Error: {json.dumps(log_data)}", extra={"http": log_data})
