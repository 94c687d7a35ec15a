"""
Shared HTTP plumbing for the Trello and Discord clients.

Each collaborator client subclasses IntegrationClient and only supplies its
name and credentials. This module owns the lazily created httpx client,
turns unsuccessful responses into the ExternalApiError family and retries
transient failures.

Retries:
    Transient: timeouts, connection errors, 429 and 5xx responses.
    Permanent: every other 4xx, raised on the first attempt.
    Delay: retry_delay * 2**attempt with +/-25% jitter (max 60s), or the
    server's Retry-After when a 429 carries one.
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from boardrelay.errors import (
    AuthenticationError,
    ExternalApiError,
    NotFoundError,
    RateLimitError,
    RequestRejected,
)

logger = logging.getLogger(__name__)

MAX_BACKOFF = 60.0

# Status code -> (error type, message prefix) for permanent failures.
_PERMANENT_ERRORS: dict[int, tuple[type[ExternalApiError], str]] = {
    400: (RequestRejected, "Request rejected"),
    401: (AuthenticationError, "Authentication failed"),
    403: (AuthenticationError, "Authentication failed"),
    404: (NotFoundError, "Resource not found"),
    422: (RequestRejected, "Request rejected"),
}


@dataclass(frozen=True, slots=True)
class IntegrationConfig:
    """Connection settings shared by the collaborator clients."""

    base_url: str = ""
    timeout: float = 30.0

    max_retries: int = 3
    retry_delay: float = 1.0

    log_requests: bool = False


def backoff_delay(attempt: int, retry_delay: float, retry_after: float | None = None) -> float:
    """Seconds to wait before retry number ``attempt + 1``."""
    if retry_after:
        return retry_after
    delay = retry_delay * (2**attempt)
    delay += delay * 0.25 * random.uniform(-1, 1)
    return min(delay, MAX_BACKOFF)


def error_for_response(response: httpx.Response, integration: str) -> ExternalApiError:
    """Build the exception describing an unsuccessful response."""
    status = response.status_code
    body = response.text

    if status == 429:
        header = response.headers.get("Retry-After")
        return RateLimitError(
            "Rate limit exceeded",
            integration,
            status_code=status,
            response_body=body,
            retry_after=float(header) if header else None,
        )

    if status in _PERMANENT_ERRORS:
        error_type, prefix = _PERMANENT_ERRORS[status]
        return error_type(f"{prefix}: {body}", integration, status_code=status, response_body=body)

    return ExternalApiError(
        f"Request failed: {body}",
        integration,
        status_code=status,
        response_body=body,
        retryable=status >= 500,
    )


class IntegrationClient(ABC):
    """
    Base class for the collaborator HTTP clients.

    Subclasses provide ``name`` and ``_get_auth_headers()``, and override
    ``_get_auth_params()`` when the API authenticates through the query
    string.
    """

    def __init__(self, config: IntegrationConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport  # httpx.MockTransport in tests
        self._client: httpx.AsyncClient | None = None

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def _get_auth_headers(self) -> dict[str, str]: ...

    def _get_auth_params(self) -> dict[str, str]:
        return {}

    def _http(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json", "Content-Type": "application/json"}
            headers.update(self._get_auth_headers())
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers=headers,
                timeout=self.config.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> IntegrationClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Send a request, retrying transient failures.

        Raises:
            ExternalApiError: The last error once retries are exhausted, or
                the first permanent one
        """
        attempt = 0
        while True:
            try:
                return await self._send(method, path, params, json)
            except ExternalApiError as e:
                if not e.retryable or attempt >= self.config.max_retries:
                    if e.retryable:
                        logger.warning(
                            f"[{self.name}] {method} {path} still failing after "
                            f"{attempt} retries: {e}"
                        )
                    raise
                retry_after = e.retry_after if isinstance(e, RateLimitError) else None
                delay = backoff_delay(attempt, self.config.retry_delay, retry_after)
                attempt += 1
                logger.info(
                    f"[{self.name}] {method} {path} failed ({e}); "
                    f"retry {attempt}/{self.config.max_retries} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json: dict[str, Any] | None,
    ) -> httpx.Response:
        if self.config.log_requests:
            logger.debug(f"[{self.name}] -> {method} {path} {params or ''}")

        query = {**self._get_auth_params(), **(params or {})}
        try:
            response = await self._http().request(method, path, params=query, json=json)
        except httpx.TimeoutException as e:
            raise ExternalApiError(f"Request timeout: {e}", self.name, retryable=True) from e
        except httpx.NetworkError as e:
            raise ExternalApiError(f"Network error: {e}", self.name, retryable=True) from e

        if not response.is_success:
            raise error_for_response(response, self.name)
        return response
