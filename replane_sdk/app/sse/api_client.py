"""
HTTP client for the Replane SDK API.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import httpx
from pydantic import ValidationError

from replane_shared.config import ClientSettings
from replane_shared.errors import (
    AuthenticationError, AuthorizationError, NetworkError, RequestTimeoutError, ServerError,
)
from replane_shared.logging import get_logger
from replane_shared.metrics import SdkMetrics
from replane_shared.retry import RetryConfig, RetryError, retry_on_exception
from .frames import SnapshotFrame


STREAM_PATH = "/api/sdk/v1/replication/stream"
SNAPSHOT_PATH = "/api/sdk/v1/snapshot"
EVENT_STREAM = "text/event-stream"

_MAX_ERROR_BODY = 500


class ReplaneApiClient:
    """Client for the replication stream and snapshot endpoints."""

    def __init__(self, settings: ClientSettings,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 metrics: Optional[SdkMetrics] = None):
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/")
        self.metrics = metrics
        self.logger = get_logger("sdk.sse.api_client")

        # The read timeout stays open; inactivity is enforced by the channel
        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(settings.request_timeout, read=None),
            headers=self.headers,
        )

        retry_config = RetryConfig.from_millis(
            settings.retry_delay_ms,
            settings.max_retry_delay_ms,
            max_attempts=3
        )
        self._fetch_snapshot_with_retry = retry_on_exception(
            (NetworkError, ServerError, RequestTimeoutError),
            retry_config
        )(self._fetch_snapshot_once)

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.sdk_key}",
            "User-Agent": self.settings.agent,
        }

    @asynccontextmanager
    async def open_stream(self, from_version: Optional[int],
                          required: Sequence[str] = ()) -> AsyncIterator[httpx.Response]:
        """Open the replication stream; yields the response once headers are in."""
        url = f"{self.base_url}{STREAM_PATH}"
        body = {"fromVersion": from_version, "requiredConfigs": list(required)}
        request = self._client.build_request("POST", url, json=body, headers={"Accept": EVENT_STREAM})

        response = await self._send(request, stream=True)
        try:
            await self._ensure_success(response, "replication stream")

            content_type = response.headers.get("content-type", "")
            if EVENT_STREAM not in content_type:
                raise ServerError(
                    f'Expected {EVENT_STREAM}, got "{content_type}"',
                    details={"url": url}
                )

            yield response
        finally:
            await response.aclose()

    async def iter_lines(self, response: httpx.Response) -> AsyncIterator[str]:
        """Lines of a streaming response, with transport failures as NetworkError."""
        try:
            async for line in response.aiter_lines():
                yield line
        except httpx.HTTPError as e:
            raise NetworkError("Replication stream read failed", details={"error": str(e)}) from e

    async def fetch_snapshot(self) -> SnapshotFrame:
        """One-shot full snapshot, retried on transient failures."""
        try:
            return await self._fetch_snapshot_with_retry()
        except RetryError as e:
            raise e.last_exception from e

    async def _fetch_snapshot_once(self) -> SnapshotFrame:
        url = f"{self.base_url}{SNAPSHOT_PATH}"
        request = self._client.build_request("GET", url, headers={"Accept": "application/json"})
        response = await self._send(request)
        await self._ensure_success(response, "snapshot")

        try:
            return SnapshotFrame.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ServerError("Malformed snapshot response", details={"error": str(e)}) from e

    async def _send(self, request: httpx.Request, stream: bool = False) -> httpx.Response:
        try:
            if self.metrics:
                with self.metrics.time_connect():
                    return await asyncio.wait_for(
                        self._client.send(request, stream=stream),
                        timeout=self.settings.request_timeout
                    )
            return await asyncio.wait_for(
                self._client.send(request, stream=stream),
                timeout=self.settings.request_timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            self.logger.warning("Request timed out", url=str(request.url),
                                timeout_ms=self.settings.request_timeout_ms)
            raise RequestTimeoutError(details={"url": str(request.url)}) from e
        except httpx.RequestError as e:
            self.logger.warning("Request failed", url=str(request.url), error=str(e))
            raise NetworkError(f"Request to {request.url} failed", details={"error": str(e)}) from e

    async def _ensure_success(self, response: httpx.Response, what: str) -> None:
        if response.is_success:
            return

        status = response.status_code
        details: Dict[str, Any] = {"status_code": status, "url": str(response.request.url)}

        if status == 401:
            raise AuthenticationError(f"Unauthorized access: {what}", details=details)
        if status == 403:
            raise AuthorizationError(f"Forbidden access: {what}", details=details)

        try:
            await response.aread()
            details["body"] = response.text[:_MAX_ERROR_BODY]
        except httpx.HTTPError:
            details["body"] = "<unable to read response body>"

        raise ServerError(f"Unsuccessful response ({what}): {status}", details=details)

    async def aclose(self) -> None:
        await self._client.aclose()

