"""
Replication stream sync channel.

Keeps a ``ConfigStore`` current over one long-lived SSE connection. A single
background task connects, applies frames, and reconnects with capped
exponential backoff. Patches that do not line up with the store's version
trigger a full snapshot fetch; if that fails too the next connection asks
for everything from scratch.
"""

import asyncio
from typing import Any, AsyncIterator, Callable, List, Optional, Sequence

import httpx
from opentelemetry import trace

from replane_shared.config import ClientSettings
from replane_shared.errors import FrameError, ReplaneException
from replane_shared.logging import get_logger, set_connection_id
from replane_shared.metrics import SdkMetrics
from replane_shared.retry import RetryConfig, calculate_delay
from replane_sdk.app.store.config_store import ConfigStore
from .api_client import ReplaneApiClient
from .frames import (
    ConfigChangeFrame, HeartbeatFrame, InitFrame, PatchFrame, SnapshotFrame, parse_frame,
)
from .parser import SSEComment, SSEItem, SSEKeepalive, iter_sse


ErrorCallback = Callable[[ReplaneException], Any]

# Reconnect reasons, used as the metrics label
STREAM_ENDED = "stream_end"
INACTIVITY = "inactivity"
RESYNC = "resync"


class SyncChannel:
    """Owns the replication stream task for one client."""

    def __init__(self, settings: ClientSettings, store: ConfigStore,
                 api_client: Optional[ReplaneApiClient] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 required: Sequence[str] = (),
                 metrics: Optional[SdkMetrics] = None):
        self.settings = settings
        self.store = store
        self.metrics = metrics
        self.api = api_client or ReplaneApiClient(settings, transport=transport, metrics=metrics)
        self.required = tuple(required)
        self.logger = get_logger("sdk.sse.channel")
        self.tracer = trace.get_tracer(__name__)

        self.retry_config = RetryConfig.from_millis(settings.retry_delay_ms, settings.max_retry_delay_ms)

        self.running = False
        self.connected = False
        self.ready = False
        self.last_error: Optional[ReplaneException] = None
        self.attempt = 0

        self._task: Optional[asyncio.Task] = None
        self._settled = asyncio.Event()
        self._full_resync = False
        self._error_callbacks: List[ErrorCallback] = []

    @property
    def is_running(self) -> bool:
        return self.running and self._task is not None and not self._task.done()

    def on_error(self, callback: ErrorCallback) -> Callable[[], None]:
        """Register a callback for errors that stop the channel."""
        self._error_callbacks.append(callback)

        def remove() -> None:
            if callback in self._error_callbacks:
                self._error_callbacks.remove(callback)

        return remove

    async def start(self):
        """Start the background sync task."""
        if self.is_running:
            return

        self.running = True
        self._settled.clear()
        self._task = asyncio.create_task(self._run())
        self.logger.info("Sync channel started", base_url=self.settings.base_url)

    async def stop(self):
        """Cancel the sync task and wait for it to finish."""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self._set_connected(False)
        self._settled.set()
        self.logger.info("Sync channel stopped")

    async def aclose(self):
        """Stop the channel and release the HTTP client."""
        await self.stop()
        await self.api.aclose()

    async def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait for the first snapshot.

        Returns False on timeout. Raises the stored error when the channel
        stopped on a fatal error before becoming ready.
        """
        if not self.ready:
            try:
                await asyncio.wait_for(self._settled.wait(), timeout)
            except asyncio.TimeoutError:
                return False

        if not self.ready and self.last_error is not None and self.last_error.fatal:
            raise self.last_error
        return self.ready

    def resume_version(self) -> Optional[int]:
        """``fromVersion`` for the next connection, None for a full snapshot."""
        if self._full_resync:
            return None
        if self.store.state.empty and self.store.version == 0:
            return None
        return self.store.version

    async def _run(self):
        """Connect, consume, back off, repeat."""
        while self.running:
            try:
                reason = await self._connect_once()

            except asyncio.CancelledError:
                raise

            except ReplaneException as e:
                if e.fatal:
                    self._fail(e)
                    return
                self.last_error = e
                reason = e.code.lower()
                self.logger.warning(
                    "Replication stream failed",
                    code=e.code,
                    error=e.message,
                    details=e.details
                )

            except Exception as e:
                reason = "unexpected"
                self.logger.error("Unexpected error in sync loop", error=str(e))

            self._set_connected(False)
            if not self.running:
                break

            self.attempt += 1
            delay = calculate_delay(self.attempt, self.retry_config)
            if self.metrics:
                self.metrics.record_reconnect(reason)
            self.logger.info(
                "Reconnecting to replication stream",
                attempt=self.attempt,
                delay=round(delay, 3),
                reason=reason
            )
            await asyncio.sleep(delay)

    async def _connect_once(self) -> str:
        connection_id = set_connection_id()
        from_version = self.resume_version()

        with self.tracer.start_as_current_span("replane.replication_stream") as span:
            span.set_attribute("replane.connection_id", connection_id)
            span.set_attribute("replane.from_version", -1 if from_version is None else from_version)

            async with self.api.open_stream(from_version, self.required) as response:
                self.attempt = 0
                self._full_resync = False
                self._set_connected(True)
                self.logger.info("Replication stream connected", from_version=from_version)

                return await self._consume(self.api.iter_lines(response))

    async def _consume(self, lines: AsyncIterator[str]) -> str:
        items = iter_sse(lines)
        timeout = self.settings.inactivity_timeout
        try:
            while self.running:
                try:
                    item = await asyncio.wait_for(items.__anext__(), timeout)
                except StopAsyncIteration:
                    self.logger.info("Replication stream ended")
                    return STREAM_ENDED
                except asyncio.TimeoutError:
                    self.logger.warning("Replication stream inactive", timeout_ms=self.settings.inactivity_timeout_ms)
                    return INACTIVITY

                reason = await self._handle_item(item)
                if reason is not None:
                    return reason
            return STREAM_ENDED
        finally:
            await items.aclose()

    async def _handle_item(self, item: SSEItem) -> Optional[str]:
        """Apply one SSE item; returns a reason when the connection must restart."""
        if isinstance(item, (SSEComment, SSEKeepalive)):
            self.logger.debug("Keepalive received", kind=type(item).__name__)
            return None

        try:
            frame = parse_frame(item.data)
        except FrameError as e:
            self.logger.warning("Malformed frame discarded", error=e.message, details=e.details)
            if self.metrics:
                self.metrics.record_discarded_frame()
            return None

        if frame is None:
            return None

        if self.metrics:
            self.metrics.record_frame(frame.type)

        if isinstance(frame, HeartbeatFrame):
            self.logger.debug("Heartbeat received")
            return None

        if isinstance(frame, SnapshotFrame):
            self._apply_snapshot(frame)
            return None

        if isinstance(frame, PatchFrame):
            if self.store.apply_patch(frame.from_version, frame.to_version, frame.changes):
                return None
            if self.metrics:
                self.metrics.record_patch_rejected()
            return await self._resync()

        if isinstance(frame, InitFrame):
            self.store.replace(frame.configs)
            self._mark_ready()
            return None

        if isinstance(frame, ConfigChangeFrame):
            version = self.store.version
            self.store.apply_patch(version, version + 1, {frame.config.name: frame.config})
            return None

        return None

    def _apply_snapshot(self, frame: SnapshotFrame):
        self.store.apply_snapshot(frame.configs, frame.version)
        self._mark_ready()

    async def _resync(self) -> Optional[str]:
        self.logger.warning("Patch rejected, fetching full snapshot", current_version=self.store.version)
        try:
            frame = await self.api.fetch_snapshot()
        except ReplaneException as e:
            if e.fatal:
                raise
            self.logger.warning("Snapshot fetch failed, reconnecting for a full snapshot", error=e.message)
            self._full_resync = True
            return RESYNC

        self._apply_snapshot(frame)
        return None

    def _mark_ready(self):
        missing = [name for name in self.required if name not in self.store]
        if missing:
            self.logger.warning("Required configs missing from snapshot", missing=missing)

        if not self.ready:
            self.ready = True
            self.logger.info("Sync channel ready", version=self.store.version, config_count=len(self.store))
        self._settled.set()

    def _set_connected(self, connected: bool):
        self.connected = connected
        if self.metrics:
            self.metrics.set_connected(connected)

    def _fail(self, error: ReplaneException):
        self.running = False
        self.last_error = error
        self._set_connected(False)
        if self.metrics:
            self.metrics.record_fatal_error(error.code)

        self.logger.error(
            "Sync channel stopped on fatal error",
            code=error.code,
            error=error.message,
            details=error.details
        )
        self._settled.set()

        for callback in list(self._error_callbacks):
            try:
                callback(error)
            except Exception as e:
                self.logger.error("Error callback failed", error=str(e))
