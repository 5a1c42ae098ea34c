"""
Shared metrics for the Replane SDK.

Metrics are created unregistered unless a ``CollectorRegistry`` is passed,
so several clients can live in one process without name clashes. Pass
``prometheus_client.REGISTRY`` to expose them on the default endpoint.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info

from replane_shared import __version__


class SdkMetrics:
    """Centralized metrics collector for one SDK client."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, agent: str = "replane-python"):
        self.registry = registry
        self.agent = agent
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up sync and store metrics."""

        self._metrics["sdk_info"] = Info(
            "replane_sdk",
            "Replane SDK information",
            registry=self.registry
        )
        self._metrics["sdk_info"].info({
            "version": __version__,
            "agent": self.agent
        })

        # Sync channel
        self._metrics["frames_received_total"] = Counter(
            "replane_frames_received_total",
            "Stream frames received",
            ["frame_type"],
            registry=self.registry
        )

        self._metrics["frames_discarded_total"] = Counter(
            "replane_frames_discarded_total",
            "Malformed stream frames discarded",
            registry=self.registry
        )

        self._metrics["patches_rejected_total"] = Counter(
            "replane_patches_rejected_total",
            "Patches rejected because of a version gap",
            registry=self.registry
        )

        self._metrics["reconnects_total"] = Counter(
            "replane_reconnects_total",
            "Stream reconnect attempts",
            ["reason"],
            registry=self.registry
        )

        self._metrics["fatal_errors_total"] = Counter(
            "replane_fatal_errors_total",
            "Errors that stopped the sync channel",
            ["code"],
            registry=self.registry
        )

        self._metrics["stream_connected"] = Gauge(
            "replane_stream_connected",
            "Whether the replication stream is connected",
            registry=self.registry
        )

        self._metrics["connect_duration_seconds"] = Histogram(
            "replane_connect_duration_seconds",
            "Time to establish the replication stream",
            registry=self.registry
        )

        # Store and subscriptions
        self._metrics["store_version"] = Gauge(
            "replane_store_version",
            "Version of the installed config snapshot",
            registry=self.registry
        )

        self._metrics["notifications_total"] = Counter(
            "replane_notifications_total",
            "Subscriber callbacks invoked",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_frame(self, frame_type: str):
        self._metrics["frames_received_total"].labels(frame_type=frame_type).inc()

    def record_discarded_frame(self):
        self._metrics["frames_discarded_total"].inc()

    def record_patch_rejected(self):
        self._metrics["patches_rejected_total"].inc()

    def record_reconnect(self, reason: str):
        self._metrics["reconnects_total"].labels(reason=reason).inc()

    def record_fatal_error(self, code: str):
        self._metrics["fatal_errors_total"].labels(code=code).inc()

    def record_notifications(self, count: int):
        if count:
            self._metrics["notifications_total"].inc(count)

    def set_connected(self, connected: bool):
        self._metrics["stream_connected"].set(1 if connected else 0)

    def set_store_version(self, version: int):
        self._metrics["store_version"].set(version)

    @contextmanager
    def time_connect(self):
        """Context manager timing a connection attempt."""
        start_time = time.monotonic()
        try:
            yield
        finally:
            self._metrics["connect_duration_seconds"].observe(time.monotonic() - start_time)


def get_sdk_metrics(registry: Optional[CollectorRegistry] = None, agent: str = "replane-python") -> SdkMetrics:
    """Get a metrics collector for a client."""
    return SdkMetrics(registry, agent)
