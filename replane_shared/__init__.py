"""
Shared utilities for the Replane Python SDK.

This package aggregates common building blocks consumed by the SDK core:

- config: Client settings via pydantic-settings
- logging: Structured logging with trace and connection correlation
- metrics: Prometheus metrics for the sync channel and store
- errors: Canonical error types and responses
- retry: Backoff schedule and retry decorator
- test_helpers: Factories for configs, frames and SSE bodies

Any cross-cutting logic should live here to avoid import cycles. Do not
import from replane_sdk into replane_shared.
"""

__version__ = "0.4.0"
