"""
Replane Python SDK.

Client-side engine for Replane dynamic configs and feature flags: a local
config cache kept current over Server-Sent Events, with override
resolution against a per-call evaluation context.
"""

from replane_shared import __version__
from replane_shared.config import ClientSettings, get_settings
from replane_shared.errors import (
    AuthenticationError,
    AuthorizationError,
    ClientClosedError,
    ConfigNotFoundError,
    InitializationTimeoutError,
    NetworkError,
    ReplaneException,
    RequestTimeoutError,
    ServerError,
)
from replane_sdk.app.client import NOT_FOUND, ReplaneClient, fetch_snapshot, restore_client
from replane_sdk.app.snapshot_cache import SnapshotCache, clear_snapshot_cache, get_replane_snapshot
from replane_sdk.app.store.snapshot import Snapshot
from replane_sdk.app.testing.in_memory import InMemoryClient

__all__ = [
    "__version__",
    "AuthenticationError",
    "AuthorizationError",
    "ClientClosedError",
    "ClientSettings",
    "ConfigNotFoundError",
    "InMemoryClient",
    "InitializationTimeoutError",
    "NOT_FOUND",
    "NetworkError",
    "ReplaneClient",
    "ReplaneException",
    "RequestTimeoutError",
    "ServerError",
    "Snapshot",
    "SnapshotCache",
    "clear_snapshot_cache",
    "fetch_snapshot",
    "get_replane_snapshot",
    "get_settings",
    "restore_client",
]
