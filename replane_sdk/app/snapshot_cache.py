"""
Shared clients for repeated snapshot reads.

Server-side renders often ask for a snapshot per request. Instead of a
fresh connection each time, one started ``ReplaneClient`` is kept per
``base_url:sdk_key`` and closed after ``keep_alive_ms`` without a read.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from replane_shared.config import ClientSettings
from replane_shared.logging import get_logger
from replane_sdk.app.client import ReplaneClient
from replane_sdk.app.rules.models import EvaluationContext
from replane_sdk.app.store.snapshot import Snapshot


DEFAULT_KEEP_ALIVE_MS = 60_000


def cache_key(settings: ClientSettings) -> str:
    return f"{settings.base_url}:{settings.sdk_key}"


@dataclass
class _CachedClient:
    key: str
    ready: "asyncio.Task[ReplaneClient]"
    timer: Optional[asyncio.TimerHandle] = field(default=None)


class SnapshotCache:
    """Started clients keyed by connection, expired after a quiet period."""

    def __init__(self, keep_alive_ms: int = DEFAULT_KEEP_ALIVE_MS):
        self.keep_alive_ms = keep_alive_ms
        self.logger = get_logger("sdk.snapshot_cache")
        self._entries: Dict[str, _CachedClient] = {}
        self._closing: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def get_snapshot(self, settings: ClientSettings, *,
                           keep_alive_ms: Optional[int] = None,
                           resolved: bool = False,
                           context: Optional[EvaluationContext] = None,
                           **client_kwargs: Any) -> Snapshot:
        """Snapshot from the cached client for ``settings``, starting one if needed.

        Each call pushes the expiry back by ``keep_alive_ms``. Client
        options in ``client_kwargs`` only apply when a client is created.
        """
        key = cache_key(settings)
        entry = self._entries.get(key)
        if entry is None:
            task = asyncio.create_task(self._start(settings, client_kwargs))
            entry = _CachedClient(key=key, ready=task)
            self._entries[key] = entry
            self.logger.debug("Snapshot client created", base_url=settings.base_url)
        self._schedule_expiry(entry, self.keep_alive_ms if keep_alive_ms is None else keep_alive_ms)

        try:
            client = await asyncio.shield(entry.ready)
        except Exception as e:
            if self._entries.get(key) is entry:
                self._drop(entry)
            self.logger.warning("Snapshot client failed to start", base_url=settings.base_url, error=str(e))
            raise

        return client.get_snapshot(resolved=resolved, context=context)

    async def clear(self) -> None:
        """Close every cached client and empty the cache."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            if entry.timer is not None:
                entry.timer.cancel()
        await asyncio.gather(*(self._close_entry(entry) for entry in entries))
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
        self.logger.debug("Snapshot cache cleared", closed=len(entries))

    @staticmethod
    async def _start(settings: ClientSettings, client_kwargs: Dict[str, Any]) -> ReplaneClient:
        client = ReplaneClient(settings, **client_kwargs)
        await client.start()
        return client

    def _schedule_expiry(self, entry: _CachedClient, keep_alive_ms: int) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
        loop = asyncio.get_running_loop()
        entry.timer = loop.call_later(keep_alive_ms / 1000, self._expire, entry)

    def _expire(self, entry: _CachedClient) -> None:
        if self._entries.get(entry.key) is not entry:
            return
        self._drop(entry)
        task = asyncio.ensure_future(self._close_entry(entry))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        self.logger.debug("Snapshot client expired")

    def _drop(self, entry: _CachedClient) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        self._entries.pop(entry.key, None)

    async def _close_entry(self, entry: _CachedClient) -> None:
        try:
            client = await entry.ready
        except Exception:
            # Start failures were already reported to the caller
            return
        await client.close()


_default_cache = SnapshotCache()


async def get_replane_snapshot(settings: ClientSettings, **kwargs: Any) -> Snapshot:
    """Snapshot from a process-wide client shared per ``base_url:sdk_key``."""
    return await _default_cache.get_snapshot(settings, **kwargs)


async def clear_snapshot_cache() -> None:
    """Close the clients held by ``get_replane_snapshot``."""
    await _default_cache.clear()
