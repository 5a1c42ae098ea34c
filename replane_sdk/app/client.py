"""
Replane client facade.

Ties together the config store, override resolver, subscription registry
and sync channel behind the consumer surface: ``get``, ``subscribe``,
``get_snapshot`` and ``close``.
"""

import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import httpx

from replane_shared.config import ClientSettings, get_settings
from replane_shared.errors import (
    ClientClosedError, ConfigNotFoundError, InitializationTimeoutError, ReplaneException,
)
from replane_shared.logging import get_logger, set_client_id
from replane_shared.metrics import SdkMetrics
from replane_sdk.app.rules.bucketer import Bucketer
from replane_sdk.app.rules.models import EvaluationContext
from replane_sdk.app.rules.resolver import OverrideResolver
from replane_sdk.app.sse.api_client import ReplaneApiClient
from replane_sdk.app.sse.channel import SyncChannel
from replane_sdk.app.store.config_store import ConfigStore
from replane_sdk.app.store.snapshot import Snapshot, capture_snapshot
from replane_sdk.app.subscriptions.manager import ChangeCallback, SubscriptionRegistry


class _NotFound:
    """Sentinel returned by ``get`` for unknown names without a default."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = _NotFound()

_MISSING = object()

ErrorCallback = Callable[[ReplaneException], Any]


class BaseClient:
    """Read side shared by the networked and in-memory clients."""

    def __init__(self, defaults: Optional[Mapping[str, Any]] = None,
                 context: Optional[EvaluationContext] = None,
                 environment_id: Optional[str] = None,
                 project_id: Optional[str] = None,
                 bucketer: Optional[Bucketer] = None,
                 metrics: Optional[SdkMetrics] = None):
        self.client_id = str(uuid.uuid4())
        self.logger = get_logger("sdk.client").bind(client_id=self.client_id)
        self.metrics = metrics
        self.context: Dict[str, Any] = dict(context or {})
        self.environment_id = environment_id

        self.store = ConfigStore(defaults, metrics=metrics)
        self.registry = SubscriptionRegistry(metrics=metrics)
        self.resolver = OverrideResolver(bucketer=bucketer, project_id=project_id)
        self.store.add_listener(self.registry.notify)

        self.closed = False

    @property
    def version(self) -> int:
        return self.store.version

    def get(self, name: str, context: Optional[EvaluationContext] = None,
            default: Any = _MISSING, environment_id: Optional[str] = None) -> Any:
        """Effective value of ``name`` for the merged context.

        Falls back to ``default``, then the construction-time default, then
        ``NOT_FOUND``. Never raises for unknown names.
        """
        state = self.store.state
        config = state.configs.get(name)
        if config is None:
            if default is not _MISSING:
                return default
            return self.store.get_default(name, NOT_FOUND)

        return self.resolver.resolve(
            config,
            environment_id or self.environment_id,
            self._merge_context(context),
            config_lookup=state.configs.get
        )

    def get_or_raise(self, name: str, context: Optional[EvaluationContext] = None,
                     environment_id: Optional[str] = None) -> Any:
        """Like ``get`` but raises ``ConfigNotFoundError`` instead of returning NOT_FOUND."""
        value = self.get(name, context, environment_id=environment_id)
        if value is NOT_FOUND:
            raise ConfigNotFoundError(name)
        return value

    def subscribe(self, name: str, callback: ChangeCallback) -> Callable[[], bool]:
        """Call ``callback(name)`` whenever ``name`` changes; returns unsubscribe."""
        return self.registry.subscribe(name, callback)

    def subscribe_all(self, callback: ChangeCallback) -> Callable[[], bool]:
        """Call ``callback(name)`` for every changed config; returns unsubscribe."""
        return self.registry.subscribe_all(callback)

    def get_snapshot(self, resolved: bool = False,
                     context: Optional[EvaluationContext] = None) -> Snapshot:
        """Capture the store; ``resolved`` stores each config's value for the context."""
        state = self.store.state
        merged = self._merge_context(context)
        if not resolved:
            return capture_snapshot(state.configs, state.version, context=merged)

        values = {
            name: self.resolver.resolve(config, self.environment_id, merged, config_lookup=state.configs.get)
            for name, config in state.configs.items()
        }
        return capture_snapshot(state.configs, state.version, resolved_values=values, context=merged)

    def _merge_context(self, context: Optional[EvaluationContext]) -> Dict[str, Any]:
        if not context:
            return dict(self.context)
        return {**self.context, **context}

    def _seed(self, snapshot: Union[Snapshot, Mapping[str, Any], str]) -> None:
        restored = Snapshot.from_wire(snapshot)
        self.store.apply_snapshot(restored.config_entries(), restored.version)
        for key, value in restored.context.items():
            self.context.setdefault(key, value)
        self.logger.info("Store seeded from snapshot", version=restored.version,
                         config_count=len(restored.configs))


class ReplaneClient(BaseClient):
    """Client kept current by the replication stream.

    Usage::

        async with ReplaneClient(get_settings(base_url=url, sdk_key=key)) as client:
            if client.get("new-checkout", {"user_id": user.id}):
                ...
    """

    def __init__(self, settings: Optional[ClientSettings] = None, *,
                 defaults: Optional[Mapping[str, Any]] = None,
                 context: Optional[EvaluationContext] = None,
                 environment_id: Optional[str] = None,
                 required: Sequence[str] = (),
                 snapshot: Optional[Union[Snapshot, Mapping[str, Any], str]] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 on_error: Optional[ErrorCallback] = None,
                 metrics: Optional[SdkMetrics] = None):
        self.settings = settings or get_settings()
        if metrics is None and self.settings.enable_metrics:
            metrics = SdkMetrics(agent=self.settings.agent)

        super().__init__(
            defaults=defaults,
            context=context,
            environment_id=environment_id or self.settings.environment_id,
            project_id=self.settings.project_id,
            metrics=metrics
        )

        self.required = tuple(required)
        self.transport = transport
        self.channel: Optional[SyncChannel] = None
        self._error_callbacks: List[ErrorCallback] = []
        if on_error is not None:
            self._error_callbacks.append(on_error)

        if snapshot is not None:
            self._seed(snapshot)

    @property
    def ready(self) -> bool:
        return self.channel is not None and self.channel.ready

    @property
    def last_error(self) -> Optional[ReplaneException]:
        return self.channel.last_error if self.channel else None

    def on_error(self, callback: ErrorCallback) -> Callable[[], None]:
        """Register a callback for errors that stop synchronisation."""
        self._error_callbacks.append(callback)

        def remove() -> None:
            if callback in self._error_callbacks:
                self._error_callbacks.remove(callback)

        return remove

    async def start(self, wait: bool = True) -> "ReplaneClient":
        """Connect to the server.

        With ``wait`` the call returns once the first snapshot is applied, or
        after ``initialization_timeout_ms`` when defaults or a seeded
        snapshot can serve reads in the meantime.
        """
        if self.closed:
            raise ClientClosedError()
        if not self.settings.base_url or not self.settings.sdk_key:
            raise ValueError("base_url and sdk_key are required to connect")
        if self.channel is not None:
            if self.channel.is_running:
                return self
            # Stopped after a fatal error; release its HTTP client before replacing it
            await self.channel.aclose()

        # Inherited by the sync task, so its log lines carry this client's id
        set_client_id(self.client_id)
        self.channel = SyncChannel(
            self.settings,
            self.store,
            transport=self.transport,
            required=self.required,
            metrics=self.metrics
        )
        self.channel.on_error(self._emit_error)
        await self.channel.start()

        if not wait:
            return self

        try:
            ready = await self.channel.wait_until_ready(self.settings.initialization_timeout or None)
        except ReplaneException:
            await self.close()
            raise

        if not ready:
            if self.store.state.empty and not self.store.defaults:
                await self.close()
                raise InitializationTimeoutError(
                    details={"timeout_ms": self.settings.initialization_timeout_ms}
                )
            self.logger.warning(
                "Initialization timed out, serving cached values",
                timeout_ms=self.settings.initialization_timeout_ms
            )

        missing = [name for name in self.required if name not in self.store and not self.store.has_default(name)]
        if missing:
            await self.close()
            raise ConfigNotFoundError(missing[0], details={"missing": missing})

        return self

    async def close(self):
        """Stop synchronisation and drop subscriptions. Cached values stay readable."""
        if self.closed:
            return
        self.closed = True

        if self.channel is not None:
            await self.channel.aclose()
        self.registry.clear()
        self.logger.info("Client closed")

    async def __aenter__(self) -> "ReplaneClient":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _emit_error(self, error: ReplaneException):
        for callback in list(self._error_callbacks):
            try:
                callback(error)
            except Exception as e:
                self.logger.error("Error callback failed", error=str(e))


def restore_client(snapshot: Union[Snapshot, Mapping[str, Any], str],
                   settings: Optional[ClientSettings] = None, **kwargs) -> ReplaneClient:
    """Build a client serving a snapshot, e.g. one handed over from a server render.

    The client is not connected; call ``await client.start(wait=False)`` to
    keep it live.
    """
    return ReplaneClient(settings, snapshot=snapshot, **kwargs)


async def fetch_snapshot(settings: ClientSettings,
                         transport: Optional[httpx.AsyncBaseTransport] = None) -> Snapshot:
    """Fetch the current snapshot once without opening a stream."""
    api = ReplaneApiClient(settings, transport=transport)
    try:
        frame = await api.fetch_snapshot()
    finally:
        await api.aclose()
    return capture_snapshot(frame.configs, frame.version)
