"""
Versioned in-memory config store.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from replane_shared.logging import get_logger
from replane_shared.metrics import SdkMetrics
from replane_sdk.app.rules.models import Config, parse_configs
from .snapshot import Snapshot, capture_snapshot


ChangeListener = Callable[[Set[str]], None]


@dataclass(frozen=True)
class StoreState:
    """One version of the store's contents.

    Never mutated: writers build a new state and swap it in with a single
    attribute assignment, so a reader holding a state sees one version.
    """
    configs: Mapping[str, Config] = field(default_factory=lambda: MappingProxyType({}))
    version: int = 0

    @property
    def empty(self) -> bool:
        return not self.configs


def _changed(old: Optional[Config], new: Optional[Config]) -> bool:
    if old is None or new is None:
        return old is not new
    return old.version != new.version or old != new


def _diff(before: Mapping[str, Config], after: Mapping[str, Config]) -> Set[str]:
    names = set(before) | set(after)
    return {name for name in names if _changed(before.get(name), after.get(name))}


class ConfigStore:
    """Holds the current config set and its version counter.

    Reads never lock. Writes go through ``apply_snapshot`` and ``apply_patch``
    and are expected from a single writer (the sync channel or a test
    client).
    """

    def __init__(self, defaults: Optional[Mapping[str, Any]] = None,
                 metrics: Optional[SdkMetrics] = None):
        self._state = StoreState()
        self._defaults = MappingProxyType(dict(defaults or {}))
        self._listeners: List[ChangeListener] = []
        self.metrics = metrics
        self.logger = get_logger("sdk.store.config_store")

    @property
    def state(self) -> StoreState:
        """Current state; hold on to it to read several configs consistently."""
        return self._state

    @property
    def version(self) -> int:
        return self._state.version

    @property
    def defaults(self) -> Mapping[str, Any]:
        return self._defaults

    def get(self, name: str) -> Optional[Config]:
        return self._state.configs.get(name)

    def names(self) -> List[str]:
        return sorted(self._state.configs)

    def __contains__(self, name: object) -> bool:
        return name in self._state.configs

    def __len__(self) -> int:
        return len(self._state.configs)

    def has_default(self, name: str) -> bool:
        return name in self._defaults

    def get_default(self, name: str, missing: Any = None) -> Any:
        return self._defaults.get(name, missing)

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a callback receiving the set of changed names after each swap."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def apply_snapshot(self, configs: Any, version: int) -> bool:
        """Replace the whole config set.

        Accepted when ``version`` is newer than the current one or the store
        is empty. A config whose version went backwards keeps its newer
        stored entry.
        """
        current = self._state
        if not current.empty and version <= current.version:
            self.logger.info(
                "Stale snapshot ignored",
                version=version,
                current_version=current.version
            )
            return False

        incoming = parse_configs(configs)
        merged: Dict[str, Config] = {}
        for name, config in incoming.items():
            existing = current.configs.get(name)
            if existing is not None and config.version < existing.version:
                self.logger.warning(
                    "Snapshot carries older config version",
                    config_name=name,
                    version=config.version,
                    stored_version=existing.version
                )
                config = existing
            merged[name] = config

        self._install(StoreState(MappingProxyType(merged), version), current)
        self.logger.info("Snapshot applied", version=version, config_count=len(merged))
        return True

    def apply_patch(self, from_version: int, to_version: int,
                    changes: Mapping[str, Optional[Any]]) -> bool:
        """Apply a delta on top of ``from_version``.

        ``None`` in ``changes`` removes the entry. Returns False, leaving the
        store untouched, when the patch does not start at the current version.
        """
        current = self._state
        if from_version != current.version:
            self.logger.warning(
                "Patch version gap",
                from_version=from_version,
                to_version=to_version,
                current_version=current.version
            )
            return False

        if to_version <= from_version:
            self.logger.warning(
                "Patch does not advance version",
                from_version=from_version,
                to_version=to_version
            )
            return False

        updated = dict(current.configs)
        for name, raw in changes.items():
            if raw is None:
                updated.pop(name, None)
                continue

            config = parse_configs({name: raw})[name]
            existing = updated.get(name)
            if existing is not None and config.version < existing.version:
                self.logger.warning(
                    "Stale config in patch skipped",
                    config_name=name,
                    version=config.version,
                    stored_version=existing.version
                )
                continue
            updated[name] = config

        self._install(StoreState(MappingProxyType(updated), to_version), current)
        self.logger.debug("Patch applied", from_version=from_version, to_version=to_version,
                          change_count=len(changes))
        return True

    def replace(self, configs: Mapping[str, Config], version: Optional[int] = None) -> None:
        """Install a config set unconditionally, bumping the version by default."""
        current = self._state
        new_version = current.version + 1 if version is None else version
        self._install(StoreState(MappingProxyType(dict(configs)), new_version), current)

    def get_snapshot(self, resolved_values: Optional[Mapping[str, Any]] = None,
                     context: Optional[Mapping[str, Any]] = None) -> Snapshot:
        state = self._state
        return capture_snapshot(state.configs, state.version, resolved_values, context)

    def _install(self, new_state: StoreState, previous: StoreState) -> None:
        self._state = new_state
        if self.metrics:
            self.metrics.set_store_version(new_state.version)

        changed = _diff(previous.configs, new_state.configs)
        if not changed:
            return

        for listener in list(self._listeners):
            try:
                listener(changed)
            except Exception as e:
                self.logger.error("Store listener failed", error=str(e))
