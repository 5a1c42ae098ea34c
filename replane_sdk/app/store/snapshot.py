"""
Snapshot interchange format.

A snapshot is plain structured data: ``{configs, version, fetchedAt}`` plus
the optional client context. Entries in ``configs`` are raw configs, or
resolved values when the snapshot was captured in resolved mode, so it can
be embedded in a document and re-parsed without a network round trip.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from pydantic import Field, field_validator, model_validator

from replane_sdk.app.rules.models import Config, ScalarValue, WireModel, make_config, parse_config


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def looks_like_config(raw: Any) -> bool:
    """Whether a snapshot entry is a raw config rather than a resolved value."""
    if isinstance(raw, Config):
        return True
    if isinstance(raw, Mapping):
        return "base" in raw or ("value" in raw and "overrides" in raw)
    return False


class Snapshot(WireModel):
    """Point-in-time capture of a store."""

    # Declared before configs so the entry validator can read it
    resolved: bool = False
    configs: Dict[str, Any] = Field(default_factory=dict)
    version: int = 0
    fetched_at: datetime = Field(default_factory=_utcnow, alias="fetchedAt")
    context: Dict[str, ScalarValue] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _accept_config_list(cls, data: Any) -> Any:
        # Older snapshots carry configs as a list of {name, value, overrides}
        if isinstance(data, Mapping) and isinstance(data.get("configs"), (list, tuple)):
            data = dict(data)
            data["configs"] = {item["name"]: item for item in data["configs"]}
        return data

    @field_validator("configs", mode="after")
    @classmethod
    def _parse_entries(cls, value: Dict[str, Any], info) -> Dict[str, Any]:
        if info.data.get("resolved"):
            return value
        return {
            name: parse_config(raw, name) if looks_like_config(raw) else raw
            for name, raw in value.items()
        }

    def config_entries(self) -> Dict[str, Config]:
        """Every entry as a Config; resolved values become base-only configs."""
        entries = {}
        for name, raw in self.configs.items():
            if isinstance(raw, Config):
                entries[name] = raw
            else:
                entries[name] = make_config(name, raw)
        return entries

    def to_wire(self) -> Dict[str, Any]:
        return {
            "configs": {
                name: raw.to_wire() if isinstance(raw, Config) else raw
                for name, raw in self.configs.items()
            },
            "version": self.version,
            "fetchedAt": self.fetched_at.isoformat(),
            "resolved": self.resolved,
            "context": dict(self.context),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), separators=(",", ":"))

    @classmethod
    def from_wire(cls, data: Any) -> "Snapshot":
        """Parse a snapshot from a dict, a JSON string, or pass one through."""
        if isinstance(data, Snapshot):
            return data
        if isinstance(data, (str, bytes)):
            data = json.loads(data)
        return cls.model_validate(data)


def capture_snapshot(configs: Mapping[str, Config], version: int,
                     resolved_values: Optional[Mapping[str, Any]] = None,
                     context: Optional[Mapping[str, ScalarValue]] = None) -> Snapshot:
    """Build a snapshot from store contents, optionally in resolved mode."""
    if resolved_values is not None:
        return Snapshot(configs=dict(resolved_values), version=version, resolved=True,
                        context=dict(context or {}))
    return Snapshot(configs=dict(configs), version=version, context=dict(context or {}))
