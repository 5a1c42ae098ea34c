"""
Replication stream frames.

Each SSE ``data`` payload is one JSON frame:

- ``{"type": "snapshot", "version", "configs"}``: full state.
- ``{"type": "patch", "fromVersion", "toVersion", "changes"}``: delta,
  ``null`` removes a config.
- ``{"type": "heartbeat"}``: keepalive.

Servers speaking the older unversioned protocol send ``init`` (all configs)
and ``config_change`` (one config) instead; both are accepted.
"""

import json
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Union

from pydantic import Field, TypeAdapter, ValidationError, field_validator

from replane_shared.errors import FrameError
from replane_shared.logging import get_logger
from replane_sdk.app.rules.models import Config, WireModel, parse_config, parse_configs


logger = get_logger("sdk.sse.frames")


class SnapshotFrame(WireModel):
    type: Literal["snapshot"] = "snapshot"
    version: int
    configs: Dict[str, Config] = Field(default_factory=dict)

    @field_validator("configs", mode="before")
    @classmethod
    def _index_configs(cls, value: Any) -> Any:
        return parse_configs(value)


class PatchFrame(WireModel):
    type: Literal["patch"] = "patch"
    from_version: int = Field(alias="fromVersion")
    to_version: int = Field(alias="toVersion")
    changes: Dict[str, Optional[Config]] = Field(default_factory=dict)

    @field_validator("changes", mode="before")
    @classmethod
    def _name_changes(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            raise ValueError("changes must be a mapping")
        return {name: None if raw is None else parse_config(raw, name) for name, raw in value.items()}


class HeartbeatFrame(WireModel):
    type: Literal["heartbeat"] = "heartbeat"


class InitFrame(WireModel):
    """Unversioned full state."""
    type: Literal["init"] = "init"
    configs: Dict[str, Config] = Field(default_factory=dict)

    @field_validator("configs", mode="before")
    @classmethod
    def _index_configs(cls, value: Any) -> Any:
        return parse_configs(value)


class ConfigChangeFrame(WireModel):
    """Unversioned single-config upsert."""
    type: Literal["config_change"] = "config_change"
    config: Config


Frame = Annotated[
    Union[SnapshotFrame, PatchFrame, HeartbeatFrame, InitFrame, ConfigChangeFrame],
    Field(discriminator="type"),
]

frame_adapter: TypeAdapter = TypeAdapter(Frame)

FRAME_TYPES = ("snapshot", "patch", "heartbeat", "init", "config_change")


def parse_frame(data: Union[str, bytes]) -> Optional[Any]:
    """Parse an SSE data payload into a frame.

    Returns None for frame types this client does not know. Raises
    ``FrameError`` for payloads that are not valid frames.
    """
    try:
        payload = json.loads(data)
    except (TypeError, ValueError) as e:
        raise FrameError("Frame is not valid JSON", details={"error": str(e)}) from e

    if not isinstance(payload, dict):
        raise FrameError("Frame is not a JSON object", details={"payload_type": type(payload).__name__})

    frame_type = payload.get("type")
    if frame_type not in FRAME_TYPES:
        logger.debug("Unknown frame type ignored", frame_type=frame_type)
        return None

    try:
        return frame_adapter.validate_python(payload)
    except (ValidationError, ValueError) as e:
        raise FrameError(
            "Frame failed validation",
            details={"frame_type": frame_type, "error": str(e)}
        ) from e
