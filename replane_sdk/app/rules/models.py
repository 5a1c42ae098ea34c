"""
Config and override rule data models.

Wire shapes use camelCase keys; Python attributes are snake_case and both
are accepted on input. All models are frozen and sequences are stored as
tuples, so a Config is immutable once constructed and is only ever replaced
wholesale.
"""

from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator


ScalarValue = Union[str, int, float, bool, None]
EvaluationContext = Mapping[str, ScalarValue]

PROPERTY_OPERATORS = (
    "equals",
    "in",
    "not_in",
    "less_than",
    "less_than_or_equal",
    "greater_than",
    "greater_than_or_equal",
)


class WireModel(BaseModel):
    """Base for immutable wire models."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        """Dump as plain JSON-compatible data with wire keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class LiteralValue(WireModel):
    """Operand embedded in the condition."""
    type: Literal["literal"] = "literal"
    value: Any = None


class ReferenceValue(WireModel):
    """Operand pointing at another config's resolved value."""
    type: Literal["reference"] = "reference"
    project_id: Optional[str] = Field(default=None, alias="projectId")
    config_name: str = Field(alias="configName")
    path: Tuple[Union[str, int], ...] = ()


ConditionValue = Annotated[Union[LiteralValue, ReferenceValue], Field(discriminator="type")]


def _as_condition_value(value: Any) -> Any:
    """Read an untagged operand as a literal."""
    if isinstance(value, (LiteralValue, ReferenceValue)):
        return value
    if isinstance(value, dict) and value.get("type") in ("literal", "reference"):
        return value
    return {"type": "literal", "value": value}


class PropertyCondition(WireModel):
    """Comparison between a context property and an operand."""
    operator: Literal[
        "equals",
        "in",
        "not_in",
        "less_than",
        "less_than_or_equal",
        "greater_than",
        "greater_than_or_equal",
    ]
    property: str
    value: ConditionValue

    @field_validator("value", mode="before")
    @classmethod
    def _wrap_literal(cls, value: Any) -> Any:
        return _as_condition_value(value)


class SegmentationCondition(WireModel):
    """Percentage rollout keyed by a context property and a seed."""
    operator: Literal["segmentation"]
    property: str
    from_percentage: float = Field(alias="fromPercentage")
    to_percentage: float = Field(alias="toPercentage")
    seed: str


class AndCondition(WireModel):
    operator: Literal["and"]
    conditions: Tuple["Condition", ...] = ()


class OrCondition(WireModel):
    operator: Literal["or"]
    conditions: Tuple["Condition", ...] = ()


class NotCondition(WireModel):
    operator: Literal["not"]
    condition: "Condition"


Condition = Annotated[
    Union[PropertyCondition, SegmentationCondition, AndCondition, OrCondition, NotCondition],
    Field(discriminator="operator"),
]

AndCondition.model_rebuild()
OrCondition.model_rebuild()
NotCondition.model_rebuild()

condition_adapter: TypeAdapter = TypeAdapter(Condition)


class Override(WireModel):
    """Conditional replacement of a variant value; conditions are ANDed."""
    name: str = ""
    conditions: Tuple[Condition, ...] = ()
    value: Any = None


class Variant(WireModel):
    """Value plus ordered overrides, either the base or one environment's."""
    environment_id: Optional[str] = Field(default=None, alias="environmentId")
    value: Any = None
    value_schema: Optional[Any] = Field(default=None, alias="schema")
    overrides: Tuple[Override, ...] = ()


class Config(WireModel):
    """A named, versioned configuration entry."""
    id: Optional[str] = None
    name: str
    version: int = 0
    base: Variant = Field(default_factory=Variant)
    variants: Dict[str, Variant] = Field(default_factory=dict)
    description: Optional[str] = None
    editors: Tuple[str, ...] = ()
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    @model_validator(mode="before")
    @classmethod
    def _accept_flat_record(cls, data: Any) -> Any:
        # {name, value, overrides} replication records carry no base variant
        if isinstance(data, dict) and "base" not in data and ("value" in data or "overrides" in data):
            data = dict(data)
            data["base"] = {
                "value": data.pop("value", None),
                "overrides": data.pop("overrides", []),
            }
        return data

    @field_validator("variants", mode="before")
    @classmethod
    def _index_variants(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            indexed = {}
            for variant in value:
                if isinstance(variant, dict):
                    env = variant.get("environmentId", variant.get("environment_id"))
                else:
                    env = variant.environment_id
                if env is None:
                    raise ValueError("variant in a list must carry environmentId")
                indexed[env] = variant
            return indexed
        return value


def parse_condition(raw: Any):
    """Validate a raw condition (dict) into a Condition model."""
    return condition_adapter.validate_python(raw)


def parse_config(raw: Any, name: Optional[str] = None) -> Config:
    """Validate a raw config, filling the name from the mapping key if absent."""
    if isinstance(raw, Config):
        return raw
    if name is not None and isinstance(raw, dict) and "name" not in raw:
        raw = {**raw, "name": name}
    return Config.model_validate(raw)


def parse_configs(raw: Any) -> Dict[str, Config]:
    """Accept either a name -> config mapping or a list of configs."""
    if isinstance(raw, Mapping):
        return {name: parse_config(item, name) for name, item in raw.items()}
    if isinstance(raw, (list, tuple)):
        configs = [parse_config(item) for item in raw]
        return {config.name: config for config in configs}
    raise ValueError(f"configs must be a mapping or a list, got {type(raw).__name__}")


def make_config(name: str, value: Any, overrides: Optional[List[Any]] = None, version: int = 0) -> Config:
    """Build a config with only a base variant."""
    return Config(name=name, version=version, base=Variant(value=value, overrides=tuple(overrides or ())))
