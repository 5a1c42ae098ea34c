"""
Override resolution for configs.
"""

from collections.abc import Mapping
from typing import Any, Optional, Sequence

from replane_shared.errors import ReferenceResolutionError
from replane_shared.logging import get_logger
from .bucketer import Bucketer
from .evaluator import ConditionEvaluator, ConfigLookup, ResolutionScope
from .models import Config, EvaluationContext, Override, ReferenceValue, Variant


def walk_path(value: Any, path: Sequence[Any]) -> Any:
    """Follow dict keys / list indices into a resolved config value."""
    for step in path:
        if isinstance(value, Mapping):
            if step not in value:
                raise ReferenceResolutionError("Path key missing", details={"step": step})
            value = value[step]
        elif isinstance(value, (list, tuple)):
            index = step
            if isinstance(step, str) and step.lstrip("-").isdigit():
                index = int(step)
            if isinstance(index, bool) or not isinstance(index, int) or not -len(value) <= index < len(value):
                raise ReferenceResolutionError("Path index invalid", details={"step": step})
            value = value[index]
        else:
            raise ReferenceResolutionError("Path walks into a scalar", details={"step": step})
    return value


class OverrideResolver:
    """Picks the effective value of a config for an environment and context.

    The first override, in list order, whose conditions all hold wins.
    There is no reordering or scoring.
    """

    def __init__(self, config_lookup: Optional[ConfigLookup] = None,
                 bucketer: Optional[Bucketer] = None,
                 project_id: Optional[str] = None):
        self.config_lookup = config_lookup
        self.project_id = project_id
        self.evaluator = ConditionEvaluator(bucketer=bucketer, reference_lookup=self._lookup_reference)
        self.logger = get_logger("sdk.rules.resolver")

    @staticmethod
    def select_variant(config: Config, environment_id: Optional[str] = None) -> Variant:
        """Environment variant when one exists, else the base variant."""
        if environment_id is not None:
            variant = config.variants.get(environment_id)
            if variant is not None:
                return variant
        return config.base

    def resolve(self, config: Config, environment_id: Optional[str] = None,
                context: Optional[EvaluationContext] = None,
                config_lookup: Optional[ConfigLookup] = None) -> Any:
        """Resolve the effective value of ``config``.

        ``config_lookup`` overrides the resolver's lookup for this call,
        letting callers pin reference resolution to a single snapshot.
        """
        scope = ResolutionScope(
            environment_id=environment_id,
            trail=frozenset([config.name]),
            lookup=config_lookup or self.config_lookup,
        )
        return self._resolve(config, context or {}, scope)

    def match_override(self, config: Config, environment_id: Optional[str] = None,
                       context: Optional[EvaluationContext] = None,
                       config_lookup: Optional[ConfigLookup] = None) -> Optional[Override]:
        """Return the winning override, or None when the variant value applies."""
        scope = ResolutionScope(
            environment_id=environment_id,
            trail=frozenset([config.name]),
            lookup=config_lookup or self.config_lookup,
        )
        variant = self.select_variant(config, environment_id)
        return self._first_match(variant, context or {}, scope)

    def _resolve(self, config: Config, context: EvaluationContext, scope: ResolutionScope) -> Any:
        variant = self.select_variant(config, scope.environment_id)
        override = self._first_match(variant, context, scope)
        if override is None:
            return variant.value

        self.logger.debug("Override matched", config_name=config.name, override=override.name)
        return override.value

    def _first_match(self, variant: Variant, context: EvaluationContext,
                     scope: ResolutionScope) -> Optional[Override]:
        for override in variant.overrides:
            if self.evaluator.evaluate_all(override.conditions, context, scope):
                return override
        return None

    def _lookup_reference(self, reference: ReferenceValue, context: EvaluationContext,
                          scope: ResolutionScope) -> Any:
        name = reference.config_name

        if reference.project_id and self.project_id and reference.project_id != self.project_id:
            raise ReferenceResolutionError(
                "Reference to another project",
                details={"project_id": reference.project_id, "config_name": name}
            )

        if name in scope.trail:
            raise ReferenceResolutionError(
                "Reference cycle detected",
                details={"config_name": name, "trail": sorted(scope.trail)}
            )

        if scope.lookup is None:
            raise ReferenceResolutionError("No config lookup available", details={"config_name": name})

        target = scope.lookup(name)
        if target is None:
            raise ReferenceResolutionError("Referenced config not found", details={"config_name": name})

        value = self._resolve(target, context, scope.enter(name))
        return walk_path(value, reference.path)
