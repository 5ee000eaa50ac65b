"""Step registry and step list validation.

A run's step list may mix step instances, ``Step`` subclasses and string
identifiers. ``normalize_steps`` turns the list into instances, resolving
strings through a ``StepRegistry``; ``validate_steps`` then checks that every
``depends_on`` entry names a step placed strictly earlier. The order is never
changed: a valid list comes back as the same instances in the same order.

Tags:
    batchsync, registry, step-discovery, validation
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Any

from batchsync.core.errors import (
    DependencyOrderError,
    MissingDependencyError,
    StepTypeError,
    UnknownStepError,
)
from batchsync.core.logging import get_logger
from batchsync.orchestration.step import Step

logger = get_logger(__name__)

StepFactory = Callable[[], Step]


class StepRegistry:
    """Maps string identifiers to step factories."""

    def __init__(self) -> None:
        self._factories: dict[str, StepFactory] = {}

    def register(self, identifier: str, factory: StepFactory | None = None) -> Any:
        """Register ``factory`` under ``identifier``; usable as a class decorator."""

        def decorator(target: StepFactory) -> StepFactory:
            if identifier in self._factories:
                raise ValueError(f"Step '{identifier}' is already registered")
            self._factories[identifier] = target
            logger.debug("step_registered", identifier=identifier, factory=getattr(target, "__name__", repr(target)))
            return target

        if factory is not None:
            return decorator(factory)
        return decorator

    def resolve(self, identifier: str) -> Step:
        """Build a fresh step for ``identifier``."""
        if identifier not in self._factories:
            raise UnknownStepError(identifier)
        try:
            step = self._factories[identifier]()
        except Exception as e:
            raise StepTypeError(identifier, cause=e).with_context(step=identifier) from e
        if not isinstance(step, Step):
            raise StepTypeError(step).with_context(step=identifier)
        if not (step._name or step.name):
            step.rename(identifier)
        return step

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._factories

    def identifiers(self) -> list[str]:
        return sorted(self._factories)

    def clear(self) -> None:
        """Clear registry (for testing)."""
        self._factories.clear()


default_registry = StepRegistry()


def register_step(identifier: str) -> Callable[[StepFactory], StepFactory]:
    """Decorator registering a step class in the default registry."""
    return default_registry.register(identifier)


def normalize_steps(items: Iterable[Any], registry: StepRegistry | None = None) -> list[Step]:
    """Turn instances, classes and identifiers into step instances, in order."""
    registry = registry or default_registry
    steps = []
    for item in items:
        if isinstance(item, Step):
            steps.append(item)
        elif isinstance(item, str):
            steps.append(registry.resolve(item))
        elif isinstance(item, type) and issubclass(item, Step):
            try:
                steps.append(item())
            except Exception as e:
                raise StepTypeError(item, cause=e) from e
        else:
            raise StepTypeError(item)
    return steps


def validate_steps(steps: Sequence[Any]) -> Sequence[Step]:
    """Check that each dependency names a step placed strictly earlier.

    Raises:
        StepTypeError: an element is not a step
        MissingDependencyError: a dependency is not in the list
        DependencyOrderError: a dependency sits at the same or a later position
    """
    for item in steps:
        if not isinstance(item, Step):
            raise StepTypeError(item)

    positions: dict[str, int] = {}
    for index, step in enumerate(steps):
        positions.setdefault(step.identifier, index)

    for index, step in enumerate(steps):
        for dependency in step.depends_on:
            if dependency not in positions:
                raise MissingDependencyError(step.identifier, dependency)
            if positions[dependency] >= index:
                raise DependencyOrderError(step.identifier, dependency, index, positions[dependency])
    return steps


def prepare_steps(items: Iterable[Any], registry: StepRegistry | None = None) -> list[Step]:
    """Normalize then validate a step list."""
    steps = normalize_steps(items, registry)
    validate_steps(steps)
    return steps


__all__ = [
    "StepRegistry",
    "StepFactory",
    "default_registry",
    "register_step",
    "normalize_steps",
    "validate_steps",
    "prepare_steps",
]
