"""Algorithm registry: every runnable algorithm is a factory registered via decorator.

Usage:
    @algorithm(kind=AlgorithmKind.SLIC, description="SLIC superpixels")
    def slic(config: EngineConfig) -> Algorithm:
        return Slic(config.slic)

Adding an algorithm = writing one decorated factory in ``catalog.py``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from superfilter.engine.config import EngineConfig

if TYPE_CHECKING:
    from superfilter.engine.algorithm import Algorithm

logger = logging.getLogger(__name__)


class AlgorithmKind(enum.Enum):
    LIGHTNESS = "lightness"
    MIDTONE_FILTER = "midtone"
    SLIC = "slic"
    LOCAL_DATA_FILTER_SIZE = "filter-size"
    LOCAL_DATA_FILTER_STDDEV_LSTAR = "filter-stddev"
    LOCAL_DATA_FILTER_EXTERNAL = "filter-external"


@dataclass
class AlgorithmSpec:
    kind: AlgorithmKind
    factory: Callable[[EngineConfig], "Algorithm"]
    description: str = ""


class AlgorithmRegistry:
    """Registry of algorithm factories keyed by kind."""

    def __init__(self) -> None:
        self._algorithms: dict[AlgorithmKind, AlgorithmSpec] = {}

    def register(self, spec: AlgorithmSpec) -> None:
        if spec.kind in self._algorithms:
            raise ValueError(f"Duplicate algorithm kind: {spec.kind.value}")
        self._algorithms[spec.kind] = spec
        logger.debug("Registered algorithm %s", spec.kind.value)

    def get(self, kind: AlgorithmKind) -> AlgorithmSpec:
        return self._algorithms[kind]

    def all(self) -> list[AlgorithmSpec]:
        return [self._algorithms[k] for k in AlgorithmKind if k in self._algorithms]

    def create(self, kind: AlgorithmKind, config: EngineConfig | None = None) -> "Algorithm":
        return self.get(kind).factory(config or EngineConfig())

    @property
    def count(self) -> int:
        return len(self._algorithms)


# Module-level singleton
_registry = AlgorithmRegistry()


def get_registry() -> AlgorithmRegistry:
    return _registry


def algorithm(*, kind: AlgorithmKind, description: str = ""):
    """Decorator to register an algorithm factory."""

    def decorator(fn: Callable[[EngineConfig], "Algorithm"]):
        _registry.register(AlgorithmSpec(kind=kind, factory=fn, description=description))
        return fn

    return decorator


def create_algorithm(kind: AlgorithmKind, config: EngineConfig | None = None) -> "Algorithm":
    """Build a fresh instance of a registered algorithm."""
    return _registry.create(kind, config)
