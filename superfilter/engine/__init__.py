"""superfilter incremental segmentation engine."""

from superfilter.engine.algorithm import Algorithm, AlgorithmOutput
from superfilter.engine.config import (
    ComponentPolicy,
    EngineConfig,
    FilterConfig,
    MidtoneConfig,
    ScoreBasis,
    SlicConfig,
    SlicVisualization,
)
from superfilter.engine.registry import AlgorithmKind, create_algorithm, get_registry
from superfilter.engine.runner import AlgorithmRunner

# Registers the built-in algorithms
from superfilter.engine import catalog  # noqa: E402,F401

__all__ = [
    "Algorithm",
    "AlgorithmOutput",
    "AlgorithmKind",
    "AlgorithmRunner",
    "ComponentPolicy",
    "EngineConfig",
    "FilterConfig",
    "MidtoneConfig",
    "ScoreBasis",
    "SlicConfig",
    "SlicVisualization",
    "create_algorithm",
    "get_registry",
]
