"""Factories for the built-in algorithms. Importing this module registers them."""

from __future__ import annotations

from dataclasses import replace

from superfilter.engine.algorithm import Algorithm
from superfilter.engine.config import EngineConfig, ScoreBasis
from superfilter.engine.lightness import LightnessAlgorithm, MidtoneFilter
from superfilter.engine.local_data_filter import LocalDataFilter
from superfilter.engine.registry import AlgorithmKind, algorithm
from superfilter.engine.slic import Slic


@algorithm(kind=AlgorithmKind.LIGHTNESS, description="Greyscale image from CIE L* values")
def lightness(config: EngineConfig) -> Algorithm:
    return LightnessAlgorithm()


@algorithm(kind=AlgorithmKind.MIDTONE_FILTER, description="Highlight midtone lightness values")
def midtone_filter(config: EngineConfig) -> Algorithm:
    return MidtoneFilter(config.midtone)


@algorithm(kind=AlgorithmKind.SLIC, description="SLIC superpixels")
def slic(config: EngineConfig) -> Algorithm:
    return Slic(config.slic)


def _local_data_filter(config: EngineConfig, basis: ScoreBasis) -> Algorithm:
    return LocalDataFilter(Slic(config.slic), replace(config.filter, score_basis=basis))


@algorithm(
    kind=AlgorithmKind.LOCAL_DATA_FILTER_SIZE,
    description="Select superpixels that are large relative to the average",
)
def size_filter(config: EngineConfig) -> Algorithm:
    return _local_data_filter(config, ScoreBasis.SIZE)


@algorithm(
    kind=AlgorithmKind.LOCAL_DATA_FILTER_STDDEV_LSTAR,
    description="Select superpixels with little lightness variation",
)
def stddev_filter(config: EngineConfig) -> Algorithm:
    return _local_data_filter(config, ScoreBasis.STDDEV_LSTAR)


@algorithm(
    kind=AlgorithmKind.LOCAL_DATA_FILTER_EXTERNAL,
    description="Select superpixels that are dark in a selection map image",
)
def external_filter(config: EngineConfig) -> Algorithm:
    return _local_data_filter(config, ScoreBasis.EXTERNAL)
