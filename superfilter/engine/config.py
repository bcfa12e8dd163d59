"""Algorithm parameters: one dataclass per algorithm family."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class ComponentPolicy(enum.Enum):
    """Which connected component of a k-means cluster keeps the cluster's label."""

    LARGEST = "largest"
    CENTER = "center"  # the component under the cluster center


class SlicVisualization(enum.Enum):
    MEAN_COLOR = "mean_color"  # superpixel mean colours with black borders
    LABELS = "labels"  # grey level per label
    CONNECTED_COMPONENTS = "connected_components"  # kept vs. reassigned components


class ScoreBasis(enum.Enum):
    SIZE = "size"
    STDDEV_LSTAR = "stddev_lstar"
    EXTERNAL = "external"  # mean lightness of a second "selection map" image


@dataclass
class SlicConfig:
    """SLIC superpixel parameters."""

    # Requested number of superpixels
    k: int = 500
    # Weight of spatial distance relative to colour distance
    m: float = 10.0

    # Search window half-size lower bound, in multiples of the grid interval S
    min_search_window_size: float = 2.0
    # Relative change in sqrt(residual error) at which k-means stops
    error_threshold: float = 0.05
    max_iterations: int = 15

    # Work per increment
    pixel_granularity: int = 1000
    cluster_granularity: int = 10

    # Seeds move to the lowest-gradient pixel within this radius (1 = 3x3)
    seed_neighbourhood_radius: int = 1

    # Connected-component enforcement after k-means
    postprocessing: bool = True
    component_policy: ComponentPolicy = ComponentPolicy.LARGEST

    visualization: SlicVisualization = SlicVisualization.MEAN_COLOR


@dataclass
class FilterConfig:
    """Local-statistics superpixel filter parameters."""

    score_basis: ScoreBasis = ScoreBasis.SIZE

    # Histogram sizing for Otsu thresholding
    superpixels_per_bin: int = 3
    min_histogram_bins: int = 10
    max_histogram_bins: int = 256

    # Superpixels processed per increment
    cluster_granularity: int = 10


@dataclass
class MidtoneConfig:
    """Double-sigmoid lightness threshold around the midtones."""

    low_threshold: float = 30.0
    high_threshold: float = 70.0
    # L* distance from a threshold at which its sigmoid reaches 5% / 95%
    low_bandwidth: float = 20.0
    high_bandwidth: float = 20.0

    pixel_granularity: int = 10000


@dataclass
class EngineConfig:
    """Parameter bundle handed to algorithm factories."""

    slic: SlicConfig = field(default_factory=SlicConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    midtone: MidtoneConfig = field(default_factory=MidtoneConfig)
