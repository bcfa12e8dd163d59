"""Select superpixels by thresholding a per-superpixel statistic with Otsu's method.

Each superpixel gets a score (its size, the standard deviation of its L*
values, or the mean lightness of an external selection map over it). The
scores are histogrammed, Otsu's method picks the threshold that best
separates the histogram into two classes, and every superpixel on the
selected side of the threshold is marked.

The output image shows the score map next to the resulting selection:
side by side for portrait or square inputs, stacked for landscape ones.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from PIL import Image

from superfilter.engine.config import FilterConfig, ScoreBasis
from superfilter.engine.errors import InitializationError
from superfilter.engine.segmentation import FilteredSuperpixellation, Superpixel
from superfilter.engine.slic import Slic
from superfilter.engine.superpixel_filter import SuperpixelFilter
from superfilter.imaging.pixel_buffer import MAX_LIGHTNESS, MIN_LIGHTNESS, PixelBuffer
from superfilter.utils.math_helpers import (
    bin_scores,
    bin_to_score,
    histogram_bin_count,
    otsu_threshold_bin,
)

logger = logging.getLogger(__name__)

SELECTION_MAP_DESCRIPTION = "pixel soft selection map"

# Largest possible standard deviation of L* over [0, 100]
MAX_STDDEV_LSTAR = (MAX_LIGHTNESS - MIN_LIGHTNESS) / 2.0

STATS_BORDER_COLOR = (0, 0, 0)
CHOICE_BORDER_COLOR = (128, 128, 128)
SELECTED_COLOR = (0, 0, 0)
REJECTED_COLOR = (255, 255, 255)
BACKGROUND_COLOR = (255, 255, 0)


class FilterStage(enum.Enum):
    START = 0
    GENERATE_SUPERPIXELS = 1
    SELECTION_MAP_RGB2LAB = 2
    COLLECT_STATISTICS = 3
    NORMALIZE_STATISTICS = 4
    CONSTRUCT_HISTOGRAM = 5
    CHOOSE_OTSU_THRESHOLD = 6
    FILTER_SUPERPIXELS = 7
    FILL_OUTPUT = 8
    END = 9


# ---------------------------------------------------------------------------
# Scoring strategies
# ---------------------------------------------------------------------------


def _collect_size(sp: Superpixel, selection_map: PixelBuffer | None) -> float:
    return float(sp.size)


def _collect_stddev_lstar(sp: Superpixel, selection_map: PixelBuffer | None) -> float:
    return sp.std_dev_lstar


def _collect_external(sp: Superpixel, selection_map: PixelBuffer | None) -> float:
    if selection_map is None:
        raise InitializationError("A pixel soft selection map is required.")
    return float(selection_map.lab_flat()[sp.pixels, 0].mean())


def _normalize_size(raw: NDArray[np.float64], seg: FilteredSuperpixellation) -> NDArray[np.float64]:
    # 1.0 means "exactly the average superpixel size"
    return raw * seg.superpixel_count / seg.buffer.pixel_count


def _normalize_stddev(raw: NDArray[np.float64], seg: FilteredSuperpixellation) -> NDArray[np.float64]:
    return raw / MAX_STDDEV_LSTAR


def _identity(raw: NDArray[np.float64], seg: FilteredSuperpixellation) -> NDArray[np.float64]:
    return raw


@dataclass(frozen=True)
class ScoringStrategy:
    """How to score a superpixel and which side of the threshold is selected."""

    collect: Callable[[Superpixel, PixelBuffer | None], float]
    normalize: Callable[[NDArray[np.float64], FilteredSuperpixellation], NDArray[np.float64]]
    # Histogram range; None means the observed min/max of the scores
    fixed_range: tuple[float, float] | None
    select_below: bool


SCORING_STRATEGIES: dict[ScoreBasis, ScoringStrategy] = {
    ScoreBasis.SIZE: ScoringStrategy(_collect_size, _normalize_size, None, select_below=False),
    ScoreBasis.STDDEV_LSTAR: ScoringStrategy(
        _collect_stddev_lstar, _normalize_stddev, None, select_below=True
    ),
    ScoreBasis.EXTERNAL: ScoringStrategy(
        _collect_external, _identity, (MIN_LIGHTNESS, MAX_LIGHTNESS), select_below=True
    ),
}


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class LocalDataFilter(SuperpixelFilter):
    """Otsu-thresholded superpixel filter over a local statistic."""

    def __init__(self, generator: Slic | None = None, config: FilterConfig | None = None) -> None:
        self.config = config or FilterConfig()
        self.strategy = SCORING_STRATEGIES[self.config.score_basis]
        super().__init__(generator)

    @property
    def name(self) -> str:  # type: ignore[override]
        return f"local data filter ({self.config.score_basis.value})"

    def _reset(self) -> None:
        super()._reset()
        self._stage = FilterStage.START
        self._selection_map: PixelBuffer | None = None
        self._scores = np.zeros(0, dtype=np.float64)
        self._score_range = (0.0, 0.0)
        self._histogram = np.zeros(0, dtype=np.int64)
        self._threshold_bin = 0
        self._threshold = 0.0

    def additional_required_images(self) -> list[str]:
        required = super().additional_required_images()
        if self.config.score_basis is ScoreBasis.EXTERNAL:
            required.append(SELECTION_MAP_DESCRIPTION)
        return required

    def _prepare(self, images: list[PixelBuffer]) -> None:
        cfg = self.config
        if cfg.cluster_granularity < 1:
            raise InitializationError("Work granularities must be positive.")
        if not 2 <= cfg.min_histogram_bins <= cfg.max_histogram_bins:
            raise InitializationError("Histogram bin bounds are inconsistent.")
        if cfg.superpixels_per_bin < 1:
            raise InitializationError("At least one superpixel per histogram bin is required.")
        if cfg.score_basis is ScoreBasis.EXTERNAL:
            selection_map = images[self._generator_image_count()]
            if not selection_map.same_size(images[0]):
                raise InitializationError("Input image and selection map dimensions do not agree.")
            self._selection_map = selection_map
        super()._prepare(images)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @property
    def scores(self) -> NDArray[np.float64]:
        """Normalized score per superpixel."""
        return self._scores.copy()

    @property
    def histogram(self) -> NDArray[np.int64]:
        return self._histogram.copy()

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def threshold_bin(self) -> int:
        return self._threshold_bin

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _run(self) -> Iterator[str]:
        cfg = self.config
        step = cfg.cluster_granularity

        self._stage = FilterStage.GENERATE_SUPERPIXELS
        yield from self._generate_superpixels()
        seg = self.filtered
        n_sp = seg.superpixel_count

        if self._selection_map is not None:
            self._stage = FilterStage.SELECTION_MAP_RGB2LAB
            _ = self._selection_map.lab
            yield "Converted the selection map to the CIE L*a*b* colour space."

        self._stage = FilterStage.COLLECT_STATISTICS
        raw = np.empty(n_sp, dtype=np.float64)
        for start in range(0, n_sp, step):
            end = min(start + step, n_sp)
            for sp in seg.superpixels[start:end]:
                raw[sp.label] = self.strategy.collect(sp, self._selection_map)
            yield f"Collecting superpixel statistics ({end} / {n_sp})"

        self._stage = FilterStage.NORMALIZE_STATISTICS
        self._scores = self.strategy.normalize(raw, seg)
        if self.strategy.fixed_range is not None:
            self._score_range = self.strategy.fixed_range
        else:
            self._score_range = (float(self._scores.min()), float(self._scores.max()))
        yield "Normalized superpixel statistics."

        self._stage = FilterStage.CONSTRUCT_HISTOGRAM
        lo, hi = self._score_range
        n_bins = histogram_bin_count(
            n_sp, cfg.superpixels_per_bin, cfg.min_histogram_bins, cfg.max_histogram_bins
        )
        self._histogram = np.zeros(n_bins, dtype=np.int64)
        for start in range(0, n_sp, step):
            end = min(start + step, n_sp)
            bins = bin_scores(self._scores[start:end], n_bins, lo, hi)
            self._histogram += np.bincount(bins, minlength=n_bins)
            yield f"Constructing histogram ({end} / {n_sp})"

        self._stage = FilterStage.CHOOSE_OTSU_THRESHOLD
        self._threshold_bin = otsu_threshold_bin(self._histogram)
        self._threshold = bin_to_score(self._threshold_bin, n_bins, lo, hi)
        logger.debug(
            "%s: Otsu threshold %.4g (bin %d of %d)",
            self.name, self._threshold, self._threshold_bin, n_bins,
        )
        yield f"Otsu threshold: {self._threshold:.4g}"

        self._stage = FilterStage.FILTER_SUPERPIXELS
        for start in range(0, n_sp, step):
            end = min(start + step, n_sp)
            for label in range(start, end):
                score = self._scores[label]
                selected = score < self._threshold if self.strategy.select_below else score >= self._threshold
                seg.set_selected(label, bool(selected))
            yield f"Filtering superpixels ({end} / {n_sp})"
        logger.info("%s: selected %d of %d superpixels", self.name, seg.selected_count, n_sp)

        if self._output_enabled:
            self._stage = FilterStage.FILL_OUTPUT
            yield from self._fill_output(seg)

        self._stage = FilterStage.END

    def _fill_output(self, seg: FilteredSuperpixellation) -> Iterator[str]:
        buf = seg.buffer
        w, h = buf.width, buf.height
        in_row = w <= h
        if in_row:
            canvas = np.empty((h, 2 * w, 3), dtype=np.uint8)
            dx, dy = w, 0
        else:
            canvas = np.empty((2 * h, w, 3), dtype=np.uint8)
            dx, dy = 0, h
        canvas[:] = BACKGROUND_COLOR

        lo, hi = self._score_range
        n_sp = seg.superpixel_count
        step = self.config.cluster_granularity
        for start in range(0, n_sp, step):
            end = min(start + step, n_sp)
            for sp in seg.superpixels[start:end]:
                if hi > lo:
                    grey = min(int(np.floor((self._scores[sp.label] - lo) * 256 / (hi - lo))), 255)
                    grey = max(grey, 0)
                else:
                    grey = 0
                interior = sp.interior_pixels
                border = sp.boundary_pixels
                ix, iy = interior % w, interior // w
                bx, by = border % w, border // w

                canvas[iy, ix] = (grey, grey, grey)
                canvas[by, bx] = STATS_BORDER_COLOR
                canvas[iy + dy, ix + dx] = SELECTED_COLOR if seg.is_selected(sp.label) else REJECTED_COLOR
                canvas[by + dy, bx + dx] = CHOICE_BORDER_COLOR
            yield f"Drawing filter output ({end} / {n_sp})"

        self._output_image = Image.fromarray(canvas)
