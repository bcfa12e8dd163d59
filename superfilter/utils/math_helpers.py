"""Math helpers: Otsu thresholding, histogram sizing, sigmoids. No engine imports."""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import NDArray


def histogram_bin_count(
    n_items: int,
    items_per_bin: int = 3,
    min_bins: int = 10,
    max_bins: int = 256,
) -> int:
    """Bins for a histogram of ``n_items`` scores: one per ``items_per_bin``, clamped."""
    return int(min(max(n_items // items_per_bin, min_bins), max_bins))


def bin_scores(
    scores: NDArray[np.float64],
    n_bins: int,
    lo: float,
    hi: float,
) -> NDArray[np.intp]:
    """Map scores onto ``n_bins`` equal-width bins spanning [lo, hi].

    A zero-width range puts every score in bin 0.
    """
    if hi <= lo:
        return np.zeros(len(scores), dtype=np.intp)
    inverse_width = (n_bins - 1) / (hi - lo)
    bins = np.floor((np.asarray(scores, dtype=np.float64) - lo) * inverse_width)
    return np.clip(bins, 0, n_bins - 1).astype(np.intp)


def otsu_threshold_bin(histogram: NDArray[np.int64]) -> int:
    """Return the split bin that maximizes between-class variance.

    Bins below the returned index form the dark class. Returns 0 when no
    split separates two non-empty classes.
    """
    hist = np.asarray(histogram, dtype=np.float64)
    total = float(hist.sum())
    sum_total = float(np.dot(np.arange(len(hist)), hist))

    weight_dark = 0.0
    sum_dark = 0.0
    best_variance = 0.0
    best_bin = 0
    for b in range(1, len(hist)):
        weight_dark += hist[b - 1]
        sum_dark += (b - 1) * hist[b - 1]
        if weight_dark == 0:
            continue
        weight_light = total - weight_dark
        if weight_light == 0:
            break
        mean_dark = sum_dark / weight_dark
        mean_light = (sum_total - sum_dark) / weight_light
        variance = weight_dark * weight_light * (mean_light - mean_dark) ** 2
        if variance > best_variance:
            best_variance = variance
            best_bin = b
    return best_bin


def bin_to_score(bin_index: int, n_bins: int, lo: float, hi: float) -> float:
    """Inverse of ``bin_scores`` for a bin's lower edge."""
    if hi <= lo:
        return lo
    return bin_index * (hi - lo) / (n_bins - 1) + lo


def sigmoid_factor(bandwidth: float, level: float = 0.95) -> float:
    """Steepness at which a logistic curve reaches ``level`` at ``bandwidth`` from its center."""
    return -math.log((1.0 - level) / level) / bandwidth


def sigmoid(
    values: NDArray[np.float64],
    lo: float,
    hi: float,
    factor: float,
    center: float,
    rising: bool,
) -> NDArray[np.float64]:
    """Logistic curve from ``lo`` to ``hi``; falling instead when ``rising`` is False."""
    exponent = factor * (np.asarray(values, dtype=np.float64) - center)
    if rising:
        exponent = -exponent
    return lo + (hi - lo) / (1.0 + np.exp(exponent))
