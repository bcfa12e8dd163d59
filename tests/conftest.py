"""Shared test fixtures."""

from __future__ import annotations

import numpy as np
import pytest

from superfilter.engine.algorithm import Algorithm
from superfilter.engine.config import SlicConfig
from superfilter.imaging.pixel_buffer import PixelBuffer

RED = (255, 0, 0)
BLUE = (0, 0, 255)
GREY = (128, 128, 128)
BLACK = (0, 0, 0)
WHITE = (255, 255, 255)


def solid_rgb(width: int, height: int, color: tuple[int, int, int]) -> np.ndarray:
    arr = np.empty((height, width, 3), dtype=np.uint8)
    arr[:] = color
    return arr


def split_rgb(
    width: int,
    height: int,
    left: tuple[int, int, int] = RED,
    right: tuple[int, int, int] = BLUE,
) -> np.ndarray:
    """Left half one colour, right half another."""
    arr = solid_rgb(width, height, left)
    arr[:, width // 2 :] = right
    return arr


def random_rgb(width: int, height: int, seed: int = 0) -> np.ndarray:
    """Blocky random image: a few flat patches plus mild noise."""
    rng = np.random.default_rng(seed)
    blocks = rng.integers(0, 256, size=(height // 5 + 1, width // 5 + 1, 3))
    arr = np.repeat(np.repeat(blocks, 5, axis=0), 5, axis=1)[:height, :width]
    noise = rng.integers(-12, 13, size=arr.shape)
    return np.clip(arr + noise, 0, 255).astype(np.uint8)


def run_to_completion(algorithm: Algorithm, images: list[PixelBuffer], limit: int = 100_000) -> list[str]:
    """Initialize and increment until finished; returns every status string."""
    algorithm.initialize(images)
    statuses = []
    for _ in range(limit):
        done, status = algorithm.increment()
        statuses.append(status)
        if done:
            return statuses
    raise AssertionError(f"{algorithm.name} did not finish in {limit} increments")


@pytest.fixture
def grey_4x4() -> PixelBuffer:
    return PixelBuffer.from_array(solid_rgb(4, 4, GREY))


@pytest.fixture
def split_4x4() -> PixelBuffer:
    return PixelBuffer.from_array(split_rgb(4, 4))


@pytest.fixture
def split_8x4() -> PixelBuffer:
    return PixelBuffer.from_array(split_rgb(8, 4))


@pytest.fixture
def random_image() -> PixelBuffer:
    return PixelBuffer.from_array(random_rgb(23, 17, seed=7))


@pytest.fixture
def portrait_image() -> PixelBuffer:
    return PixelBuffer.from_array(random_rgb(15, 20, seed=3))


@pytest.fixture
def small_slic_config() -> SlicConfig:
    return SlicConfig(k=12, m=10.0)
