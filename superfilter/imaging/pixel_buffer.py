"""Immutable raster image with lazily converted RGB and CIE L*a*b* channels.

Pixels are addressed either by ``(x, y)`` or by the linear index
``k = width * y + x``. Channel arrays are read-only; every derived array is
computed once on first access and cached.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from numpy.typing import NDArray
from PIL import Image
from skimage.color import lab2rgb, rgb2lab

logger = logging.getLogger(__name__)

MAX_RGB = 255
MIN_LIGHTNESS = 0.0
MAX_LIGHTNESS = 100.0

# Sobel kernels, indexed [dy + 1, dx + 1]
_SOBEL_X = np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.float64)
_SOBEL_Y = np.array([[-1, -2, -1], [0, 0, 0], [1, 2, 1]], dtype=np.float64)

# 8-neighbour offsets, counter-clockwise starting from the right (y grows downward)
EIGHT_NEIGHBOUR_OFFSETS: tuple[tuple[int, int], ...] = (
    (1, 0), (1, -1), (0, -1), (-1, -1), (-1, 0), (-1, 1), (0, 1), (1, 1),
)
# 4-neighbour offsets: right, up, left, down
FOUR_NEIGHBOUR_OFFSETS: tuple[tuple[int, int], ...] = ((1, 0), (0, -1), (-1, 0), (0, 1))


def _read_only(arr: NDArray) -> NDArray:
    arr.setflags(write=False)
    return arr


class PixelBuffer:
    """An image that can be read as RGB or L*a*b* but never written."""

    def __init__(
        self,
        rgb: NDArray[np.uint8] | None = None,
        lab: NDArray[np.float64] | None = None,
    ) -> None:
        if rgb is None and lab is None:
            raise ValueError("PixelBuffer needs RGB or L*a*b* data")
        source = rgb if rgb is not None else lab
        if source.ndim != 3 or source.shape[2] != 3:
            raise ValueError(f"Expected an (H, W, 3) array, got shape {source.shape}")
        if source.shape[0] == 0 or source.shape[1] == 0:
            raise ValueError("Image has no pixels")
        self._height, self._width = int(source.shape[0]), int(source.shape[1])
        self._rgb = _read_only(np.array(rgb, dtype=np.uint8)) if rgb is not None else None
        self._lab = _read_only(np.array(lab, dtype=np.float64)) if lab is not None else None

    # ------------------------------------------------------------------
    # Construction / export
    # ------------------------------------------------------------------

    @classmethod
    def from_array(cls, rgb: NDArray) -> PixelBuffer:
        arr = np.asarray(rgb)
        if arr.ndim == 2:
            arr = np.stack([arr] * 3, axis=-1)
        elif arr.ndim == 3 and arr.shape[2] == 4:
            arr = arr[..., :3]
        return cls(rgb=np.clip(arr, 0, MAX_RGB).astype(np.uint8))

    @classmethod
    def from_image(cls, image: Image.Image) -> PixelBuffer:
        return cls.from_array(np.asarray(image.convert("RGB")))

    @classmethod
    def from_path(cls, path: str | Path) -> PixelBuffer:
        with Image.open(path) as image:
            buf = cls.from_image(image)
        logger.debug("Loaded %s (%dx%d)", path, buf.width, buf.height)
        return buf

    @classmethod
    def from_lightness(cls, lightness: NDArray[np.float64]) -> PixelBuffer:
        """Build a grey image from an (H, W) array of L* values."""
        lstar = np.clip(np.asarray(lightness, dtype=np.float64), MIN_LIGHTNESS, MAX_LIGHTNESS)
        lab = np.zeros(lstar.shape + (3,), dtype=np.float64)
        lab[..., 0] = lstar
        return cls(lab=lab)

    def to_image(self) -> Image.Image:
        return Image.fromarray(np.array(self.rgb))

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def shape(self) -> tuple[int, int]:
        return self._height, self._width

    @property
    def pixel_count(self) -> int:
        return self._width * self._height

    def same_size(self, other: PixelBuffer) -> bool:
        return self.shape == other.shape

    def xy_to_k(self, x: int, y: int) -> int:
        return self._width * y + x

    def k_to_xy(self, k: int) -> tuple[int, int]:
        return k % self._width, k // self._width

    def contains(self, x: int, y: int) -> bool:
        return 0 <= x < self._width and 0 <= y < self._height

    def four_neighbours(self, k: int) -> list[int]:
        """Linear indices of the existing 4-neighbours (right, up, left, down)."""
        return self._neighbours(k, FOUR_NEIGHBOUR_OFFSETS)

    def eight_neighbours(self, k: int) -> list[int]:
        """Linear indices of the existing 8-neighbours, counter-clockwise from the right."""
        return self._neighbours(k, EIGHT_NEIGHBOUR_OFFSETS)

    def _neighbours(self, k: int, offsets: tuple[tuple[int, int], ...]) -> list[int]:
        x, y = self.k_to_xy(k)
        return [
            self.xy_to_k(x + dx, y + dy)
            for dx, dy in offsets
            if self.contains(x + dx, y + dy)
        ]

    def window(self, x: int, y: int, half_width: int, half_height: int) -> tuple[slice, slice]:
        """Row and column slices of the window centred at (x, y), clipped to the image."""
        rows = slice(max(0, y - half_height), min(self._height, y + half_height + 1))
        cols = slice(max(0, x - half_width), min(self._width, x + half_width + 1))
        return rows, cols

    def window_indices(self, x: int, y: int, half_width: int, half_height: int) -> NDArray[np.intp]:
        rows, cols = self.window(x, y, half_width, half_height)
        ys, xs = np.mgrid[rows, cols]
        return (ys * self._width + xs).ravel()

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    @property
    def rgb(self) -> NDArray[np.uint8]:
        """(H, W, 3) uint8 array."""
        if self._rgb is None:
            rgb = np.clip(np.floor(lab2rgb(self._lab) * MAX_RGB + 0.5), 0, MAX_RGB)
            self._rgb = _read_only(rgb.astype(np.uint8))
        return self._rgb

    @property
    def lab(self) -> NDArray[np.float64]:
        """(H, W, 3) float array of L* in [0, 100] and a*, b*."""
        if self._lab is None:
            self._lab = _read_only(rgb2lab(self._rgb.astype(np.float64) / MAX_RGB))
        return self._lab

    @property
    def has_lab(self) -> bool:
        return self._lab is not None

    @property
    def lightness(self) -> NDArray[np.float64]:
        return self.lab[..., 0]

    def rgb_flat(self) -> NDArray[np.uint8]:
        return self.rgb.reshape(-1, 3)

    def lab_flat(self) -> NDArray[np.float64]:
        return self.lab.reshape(-1, 3)

    # ------------------------------------------------------------------
    # Gradient
    # ------------------------------------------------------------------

    def sobel_lab_at(self, x: int, y: int) -> tuple[float, float]:
        """Sobel gradient at (x, y) summed over the L*, a* and b* channels.

        Pixels outside the image replicate the nearest border pixel.
        """
        ys = np.clip(np.arange(y - 1, y + 2), 0, self._height - 1)
        xs = np.clip(np.arange(x - 1, x + 2), 0, self._width - 1)
        patch = self.lab[np.ix_(ys, xs)].sum(axis=2)
        return float((patch * _SOBEL_X).sum()), float((patch * _SOBEL_Y).sum())

    def sobel_magnitude_squared(self, x: int, y: int) -> float:
        gx, gy = self.sobel_lab_at(x, y)
        return gx * gx + gy * gy
