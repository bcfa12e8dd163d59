"""Segmentation data model: superpixels, labelled images and per-region selections."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from superfilter.engine.errors import OwnershipError
from superfilter.imaging.pixel_buffer import MAX_RGB, PixelBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Center:
    """A position in the image plane plus a colour in L*a*b*."""

    x: float
    y: float
    l: float
    a: float
    b: float

    @property
    def position(self) -> tuple[float, float]:
        return self.x, self.y

    @property
    def color(self) -> tuple[float, float, float]:
        return self.l, self.a, self.b


@dataclass(frozen=True, eq=False)
class Superpixel:
    """A labelled region of pixels with its summary statistics.

    ``pixels`` holds linear pixel indices, boundary pixels first. A pixel is
    interior when all four of its neighbours exist and share its label.
    """

    label: int
    center: Center
    mean_rgb: tuple[int, int, int]
    pixels: NDArray[np.intp]
    boundary_count: int
    std_dev: float
    std_dev_lab: tuple[float, float, float]

    @classmethod
    def from_pixels(
        cls,
        label: int,
        pixels: NDArray[np.intp],
        labels: NDArray[np.intp],
        buffer: PixelBuffer,
    ) -> Superpixel:
        pixels = np.asarray(pixels, dtype=np.intp)
        n = len(pixels)
        if n == 0:
            raise ValueError(f"Superpixel {label} has no pixels")
        w, h = buffer.width, buffer.height
        xs = pixels % w
        ys = pixels // w

        lab = buffer.lab_flat()[pixels]
        mean_lab = lab.mean(axis=0)
        cx = min(max(math.floor(float(xs.mean()) + 0.5), 0), w - 1)
        cy = min(max(math.floor(float(ys.mean()) + 0.5), 0), h - 1)
        center = Center(float(cx), float(cy), *(float(v) for v in mean_lab))

        rgb_mean = np.minimum(np.floor(buffer.rgb_flat()[pixels].mean(axis=0)), MAX_RGB)
        mean_rgb = tuple(int(v) for v in rgb_mean)

        if n > 1:
            squared = ((lab - mean_lab) ** 2).sum(axis=0)
            per_channel = tuple(float(v) for v in np.sqrt(squared / (n - 1)))
            std_dev = math.sqrt(float(squared.sum()) / (n - 1))
        else:
            per_channel = (0.0, 0.0, 0.0)
            std_dev = 0.0

        boundary = _boundary_mask(pixels, xs, ys, labels, w, h)
        ordered = np.concatenate([pixels[boundary], pixels[~boundary]])
        ordered.setflags(write=False)
        return cls(
            label=label,
            center=center,
            mean_rgb=mean_rgb,  # type: ignore[arg-type]
            pixels=ordered,
            boundary_count=int(boundary.sum()),
            std_dev=std_dev,
            std_dev_lab=per_channel,  # type: ignore[arg-type]
        )

    @property
    def size(self) -> int:
        return len(self.pixels)

    @property
    def boundary_pixels(self) -> NDArray[np.intp]:
        return self.pixels[: self.boundary_count]

    @property
    def interior_pixels(self) -> NDArray[np.intp]:
        return self.pixels[self.boundary_count :]

    @property
    def std_dev_lstar(self) -> float:
        return self.std_dev_lab[0]

    @property
    def area_to_perimeter(self) -> float:
        """Pixel count divided by boundary pixel count."""
        return self.size / self.boundary_count if self.boundary_count else float(self.size)


def _boundary_mask(
    pixels: NDArray[np.intp],
    xs: NDArray[np.intp],
    ys: NDArray[np.intp],
    labels: NDArray[np.intp],
    width: int,
    height: int,
) -> NDArray[np.bool_]:
    flat = labels.ravel()
    own = flat[pixels]
    boundary = (xs == 0) | (xs == width - 1) | (ys == 0) | (ys == height - 1)
    inner = ~boundary
    k = pixels[inner]
    same = (
        (flat[k + 1] == own[inner])
        & (flat[k - 1] == own[inner])
        & (flat[k + width] == own[inner])
        & (flat[k - width] == own[inner])
    )
    boundary[inner] = ~same
    return boundary


class Superpixellation:
    """A partition of an image into superpixels.

    ``labels[k]`` is the index into ``superpixels`` of the region holding
    pixel ``k``. Ownership of the arrays can be moved to another instance
    with ``transfer``; the donor is left empty and refuses further use.
    """

    def __init__(
        self,
        buffer: PixelBuffer,
        labels: NDArray[np.intp],
        superpixels: list[Superpixel] | tuple[Superpixel, ...],
    ) -> None:
        labels = np.asarray(labels, dtype=np.intp).reshape(-1)
        if len(labels) != buffer.pixel_count:
            raise ValueError(
                f"Label array has {len(labels)} entries for {buffer.pixel_count} pixels"
            )
        labels.setflags(write=False)
        self._buffer: PixelBuffer | None = buffer
        self._labels: NDArray[np.intp] | None = labels
        self._superpixels: tuple[Superpixel, ...] | None = tuple(superpixels)

    @classmethod
    def transfer(cls, donor: Superpixellation) -> Superpixellation:
        """Build an instance that takes over ``donor``'s data, emptying ``donor``."""
        buffer, labels, superpixels = donor._release()
        return cls(buffer, labels, superpixels)

    def _release(self) -> tuple[PixelBuffer, NDArray[np.intp], tuple[Superpixel, ...]]:
        self._require()
        data = (self._buffer, self._labels, self._superpixels)
        self._buffer = self._labels = self._superpixels = None
        logger.debug("Segmentation of %d superpixels transferred", len(data[2]))
        return data  # type: ignore[return-value]

    def _require(self) -> None:
        if self._labels is None:
            raise OwnershipError("This segmentation was transferred and is now empty.")

    @property
    def is_empty(self) -> bool:
        return self._labels is None

    @property
    def buffer(self) -> PixelBuffer:
        self._require()
        return self._buffer  # type: ignore[return-value]

    @property
    def labels(self) -> NDArray[np.intp]:
        """Flat, read-only label per pixel."""
        self._require()
        return self._labels  # type: ignore[return-value]

    @property
    def superpixels(self) -> tuple[Superpixel, ...]:
        self._require()
        return self._superpixels  # type: ignore[return-value]

    @property
    def superpixel_count(self) -> int:
        return len(self.superpixels)

    def __len__(self) -> int:
        return self.superpixel_count

    def __iter__(self) -> Iterator[Superpixel]:
        return iter(self.superpixels)

    def __getitem__(self, label: int) -> Superpixel:
        return self.superpixels[label]

    def label_at(self, x: int, y: int) -> int:
        return int(self.labels[self.buffer.xy_to_k(x, y)])

    def superpixel_at(self, x: int, y: int) -> Superpixel:
        return self.superpixels[self.label_at(x, y)]

    def label_image(self) -> NDArray[np.intp]:
        """Labels reshaped to (H, W)."""
        return self.labels.reshape(self.buffer.shape)


class FilteredSuperpixellation(Superpixellation):
    """A segmentation with a selected/rejected flag per superpixel and per pixel.

    Both views are kept consistent: a pixel is selected exactly when its
    superpixel is. Nothing is selected initially.
    """

    def __init__(
        self,
        buffer: PixelBuffer,
        labels: NDArray[np.intp],
        superpixels: list[Superpixel] | tuple[Superpixel, ...],
    ) -> None:
        super().__init__(buffer, labels, superpixels)
        self._selected_superpixels = np.zeros(len(self.superpixels), dtype=bool)
        self._selected_pixels = np.zeros(buffer.pixel_count, dtype=bool)

    @classmethod
    def transfer(cls, donor: Superpixellation) -> FilteredSuperpixellation:
        """Take over ``donor``'s data; a filtered donor also hands over its selection."""
        selection = None
        if isinstance(donor, FilteredSuperpixellation):
            selection = donor._selected_superpixels.copy()
        result = super().transfer(donor)
        if selection is not None:
            result.set_selection(selection)
        return result  # type: ignore[return-value]

    @property
    def selected_superpixels(self) -> NDArray[np.bool_]:
        self._require()
        view = self._selected_superpixels.view()
        view.setflags(write=False)
        return view

    @property
    def selected_pixels(self) -> NDArray[np.bool_]:
        self._require()
        view = self._selected_pixels.view()
        view.setflags(write=False)
        return view

    @property
    def selected_count(self) -> int:
        return int(self.selected_superpixels.sum())

    def is_selected(self, label: int) -> bool:
        return bool(self.selected_superpixels[label])

    def set_selected(self, label: int, selected: bool) -> None:
        self._require()
        self._selected_superpixels[label] = selected
        self._selected_pixels[self.superpixels[label].pixels] = selected

    def set_selection(self, mask: NDArray[np.bool_]) -> None:
        """Replace the whole selection with a per-superpixel mask."""
        self._require()
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != self._selected_superpixels.shape:
            raise ValueError(
                f"Selection mask has {mask.size} entries for {len(self.superpixels)} superpixels"
            )
        self._selected_superpixels[:] = mask
        self._selected_pixels[:] = mask[self.labels]

    def _release(self):
        data = super()._release()
        self._selected_superpixels = np.zeros(0, dtype=bool)
        self._selected_pixels = np.zeros(0, dtype=bool)
        return data
