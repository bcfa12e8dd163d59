"""SLIC superpixels, computed incrementally.

Simple Linear Iterative Clustering: k-means over (x, y, L*, a*, b*) where
each cluster only competes for pixels inside a window around its center.
The distance between a pixel and a center is

    D = sqrt(dc^2 + ds^2 * (m / S)^2)

with dc the L*a*b* distance, ds the image-plane distance, S the seeding
grid interval and m the compactness weight.

After k-means, clusters that split into several 4-connected pieces are
repaired: one component per cluster keeps the label (the largest, or the
one under the cluster center), and every other pixel takes the label of the
nearest kept pixel. Pixels are then bucketed per label with a counting sort
and turned into ``Superpixel`` records.

Reference: Achanta et al., "SLIC Superpixels Compared to State-of-the-Art
Superpixel Methods", IEEE TPAMI 34(11), 2012.
"""

from __future__ import annotations

import enum
import logging
import math
from collections import deque
from collections.abc import Iterator

import numpy as np
from numpy.typing import NDArray
from PIL import Image

from superfilter.engine.algorithm import Algorithm
from superfilter.engine.config import ComponentPolicy, SlicConfig, SlicVisualization
from superfilter.engine.errors import (
    CorruptedStateError,
    InitializationError,
    OutputUnavailableError,
)
from superfilter.engine.segmentation import Center, Superpixel, Superpixellation
from superfilter.imaging.pixel_buffer import PixelBuffer
from superfilter.utils.binary_heap import BinaryHeap

logger = logging.getLogger(__name__)

BORDER_COLOR = (0, 0, 0)
BACKGROUND_COLOR = (255, 255, 0)
CENTER_COLOR = (255, 0, 0)
KEPT_COMPONENT_COLOR = (0, 255, 0)
REASSIGNED_COMPONENT_COLOR = (0, 0, 255)

# Extra pixels added to the k-means search window on each side
_WINDOW_MARGIN = 4


class SlicStage(enum.Enum):
    START = 0
    RGB2LAB = 1
    SEED_CENTERS = 2
    KMEANS_LABEL_PIXELS = 3
    KMEANS_UPDATE_CENTERS = 4
    KMEANS_ASSESS_ITERATION = 5
    FIND_CONNECTED_COMPONENTS = 6
    CLASSIFY_CONNECTED_COMPONENTS = 7
    REASSIGN_CONNECTED_COMPONENTS = 8
    SORT_PIXELS = 9
    CREATE_SUPERPIXELS = 10
    FILL_OUTPUT = 11
    END = 12


def neighbourhood_offsets(radius: int) -> list[tuple[int, int]]:
    """Offsets within ``radius`` (Chebyshev), ring by ring, counter-clockwise from the right."""
    offsets = [
        (dx, dy)
        for dy in range(-radius, radius + 1)
        for dx in range(-radius, radius + 1)
        if (dx, dy) != (0, 0)
    ]
    return sorted(
        offsets,
        key=lambda o: (max(abs(o[0]), abs(o[1])), math.atan2(-o[1], o[0]) % (2 * math.pi)),
    )


def counting_sort(
    labels: NDArray[np.intp],
    n_labels: int,
    order: NDArray[np.intp],
    step: int,
) -> Iterator[int]:
    """Stable counting sort of pixel indices by label, written into ``order``.

    Labels may leave gaps: a label with no pixels gets an empty bucket.
    Pixels are placed from the last one backwards, ``step`` at a time, and
    the number placed so far is yielded after each chunk.
    """
    n = len(labels)
    counts = np.bincount(labels, minlength=n_labels)
    ends = np.cumsum(counts)
    cursor = ends.copy()
    for stop in range(n, 0, -step):
        start = max(0, stop - step)
        chunk = np.arange(stop - 1, start - 1, -1, dtype=np.intp)
        chunk_labels = labels[chunk]
        by_label = np.argsort(chunk_labels, kind="stable")
        grouped = chunk_labels[by_label]
        rank = np.empty(len(chunk), dtype=np.intp)
        rank[by_label] = np.arange(len(chunk)) - np.searchsorted(grouped, grouped, side="left")
        order[cursor[chunk_labels] - rank - 1] = chunk
        cursor -= np.bincount(chunk_labels, minlength=len(counts))
        yield n - start

    if not np.array_equal(cursor, ends - counts):
        raise CorruptedStateError("Counting sort offsets are inconsistent")


class Slic(Algorithm):
    """Incremental SLIC superpixel generator."""

    name = "SLIC"

    def __init__(self, config: SlicConfig | None = None) -> None:
        self.config = config or SlicConfig()
        super().__init__()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _reset(self) -> None:
        self._stage = SlicStage.START
        self._k = 0
        self._grid_interval = 0
        self._half_window = (0, 0)
        self._centers = np.zeros((0, 5), dtype=np.float64)
        self._labels = np.zeros(0, dtype=np.intp)
        self._distances = np.zeros(0, dtype=np.float64)
        self._iteration = 0
        self._residual_errors: list[float] = []
        self._component_of = np.zeros(0, dtype=np.intp)
        self._component_sizes: list[int] = []
        self._component_clusters: list[int] = []
        self._component_heap: BinaryHeap[tuple[int, int, int]] = BinaryHeap()
        self._kept_components = np.zeros(0, dtype=bool)
        self._kept_pixels = np.zeros(0, dtype=bool)
        self._sorted_pixels = np.zeros(0, dtype=np.intp)
        self._label_starts = np.zeros(0, dtype=np.intp)
        self._superpixellation: Superpixellation | None = None

    def _prepare(self, images: list[PixelBuffer]) -> None:
        cfg = self.config
        if cfg.k < 1:
            raise InitializationError(f"The number of superpixels must be positive, got {cfg.k}.")
        if cfg.m <= 0:
            raise InitializationError(f"The compactness weight must be positive, got {cfg.m}.")
        if cfg.max_iterations < 1:
            raise InitializationError("At least one k-means iteration is required.")
        if cfg.pixel_granularity < 1 or cfg.cluster_granularity < 1:
            raise InitializationError("Work granularities must be positive.")
        if cfg.seed_neighbourhood_radius < 0:
            raise InitializationError("The seed neighbourhood radius cannot be negative.")

        n = images[0].pixel_count
        self._k = min(cfg.k, n)
        if self._k < cfg.k:
            logger.warning("SLIC: k=%d exceeds the pixel count, using k=%d", cfg.k, self._k)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def grid_interval(self) -> int:
        return self._grid_interval

    @property
    def search_window(self) -> tuple[int, int]:
        """Half width and half height of the k-means search window."""
        return self._half_window

    @property
    def iteration_count(self) -> int:
        return self._iteration

    @property
    def residual_errors(self) -> list[float]:
        return list(self._residual_errors)

    @property
    def centers(self) -> list[Center]:
        return [Center(*(float(v) for v in row)) for row in self._centers]

    @property
    def labels(self) -> NDArray[np.intp]:
        """Current per-pixel cluster labels (a copy)."""
        return self._labels.copy()

    def output_superpixellation(self) -> Superpixellation:
        """Hand over the finished segmentation. A second call raises OwnershipError."""
        if self._failed:
            raise OutputUnavailableError("Processing has failed.")
        if not self._finished or self._superpixellation is None:
            raise OutputUnavailableError("Processing has not finished.")
        return Superpixellation.transfer(self._superpixellation)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _run(self) -> Iterator[str]:
        cfg = self.config
        buf = self.primary_image

        self._stage = SlicStage.RGB2LAB
        _ = buf.lab
        yield "Converted the input image to the CIE L*a*b* colour space."

        self._stage = SlicStage.SEED_CENTERS
        self._seed_centers(buf)
        yield f"Seeded {len(self._centers)} cluster centers (grid interval {self._grid_interval})."

        yield from self._kmeans(buf)

        if cfg.postprocessing:
            self._stage = SlicStage.FIND_CONNECTED_COMPONENTS
            yield from self._find_components(buf)
            self._stage = SlicStage.CLASSIFY_CONNECTED_COMPONENTS
            yield from self._classify_components(buf)
            self._stage = SlicStage.REASSIGN_CONNECTED_COMPONENTS
            yield from self._reassign_components(buf)
        else:
            self._kept_pixels = np.ones(buf.pixel_count, dtype=bool)

        self._stage = SlicStage.SORT_PIXELS
        yield from self._sort_pixels(buf)

        self._stage = SlicStage.CREATE_SUPERPIXELS
        yield from self._create_superpixels(buf)

        if self._output_enabled:
            self._stage = SlicStage.FILL_OUTPUT
            yield from self._fill_output(buf)

        self._stage = SlicStage.END

    # -- seeding -------------------------------------------------------

    def _seed_centers(self, buf: PixelBuffer) -> None:
        cfg = self.config
        w, h, n, k = buf.width, buf.height, buf.pixel_count, self._k

        s = max(1, math.floor(math.sqrt(n / k) + 0.5))
        width_in_s = math.ceil(w / s)
        height_in_s = math.ceil(h / s)
        cells = width_in_s * height_in_s
        width_conversion = w / width_in_s
        height_conversion = h / height_in_s
        k_conversion = cells / k

        self._grid_interval = s
        self._half_window = (
            max(
                math.ceil((math.ceil(k_conversion) - 0.5) * width_conversion) + _WINDOW_MARGIN,
                math.ceil(cfg.min_search_window_size * s),
            ),
            max(
                math.ceil((math.ceil(k_conversion) - 0.5) * height_conversion) + _WINDOW_MARGIN,
                math.ceil(cfg.min_search_window_size * s),
            ),
        )

        offsets = neighbourhood_offsets(cfg.seed_neighbourhood_radius)
        lab = buf.lab
        centers = np.empty((k, 5), dtype=np.float64)
        for i in range(k):
            cell = min(math.floor(i * k_conversion + 0.5), cells - 1)
            x = (cell % width_in_s + 0.5) * width_conversion - 0.5
            y = (cell // width_in_s + 0.5) * height_conversion - 0.5
            px = min(math.floor(x + 0.5), w - 1)
            py = min(math.floor(y + 0.5), h - 1)

            lowest = buf.sobel_magnitude_squared(px, py)
            for dx, dy in offsets:
                nx, ny = px + dx, py + dy
                if not buf.contains(nx, ny):
                    continue
                magnitude = buf.sobel_magnitude_squared(nx, ny)
                if magnitude < lowest:
                    lowest = magnitude
                    x, y = float(nx), float(ny)
            rx = min(math.floor(x + 0.5), w - 1)
            ry = min(math.floor(y + 0.5), h - 1)
            centers[i, 0:2] = (x, y)
            centers[i, 2:5] = lab[ry, rx]

        self._centers = centers
        self._labels = np.full(n, -1, dtype=np.intp)
        self._distances = np.full(n, np.inf, dtype=np.float64)
        logger.debug(
            "SLIC: %d centers, S=%d, search window %dx%d",
            k, s, 2 * self._half_window[0] + 1, 2 * self._half_window[1] + 1,
        )

    # -- k-means -------------------------------------------------------

    def _kmeans(self, buf: PixelBuffer) -> Iterator[str]:
        cfg = self.config
        n = buf.pixel_count
        n_centers = len(self._centers)

        while True:
            self._iteration += 1
            it = self._iteration

            self._stage = SlicStage.KMEANS_LABEL_PIXELS
            self._labels.fill(-1)
            self._distances.fill(np.inf)
            for start in range(0, n_centers, cfg.cluster_granularity):
                end = min(start + cfg.cluster_granularity, n_centers)
                self._label_window(buf, start, end)
                yield f"K-means iteration {it}, labelling pixels ({end} / {n_centers})"
            yield from self._label_orphans(buf)

            self._stage = SlicStage.KMEANS_UPDATE_CENTERS
            sums = np.zeros((n_centers, 5), dtype=np.float64)
            counts = np.zeros(n_centers, dtype=np.int64)
            for start in range(0, n, cfg.pixel_granularity):
                end = min(start + cfg.pixel_granularity, n)
                self._accumulate(buf, start, end, sums, counts)
                yield f"K-means iteration {it}, updating centers ({end} / {n})"

            self._stage = SlicStage.KMEANS_ASSESS_ITERATION
            converged = self._assess_iteration(sums, counts)
            yield (
                f"K-means iteration {it} complete, residual error "
                f"{self._residual_errors[-1]:.4g}"
            )
            if converged:
                logger.debug("SLIC: k-means stopped after %d iterations", it)
                return

    def _label_window(self, buf: PixelBuffer, start: int, end: int) -> None:
        lab = buf.lab
        labels = self._labels.reshape(buf.shape)
        distances = self._distances.reshape(buf.shape)
        spatial_weight = (self.config.m / self._grid_interval) ** 2
        half_w, half_h = self._half_window

        for c in range(start, end):
            cx, cy = self._centers[c, 0], self._centers[c, 1]
            rows, cols = buf.window(math.floor(cx + 0.5), math.floor(cy + 0.5), half_w, half_h)
            dc2 = ((lab[rows, cols] - self._centers[c, 2:5]) ** 2).sum(axis=2)
            ys = np.arange(rows.start, rows.stop, dtype=np.float64)[:, None]
            xs = np.arange(cols.start, cols.stop, dtype=np.float64)[None, :]
            ds2 = (xs - cx) ** 2 + (ys - cy) ** 2
            d = np.sqrt(dc2 + ds2 * spatial_weight)

            window_dist = distances[rows, cols]
            window_labels = labels[rows, cols]
            closer = d < window_dist
            window_dist[closer] = d[closer]
            window_labels[closer] = c

    def _label_orphans(self, buf: PixelBuffer) -> Iterator[str]:
        """Give pixels outside every search window to their nearest center."""
        orphans = np.flatnonzero(self._labels < 0)
        n_orphans = len(orphans)
        if n_orphans == 0:
            return
        logger.debug("SLIC: %d pixels outside all search windows", n_orphans)
        lab = buf.lab_flat()
        spatial_weight = (self.config.m / self._grid_interval) ** 2
        step = self.config.pixel_granularity
        for start in range(0, n_orphans, step):
            end = min(start + step, n_orphans)
            ks = orphans[start:end]
            xs = (ks % buf.width).astype(np.float64)[:, None]
            ys = (ks // buf.width).astype(np.float64)[:, None]
            dc2 = ((lab[ks][:, None, :] - self._centers[None, :, 2:5]) ** 2).sum(axis=2)
            ds2 = (xs - self._centers[None, :, 0]) ** 2 + (ys - self._centers[None, :, 1]) ** 2
            d = np.sqrt(dc2 + ds2 * spatial_weight)
            nearest = np.argmin(d, axis=1)
            self._labels[ks] = nearest
            self._distances[ks] = d[np.arange(len(ks)), nearest]
            yield (
                f"K-means iteration {self._iteration}, labelling pixels outside "
                f"every window ({end} / {n_orphans})"
            )

    def _accumulate(
        self,
        buf: PixelBuffer,
        start: int,
        end: int,
        sums: NDArray[np.float64],
        counts: NDArray[np.int64],
    ) -> None:
        n_centers = len(counts)
        ks = np.arange(start, end)
        labels = self._labels[start:end]
        lab = buf.lab_flat()[start:end]
        columns = (
            (ks % buf.width).astype(np.float64),
            (ks // buf.width).astype(np.float64),
            lab[:, 0], lab[:, 1], lab[:, 2],
        )
        for i, values in enumerate(columns):
            sums[:, i] += np.bincount(labels, weights=values, minlength=n_centers)
        counts += np.bincount(labels, minlength=n_centers)

    def _assess_iteration(self, sums: NDArray[np.float64], counts: NDArray[np.int64]) -> bool:
        cfg = self.config
        previous = self._centers
        updated = previous.copy()
        occupied = counts > 0
        updated[occupied] = sums[occupied] / counts[occupied, None]

        residual = float(((updated[:, 0:2] - previous[:, 0:2]) ** 2).sum())
        self._centers = updated
        self._residual_errors.append(residual)

        if self._iteration >= cfg.max_iterations:
            return True
        if self._iteration < 2:
            return False
        before = math.sqrt(self._residual_errors[-2])
        now = math.sqrt(residual)
        if before == 0.0:
            change = 0.0 if now == 0.0 else math.inf
        else:
            change = abs(now - before) / before
        return change <= cfg.error_threshold

    # -- connectivity enforcement --------------------------------------

    def _find_components(self, buf: PixelBuffer) -> Iterator[str]:
        """Breadth-first labelling of the 4-connected pieces of every cluster."""
        w, h, n = buf.width, buf.height, buf.pixel_count
        budget = self.config.pixel_granularity
        labels = self._labels.tolist()
        component_of = [-1] * n
        sizes = self._component_sizes = []
        clusters = self._component_clusters = []
        heap = self._component_heap = BinaryHeap()
        handles: list[int] = []

        # Heap entries (-cluster, size, -component): lowest cluster first, then largest
        def refresh(c: int) -> None:
            heap.increase(handles[c], (-clusters[c], sizes[c], -c))

        queue: deque[int] = deque()
        scan = 0
        current = -1
        visited = 0
        while True:
            if not queue:
                if current >= 0:
                    refresh(current)
                while scan < n and component_of[scan] >= 0:
                    scan += 1
                if scan == n:
                    break
                current = len(sizes)
                component_of[scan] = current
                sizes.append(0)
                clusters.append(labels[scan])
                handles.append(heap.add((-labels[scan], 0, -current)))
                queue.append(scan)

            k = queue.popleft()
            sizes[current] += 1
            visited += 1
            label = labels[k]
            x = k % w
            if x + 1 < w and component_of[k + 1] < 0 and labels[k + 1] == label:
                component_of[k + 1] = current
                queue.append(k + 1)
            if k >= w and component_of[k - w] < 0 and labels[k - w] == label:
                component_of[k - w] = current
                queue.append(k - w)
            if x > 0 and component_of[k - 1] < 0 and labels[k - 1] == label:
                component_of[k - 1] = current
                queue.append(k - 1)
            if k + w < n and component_of[k + w] < 0 and labels[k + w] == label:
                component_of[k + w] = current
                queue.append(k + w)

            if visited % budget == 0:
                refresh(current)
                yield f"Finding connected components ({visited} / {n})"

        self._component_of = np.asarray(component_of, dtype=np.intp)
        if visited != n or sum(sizes) != n:
            raise CorruptedStateError("Connected components do not cover the image")
        logger.debug(
            "SLIC: %d connected components for %d clusters", len(sizes), len(self._centers)
        )
        yield f"Found {len(sizes)} connected components."

    def _classify_components(self, buf: PixelBuffer) -> Iterator[str]:
        cfg = self.config
        n_components = len(self._component_sizes)
        keep = np.zeros(n_components, dtype=bool)
        heap = self._component_heap

        if cfg.component_policy is ComponentPolicy.LARGEST:
            seen: set[int] = set()
            popped = 0
            while heap:
                neg_cluster, _, neg_component = heap.remove()
                if neg_cluster not in seen:
                    seen.add(neg_cluster)
                    keep[-neg_component] = True
                popped += 1
                if popped % cfg.pixel_granularity == 0:
                    yield f"Classifying connected components ({popped} / {n_components})"
        else:
            n_centers = len(self._centers)
            for start in range(0, n_centers, cfg.cluster_granularity):
                end = min(start + cfg.cluster_granularity, n_centers)
                for c in range(start, end):
                    x = min(max(math.floor(self._centers[c, 0] + 0.5), 0), buf.width - 1)
                    y = min(max(math.floor(self._centers[c, 1] + 0.5), 0), buf.height - 1)
                    k = buf.xy_to_k(x, y)
                    if self._labels[k] == c:
                        keep[self._component_of[k]] = True
                yield f"Classifying connected components ({end} / {n_centers} clusters)"
            if not keep.any():
                # No center sits on its own cluster; fall back to the top component
                keep[-heap.peek()[2]] = True

        self._kept_components = keep
        self._kept_pixels = keep[self._component_of]
        yield f"Kept {int(keep.sum())} of {n_components} connected components."

    def _reassign_components(self, buf: PixelBuffer) -> Iterator[str]:
        """Multi-source BFS from the kept pixels into every discarded pixel."""
        w, h, n = buf.width, buf.height, buf.pixel_count
        kept = self._kept_pixels
        discarded = ~kept
        n_discarded = int(discarded.sum())
        if n_discarded == 0:
            yield "No connected components to reassign."
            return

        grid = discarded.reshape(h, w)
        touches = np.zeros_like(grid)
        touches[:, :-1] |= grid[:, 1:]
        touches[:, 1:] |= grid[:, :-1]
        touches[:-1, :] |= grid[1:, :]
        touches[1:, :] |= grid[:-1, :]
        frontier = np.flatnonzero(kept & touches.ravel())

        labels = self._labels.tolist()
        reached = kept.tolist()
        queue: deque[int] = deque(frontier.tolist())
        budget = self.config.pixel_granularity
        assigned = 0
        while queue:
            k = queue.popleft()
            label = labels[k]
            x = k % w
            for nb, ok in (
                (k + 1, x + 1 < w),
                (k - w, k >= w),
                (k - 1, x > 0),
                (k + w, k + w < n),
            ):
                if ok and not reached[nb]:
                    reached[nb] = True
                    labels[nb] = label
                    queue.append(nb)
                    assigned += 1
                    if assigned % budget == 0:
                        yield f"Reassigning pixels ({assigned} / {n_discarded})"

        if assigned != n_discarded:
            raise CorruptedStateError("Some pixels were not reached while reassigning components")
        self._labels = np.asarray(labels, dtype=np.intp)
        yield f"Reassigned {n_discarded} pixels to neighbouring superpixels."

    # -- finalization --------------------------------------------------

    def _sort_pixels(self, buf: PixelBuffer) -> Iterator[str]:
        """Drop empty clusters, compact labels and bucket pixels by label (stable)."""
        n = buf.pixel_count
        counts = np.bincount(self._labels, minlength=len(self._centers))
        occupied = counts > 0
        if not occupied.all():
            logger.debug("SLIC: dropping %d empty clusters", int((~occupied).sum()))
        remap = np.cumsum(occupied) - 1
        labels = remap[self._labels]
        counts = counts[occupied]
        self._centers = self._centers[occupied]
        self._labels = labels

        order = np.empty(n, dtype=np.intp)
        for done in counting_sort(labels, len(counts), order, self.config.pixel_granularity):
            yield f"Sorting pixels by superpixel ({done} / {n})"
        self._sorted_pixels = order
        self._label_starts = np.append(np.cumsum(counts) - counts, n)

    def _create_superpixels(self, buf: PixelBuffer) -> Iterator[str]:
        step = self.config.cluster_granularity
        n_labels = len(self._label_starts) - 1
        superpixels: list[Superpixel] = []
        for start in range(0, n_labels, step):
            end = min(start + step, n_labels)
            for label in range(start, end):
                pixels = self._sorted_pixels[self._label_starts[label] : self._label_starts[label + 1]]
                superpixels.append(Superpixel.from_pixels(label, pixels, self._labels, buf))
            yield f"Creating superpixels ({end} / {n_labels})"
        self._superpixellation = Superpixellation(buf, self._labels, superpixels)
        logger.info("SLIC: %d superpixels after %d iterations", n_labels, self._iteration)

    def _fill_output(self, buf: PixelBuffer) -> Iterator[str]:
        cfg = self.config
        seg = self._superpixellation
        if seg is None:
            raise CorruptedStateError("No superpixels to visualize")
        canvas = np.empty((buf.pixel_count, 3), dtype=np.uint8)
        canvas[:] = BACKGROUND_COLOR
        n_labels = seg.superpixel_count
        step = cfg.cluster_granularity

        if cfg.visualization is SlicVisualization.CONNECTED_COMPONENTS:
            canvas[self._kept_pixels] = KEPT_COMPONENT_COLOR
            canvas[~self._kept_pixels] = REASSIGNED_COMPONENT_COLOR
        for start in range(0, n_labels, step):
            end = min(start + step, n_labels)
            for sp in seg.superpixels[start:end]:
                if cfg.visualization is SlicVisualization.MEAN_COLOR:
                    canvas[sp.interior_pixels] = sp.mean_rgb
                elif cfg.visualization is SlicVisualization.LABELS:
                    grey = (sp.label * 255) // max(1, n_labels - 1)
                    canvas[sp.interior_pixels] = (grey, grey, grey)
                canvas[sp.boundary_pixels] = BORDER_COLOR
                if cfg.visualization is SlicVisualization.CONNECTED_COMPONENTS:
                    x, y = sp.center.position
                    canvas[buf.xy_to_k(int(x), int(y))] = CENTER_COLOR
            yield f"Drawing superpixels ({end} / {n_labels})"

        self._output_image = Image.fromarray(canvas.reshape(buf.height, buf.width, 3))
