"""Tests for the SLIC superpixel generator."""

import numpy as np
import pytest
from scipy import ndimage

from superfilter.engine.config import ComponentPolicy, SlicConfig, SlicVisualization
from superfilter.engine.errors import InitializationError, OwnershipError
from superfilter.engine.slic import (
    BACKGROUND_COLOR,
    BORDER_COLOR,
    Slic,
    SlicStage,
    counting_sort,
    neighbourhood_offsets,
)
from superfilter.imaging.pixel_buffer import EIGHT_NEIGHBOUR_OFFSETS, PixelBuffer
from tests.conftest import random_rgb, run_to_completion


def _segment(buf: PixelBuffer, **kwargs):
    slic = Slic(SlicConfig(**kwargs))
    run_to_completion(slic, [buf])
    return slic, slic.output_superpixellation()


def _assert_valid_partition(seg):
    labels = seg.labels
    n_sp = seg.superpixel_count
    assert labels.min() == 0 and labels.max() == n_sp - 1
    covered = np.zeros(len(labels), dtype=int)
    for sp in seg:
        assert sp.size > 0
        assert np.all(labels[sp.pixels] == sp.label)
        covered[sp.pixels] += 1
    assert np.all(covered == 1)


def _assert_connected(seg):
    grid = seg.label_image()
    for sp in seg:
        _, n_components = ndimage.label(grid == sp.label)
        assert n_components == 1, f"superpixel {sp.label} is split"


class TestSeeding:
    def test_seed_moves_off_colour_edge(self, split_4x4):
        slic = Slic(SlicConfig(k=1))
        slic.initialize([split_4x4])
        while slic.stage is not SlicStage.SEED_CENTERS:
            slic.increment()
        (center,) = slic.centers
        assert center.position == (3.0, 2.0)
        assert center.color == pytest.approx(tuple(split_4x4.lab[2, 3]))

    def test_flat_image_keeps_grid_positions(self, grey_4x4):
        slic = Slic(SlicConfig(k=4))
        slic.initialize([grey_4x4])
        while slic.stage is not SlicStage.SEED_CENTERS:
            slic.increment()
        positions = [c.position for c in slic.centers]
        assert positions == [(0.5, 0.5), (2.5, 0.5), (0.5, 2.5), (2.5, 2.5)]
        assert slic.grid_interval == 2

    def test_neighbourhood_order_matches_eight_neighbours(self):
        assert neighbourhood_offsets(1) == list(EIGHT_NEIGHBOUR_OFFSETS)
        assert len(neighbourhood_offsets(2)) == 24


class TestScenarios:
    def test_grey_image_splits_into_quadrants(self, grey_4x4):
        slic, seg = _segment(grey_4x4, k=4)
        assert seg.superpixel_count == 4
        grid = seg.label_image()
        expected = np.array([[0, 0, 1, 1], [0, 0, 1, 1], [2, 2, 3, 3], [2, 2, 3, 3]])
        assert np.array_equal(grid, expected)
        assert all(sp.size == 4 for sp in seg)

    def test_grey_image_converges_after_two_iterations(self, grey_4x4):
        slic, _ = _segment(grey_4x4, k=4)
        assert slic.iteration_count == 2
        assert slic.residual_errors == [0.0, 0.0]

    def test_labels_follow_colour_edge(self, split_8x4):
        _, seg = _segment(split_8x4, k=2)
        grid = seg.label_image()
        assert np.all(grid[:, :4] == 0)
        assert np.all(grid[:, 4:] == 1)
        assert seg[0].mean_rgb == (255, 0, 0)
        assert seg[1].mean_rgb == (0, 0, 255)

    def test_single_superpixel(self, split_4x4):
        _, seg = _segment(split_4x4, k=1)
        assert seg.superpixel_count == 1
        assert seg[0].size == 16


class TestProperties:
    @pytest.mark.parametrize("policy", list(ComponentPolicy))
    def test_partition_and_connectivity(self, random_image, policy):
        _, seg = _segment(random_image, k=12, component_policy=policy)
        _assert_valid_partition(seg)
        _assert_connected(seg)

    def test_partition_without_postprocessing(self, random_image):
        _, seg = _segment(random_image, k=12, postprocessing=False)
        _assert_valid_partition(seg)

    def test_pixel_lists_are_sorted_within_each_group(self, random_image):
        _, seg = _segment(random_image, k=12)
        for sp in seg:
            assert np.all(np.diff(sp.boundary_pixels) > 0)
            assert np.all(np.diff(sp.interior_pixels) > 0)

    def test_interior_pixels_are_surrounded_by_their_label(self, random_image):
        _, seg = _segment(random_image, k=12)
        labels = seg.labels
        buf = seg.buffer
        for sp in seg:
            for k in sp.interior_pixels:
                assert all(labels[nb] == sp.label for nb in buf.four_neighbours(int(k)))
                assert len(buf.four_neighbours(int(k))) == 4

    def test_result_does_not_depend_on_granularity(self, random_image):
        _, coarse = _segment(random_image, k=12)
        other = PixelBuffer.from_array(random_rgb(23, 17, seed=7))
        _, fine = _segment(other, k=12, pixel_granularity=7, cluster_granularity=1)
        assert np.array_equal(coarse.labels, fine.labels)

    def test_iteration_cap(self, random_image):
        slic, _ = _segment(random_image, k=12, max_iterations=1)
        assert slic.iteration_count == 1

    def test_pixels_outside_windows_are_labelled_in_chunks(self, random_image):
        slic = Slic(SlicConfig(k=12, pixel_granularity=50))
        slic.initialize([random_image])
        while slic.stage is not SlicStage.SEED_CENTERS:
            slic.increment()
        # Freshly seeded: no pixel has a label yet
        statuses = list(slic._label_orphans(random_image))
        n = random_image.pixel_count
        assert len(statuses) == -(-n // 50)
        assert statuses[-1].endswith(f"({n} / {n})")
        labels = slic.labels
        assert labels.min() >= 0 and labels.max() < 12


class TestCountingSort:
    @pytest.mark.parametrize("step", [1, 3, 7, 100])
    def test_matches_stable_argsort(self, step):
        rng = np.random.default_rng(3)
        # Labels 2, 5 and 7..9 are never used
        labels = rng.choice([0, 1, 3, 4, 6], size=41).astype(np.intp)
        order = np.empty(len(labels), dtype=np.intp)
        progress = list(counting_sort(labels, 10, order, step))
        assert np.array_equal(order, np.argsort(labels, kind="stable"))
        assert progress[-1] == len(labels)
        assert len(progress) == -(-len(labels) // step)

    def test_single_label(self):
        labels = np.zeros(5, dtype=np.intp)
        order = np.empty(5, dtype=np.intp)
        list(counting_sort(labels, 1, order, 2))
        assert order.tolist() == [0, 1, 2, 3, 4]


class TestLifecycle:
    def test_initialize_is_idempotent(self, random_image):
        slic = Slic(SlicConfig(k=12))
        run_to_completion(slic, [random_image])
        first = slic.output_superpixellation().labels.copy()

        slic.initialize([random_image])
        slic.increment()
        slic.increment()
        run_to_completion(slic, [random_image])
        second = slic.output_superpixellation().labels
        assert np.array_equal(first, second)

    def test_segmentation_is_handed_over_once(self, grey_4x4):
        slic, _ = _segment(grey_4x4, k=4)
        with pytest.raises(OwnershipError):
            slic.output_superpixellation()

    @pytest.mark.parametrize("kwargs", [{"k": 0}, {"m": 0.0}, {"max_iterations": 0}, {"pixel_granularity": 0}])
    def test_invalid_parameters(self, grey_4x4, kwargs):
        slic = Slic(SlicConfig(**kwargs))
        with pytest.raises(InitializationError):
            slic.initialize([grey_4x4])
        assert slic.failed

    def test_k_larger_than_image(self, grey_4x4):
        _, seg = _segment(grey_4x4, k=100)
        _assert_valid_partition(seg)
        assert seg.superpixel_count <= 16

    def test_output_skipped_when_disabled(self, grey_4x4):
        slic = Slic(SlicConfig(k=4))
        slic.disable_output()
        slic.initialize([grey_4x4])
        stages = set()
        done = False
        while not done:
            done, _ = slic.increment()
            stages.add(slic.stage)
        assert SlicStage.FILL_OUTPUT not in stages
        assert slic.output_superpixellation().superpixel_count == 4


class TestVisualization:
    def test_mean_colour_with_black_borders(self):
        arr = np.zeros((6, 12, 3), dtype=np.uint8)
        arr[:, :6] = (200, 40, 40)
        arr[:, 6:] = (40, 40, 200)
        slic = Slic(SlicConfig(k=2))
        run_to_completion(slic, [PixelBuffer.from_array(arr)])
        out = np.asarray(slic.output().image)
        assert out.shape == (6, 12, 3)
        assert tuple(out[0, 0]) == BORDER_COLOR
        assert tuple(out[2, 2]) == (200, 40, 40)
        assert tuple(out[2, 9]) == (40, 40, 200)
        assert not np.any(np.all(out == BACKGROUND_COLOR, axis=2))

    @pytest.mark.parametrize("mode", list(SlicVisualization))
    def test_every_mode_renders(self, random_image, mode):
        slic = Slic(SlicConfig(k=12, visualization=mode))
        run_to_completion(slic, [random_image])
        assert slic.output().image.size == (23, 17)
