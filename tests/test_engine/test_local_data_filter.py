"""Tests for the Otsu-thresholded local-data superpixel filter."""

import numpy as np
import pytest

from superfilter.engine.config import FilterConfig, ScoreBasis, SlicConfig
from superfilter.engine.errors import InitializationError, OwnershipError
from superfilter.engine.local_data_filter import (
    CHOICE_BORDER_COLOR,
    MAX_STDDEV_LSTAR,
    SCORING_STRATEGIES,
    SELECTION_MAP_DESCRIPTION,
    FilterStage,
    LocalDataFilter,
)
from superfilter.engine.slic import Slic
from superfilter.imaging.pixel_buffer import PixelBuffer
from tests.conftest import BLACK, WHITE, random_rgb, run_to_completion, split_rgb


def _filter(basis: ScoreBasis, k: int) -> LocalDataFilter:
    return LocalDataFilter(Slic(SlicConfig(k=k)), FilterConfig(score_basis=basis))


def _selection_map(width: int, height: int) -> PixelBuffer:
    """Black on the left, white on the right."""
    return PixelBuffer.from_array(split_rgb(width, height, BLACK, WHITE))


class TestSetup:
    def test_generator_output_is_disabled(self):
        f = _filter(ScoreBasis.SIZE, 4)
        assert not f.generator.output_enabled

    def test_required_images(self):
        assert _filter(ScoreBasis.SIZE, 4).additional_required_images() == []
        assert _filter(ScoreBasis.EXTERNAL, 4).additional_required_images() == [
            SELECTION_MAP_DESCRIPTION
        ]

    def test_external_requires_selection_map(self, split_8x4):
        f = _filter(ScoreBasis.EXTERNAL, 2)
        with pytest.raises(InitializationError):
            f.initialize([split_8x4])
        assert f.failed

    def test_external_rejects_mismatched_map(self, split_8x4):
        f = _filter(ScoreBasis.EXTERNAL, 2)
        with pytest.raises(InitializationError, match="dimensions do not agree"):
            f.initialize([split_8x4, _selection_map(4, 4)])

    def test_generator_failure_fails_filter(self, grey_4x4):
        f = LocalDataFilter(Slic(SlicConfig(k=0)))
        with pytest.raises(InitializationError):
            f.initialize([grey_4x4])
        assert f.failed


class TestScenarios:
    def test_equal_sizes_select_everything(self, grey_4x4):
        f = _filter(ScoreBasis.SIZE, 4)
        run_to_completion(f, [grey_4x4])
        seg = f.output_filtered_superpixellation()
        assert seg.superpixel_count == 4
        assert np.allclose(f.scores, 1.0)
        assert f.threshold == pytest.approx(1.0)
        assert seg.selected_superpixels.all()
        assert seg.selected_pixels.all()

    def test_flat_lightness_selects_nothing(self, grey_4x4):
        f = _filter(ScoreBasis.STDDEV_LSTAR, 4)
        run_to_completion(f, [grey_4x4])
        seg = f.output_filtered_superpixellation()
        assert np.allclose(f.scores, 0.0)
        assert not seg.selected_superpixels.any()

    def test_external_selects_dark_regions(self, split_8x4):
        f = _filter(ScoreBasis.EXTERNAL, 2)
        run_to_completion(f, [split_8x4, _selection_map(8, 4)])
        seg = f.output_filtered_superpixellation()
        assert f.scores[0] == pytest.approx(0.0, abs=1e-6)
        assert f.scores[1] == pytest.approx(100.0, abs=1e-3)
        assert f.threshold_bin == 1
        assert seg.selected_superpixels.tolist() == [True, False]
        assert np.array_equal(seg.selected_pixels, seg.selected_superpixels[seg.labels])

    def test_external_output_is_stacked_for_landscape_input(self, split_8x4):
        f = _filter(ScoreBasis.EXTERNAL, 2)
        run_to_completion(f, [split_8x4, _selection_map(8, 4)])
        out = np.asarray(f.output().image)
        assert out.shape == (8, 8, 3)
        # Score map on top: dark region black, bright region white
        assert tuple(out[1, 1]) == (0, 0, 0)
        assert tuple(out[1, 5]) == (255, 255, 255)
        # Selection below: selected black, rejected white, grey borders
        assert tuple(out[5, 1]) == (0, 0, 0)
        assert tuple(out[5, 5]) == (255, 255, 255)
        assert tuple(out[4, 0]) == CHOICE_BORDER_COLOR


class TestProperties:
    def test_size_selection_is_monotonic(self, random_image):
        f = _filter(ScoreBasis.SIZE, 12)
        run_to_completion(f, [random_image])
        seg = f.output_filtered_superpixellation()
        sizes = np.array([sp.size for sp in seg])
        selected = seg.selected_superpixels
        if selected.any():
            assert np.all(selected[sizes >= sizes[selected].min()])

    def test_larger_regions_stay_selected_as_k_grows(self):
        image = PixelBuffer.from_array(random_rgb(40, 30, seed=2))
        thresholds = []
        for k in (6, 12, 20, 40):
            f = _filter(ScoreBasis.SIZE, k)
            run_to_completion(f, [image])
            seg = f.output_filtered_superpixellation()
            sizes = np.array([sp.size for sp in seg])
            selected = seg.selected_superpixels
            if selected.any() and not selected.all():
                assert sizes[selected].min() >= sizes[~selected].max()
            thresholds.append(f.threshold)
        assert len(set(thresholds)) > 1

    def test_selection_matches_threshold(self, random_image):
        f = _filter(ScoreBasis.STDDEV_LSTAR, 12)
        run_to_completion(f, [random_image])
        seg = f.output_filtered_superpixellation()
        assert np.array_equal(seg.selected_superpixels, f.scores < f.threshold)
        assert np.array_equal(seg.selected_pixels, seg.selected_superpixels[seg.labels])

    def test_histogram_counts_every_superpixel(self, random_image):
        f = _filter(ScoreBasis.SIZE, 12)
        run_to_completion(f, [random_image])
        assert f.histogram.sum() == f.filtered.superpixel_count
        assert len(f.histogram) == 10

    def test_output_is_side_by_side_for_portrait_input(self, portrait_image):
        f = _filter(ScoreBasis.SIZE, 12)
        run_to_completion(f, [portrait_image])
        assert f.output().image.size == (30, 20)


class TestLifecycle:
    def test_filtered_segmentation_is_handed_over_once(self, grey_4x4):
        f = _filter(ScoreBasis.SIZE, 4)
        run_to_completion(f, [grey_4x4])
        f.output_filtered_superpixellation()
        with pytest.raises(OwnershipError):
            f.output_filtered_superpixellation()

    def test_visualization_skipped_when_disabled(self, grey_4x4):
        f = _filter(ScoreBasis.SIZE, 4)
        f.disable_output()
        f.initialize([grey_4x4])
        stages = set()
        done = False
        while not done:
            done, _ = f.increment()
            stages.add(f.stage)
        assert FilterStage.FILL_OUTPUT not in stages
        assert FilterStage.GENERATE_SUPERPIXELS in stages

    def test_reinitialize_reruns_generator(self, random_image):
        f = _filter(ScoreBasis.SIZE, 12)
        run_to_completion(f, [random_image])
        first = f.output_filtered_superpixellation().selected_superpixels.copy()
        run_to_completion(f, [random_image])
        second = f.output_filtered_superpixellation().selected_superpixels
        assert np.array_equal(first, second)


def test_stddev_normalizer_uses_half_lightness_range():
    assert MAX_STDDEV_LSTAR == 50.0
    strategy = SCORING_STRATEGIES[ScoreBasis.STDDEV_LSTAR]
    assert strategy.select_below
    assert not SCORING_STRATEGIES[ScoreBasis.SIZE].select_below
    assert SCORING_STRATEGIES[ScoreBasis.EXTERNAL].fixed_range == (0.0, 100.0)
