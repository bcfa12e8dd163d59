"""Tests for the immutable pixel buffer."""

import numpy as np
import pytest
from PIL import Image
from scipy import ndimage

from superfilter.imaging.pixel_buffer import PixelBuffer
from tests.conftest import GREY, random_rgb, solid_rgb


def test_index_conversion():
    buf = PixelBuffer.from_array(solid_rgb(5, 3, GREY))
    assert buf.pixel_count == 15
    assert buf.xy_to_k(4, 2) == 14
    assert buf.k_to_xy(7) == (2, 1)


class TestNeighbours:
    def test_four_neighbours_order(self):
        buf = PixelBuffer.from_array(solid_rgb(3, 3, GREY))
        # right, up, left, down
        assert buf.four_neighbours(4) == [5, 1, 3, 7]

    def test_four_neighbours_at_corner(self):
        buf = PixelBuffer.from_array(solid_rgb(3, 3, GREY))
        assert buf.four_neighbours(0) == [1, 3]
        assert buf.four_neighbours(8) == [5, 7]

    def test_eight_neighbours_counter_clockwise_from_right(self):
        buf = PixelBuffer.from_array(solid_rgb(3, 3, GREY))
        assert buf.eight_neighbours(4) == [5, 2, 1, 0, 3, 6, 7, 8]

    def test_window_is_clipped(self):
        buf = PixelBuffer.from_array(solid_rgb(6, 4, GREY))
        rows, cols = buf.window(0, 3, 2, 2)
        assert (rows.start, rows.stop) == (1, 4)
        assert (cols.start, cols.stop) == (0, 3)
        assert sorted(buf.window_indices(0, 3, 1, 1).tolist()) == [12, 13, 18, 19]


class TestChannels:
    def test_arrays_are_read_only(self):
        buf = PixelBuffer.from_array(solid_rgb(2, 2, GREY))
        with pytest.raises(ValueError):
            buf.rgb[0, 0, 0] = 1
        with pytest.raises(ValueError):
            buf.lab[0, 0, 0] = 1.0

    def test_lab_is_computed_lazily(self):
        buf = PixelBuffer.from_array(solid_rgb(2, 2, (255, 255, 255)))
        assert not buf.has_lab
        assert buf.lightness[0, 0] == pytest.approx(100.0, abs=1e-3)
        assert buf.has_lab

    def test_from_lightness_is_grey(self):
        lightness = np.array([[0.0, 50.0], [75.0, 100.0]])
        buf = PixelBuffer.from_lightness(lightness)
        rgb = buf.rgb
        assert rgb[0, 0].tolist() == [0, 0, 0]
        assert rgb[1, 1].tolist() == [255, 255, 255]
        assert rgb[0, 1, 0] == rgb[0, 1, 1] == rgb[0, 1, 2]

    def test_image_round_trip(self):
        arr = random_rgb(7, 5)
        buf = PixelBuffer.from_image(Image.fromarray(arr))
        assert np.array_equal(np.asarray(buf.to_image()), arr)

    def test_rejects_empty_image(self):
        with pytest.raises(ValueError):
            PixelBuffer(rgb=np.zeros((0, 4, 3), dtype=np.uint8))


def test_sobel_matches_scipy_with_replicated_borders():
    buf = PixelBuffer.from_array(random_rgb(9, 6, seed=4))
    summed = buf.lab.sum(axis=2)
    gx = ndimage.sobel(summed, axis=1, mode="nearest")
    gy = ndimage.sobel(summed, axis=0, mode="nearest")
    for y in range(buf.height):
        for x in range(buf.width):
            sx, sy = buf.sobel_lab_at(x, y)
            assert sx == pytest.approx(gx[y, x], abs=1e-9)
            assert sy == pytest.approx(gy[y, x], abs=1e-9)
