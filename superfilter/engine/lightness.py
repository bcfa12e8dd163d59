"""Per-pixel lightness algorithms: L* greyscale conversion and midtone thresholding."""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterator

import numpy as np

from superfilter.engine.algorithm import Algorithm
from superfilter.engine.config import MidtoneConfig
from superfilter.engine.errors import InitializationError
from superfilter.imaging.pixel_buffer import MAX_LIGHTNESS, MIN_LIGHTNESS, PixelBuffer
from superfilter.utils.math_helpers import sigmoid, sigmoid_factor

logger = logging.getLogger(__name__)


class LightnessStage(enum.Enum):
    START = 0
    RGB2LAB = 1
    COPY_LIGHTNESS = 2
    CREATE_IMAGE = 3
    LAB2RGB = 4
    FILL_OUTPUT = 5
    END = 6


class LightnessAlgorithm(Algorithm):
    """Greyscale version of an image built from its L* channel."""

    name = "lightness"

    def _reset(self) -> None:
        self._stage = LightnessStage.START
        self._result: PixelBuffer | None = None

    def _run(self) -> Iterator[str]:
        buf = self.primary_image

        self._stage = LightnessStage.RGB2LAB
        _ = buf.lab
        yield "Converted the input image to the CIE L*a*b* colour space."

        self._stage = LightnessStage.COPY_LIGHTNESS
        lightness = buf.lightness.copy()
        yield "Copied the lightness channel."

        self._stage = LightnessStage.CREATE_IMAGE
        self._result = PixelBuffer.from_lightness(lightness)
        yield "Created output image data in the CIE L*a*b* colour space."

        if self._output_enabled:
            self._stage = LightnessStage.LAB2RGB
            _ = self._result.rgb
            yield "Converted the output image data to the RGB colour space."

            self._stage = LightnessStage.FILL_OUTPUT
            self._output_image = self._result.to_image()
            yield "Converted the output image data to a displayable image."

        self._stage = LightnessStage.END

    @property
    def result(self) -> PixelBuffer | None:
        return self._result


class MidtoneStage(enum.Enum):
    START = 0
    RGB2LAB = 1
    THRESHOLD = 2
    RESCALE = 3
    CREATE_LAB_IMAGE = 4
    LAB2RGB = 5
    FILL_OUTPUT = 6
    END = 7


class MidtoneFilter(Algorithm):
    """Soft band-pass on L*: bright where the input is a midtone, dark elsewhere.

    Each pixel's value is the mean of a rising sigmoid centred on the low
    threshold and a falling sigmoid centred on the high threshold. The
    result is stretched to the full L* range unless it is nearly constant.
    """

    name = "midtone filter"

    def __init__(self, config: MidtoneConfig | None = None) -> None:
        self.config = config or MidtoneConfig()
        super().__init__()

    def _reset(self) -> None:
        self._stage = MidtoneStage.START
        self._result: PixelBuffer | None = None

    def _prepare(self, images: list[PixelBuffer]) -> None:
        cfg = self.config
        if cfg.low_bandwidth <= 0 or cfg.high_bandwidth <= 0:
            raise InitializationError("Sigmoid bandwidths must be positive.")
        if cfg.pixel_granularity < 1:
            raise InitializationError("Work granularities must be positive.")

    def _run(self) -> Iterator[str]:
        cfg = self.config
        buf = self.primary_image
        n = buf.pixel_count
        low_factor = sigmoid_factor(cfg.low_bandwidth)
        high_factor = sigmoid_factor(cfg.high_bandwidth)

        self._stage = MidtoneStage.RGB2LAB
        lstar = buf.lightness.reshape(-1)
        yield "Converted the input image to the CIE L*a*b* colour space."

        self._stage = MidtoneStage.THRESHOLD
        values = np.empty(n, dtype=np.float64)
        for start in range(0, n, cfg.pixel_granularity):
            end = min(start + cfg.pixel_granularity, n)
            chunk = lstar[start:end]
            low = sigmoid(chunk, MIN_LIGHTNESS, MAX_LIGHTNESS, low_factor, cfg.low_threshold, rising=True)
            high = sigmoid(chunk, MIN_LIGHTNESS, MAX_LIGHTNESS, high_factor, cfg.high_threshold, rising=False)
            values[start:end] = 0.5 * (low + high)
            yield f"Thresholding pixels ({end} / {n})"

        lo, hi = float(values.min()), float(values.max())
        # A nearly uniform result is left as is
        if abs(hi - lo) > 1.0:
            self._stage = MidtoneStage.RESCALE
            scale = (MAX_LIGHTNESS - MIN_LIGHTNESS) / (hi - lo)
            for start in range(0, n, cfg.pixel_granularity):
                end = min(start + cfg.pixel_granularity, n)
                values[start:end] = (values[start:end] - lo) * scale + MIN_LIGHTNESS
                yield f"Rescaling pixels ({end} / {n})"

        self._stage = MidtoneStage.CREATE_LAB_IMAGE
        self._result = PixelBuffer.from_lightness(values.reshape(buf.shape))
        yield "Created output image data in the CIE L*a*b* colour space."

        if self._output_enabled:
            self._stage = MidtoneStage.LAB2RGB
            _ = self._result.rgb
            yield "Converted the output image data to the RGB colour space."

            self._stage = MidtoneStage.FILL_OUTPUT
            self._output_image = self._result.to_image()
            yield "Converted the output image data to a displayable image."

        self._stage = MidtoneStage.END

    @property
    def result(self) -> PixelBuffer | None:
        return self._result
