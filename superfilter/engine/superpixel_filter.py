"""Base class for algorithms that select or reject whole superpixels."""

from __future__ import annotations

import logging
from collections.abc import Iterator

from superfilter.engine.algorithm import Algorithm
from superfilter.engine.errors import CorruptedStateError, OutputUnavailableError
from superfilter.engine.segmentation import FilteredSuperpixellation
from superfilter.engine.slic import Slic
from superfilter.imaging.pixel_buffer import PixelBuffer

logger = logging.getLogger(__name__)


class SuperpixelFilter(Algorithm):
    """Runs a superpixel generator to completion, then classifies its superpixels.

    The generator's own visualization is switched off; subclasses provide
    ``_run()`` and start it with ``yield from self._generate_superpixels()``.
    """

    name = "superpixel filter"

    def __init__(self, generator: Slic | None = None) -> None:
        self.generator = generator if generator is not None else Slic()
        self.generator.disable_output()
        super().__init__()

    def _reset(self) -> None:
        self._filtered: FilteredSuperpixellation | None = None

    def additional_required_images(self) -> list[str]:
        return self.generator.additional_required_images()

    def _generator_image_count(self) -> int:
        return 1 + len(self.generator.additional_required_images())

    def _prepare(self, images: list[PixelBuffer]) -> None:
        self.generator.initialize(images[: self._generator_image_count()])

    def _generate_superpixels(self) -> Iterator[str]:
        done = False
        while not done:
            done, status = self.generator.increment()
            yield f"Generating superpixels: {status}"
        self._filtered = FilteredSuperpixellation.transfer(self.generator.output_superpixellation())
        logger.debug("%s: received %d superpixels", self.name, self._filtered.superpixel_count)

    @property
    def filtered(self) -> FilteredSuperpixellation:
        if self._filtered is None:
            raise CorruptedStateError("Superpixels have not been generated")
        return self._filtered

    def output_filtered_superpixellation(self) -> FilteredSuperpixellation:
        """Hand over the filtered segmentation. A second call raises OwnershipError."""
        if self._failed:
            raise OutputUnavailableError("Processing has failed.")
        if not self._finished or self._filtered is None:
            raise OutputUnavailableError("Processing has not finished.")
        return FilteredSuperpixellation.transfer(self._filtered)
