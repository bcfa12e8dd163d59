"""Resumable algorithm base class.

Every algorithm is driven by an external caller in small quanta:

    algo.initialize([PixelBuffer.from_path("in.png")])
    done = False
    while not done:
        done, status = algo.increment()
    image = algo.output().image

Subclasses describe their work as a generator, ``_run()``, that yields one
status string per quantum. ``increment()`` advances that generator by one
step, so all intermediate state lives in the generator frame and on the
instance between calls.
"""

from __future__ import annotations

import abc
import enum
import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass

from PIL import Image

from superfilter.engine.errors import (
    AlgorithmFailedError,
    AlgorithmStateError,
    InitializationError,
    OutputUnavailableError,
    OwnershipError,
)
from superfilter.imaging.pixel_buffer import PixelBuffer

logger = logging.getLogger(__name__)

STATUS_FINISHED = "Finished."
STATUS_FAILED = "Cannot increment - Processing has failed."
STATUS_ALREADY_FINISHED = "Cannot increment - Processing has already finished."
STATUS_NOT_INITIALIZED = "Cannot increment - Processing has not been initialized."


@dataclass
class AlgorithmOutput:
    """Raster result plus optional vector data (no built-in algorithm emits SVG)."""

    image: Image.Image
    svg: bytes | None = None


class Algorithm(abc.ABC):
    """Base class for everything that can be driven through ``increment()``."""

    name: str = "algorithm"

    def __init__(self) -> None:
        self._output_enabled = True
        self._images: list[PixelBuffer] = []
        self._steps: Iterator[str] | None = None
        self._initialized = False
        self._finished = False
        self._failed = False
        self._stage: enum.Enum | None = None
        self._output_image: Image.Image | None = None
        self._output_collected = False
        self._started_at = 0.0
        self._reset()

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def stage(self) -> enum.Enum | None:
        return self._stage

    @property
    def output_enabled(self) -> bool:
        return self._output_enabled

    def is_finished(self) -> bool:
        return self._finished

    def disable_output(self) -> None:
        """Skip the visualization stages. ``output()`` will then raise."""
        self._output_enabled = False

    def additional_required_images(self) -> list[str]:
        """Descriptions of the images needed after the primary one, in order."""
        return []

    def initialize(self, images: list[PixelBuffer]) -> None:
        """Reset all state and take ownership of ``images``; the list is emptied."""
        self._cleanup()
        self._images = list(images)
        images.clear()
        try:
            if not self._images:
                raise InitializationError("No input image was provided.")
            required = 1 + len(self.additional_required_images())
            if len(self._images) < required:
                raise InitializationError(
                    f"{self.name} requires {required} images, got {len(self._images)}."
                )
            self._prepare(self._images)
        except InitializationError as e:
            self._cleanup()
            self._failed = True
            logger.warning("%s: initialization failed: %s", self.name, e)
            raise
        self._steps = self._run()
        self._initialized = True
        self._started_at = time.perf_counter()
        logger.debug("%s: initialized on %dx%d image", self.name, self._images[0].width, self._images[0].height)

    def increment(self) -> tuple[bool, str]:
        """Perform one bounded quantum of work. Returns ``(finished, status)``."""
        if self._failed:
            raise AlgorithmFailedError(STATUS_FAILED)
        if not self._initialized or self._steps is None:
            raise AlgorithmStateError(STATUS_NOT_INITIALIZED)
        if self._finished:
            raise AlgorithmStateError(STATUS_ALREADY_FINISHED)
        try:
            status = next(self._steps)
        except StopIteration:
            self._finished = True
            self._steps = None
            logger.info(
                "%s finished in %.0fms",
                self.name,
                (time.perf_counter() - self._started_at) * 1000,
            )
            return True, STATUS_FINISHED
        except Exception as e:
            self._failed = True
            self._steps = None
            logger.warning("%s FAILED in stage %s: %s", self.name, self._stage, e)
            raise
        return False, status

    def output(self) -> AlgorithmOutput:
        """Hand the finished raster output to the caller. Only succeeds once."""
        if self._failed:
            raise OutputUnavailableError("Processing has failed.")
        if not self._finished:
            raise OutputUnavailableError("Processing has not finished.")
        if not self._output_enabled:
            raise OutputUnavailableError("Output was disabled for this algorithm.")
        if self._output_collected:
            raise OwnershipError("The output has already been collected.")
        if self._output_image is None:
            raise OutputUnavailableError("No output image was produced.")
        image, self._output_image = self._output_image, None
        self._output_collected = True
        return AlgorithmOutput(image=image)

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    def _prepare(self, images: list[PixelBuffer]) -> None:
        """Validate inputs and set up per-run state. Raise InitializationError on bad input."""

    @abc.abstractmethod
    def _run(self) -> Iterator[str]:
        """Yield one status string per quantum of work."""

    def _reset(self) -> None:
        """Drop subclass state. Called on every (re-)initialization."""

    def _cleanup(self) -> None:
        if self._steps is not None:
            self._steps.close()
        self._steps = None
        self._images = []
        self._initialized = False
        self._finished = False
        self._failed = False
        self._stage = None
        self._output_image = None
        self._output_collected = False
        self._reset()

    @property
    def primary_image(self) -> PixelBuffer:
        return self._images[0]
