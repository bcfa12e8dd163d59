"""Synchronous driver for incremental algorithms."""

from __future__ import annotations

import logging
import time
from collections.abc import Generator
from typing import Any

from superfilter.engine.algorithm import Algorithm, AlgorithmOutput
from superfilter.engine.errors import AlgorithmStateError
from superfilter.imaging.pixel_buffer import PixelBuffer

logger = logging.getLogger(__name__)


class AlgorithmRunner:
    """Initializes an algorithm and calls ``increment()`` until it finishes.

    ``max_increments`` bounds the number of quanta as a guard against an
    algorithm that never completes.
    """

    def __init__(self, max_increments: int | None = None) -> None:
        self.max_increments = max_increments

    def run(self, algorithm: Algorithm, images: list[PixelBuffer]) -> AlgorithmOutput | None:
        """Run to completion and return the output (None when output is disabled)."""
        start = time.perf_counter()
        steps = 0
        for _ in self.run_streaming(algorithm, images):
            steps += 1
        logger.info(
            "%s: %d increments in %.0fms",
            algorithm.name,
            steps,
            (time.perf_counter() - start) * 1000,
        )
        if not algorithm.output_enabled:
            return None
        return algorithm.output()

    def run_streaming(
        self, algorithm: Algorithm, images: list[PixelBuffer]
    ) -> Generator[dict[str, Any], None, None]:
        """Run the algorithm, yielding a progress dict after each increment.

        Closing the generator early stops processing; the algorithm is left
        unfinished but intact.
        """
        algorithm.initialize(images)
        index = 0
        finished = False
        while not finished:
            if self.max_increments is not None and index >= self.max_increments:
                raise AlgorithmStateError(
                    f"{algorithm.name} did not finish within {self.max_increments} increments"
                )
            t0 = time.perf_counter()
            finished, status = algorithm.increment()
            stage = algorithm.stage
            yield {
                "algorithm": algorithm.name,
                "index": index,
                "stage": stage.name if stage is not None else "",
                "status": status,
                "finished": finished,
                "elapsed_ms": round((time.perf_counter() - t0) * 1000, 1),
            }
            logger.debug("%s [%d] %s", algorithm.name, index, status)
            index += 1
