"""Exceptions raised by the incremental algorithms."""

from __future__ import annotations


class AlgorithmError(Exception):
    """Base class for recoverable errors. Recover by building a new instance."""


class InitializationError(AlgorithmError):
    """The input images or parameters are unusable."""


class AlgorithmFailedError(AlgorithmError):
    """An earlier quantum failed; the instance stays failed until re-initialized."""


class AlgorithmStateError(AlgorithmError):
    """The call does not fit the current lifecycle state."""


class OutputUnavailableError(AlgorithmError):
    """Output was requested before completion, after failure, or with output disabled."""


class OwnershipError(AlgorithmError):
    """The data was already handed over to another owner."""


class CorruptedStateError(RuntimeError):
    """An internal invariant no longer holds. Not recoverable."""
