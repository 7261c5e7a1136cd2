"""Exception types raised by paeth.

Decomposition errors are raised eagerly on the host, before any kernel is
dispatched. Backend errors wrap the native exception of the compute backend
(numba, torch, triton) with ``raise ... from exc`` so the original cause is
kept on ``__cause__``.
"""

from __future__ import annotations


class PaethError(Exception):
    """Base class for all paeth errors."""


class DegenerateShearPivot(PaethError, ArithmeticError):
    """A shear pivot is (numerically) zero, so the factorization is undefined.

    :param axis: Shear axis whose pivot vanished ("x", "y" or "z")
    :param pivot: Offending pivot value
    """

    def __init__(self, axis: str, pivot: float, tolerance: float | None = None):
        self.axis = axis
        self.pivot = pivot
        self.tolerance = tolerance
        bound = f" (|pivot| <= {tolerance:g})" if tolerance is not None else ""
        super().__init__(
            f"shear-{axis} pivot is degenerate: {pivot!r}{bound}; "
            f"no Paeth decomposition exists for this rotation"
        )


class NotARotation(PaethError, ValueError):
    """Input matrix is not orthonormal with determinant +1."""


class BuildFailure(PaethError, RuntimeError):
    """Kernel program could not be built for the queue's device."""


class AllocationFailure(PaethError, RuntimeError):
    """Buffer creation failed (e.g. out of device memory)."""


class DispatchFailure(PaethError, RuntimeError):
    """Kernel launch was rejected (bad binding, geometry or buffer)."""


class DeviceFailure(PaethError, RuntimeError):
    """Asynchronous execution error reported through a completion handle."""


class PipelineBusy(PaethError, RuntimeError):
    """A rotator already has a forward call in flight."""
