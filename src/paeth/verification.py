"""Verification utilities for shear decompositions and backend equivalence.

Example:
    >>> from paeth.verification import ShearVerifier
    >>>
    >>> rot = PaethRotation3.from_matrix(m)
    >>> ShearVerifier.assert_reconstructs(rot, m)
    >>>
    >>> # After running the same rotation on two queues
    >>> ShearVerifier.assert_equivalent(cpu_image, gpu_image)
"""

from __future__ import annotations

import logging

import numpy as np

from paeth.decompose import PaethRotation2, PaethRotation3
from paeth.params import shear_filter_params
from paeth.types import MatrixLike

logger = logging.getLogger(__name__)


class ShearVerifier:
    """Assertions for the decomposition post-conditions and image results."""

    @staticmethod
    def reconstruction_error(rotation: PaethRotation2 | PaethRotation3, m: MatrixLike) -> float:
        """Largest absolute entry of ``rotation.matrix() - m``."""
        diff = rotation.matrix().astype(np.float64) - np.asarray(m, dtype=np.float64)
        return float(np.max(np.abs(diff)))

    @staticmethod
    def assert_reconstructs(
        rotation: PaethRotation2 | PaethRotation3, m: MatrixLike, atol: float = 1e-4
    ) -> None:
        """Assert the shear product reproduces ``m``.

        :param rotation: Shear descriptor
        :param m: Matrix it was decomposed from
        :param atol: Absolute tolerance per entry
        :raises AssertionError: If any entry differs by more than ``atol``
        """
        err = ShearVerifier.reconstruction_error(rotation, m)
        if not err <= atol:
            raise AssertionError(
                f"{type(rotation).__name__} does not reconstruct the matrix: "
                f"max |product - m| = {err:.3g} > {atol:g}"
            )
        logger.debug("[ShearVerifier] %s reconstructs within %.3g", type(rotation).__name__, err)

    @staticmethod
    def assert_idempotent(rotation: PaethRotation2 | PaethRotation3, atol: float = 1e-4) -> None:
        """Assert decomposing the reconstructed matrix yields the same descriptor.

        :raises AssertionError: If the re-decomposition differs
        """
        again = type(rotation).from_matrix(rotation.matrix(), check=False)
        a = np.array(_fields(rotation), dtype=np.float64)
        b = np.array(_fields(again), dtype=np.float64)
        if not np.allclose(a, b, rtol=0.0, atol=atol):
            raise AssertionError(
                f"Re-decomposition differs: {a.tolist()} vs {b.tolist()} (atol={atol:g})"
            )

    @staticmethod
    def assert_filter_params(major: float, cross: float) -> None:
        """Assert the structural properties of one pass's filter parameters.

        Checks sorted corners, a plateau height in ``(0, 1]`` and a footprint
        area of ``1/|c|``.

        :raises AssertionError: On the first violated property
        """
        p = shear_filter_params(np.float64(major), np.float64(cross))
        taus = [float(t) for t in p.taus]
        if taus != sorted(taus):
            raise AssertionError(f"Filter corners not sorted: {taus}")
        h = float(p.band_half_width)
        if not 0.0 < h <= 1.0:
            raise AssertionError(f"Plateau height {h} outside (0, 1]")
        expected = 1.0 / abs(major)
        if not np.isclose(p.coverage_area, expected, rtol=1e-9, atol=1e-12):
            raise AssertionError(f"Footprint area {p.coverage_area} != 1/|c| = {expected}")

    @staticmethod
    def assert_equivalent(
        expected: np.ndarray,
        actual: np.ndarray,
        rtol: float = 1e-5,
        atol: float = 1e-5,
        label: str = "rotated image",
    ) -> None:
        """Assert two rotation results match (e.g. CPU and torch queues).

        :raises AssertionError: If shapes differ or values are not close
        """
        expected = np.asarray(expected)
        actual = np.asarray(actual)
        if expected.shape != actual.shape:
            raise AssertionError(f"Shape mismatch: {expected.shape} vs {actual.shape}")
        np.testing.assert_allclose(
            actual.astype(np.float64),
            expected.astype(np.float64),
            rtol=rtol,
            atol=atol,
            err_msg=f"{label} differs between backends",
        )


def _fields(rotation: PaethRotation2 | PaethRotation3) -> tuple:
    if isinstance(rotation, PaethRotation2):
        return rotation.as_tuple()
    return tuple(rotation.as_array().ravel())
