"""Per-pass filter parameters for anti-aliased one-dimensional shears.

A shear pass maps destination coordinate ``s`` along the sheared axis back to
the source coordinate ``scale * s + cross * t`` where ``t`` is the (unchanged)
coordinate of the other axis. A destination pixel is a unit square, so its
pre-image is a parallelogram. Integrated across the other axis, that
parallelogram covers the source row with a trapezoid:

    coverage
      h |        ___________
        |       /           \\
        |      /             \\
      0 +-----+--+---------+--+-----> source offset
            tau0 tau1    tau2 tau3

The trapezoid is the convolution of a box of width ``1/|c|`` (the stretched
pixel) with a box of width ``|k/c|`` (the skew across the pixel). Its corners
are the four sign combinations of ``+-1/(2c) +- k/(2c)``. Its plateau height is
``h = min(1, 1/|k|)`` (``band_half_width``) and its area is ``1/|c|``. Each
source pixel contributes the integral of the trapezoid over its extent,
divided by that area (Paeth's anti-aliased shear).

The thresholds are sorted ascending, because the kernels integrate the
footprint piecewise over that partition.

3D passes skew across two axes, so the footprint is the sum of three boxes.
:class:`ShearFilterParams3` carries their widths.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from paeth.decompose import PaethRotation2, PaethRotation3
from paeth.exceptions import DegenerateShearPivot

# Box widths below this are treated as point masses in 3D passes
MIN_BOX_WIDTH = 1e-4


def _require_pivot(c, axis: str) -> None:
    if not np.isfinite(c) or c == 0:
        raise DegenerateShearPivot(axis, float(c))


def tap_count(footprint_width: float) -> int:
    """Number of source pixels a footprint of this width can overlap."""
    return int(math.floor(footprint_width)) + 2


# ============================================================================
# 2D (trapezoid footprint)
# ============================================================================


@dataclass(frozen=True)
class ShearFilterParams:
    """Filter parameters of one 2D shear pass.

    Attributes:
        scale: Destination-to-source scale along the sheared axis (``1/c``)
        cross: Source offset per unit of the other axis (``-k/c``)
        band_half_width: Plateau height of the coverage trapezoid
        taus: Sorted trapezoid corners ``(tau0, tau1, tau2, tau3)``
    """

    scale: np.floating
    cross: np.floating
    band_half_width: np.floating
    taus: tuple[np.floating, np.floating, np.floating, np.floating]

    @property
    def footprint_width(self) -> float:
        """Total support ``tau3 - tau0`` of the footprint in source pixels."""
        return float(self.taus[3] - self.taus[0])

    @property
    def coverage_area(self) -> float:
        """Area under the trapezoid (equals ``1/|c|``)."""
        t0, t1, t2, t3 = (float(t) for t in self.taus)
        return 0.5 * float(self.band_half_width) * ((t3 - t0) + (t2 - t1))

    def kernel_args(self) -> tuple[float, ...]:
        """Leading kernel arguments: scale, cross, band_half_width, tau0..tau3."""
        return (
            float(self.scale),
            float(self.cross),
            float(self.band_half_width),
            *(float(t) for t in self.taus),
        )

    def cumulative(self, t: np.ndarray | float) -> np.ndarray:
        """Area under the trapezoid from ``-inf`` to offset ``t``.

        :param t: Offset(s) relative to the footprint center
        :returns: Cumulative coverage, in ``[0, coverage_area]``
        """
        h = float(self.band_half_width)
        t0, t1, t2, t3 = (float(v) for v in self.taus)
        inv_rise, inv_fall, _ = trapezoid_constants(h, t0, t1, t2, t3)
        t = np.asarray(t, dtype=np.float64)
        rise = np.clip(t, t0, t1) - t0
        flat = np.clip(t, t1, t2) - t1
        fall = np.clip(t, t2, t3) - t2
        return h * (0.5 * rise * rise * inv_rise + flat + fall - 0.5 * fall * fall * inv_fall)

    def coverage(self, t: np.ndarray | float) -> np.ndarray:
        """Height of the trapezoid at offset ``t``."""
        h = float(self.band_half_width)
        t0, t1, t2, t3 = (float(v) for v in self.taus)
        t = np.asarray(t, dtype=np.float64)
        out = np.where((t >= t1) & (t <= t2), h, 0.0)
        if t1 > t0:
            rising = (t > t0) & (t < t1)
            out = np.where(rising, h * (t - t0) / (t1 - t0), out)
        if t3 > t2:
            falling = (t > t2) & (t < t3)
            out = np.where(falling, h * (t3 - t) / (t3 - t2), out)
        return out

    def pixel_weights(self, center: float) -> tuple[np.ndarray, np.ndarray]:
        """Normalized weights of the source pixels under one footprint.

        :param center: Footprint center in source pixel coordinates
        :returns: ``(indices, weights)``, weights summing to 1
        """
        first = math.floor(center + float(self.taus[0]) + 0.5)
        indices = first + np.arange(tap_count(self.footprint_width))
        lo = indices - 0.5 - center
        weights = (self.cumulative(lo + 1.0) - self.cumulative(lo)) / self.coverage_area
        return indices, weights


def trapezoid_constants(
    h: float, tau0: float, tau1: float, tau2: float, tau3: float
) -> tuple[float, float, float]:
    """Reciprocal ramp widths and footprint area for the kernels.

    A zero-width ramp gets a reciprocal of 0; its clipped extent is also 0,
    so the term vanishes instead of dividing by zero.

    :returns: ``(inv_rise, inv_fall, inv_area)``
    """
    inv_rise = 1.0 / (tau1 - tau0) if tau1 > tau0 else 0.0
    inv_fall = 1.0 / (tau3 - tau2) if tau3 > tau2 else 0.0
    area = 0.5 * h * ((tau3 - tau0) + (tau2 - tau1))
    return inv_rise, inv_fall, 1.0 / area


def shear_filter_params(major, cross, axis: str = "major") -> ShearFilterParams:
    """Derive the filter parameters of one shear pass.

    :param major: Diagonal coefficient ``c`` of the shear (e.g. ``xx``)
    :param cross: Off-diagonal coefficient ``k`` (e.g. ``xy``)
    :param axis: Axis name reported if the pivot is degenerate
    :returns: Filter parameters in the dtype of the coefficients
    :raises DegenerateShearPivot: If ``c`` is zero or not finite

    Example:
        >>> p = shear_filter_params(np.float32(0.866), np.float32(-0.5))
        >>> p.taus[0] <= p.taus[1] <= p.taus[2] <= p.taus[3]
        True
    """
    dtype = np.result_type(major, cross)
    if not np.issubdtype(dtype, np.floating):
        dtype = np.dtype(np.float64)
    c = dtype.type(major)
    k = dtype.type(cross)
    _require_pivot(c, axis)

    one = dtype.type(1)
    half = dtype.type(0.5)

    scale = one / c
    offset = -k / c
    h = one if k == 0 else min(one, one / abs(k))

    taus = sorted(
        (
            half / c + half * k / c,
            half / c - half * k / c,
            -half / c + half * k / c,
            -half / c - half * k / c,
        )
    )
    return ShearFilterParams(scale=scale, cross=offset, band_half_width=h, taus=tuple(taus))


def x_pass_params(rotation: PaethRotation2) -> ShearFilterParams:
    """Filter parameters of the x pass: ``(c, k) = (xx, xy)``."""
    return shear_filter_params(rotation.xx, rotation.xy, axis="x")


def y_pass_params(rotation: PaethRotation2) -> ShearFilterParams:
    """Filter parameters of the y pass: ``(c, k) = (yy, yx)``."""
    return shear_filter_params(rotation.yy, rotation.yx, axis="y")


# ============================================================================
# 3D (sum of three boxes)
# ============================================================================


@dataclass(frozen=True)
class ShearFilterParams3:
    """Filter parameters of one 3D shear pass.

    Attributes:
        scale: Destination-to-source scale along the sheared axis (``1/c``)
        cross: Offsets ``(-k_a/c, -k_b/c)`` per unit of the two other axes,
            lower axis index first
        widths: Box widths ``(1/|c|, |k_a/c|, |k_b/c|)`` sorted descending;
            widths under :data:`MIN_BOX_WIDTH` other than the widest are zeroed
    """

    scale: float
    cross: tuple[float, float]
    widths: tuple[float, float, float]

    @property
    def footprint_width(self) -> float:
        """Total support of the footprint in source pixels."""
        return float(sum(self.widths))

    def kernel_args(self) -> tuple[float, ...]:
        """Leading kernel arguments: scale, cross_a, cross_b, width0..width2."""
        return (self.scale, *self.cross, *self.widths)

    def cumulative(self, t: np.ndarray | float) -> np.ndarray:
        """CDF of the footprint (sum of centered uniform boxes) at ``t``."""
        return box_sum_cdf(np.asarray(t, dtype=np.float64), self.widths)


def box_sum_cdf(t: np.ndarray, widths: tuple[float, ...]) -> np.ndarray:
    """CDF of a sum of centered uniform variables with the given widths.

    Uses the inclusion-exclusion form
    ``F(t) = sum_S (-1)^|S| (t + W/2 - sum_S w)_+^n / (n! prod w)`` over the
    non-zero widths; zero widths are point masses and drop out.
    """
    active = [w for w in widths if w > 0.0]
    n = len(active)
    norm = math.factorial(n) * math.prod(active)
    half = 0.5 * sum(active)
    total = np.zeros_like(t, dtype=np.float64)
    for mask in range(1 << n):
        shift = half
        sign = 1.0
        for i, w in enumerate(active):
            if mask & (1 << i):
                shift -= w
                sign = -sign
        total = total + sign * np.maximum(t + shift, 0.0) ** n
    return np.clip(total / norm, 0.0, 1.0)


def shear_filter_params_3d(major, cross_a, cross_b, axis: str = "major") -> ShearFilterParams3:
    """Derive the filter parameters of one 3D shear pass.

    :param major: Diagonal coefficient ``c`` of the shear row
    :param cross_a: Row coefficient of the lower-indexed other axis
    :param cross_b: Row coefficient of the higher-indexed other axis
    :returns: Filter parameters
    :raises DegenerateShearPivot: If ``c`` is zero or not finite
    """
    c = float(major)
    _require_pivot(c, axis)
    widths = sorted([1.0 / abs(c), abs(float(cross_a) / c), abs(float(cross_b) / c)], reverse=True)
    # The widest box always stays, so the footprint never collapses to a point
    widths = [widths[0], *(w if w >= MIN_BOX_WIDTH else 0.0 for w in widths[1:])]
    return ShearFilterParams3(
        scale=1.0 / c,
        cross=(-float(cross_a) / c, -float(cross_b) / c),
        widths=tuple(widths),
    )


def pass_params_3d(rotation: PaethRotation3) -> tuple[ShearFilterParams3, ...]:
    """Filter parameters of the x, y and z passes of a 3D rotation."""
    r = rotation
    return (
        shear_filter_params_3d(r.xx, r.xy, r.xz, axis="x"),
        shear_filter_params_3d(r.yy, r.yx, r.yz, axis="y"),
        shear_filter_params_3d(r.zz, r.zx, r.zy, axis="z"),
    )
