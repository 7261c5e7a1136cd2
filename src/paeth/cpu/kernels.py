"""Numba shear kernels for the CPU queue.

Each kernel takes the launch geometry ``(g0, g1[, g2])`` followed by the ABI
arguments of :mod:`paeth.abi`. The first global dimension always walks the
sheared axis:

    rotate2  shear_x: (nx, ny)        shear_y: (ny, nx)
    rotate3  shear_x: (nx, ny, nz)    shear_y: (ny, nx, nz)
             shear_z: (nz, nx, ny)

Out-of-range work items are skipped, and source reads clamp to the edge.
Numba specializes every kernel per element type on first launch, so float32
and float64 buffers get separate machine code.
"""

from __future__ import annotations

import logging
import os

import numba
import numpy as np
from numba import njit, prange

logger = logging.getLogger(__name__)

# Kernels are launched from the CpuQueue worker thread. Under the tbb layer a
# parallel region entered off the main thread hangs interpreter shutdown, so tbb
# goes last. NUMBA_THREADING_LAYER(_PRIORITY) in the environment still wins.
THREADING_LAYER_PRIORITY = ["omp", "workqueue", "tbb"]

if "NUMBA_THREADING_LAYER_PRIORITY" not in os.environ:
    numba.config.THREADING_LAYER_PRIORITY = list(THREADING_LAYER_PRIORITY)


# ============================================================================
# Footprint integrals
# ============================================================================


@njit(cache=True, nogil=True)
def _trapezoid_cdf(t, h, tau0, tau1, tau2, tau3, inv_rise, inv_fall):
    """Area under the coverage trapezoid up to offset ``t``."""
    rise = min(max(t, tau0), tau1) - tau0
    flat = min(max(t, tau1), tau2) - tau1
    fall = min(max(t, tau2), tau3) - tau2
    return h * (0.5 * rise * rise * inv_rise + flat + fall - 0.5 * fall * fall * inv_fall)


@njit(cache=True, nogil=True)
def _box_sum_cdf(t, w0, w1, w2):
    """CDF of a sum of centered boxes; ``w0 >= w1 >= w2`` and zero widths drop out."""
    n = 1
    norm = w0
    if w1 > 0.0:
        n += 1
        norm *= w1 * 2.0
    if w2 > 0.0:
        n += 1
        norm *= w2 * 3.0
    half = 0.5 * (w0 + w1 + w2)

    total = 0.0
    for mask in range(1 << n):
        shift = half
        sign = 1.0
        if mask & 1:
            shift -= w0
            sign = -sign
        if mask & 2:
            shift -= w1
            sign = -sign
        if mask & 4:
            shift -= w2
            sign = -sign
        x = t + shift
        if x > 0.0:
            total += sign * x**n
    return min(max(total / norm, 0.0), 1.0)


@njit(cache=True, nogil=True)
def _trapezoid_sample(src, base, stride, size, center, h, tau0, tau1, tau2, tau3, inv_rise, inv_fall):
    """Coverage-weighted sum of ``src[base + j*stride]`` under one footprint."""
    first = int(np.floor(center + tau0 + 0.5))
    last = int(np.floor(center + tau3 + 0.5))
    acc = 0.0
    for j in range(first, last + 1):
        lo = j - 0.5 - center
        weight = _trapezoid_cdf(lo + 1.0, h, tau0, tau1, tau2, tau3, inv_rise, inv_fall) - (
            _trapezoid_cdf(lo, h, tau0, tau1, tau2, tau3, inv_rise, inv_fall)
        )
        jj = min(max(j, 0), size - 1)
        acc += weight * src[base + jj * stride]
    return acc


@njit(cache=True, nogil=True)
def _box_sample(src, base, stride, size, center, w0, w1, w2):
    """Footprint-weighted sum of ``src[base + j*stride]`` for a 3D pass."""
    half = 0.5 * (w0 + w1 + w2)
    first = int(np.floor(center - half + 0.5))
    last = int(np.floor(center + half + 0.5))
    acc = 0.0
    for j in range(first, last + 1):
        lo = j - 0.5 - center
        weight = _box_sum_cdf(lo + 1.0, w0, w1, w2) - _box_sum_cdf(lo, w0, w1, w2)
        jj = min(max(j, 0), size - 1)
        acc += weight * src[base + jj * stride]
    return acc


# ============================================================================
# rotate2
# ============================================================================


@njit(parallel=True, cache=True, nogil=True)
def shear_x_2d(g0, g1, scale, cross, h, tau0, tau1, tau2, tau3, nx, ny, wx, wy, src, dst):
    """x pass: row ``y`` of ``dst`` resamples row ``y`` of ``src``."""
    inv_rise = 1.0 / (tau1 - tau0) if tau1 > tau0 else 0.0
    inv_fall = 1.0 / (tau3 - tau2) if tau3 > tau2 else 0.0
    inv_area = 1.0 / (0.5 * h * ((tau3 - tau0) + (tau2 - tau1)))
    cols = min(g0, nx)
    rows = min(g1, ny)
    for y in prange(rows):
        row = y * nx
        for x in range(cols):
            center = scale * (x - wx) + cross * (y - wy) + wx
            acc = _trapezoid_sample(
                src, row, 1, nx, center, h, tau0, tau1, tau2, tau3, inv_rise, inv_fall
            )
            dst[row + x] = acc * inv_area


@njit(parallel=True, cache=True, nogil=True)
def shear_y_2d(g0, g1, scale, cross, h, tau0, tau1, tau2, tau3, nx, ny, wx, wy, src, dst):
    """y pass: column ``x`` of ``dst`` resamples column ``x`` of ``src``."""
    inv_rise = 1.0 / (tau1 - tau0) if tau1 > tau0 else 0.0
    inv_fall = 1.0 / (tau3 - tau2) if tau3 > tau2 else 0.0
    inv_area = 1.0 / (0.5 * h * ((tau3 - tau0) + (tau2 - tau1)))
    rows = min(g0, ny)
    cols = min(g1, nx)
    for x in prange(cols):
        for y in range(rows):
            center = scale * (y - wy) + cross * (x - wx) + wy
            acc = _trapezoid_sample(
                src, x, nx, ny, center, h, tau0, tau1, tau2, tau3, inv_rise, inv_fall
            )
            dst[y * nx + x] = acc * inv_area


# ============================================================================
# rotate3
# ============================================================================


@njit(parallel=True, cache=True, nogil=True)
def shear_x_3d(
    g0, g1, g2, scale, cross_a, cross_b, w0, w1, w2, nx, ny, nz, wx, wy, wz, src, dst
):
    """x pass over a ``(nz, ny, nx)`` volume; cross terms pair with y and z."""
    cols = min(g0, nx)
    rows = min(g1, ny)
    slices = min(g2, nz)
    for z in prange(slices):
        for y in range(rows):
            base = (z * ny + y) * nx
            for x in range(cols):
                center = scale * (x - wx) + cross_a * (y - wy) + cross_b * (z - wz) + wx
                dst[base + x] = _box_sample(src, base, 1, nx, center, w0, w1, w2)


@njit(parallel=True, cache=True, nogil=True)
def shear_y_3d(
    g0, g1, g2, scale, cross_a, cross_b, w0, w1, w2, nx, ny, nz, wx, wy, wz, src, dst
):
    """y pass over a ``(nz, ny, nx)`` volume; cross terms pair with x and z."""
    rows = min(g0, ny)
    cols = min(g1, nx)
    slices = min(g2, nz)
    for z in prange(slices):
        plane = z * ny * nx
        for x in range(cols):
            for y in range(rows):
                center = scale * (y - wy) + cross_a * (x - wx) + cross_b * (z - wz) + wy
                dst[plane + y * nx + x] = _box_sample(src, plane + x, nx, ny, center, w0, w1, w2)


@njit(parallel=True, cache=True, nogil=True)
def shear_z_3d(
    g0, g1, g2, scale, cross_a, cross_b, w0, w1, w2, nx, ny, nz, wx, wy, wz, src, dst
):
    """z pass over a ``(nz, ny, nx)`` volume; cross terms pair with x and y."""
    slices = min(g0, nz)
    cols = min(g1, nx)
    rows = min(g2, ny)
    plane = ny * nx
    for y in prange(rows):
        for x in range(cols):
            column = y * nx + x
            for z in range(slices):
                center = scale * (z - wz) + cross_a * (x - wx) + cross_b * (y - wy) + wz
                dst[z * plane + column] = _box_sample(src, column, plane, nz, center, w0, w1, w2)


PROGRAMS = {
    "rotate2": {"shear_x": shear_x_2d, "shear_y": shear_y_2d},
    "rotate3": {"shear_x": shear_x_3d, "shear_y": shear_y_3d, "shear_z": shear_z_3d},
}
