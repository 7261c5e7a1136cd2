"""Triton kernels for the 2D shear passes (float32, CUDA only).

One program instance covers a ``BLOCK_MAJOR x BLOCK_MINOR`` tile, the sheared
axis first, matching the ``local_size`` a rotator launches with. The tap loop
is unrolled over ``N_TAPS``, so each footprint width compiles its own variant.
"""

from __future__ import annotations

import torch

from paeth.exceptions import DispatchFailure
from paeth.params import tap_count

try:
    import triton
    import triton.language as tl

    TRITON_AVAILABLE = True
except ImportError:
    TRITON_AVAILABLE = False
    triton = None
    tl = None


if TRITON_AVAILABLE:

    @triton.jit
    def _trapezoid_cdf(t, h, tau0, tau1, tau2, tau3, inv_rise, inv_fall):
        rise = tl.minimum(tl.maximum(t, tau0), tau1) - tau0
        flat = tl.minimum(tl.maximum(t, tau1), tau2) - tau1
        fall = tl.minimum(tl.maximum(t, tau2), tau3) - tau2
        return h * (0.5 * rise * rise * inv_rise + flat + fall - 0.5 * fall * fall * inv_fall)

    @triton.jit
    def shear_2d_kernel(
        src_ptr,
        dst_ptr,
        scale,
        cross,
        h,
        tau0,
        tau1,
        tau2,
        tau3,
        inv_rise,
        inv_fall,
        inv_area,
        n_major,
        count_major,
        count_minor,
        stride_major,
        stride_minor,
        w_major,
        w_minor,
        N_TAPS: tl.constexpr,
        BLOCK_MAJOR: tl.constexpr,
        BLOCK_MINOR: tl.constexpr,
    ):
        """Resample along the major axis; both 2D passes share this kernel."""
        s = tl.program_id(0) * BLOCK_MAJOR + tl.arange(0, BLOCK_MAJOR)
        t = tl.program_id(1) * BLOCK_MINOR + tl.arange(0, BLOCK_MINOR)
        mask = (s[:, None] < count_major) & (t[None, :] < count_minor)

        sf = s[:, None].to(tl.float32) - w_major
        tf = t[None, :].to(tl.float32) - w_minor
        center = scale * sf + cross * tf + w_major
        first = tl.floor(center + tau0 + 0.5)

        acc = tl.zeros((BLOCK_MAJOR, BLOCK_MINOR), dtype=tl.float32)
        for i in tl.static_range(N_TAPS):
            j = first + i
            lo = j - 0.5 - center
            weight = _trapezoid_cdf(lo + 1.0, h, tau0, tau1, tau2, tau3, inv_rise, inv_fall)
            weight -= _trapezoid_cdf(lo, h, tau0, tau1, tau2, tau3, inv_rise, inv_fall)
            jj = tl.minimum(tl.maximum(j.to(tl.int32), 0), n_major - 1)
            offs = jj * stride_major + t[None, :] * stride_minor
            v = tl.load(src_ptr + offs, mask=mask, other=0.0)
            acc += weight * v

        out = s[:, None] * stride_major + t[None, :] * stride_minor
        tl.store(dst_ptr + out, acc * inv_area, mask=mask)


def _is_pow2(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def _launch_2d(axis: str, global_size, local_size, args) -> None:
    scale, cross, h, tau0, tau1, tau2, tau3, nx, ny, wx, wy, src, dst = args
    block_major, block_minor = local_size or (32, 8)
    if not (_is_pow2(block_major) and _is_pow2(block_minor)):
        raise DispatchFailure(f"shear_{axis}: triton tiles must be powers of two, got {local_size}")

    if axis == "x":
        n_major, n_minor, stride_major, stride_minor, w_major, w_minor = nx, ny, 1, nx, wx, wy
    else:
        n_major, n_minor, stride_major, stride_minor, w_major, w_minor = ny, nx, nx, 1, wy, wx

    inv_rise = 1.0 / (tau1 - tau0) if tau1 > tau0 else 0.0
    inv_fall = 1.0 / (tau3 - tau2) if tau3 > tau2 else 0.0
    inv_area = 1.0 / (0.5 * h * ((tau3 - tau0) + (tau2 - tau1)))
    count_major = min(global_size[0], n_major)
    count_minor = min(global_size[1], n_minor)
    grid = (triton.cdiv(count_major, block_major), triton.cdiv(count_minor, block_minor))
    shear_2d_kernel[grid](
        src,
        dst,
        scale,
        cross,
        h,
        tau0,
        tau1,
        tau2,
        tau3,
        inv_rise,
        inv_fall,
        inv_area,
        n_major,
        count_major,
        count_minor,
        stride_major,
        stride_minor,
        w_major,
        w_minor,
        N_TAPS=tap_count(tau3 - tau0),
        BLOCK_MAJOR=block_major,
        BLOCK_MINOR=block_minor,
    )


def triton_shear_x_2d(global_size, args, local_size=None) -> None:
    """x pass: rows of ``src`` into rows of ``dst``."""
    _launch_2d("x", global_size, local_size, args)


def triton_shear_y_2d(global_size, args, local_size=None) -> None:
    """y pass: columns of ``src`` into columns of ``dst``."""
    _launch_2d("y", global_size, local_size, args)


PROGRAMS = {
    "rotate2": {"shear_x": triton_shear_x_2d, "shear_y": triton_shear_y_2d},
}


def is_triton_available() -> bool:
    """Check if Triton is importable and a CUDA device is present."""
    return TRITON_AVAILABLE and torch.cuda.is_available()
