"""Vectorized torch shear kernels.

Same math and launch geometry as :mod:`paeth.cpu.kernels`, expressed as
whole-tensor operations: each destination element gathers its
``tap_count(width)`` source taps with :func:`torch.take` and sums them with
coverage weights. Coordinates and weights are computed in float64, so float32
results match the numba kernels to rounding of the final store.

Kernels take ``(global_size, args)`` where ``args`` follows the ABI of
:mod:`paeth.abi` with buffers already resolved to flat tensors.
"""

from __future__ import annotations

import torch

from paeth.params import tap_count

# Upper bound on (destination elements x taps) per chunk of a pass
CHUNK_ELEMENTS = 1 << 20


def _trapezoid_cdf(h, tau0, tau1, tau2, tau3):
    inv_rise = 1.0 / (tau1 - tau0) if tau1 > tau0 else 0.0
    inv_fall = 1.0 / (tau3 - tau2) if tau3 > tau2 else 0.0

    def cdf(t: torch.Tensor) -> torch.Tensor:
        rise = t.clamp(tau0, tau1) - tau0
        flat = t.clamp(tau1, tau2) - tau1
        fall = t.clamp(tau2, tau3) - tau2
        return h * (0.5 * rise * rise * inv_rise + flat + fall - 0.5 * fall * fall * inv_fall)

    return cdf


def _box_sum_cdf(w0, w1, w2):
    active = [w for w in (w0, w1, w2) if w > 0.0]
    n = len(active)
    norm = 1.0
    for i, w in enumerate(active, start=1):
        norm *= w * i
    half = 0.5 * sum(active)
    terms = []
    for mask in range(1 << n):
        shift = half
        sign = 1.0
        for i, w in enumerate(active):
            if mask & (1 << i):
                shift -= w
                sign = -sign
        terms.append((shift, sign))

    def cdf(t: torch.Tensor) -> torch.Tensor:
        total = torch.zeros_like(t)
        for shift, sign in terms:
            total = total + sign * (t + shift).clamp_min(0.0) ** n
        return (total / norm).clamp(0.0, 1.0)

    return cdf


def _resample(src, base, stride, size, center, lead, width, cdf):
    """Weighted tap sum of ``src[base + j * stride]`` around each ``center``.

    :param base: Long tensor broadcastable to ``center``
    :param lead: Offset of the footprint's left edge from its center
    :param width: Footprint support, sets the tap count
    """
    taps = torch.arange(tap_count(width), dtype=torch.float64, device=center.device)
    first = torch.floor(center + lead + 0.5)
    j = first.unsqueeze(-1) + taps
    lo = j - 0.5 - center.unsqueeze(-1)
    weights = cdf(lo + 1.0) - cdf(lo)
    jj = j.clamp(0, size - 1).long()
    index = base.unsqueeze(-1) + jj * stride
    values = torch.take(src, index).to(torch.float64)
    return (weights * values).sum(-1)


def _coords(n: int, origin: float, device) -> torch.Tensor:
    return torch.arange(n, dtype=torch.float64, device=device) - origin


def _chunks(n_outer: int, per_outer: int, width: float):
    # One outer slice is the smallest chunk
    per_chunk = max(1, per_outer) * tap_count(width)
    step = max(1, CHUNK_ELEMENTS // per_chunk)
    for start in range(0, n_outer, step):
        yield start, min(n_outer, start + step)


# ============================================================================
# rotate2
# ============================================================================


def shear_x_2d(global_size, args) -> None:
    scale, cross, h, tau0, tau1, tau2, tau3, nx, ny, wx, wy, src, dst = args
    cols = min(global_size[0], nx)
    rows = min(global_size[1], ny)
    device = src.device
    cdf = _trapezoid_cdf(h, tau0, tau1, tau2, tau3)
    inv_area = 1.0 / (0.5 * h * ((tau3 - tau0) + (tau2 - tau1)))
    out = dst.view(ny, nx)
    x = _coords(cols, wx, device)
    y_idx = torch.arange(rows, device=device)
    for start, stop in _chunks(rows, cols, tau3 - tau0):
        y = y_idx[start:stop]
        center = scale * x[None, :] + cross * (y.double() - wy)[:, None] + wx
        base = (y * nx)[:, None]
        acc = _resample(src, base, 1, nx, center, tau0, tau3 - tau0, cdf)
        out[start:stop, :cols] = (acc * inv_area).to(dst.dtype)


def shear_y_2d(global_size, args) -> None:
    scale, cross, h, tau0, tau1, tau2, tau3, nx, ny, wx, wy, src, dst = args
    rows = min(global_size[0], ny)
    cols = min(global_size[1], nx)
    device = src.device
    cdf = _trapezoid_cdf(h, tau0, tau1, tau2, tau3)
    inv_area = 1.0 / (0.5 * h * ((tau3 - tau0) + (tau2 - tau1)))
    out = dst.view(ny, nx)
    x = _coords(cols, wx, device)
    y_all = _coords(rows, wy, device)
    base = torch.arange(cols, device=device)[None, :]
    for start, stop in _chunks(rows, cols, tau3 - tau0):
        y = y_all[start:stop]
        center = scale * y[:, None] + cross * x[None, :] + wy
        acc = _resample(src, base, nx, ny, center, tau0, tau3 - tau0, cdf)
        out[start:stop, :cols] = (acc * inv_area).to(dst.dtype)


# ============================================================================
# rotate3
# ============================================================================


def _unpack3(global_size, args, order):
    (scale, cross_a, cross_b, w0, w1, w2, nx, ny, nz, wx, wy, wz, src, dst) = args
    sizes = {"x": nx, "y": ny, "z": nz}
    counts = {axis: min(g, sizes[axis]) for axis, g in zip(order, global_size, strict=True)}
    return (scale, cross_a, cross_b, (w0, w1, w2), nx, ny, nz, wx, wy, wz, src, dst, counts)


def shear_x_3d(global_size, args) -> None:
    (scale, ca, cb, widths, nx, ny, nz, wx, wy, wz, src, dst, n) = _unpack3(
        global_size, args, "xyz"
    )
    device = src.device
    cdf = _box_sum_cdf(*widths)
    half = 0.5 * sum(widths)
    out = dst.view(nz, ny, nx)
    x = _coords(n["x"], wx, device)
    y = _coords(n["y"], wy, device)
    y_idx = torch.arange(n["y"], device=device)
    for start, stop in _chunks(n["z"], n["y"] * n["x"], 2 * half):
        z_idx = torch.arange(start, stop, device=device)
        z = z_idx.double() - wz
        center = scale * x[None, None, :] + ca * y[None, :, None] + cb * z[:, None, None] + wx
        base = ((z_idx[:, None] * ny + y_idx[None, :]) * nx)[:, :, None]
        acc = _resample(src, base, 1, nx, center, -half, 2 * half, cdf)
        out[start:stop, : n["y"], : n["x"]] = acc.to(dst.dtype)


def shear_y_3d(global_size, args) -> None:
    (scale, ca, cb, widths, nx, ny, nz, wx, wy, wz, src, dst, n) = _unpack3(
        global_size, args, "yxz"
    )
    device = src.device
    cdf = _box_sum_cdf(*widths)
    half = 0.5 * sum(widths)
    out = dst.view(nz, ny, nx)
    x = _coords(n["x"], wx, device)
    y = _coords(n["y"], wy, device)
    x_idx = torch.arange(n["x"], device=device)
    for start, stop in _chunks(n["z"], n["y"] * n["x"], 2 * half):
        z_idx = torch.arange(start, stop, device=device)
        z = z_idx.double() - wz
        center = scale * y[None, :, None] + ca * x[None, None, :] + cb * z[:, None, None] + wy
        base = (z_idx[:, None, None] * (ny * nx)) + x_idx[None, None, :]
        acc = _resample(src, base, nx, ny, center, -half, 2 * half, cdf)
        out[start:stop, : n["y"], : n["x"]] = acc.to(dst.dtype)


def shear_z_3d(global_size, args) -> None:
    (scale, ca, cb, widths, nx, ny, nz, wx, wy, wz, src, dst, n) = _unpack3(
        global_size, args, "zxy"
    )
    device = src.device
    cdf = _box_sum_cdf(*widths)
    half = 0.5 * sum(widths)
    out = dst.view(nz, ny, nx)
    x = _coords(n["x"], wx, device)
    y = _coords(n["y"], wy, device)
    rows = torch.arange(n["y"], device=device)[:, None] * nx
    base = (rows + torch.arange(n["x"], device=device))[None, :, :]
    z_all = _coords(n["z"], wz, device)
    for start, stop in _chunks(n["z"], n["y"] * n["x"], 2 * half):
        z = z_all[start:stop]
        center = scale * z[:, None, None] + ca * x[None, None, :] + cb * y[None, :, None] + wz
        acc = _resample(src, base, ny * nx, nz, center, -half, 2 * half, cdf)
        out[start:stop, : n["y"], : n["x"]] = acc.to(dst.dtype)


PROGRAMS = {
    "rotate2": {"shear_x": shear_x_2d, "shear_y": shear_y_2d},
    "rotate3": {"shear_x": shear_x_3d, "shear_y": shear_y_3d, "shear_z": shear_z_3d},
}
