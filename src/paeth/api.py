"""
Host convenience functions for one-off rotations.

Both functions build a rotator for the array's shape, run it and read the
result back. Without a ``queue`` they use a private :class:`CpuQueue` that is
closed afterwards; pass a queue to reuse one (it is never closed here).

For repeated rotations of same-sized images, build a
:class:`~paeth.pipeline.Rotator2` once and call ``forward``/``rotate`` on it.
"""

from __future__ import annotations

from typing import TypeAlias

import numpy as np

from paeth.config.values import RotatorConfig
from paeth.cpu import CpuQueue
from paeth.decompose import PaethRotation2, PaethRotation3
from paeth.pipeline import Rotator2, Rotator3
from paeth.protocols import CommandQueue
from paeth.shared.rotation import axis_angle_to_rotation_matrix, rotation_matrix_2d
from paeth.types import MatrixLike

Rotation2Like: TypeAlias = float | MatrixLike | PaethRotation2
Rotation3Like: TypeAlias = MatrixLike | PaethRotation3


def _working_dtype(array: np.ndarray) -> np.dtype:
    # float64 stays float64; everything else (ints, float16, bool) runs as float32
    return np.dtype(np.float64) if array.dtype == np.float64 else np.dtype(np.float32)


def _as_rotation2(rotation: Rotation2Like, dtype: np.dtype):
    if isinstance(rotation, PaethRotation2):
        return rotation
    if np.isscalar(rotation):
        return rotation_matrix_2d(np.radians(float(rotation)), dtype=dtype)
    return np.asarray(rotation, dtype=dtype)


def _as_rotation3(rotation: Rotation3Like, dtype: np.dtype):
    if isinstance(rotation, PaethRotation3):
        return rotation
    m = np.asarray(rotation, dtype=dtype)
    if m.shape == (3,):
        return axis_angle_to_rotation_matrix(m, dtype=dtype)
    return m


def rotate_image(
    image: np.ndarray,
    rotation: Rotation2Like,
    *,
    queue: CommandQueue | None = None,
    config: RotatorConfig | None = None,
) -> np.ndarray:
    """Rotate an image about its center.

    :param image: ``(ny, nx)`` array, or ``(ny, nx, channels)`` rotated per channel
    :param rotation: Angle in degrees (positive turns +x toward +y, i.e. toward
        increasing row index), a 2x2 rotation matrix or a :class:`PaethRotation2`
    :param queue: Command queue to run on (default: a temporary CpuQueue)
    :param config: Rotator configuration
    :returns: Rotated image, float32 (float64 input stays float64)
    :raises DegenerateShearPivot: For rotations by +-90 degrees

    Example:
        >>> out = rotate_image(img, 30.0)
        >>> out = rotate_image(img, [[0.8, -0.6], [0.6, 0.8]])
    """
    image = np.asarray(image)
    if image.ndim not in (2, 3):
        raise ValueError(f"Expected a (ny, nx) or (ny, nx, channels) image, got {image.shape}")
    dtype = _working_dtype(image)
    rotation = _as_rotation2(rotation, dtype)
    ny, nx = image.shape[:2]

    own_queue = queue is None
    queue = CpuQueue() if own_queue else queue
    try:
        with Rotator2(queue, nx, ny, dtype=dtype, config=config) as rotator:
            if image.ndim == 2:
                return rotator.rotate(image, rotation)
            channels = [rotator.rotate(image[..., c], rotation) for c in range(image.shape[2])]
            return np.stack(channels, axis=-1)
    finally:
        if own_queue:
            queue.close()


def rotate_volume(
    volume: np.ndarray,
    rotation: Rotation3Like,
    *,
    queue: CommandQueue | None = None,
    config: RotatorConfig | None = None,
) -> np.ndarray:
    """Rotate a ``(nz, ny, nx)`` volume about its center.

    :param volume: Volume array, x fastest
    :param rotation: 3x3 rotation matrix (acting on ``(x, y, z)``), an
        axis-angle vector in radians, or a :class:`PaethRotation3`
    :param queue: Command queue to run on (default: a temporary CpuQueue)
    :param config: Rotator configuration
    :returns: Rotated volume, float32 (float64 input stays float64)
    """
    volume = np.asarray(volume)
    if volume.ndim != 3:
        raise ValueError(f"Expected a (nz, ny, nx) volume, got {volume.shape}")
    dtype = _working_dtype(volume)
    rotation = _as_rotation3(rotation, dtype)
    nz, ny, nx = volume.shape

    own_queue = queue is None
    queue = CpuQueue() if own_queue else queue
    try:
        with Rotator3(queue, nx, ny, nz, dtype=dtype, config=config) as rotator:
            return rotator.rotate(volume, rotation)
    finally:
        if own_queue:
            queue.close()
