"""Rotation matrix construction and validation helpers.

Builds the 2x2 and 3x3 rotation matrices fed to the Paeth decomposers and
checks that a given matrix really is a rotation (orthonormal, det +1).

Quaternion Convention: (w, x, y, z) - scalar first
Angles are in radians unless a function says otherwise.
"""

from __future__ import annotations

import numpy as np

from paeth.exceptions import NotARotation
from paeth.types import FloatDType, MatrixLike, Quaternion, Vector3

# ============================================================================
# Tolerances
# ============================================================================


def default_tolerance(dtype: FloatDType) -> float:
    """Orthonormality tolerance for a floating dtype.

    :param dtype: Element type of the matrix
    :returns: Absolute tolerance used by :func:`is_rotation_matrix`
    """
    return max(1e-6, 100.0 * float(np.finfo(np.dtype(dtype)).eps))


def pivot_tolerance(dtype: FloatDType) -> float:
    """Smallest pivot magnitude treated as non-zero for a floating dtype.

    cos(pi/2) evaluates to ~6e-17 in float64 and ~-4e-8 in float32, both of
    which fall under this bound.

    :param dtype: Element type of the matrix
    :returns: Absolute pivot tolerance
    """
    return 10.0 * float(np.finfo(np.dtype(dtype)).eps)


def as_float_matrix(m: MatrixLike, n: int) -> np.ndarray:
    """Convert input to a float ``n x n`` array, keeping float dtypes.

    Integer and object inputs are promoted to float64.

    :param m: Matrix-like input
    :param n: Expected dimension
    :returns: Read-only ``(n, n)`` array
    """
    arr = np.asarray(m)
    if not np.issubdtype(arr.dtype, np.floating):
        arr = arr.astype(np.float64)
    if arr.shape != (n, n):
        raise ValueError(f"Matrix must be shape ({n}, {n}), got {arr.shape}")
    arr = arr.copy()
    arr.setflags(write=False)
    return arr


# ============================================================================
# Validation
# ============================================================================


def is_rotation_matrix(m: MatrixLike, atol: float | None = None) -> bool:
    """Check that a square matrix is orthonormal with determinant +1.

    :param m: Square matrix
    :param atol: Absolute tolerance (defaults to :func:`default_tolerance`)
    :returns: True if ``m`` is a proper rotation
    """
    arr = np.asarray(m)
    if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
        return False
    if not np.issubdtype(arr.dtype, np.floating):
        arr = arr.astype(np.float64)
    if atol is None:
        atol = default_tolerance(arr.dtype)

    work = arr.astype(np.float64)
    identity = np.eye(work.shape[0])
    if not np.allclose(work.T @ work, identity, rtol=0.0, atol=atol):
        return False
    return bool(abs(np.linalg.det(work) - 1.0) <= atol)


def validate_rotation_matrix(m: MatrixLike, n: int, atol: float | None = None) -> np.ndarray:
    """Return ``m`` as a float array, raising if it is not a rotation.

    :param m: Matrix-like input
    :param n: Expected dimension (2 or 3)
    :param atol: Absolute tolerance (defaults to :func:`default_tolerance`)
    :returns: Read-only ``(n, n)`` float array
    :raises NotARotation: If ``m`` is not orthonormal with det +1
    """
    arr = as_float_matrix(m, n)
    if not is_rotation_matrix(arr, atol):
        det = float(np.linalg.det(arr.astype(np.float64)))
        raise NotARotation(
            f"Expected a {n}x{n} rotation (orthonormal, det=+1), got det={det:.6g}"
        )
    return arr


# ============================================================================
# Construction
# ============================================================================


def rotation_matrix_2d(angle: float, dtype: FloatDType = np.float64) -> np.ndarray:
    """Counter-clockwise 2D rotation matrix ``[[c, -s], [s, c]]``.

    In image coordinates (x right, y down) this appears clockwise on screen.

    :param angle: Rotation angle in radians
    :param dtype: Element type of the result
    :returns: 2x2 rotation matrix

    Example:
        >>> R = rotation_matrix_2d(np.pi / 6)
    """
    c = np.cos(angle)
    s = np.sin(angle)
    return np.array([[c, -s], [s, c]], dtype=dtype)


def quaternion_to_rotation_matrix(q: Quaternion, dtype: FloatDType = np.float64) -> np.ndarray:
    """Quaternion to 3x3 rotation matrix.

    :param q: Quaternion [4] (w, x, y, z), normalized internally
    :param dtype: Element type of the result
    :returns: 3x3 rotation matrix
    """
    q = np.asarray(q, dtype=np.float64)
    norm = np.linalg.norm(q)
    if norm < 1e-12:
        raise ValueError("Quaternion must be non-zero")
    w, x, y, z = q / norm

    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ],
        dtype=dtype,
    )


def axis_angle_to_rotation_matrix(
    axis_angle: Vector3, dtype: FloatDType = np.float64
) -> np.ndarray:
    """Axis-angle vector (axis * angle) to 3x3 rotation matrix.

    :param axis_angle: Axis-angle vector [3]; its norm is the angle in radians
    :param dtype: Element type of the result
    :returns: 3x3 rotation matrix

    Example:
        >>> R = axis_angle_to_rotation_matrix([0, 0, np.pi / 2])  # 90 deg about z
    """
    v = np.asarray(axis_angle, dtype=np.float64)
    angle = np.linalg.norm(v)
    if angle < 1e-12:
        return np.eye(3, dtype=dtype)

    half = angle / 2
    axis = v / angle
    q = np.concatenate([[np.cos(half)], axis * np.sin(half)])
    return quaternion_to_rotation_matrix(q, dtype=dtype)


def euler_to_rotation_matrix(euler: Vector3, dtype: FloatDType = np.float64) -> np.ndarray:
    """Euler angles (roll, pitch, yaw) to 3x3 rotation matrix.

    Uses the same XYZ convention as the quaternion helpers: ``R = Rz @ Ry @ Rx``.

    :param euler: Euler angles [3] (roll, pitch, yaw) in radians
    :param dtype: Element type of the result
    :returns: 3x3 rotation matrix
    """
    roll, pitch, yaw = np.asarray(euler, dtype=np.float64)

    cr, sr = np.cos(roll / 2), np.sin(roll / 2)
    cp, sp = np.cos(pitch / 2), np.sin(pitch / 2)
    cy, sy = np.cos(yaw / 2), np.sin(yaw / 2)

    w = cr * cp * cy + sr * sp * sy
    x = sr * cp * cy - cr * sp * sy
    y = cr * sp * cy + sr * cp * sy
    z = cr * cp * sy - sr * sp * cy

    return quaternion_to_rotation_matrix([w, x, y, z], dtype=dtype)


def random_rotation_matrix(
    n: int, rng: np.random.Generator | None = None, dtype: FloatDType = np.float64
) -> np.ndarray:
    """Uniformly distributed random rotation (QR of a Gaussian matrix).

    :param n: Dimension
    :param rng: Random generator (defaults to ``np.random.default_rng()``)
    :param dtype: Element type of the result
    :returns: ``n x n`` rotation matrix
    """
    rng = rng if rng is not None else np.random.default_rng()
    q, r = np.linalg.qr(rng.standard_normal((n, n)))
    q = q * np.sign(np.diag(r))
    if np.linalg.det(q) < 0:
        q[:, 0] = -q[:, 0]
    return q.astype(dtype)
