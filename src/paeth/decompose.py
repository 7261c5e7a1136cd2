"""Paeth decomposition of rotations into one-dimensional shears.

The Paeth decomposition of an N-dimensional rotation is an equivalent
composition of N one-dimensional shear operations ("A Fast Algorithm for
General Raster Rotation", A. W. Paeth, 1986).

Composition order is fixed for the whole package: the x-shear is applied
first, so

    2D:  R = Y @ X
    3D:  R = Z @ Y @ X

with the shear matrices

    X = [[xx, xy],      Y = [[ 1,  0],
         [ 0,  1]]           [yx, yy]]

    X = [[xx, xy, xz],  Y = [[ 1,  0,  0],  Z = [[ 1,  0,  0],
         [ 0,  1,  0],       [yx, yy, yz],       [ 0,  1,  0],
         [ 0,  0,  1]]       [ 0,  0,  1]]       [zx, zy, zz]]

The rotation pipelines dispatch their passes in the same order (x, then y,
then z).

Descriptors keep the floating dtype of the input matrix, so float32 and
float64 rotations decompose without silent promotion.

Example:
    >>> import numpy as np
    >>> from paeth import PaethRotation2
    >>> p = PaethRotation2.from_angle(np.radians(32.0))
    >>> np.allclose(p.shear_y() @ p.shear_x(), p.matrix())
    True
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from paeth.exceptions import DegenerateShearPivot
from paeth.shared.rotation import (
    as_float_matrix,
    axis_angle_to_rotation_matrix,
    pivot_tolerance,
    rotation_matrix_2d,
    validate_rotation_matrix,
)
from paeth.types import FloatDType, MatrixLike, Vector3

logger = logging.getLogger(__name__)

AXES = ("x", "y", "z")


# ============================================================================
# Shear matrix primitives
# ============================================================================


def shear_matrix(row: Sequence[float], axis: int, dtype: FloatDType | None = None) -> np.ndarray:
    """Identity matrix with row ``axis`` replaced by ``row``.

    :param row: Entries of the non-trivial row (length n)
    :param axis: Index of the sheared axis (0=x, 1=y, 2=z)
    :param dtype: Element type (defaults to the row's dtype)
    :returns: ``n x n`` shear matrix
    """
    row = np.asarray(row) if dtype is None else np.asarray(row, dtype=dtype)
    if not np.issubdtype(row.dtype, np.floating):
        row = row.astype(np.float64)
    n = row.shape[0]
    s = np.eye(n, dtype=row.dtype)
    s[axis] = row
    return s


def invert_shear(s: np.ndarray, axis: int, atol: float | None = None) -> np.ndarray:
    """Closed-form inverse of a one-row shear matrix.

    For ``S`` equal to the identity except row ``i = r``, the inverse is the
    identity except row ``i = (-r_j / r_i for j != i, 1 / r_i at i)``. No
    general elimination is involved, so only a vanishing pivot can fail.

    :param s: Shear matrix (identity except row ``axis``)
    :param axis: Index of the non-trivial row
    :param atol: Pivot tolerance (defaults to :func:`pivot_tolerance`)
    :returns: Inverse shear matrix, same dtype as ``s``
    :raises DegenerateShearPivot: If ``|s[axis, axis]| <= atol``
    """
    if atol is None:
        atol = pivot_tolerance(s.dtype)

    pivot = s[axis, axis]
    if not np.isfinite(pivot) or abs(pivot) <= atol:
        raise DegenerateShearPivot(AXES[axis], float(pivot), atol)

    inv = np.eye(s.shape[0], dtype=s.dtype)
    inv[axis] = -s[axis] / pivot
    inv[axis, axis] = 1 / pivot
    return inv


def _check_pivot(value, axis: str, atol: float) -> None:
    if not np.isfinite(value) or abs(value) <= atol:
        raise DegenerateShearPivot(axis, float(value), atol)


# ============================================================================
# 2D
# ============================================================================


@dataclass(frozen=True)
class PaethRotation2:
    """Two-dimensional Paeth rotation ``R = Y @ X``.

    Attributes:
        xx: Pivot of the x-shear (``m11``)
        xy: Cross term of the x-shear (``m12``)
        yx: Cross term of the y-shear (``m21 / m11``)
        yy: Pivot of the y-shear (``m22 - m21 * m12 / m11``)
    """

    xx: np.floating
    xy: np.floating
    yx: np.floating
    yy: np.floating

    @property
    def dtype(self) -> np.dtype:
        """Floating element type of the descriptor."""
        return np.result_type(self.xx, self.xy, self.yx, self.yy)

    @classmethod
    def from_matrix(
        cls, m: MatrixLike, *, atol: float | None = None, check: bool = True
    ) -> PaethRotation2:
        """Decompose a 2x2 rotation matrix.

        :param m: 2x2 rotation matrix
        :param atol: Pivot tolerance (defaults to ``10 * eps(dtype)``)
        :param check: Validate that ``m`` is a rotation first
        :returns: Shear descriptor
        :raises DegenerateShearPivot: If ``m11`` is ~0 (rotation by +-90 deg)
        :raises NotARotation: If ``check`` and ``m`` is not a rotation
        """
        m = validate_rotation_matrix(m, 2) if check else as_float_matrix(m, 2)
        if atol is None:
            atol = pivot_tolerance(m.dtype)

        m11, m12 = m[0, 0], m[0, 1]
        m21, m22 = m[1, 0], m[1, 1]
        _check_pivot(m11, "x", atol)

        return cls(
            xx=m11,
            xy=m12,
            yx=m21 / m11,
            yy=m22 - m21 * m12 / m11,
        )

    @classmethod
    def from_angle(cls, angle: float, dtype: FloatDType = np.float32) -> PaethRotation2:
        """Decompose the rotation by ``angle`` radians.

        :param angle: Rotation angle in radians
        :param dtype: Element type of the descriptor
        :returns: Shear descriptor
        """
        return cls.from_matrix(rotation_matrix_2d(angle, dtype=dtype), check=False)

    @classmethod
    def from_degrees(cls, degrees: float, dtype: FloatDType = np.float32) -> PaethRotation2:
        """Decompose the rotation by ``degrees`` degrees."""
        return cls.from_angle(np.radians(degrees), dtype=dtype)

    @classmethod
    def from_shears(cls, shear_x: MatrixLike, shear_y: MatrixLike) -> PaethRotation2:
        """Rebuild a descriptor from explicit shear matrices.

        :param shear_x: ``[[xx, xy], [0, 1]]``
        :param shear_y: ``[[1, 0], [yx, yy]]``
        :returns: Shear descriptor with the same entries
        """
        sx = as_float_matrix(shear_x, 2)
        sy = as_float_matrix(shear_y, 2)
        return cls(xx=sx[0, 0], xy=sx[0, 1], yx=sy[1, 0], yy=sy[1, 1])

    def shear_x(self) -> np.ndarray:
        """x-shear matrix ``[[xx, xy], [0, 1]]``."""
        return shear_matrix([self.xx, self.xy], 0, dtype=self.dtype)

    def shear_y(self) -> np.ndarray:
        """y-shear matrix ``[[1, 0], [yx, yy]]``."""
        return shear_matrix([self.yx, self.yy], 1, dtype=self.dtype)

    def matrix(self) -> np.ndarray:
        """Reconstructed rotation ``Y @ X``."""
        return self.shear_y() @ self.shear_x()

    def verify(self, m: MatrixLike, rtol: float = 1e-4, atol: float = 1e-4) -> bool:
        """Check the post-condition ``Y @ X ~= m``.

        :param m: Matrix the descriptor was derived from
        :returns: True if the reconstruction matches within tolerance
        """
        return bool(np.allclose(self.matrix(), np.asarray(m), rtol=rtol, atol=atol))

    def as_tuple(self) -> tuple[float, float, float, float]:
        """Descriptor as plain floats ``(xx, xy, yx, yy)``."""
        return (float(self.xx), float(self.xy), float(self.yx), float(self.yy))


# ============================================================================
# 3D
# ============================================================================


@dataclass(frozen=True)
class PaethRotation3:
    """Three-dimensional Paeth rotation ``R = Z @ Y @ X``.

    The triples are read off by successive peeling: row 1 of ``m`` gives the
    x-shear, row 2 of ``m @ inv(X)`` gives the y-shear and row 3 of
    ``m @ inv(X) @ inv(Y)`` is the remaining z-shear.
    """

    xx: np.floating
    xy: np.floating
    xz: np.floating
    yx: np.floating
    yy: np.floating
    yz: np.floating
    zx: np.floating
    zy: np.floating
    zz: np.floating

    @property
    def dtype(self) -> np.dtype:
        """Floating element type of the descriptor."""
        return self.as_array().dtype

    @classmethod
    def from_matrix(
        cls, m: MatrixLike, *, atol: float | None = None, check: bool = True
    ) -> PaethRotation3:
        """Decompose a 3x3 rotation matrix.

        :param m: 3x3 rotation matrix
        :param atol: Pivot tolerance (defaults to ``10 * eps(dtype)``)
        :param check: Validate that ``m`` is a rotation first
        :returns: Shear descriptor
        :raises DegenerateShearPivot: If the x or y pivot is ~0
        :raises NotARotation: If ``check`` and ``m`` is not a rotation
        """
        m = validate_rotation_matrix(m, 3) if check else as_float_matrix(m, 3)
        if atol is None:
            atol = pivot_tolerance(m.dtype)

        xx, xy, xz = m[0]
        shear_x = shear_matrix(m[0], 0)
        m_less_x = m @ invert_shear(shear_x, 0, atol)

        yx, yy, yz = m_less_x[1]
        shear_y = shear_matrix(m_less_x[1], 1)
        m_less_xy = m_less_x @ invert_shear(shear_y, 1, atol)

        zx, zy, zz = m_less_xy[2]
        logger.debug("[PaethRotation3] pivots xx=%.6g yy=%.6g zz=%.6g", xx, yy, zz)

        return cls(xx=xx, xy=xy, xz=xz, yx=yx, yy=yy, yz=yz, zx=zx, zy=zy, zz=zz)

    @classmethod
    def from_axis_angle(
        cls, axis_angle: Vector3, dtype: FloatDType = np.float32
    ) -> PaethRotation3:
        """Decompose the rotation given as an axis-angle vector (radians)."""
        return cls.from_matrix(axis_angle_to_rotation_matrix(axis_angle, dtype=dtype), check=False)

    @classmethod
    def from_shears(
        cls, shear_x: MatrixLike, shear_y: MatrixLike, shear_z: MatrixLike
    ) -> PaethRotation3:
        """Rebuild a descriptor from explicit shear matrices."""
        sx = as_float_matrix(shear_x, 3)
        sy = as_float_matrix(shear_y, 3)
        sz = as_float_matrix(shear_z, 3)
        return cls(*sx[0], *sy[1], *sz[2])

    def shear_x(self) -> np.ndarray:
        """x-shear matrix (identity except row 1)."""
        return shear_matrix([self.xx, self.xy, self.xz], 0, dtype=self.dtype)

    def shear_y(self) -> np.ndarray:
        """y-shear matrix (identity except row 2)."""
        return shear_matrix([self.yx, self.yy, self.yz], 1, dtype=self.dtype)

    def shear_z(self) -> np.ndarray:
        """z-shear matrix (identity except row 3)."""
        return shear_matrix([self.zx, self.zy, self.zz], 2, dtype=self.dtype)

    def matrix(self) -> np.ndarray:
        """Reconstructed rotation ``Z @ Y @ X``."""
        return self.shear_z() @ self.shear_y() @ self.shear_x()

    def verify(self, m: MatrixLike, rtol: float = 1e-4, atol: float = 1e-4) -> bool:
        """Check the post-condition ``Z @ Y @ X ~= m``."""
        return bool(np.allclose(self.matrix(), np.asarray(m), rtol=rtol, atol=atol))

    def as_array(self) -> np.ndarray:
        """Descriptor as a 3x3 array whose rows are the x, y and z triples."""
        return np.array(
            [
                [self.xx, self.xy, self.xz],
                [self.yx, self.yy, self.yz],
                [self.zx, self.zy, self.zz],
            ]
        )


def decompose_2d(m: MatrixLike, *, atol: float | None = None, check: bool = True) -> PaethRotation2:
    """Decompose a 2x2 rotation into ``Y @ X``. See :meth:`PaethRotation2.from_matrix`."""
    return PaethRotation2.from_matrix(m, atol=atol, check=check)


def decompose_3d(m: MatrixLike, *, atol: float | None = None, check: bool = True) -> PaethRotation3:
    """Decompose a 3x3 rotation into ``Z @ Y @ X``. See :meth:`PaethRotation3.from_matrix`."""
    return PaethRotation3.from_matrix(m, atol=atol, check=check)
