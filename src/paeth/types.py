"""Type aliases for paeth.

Provides unified type hints for array-like parameters across all modules.
"""

from collections.abc import Sequence

import numpy as np

# 2x2 / 3x3 matrix given as nested sequences or an array
MatrixLike = Sequence[Sequence[float]] | np.ndarray

# 3D vector type (axis, euler angles, etc.)
Vector3 = tuple[float, float, float] | Sequence[float] | np.ndarray

# Quaternion type (w, x, y, z)
Quaternion = tuple[float, float, float, float] | Sequence[float] | np.ndarray

# Floating element types accepted by the kernels
FloatDType = type[np.float32] | type[np.float64] | np.dtype | str
