"""Shared utilities for paeth.

Rotation construction/validation helpers used by the decomposers, the
pipelines and the tests.
"""

from paeth.shared.rotation import (
    as_float_matrix,
    axis_angle_to_rotation_matrix,
    default_tolerance,
    euler_to_rotation_matrix,
    is_rotation_matrix,
    pivot_tolerance,
    quaternion_to_rotation_matrix,
    random_rotation_matrix,
    rotation_matrix_2d,
    validate_rotation_matrix,
)

__all__ = [
    # Construction
    "rotation_matrix_2d",
    "quaternion_to_rotation_matrix",
    "axis_angle_to_rotation_matrix",
    "euler_to_rotation_matrix",
    "random_rotation_matrix",
    # Validation
    "as_float_matrix",
    "is_rotation_matrix",
    "validate_rotation_matrix",
    "default_tolerance",
    "pivot_tolerance",
]
