"""Tests for rotation helpers and ShearVerifier."""

import dataclasses

import numpy as np
import pytest

from paeth import NotARotation, PaethRotation2, PaethRotation3, ShearVerifier
from paeth.shared import (
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


class TestRotationHelpers:
    """Test rotation construction and validation."""

    def test_rotation_matrix_2d(self):
        """Positive angles turn +x toward +y."""
        r = rotation_matrix_2d(np.pi / 6)
        np.testing.assert_allclose(r @ [1.0, 0.0], [np.cos(np.pi / 6), 0.5])
        assert is_rotation_matrix(r)

    def test_axis_angle_zero(self):
        """A zero vector is the identity."""
        np.testing.assert_array_equal(axis_angle_to_rotation_matrix([0, 0, 0]), np.eye(3))

    def test_axis_angle_about_z(self):
        """Rotation about z embeds the 2D rotation."""
        r = axis_angle_to_rotation_matrix([0.0, 0.0, 0.4])
        np.testing.assert_allclose(r[:2, :2], rotation_matrix_2d(0.4), atol=1e-12)
        np.testing.assert_allclose(r[2], [0.0, 0.0, 1.0], atol=1e-12)

    def test_quaternion_normalized(self):
        """Quaternions are normalized before conversion."""
        a = quaternion_to_rotation_matrix([2.0, 0.0, 0.0, 0.0])
        np.testing.assert_allclose(a, np.eye(3))
        with pytest.raises(ValueError):
            quaternion_to_rotation_matrix([0.0, 0.0, 0.0, 0.0])

    def test_euler(self):
        """Euler angles give a proper rotation."""
        assert is_rotation_matrix(euler_to_rotation_matrix([0.1, -0.7, 1.3]))

    @pytest.mark.parametrize("n", [2, 3])
    def test_random_rotation(self, n):
        """Random matrices are proper rotations."""
        rng = np.random.default_rng(11)
        for _ in range(10):
            assert is_rotation_matrix(random_rotation_matrix(n, rng))

    def test_is_rotation_rejects(self):
        """Reflections, scalings and non-square inputs are rejected."""
        assert not is_rotation_matrix(np.diag([1.0, -1.0]))
        assert not is_rotation_matrix(np.diag([1.0, 2.0]))
        assert not is_rotation_matrix(np.ones((2, 3)))

    def test_validate(self):
        """validate_rotation_matrix returns a read-only float copy."""
        arr = validate_rotation_matrix([[1, 0], [0, 1]], 2)
        assert arr.dtype == np.float64
        assert not arr.flags.writeable
        with pytest.raises(NotARotation):
            validate_rotation_matrix(np.diag([-1.0, 1.0]), 2)

    def test_tolerances(self):
        """Tolerances scale with machine epsilon."""
        assert pivot_tolerance(np.float32) > pivot_tolerance(np.float64)
        assert default_tolerance(np.float64) == 1e-6
        assert default_tolerance(np.float32) == pytest.approx(100 * np.finfo(np.float32).eps)


class TestShearVerifier:
    """Test the verification assertions."""

    def test_reconstruction_error(self):
        """Error is the largest entry of the difference."""
        m = rotation_matrix_2d(0.3)
        rot = PaethRotation2.from_matrix(m)
        assert ShearVerifier.reconstruction_error(rot, m) < 1e-12

    def test_tampered_descriptor(self):
        """A corrupted descriptor fails reconstruction."""
        m = axis_angle_to_rotation_matrix([0.2, 0.1, -0.3])
        rot = PaethRotation3.from_matrix(m)
        bad = dataclasses.replace(rot, xy=rot.xy + 0.1)
        with pytest.raises(AssertionError, match="does not reconstruct"):
            ShearVerifier.assert_reconstructs(bad, m)

    def test_filter_params(self):
        """Well-formed pass parameters pass the structural checks."""
        rot = PaethRotation2.from_degrees(40.0, dtype=np.float64)
        ShearVerifier.assert_filter_params(rot.xx, rot.xy)
        ShearVerifier.assert_filter_params(rot.yy, rot.yx)

    def test_equivalent_shape_mismatch(self):
        """Shape mismatches are reported before values."""
        with pytest.raises(AssertionError, match="Shape mismatch"):
            ShearVerifier.assert_equivalent(np.zeros((2, 2)), np.zeros((2, 3)))

    def test_equivalent_values(self):
        """Close arrays pass; distant arrays fail."""
        a = np.linspace(0, 1, 10)
        ShearVerifier.assert_equivalent(a, a + 1e-7)
        with pytest.raises(AssertionError):
            ShearVerifier.assert_equivalent(a, a + 1e-2)
