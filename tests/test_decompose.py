"""Tests for the 2D/3D Paeth shear decompositions."""

import numpy as np
import pytest

from paeth import (
    DegenerateShearPivot,
    NotARotation,
    PaethRotation2,
    PaethRotation3,
    ShearVerifier,
    decompose_2d,
    decompose_3d,
    invert_shear,
    shear_matrix,
)
from paeth.shared import axis_angle_to_rotation_matrix, random_rotation_matrix, rotation_matrix_2d

ANGLES_DEG = [-170.0, -120.0, -60.0, -30.0, 0.0, 15.0, 45.0, 80.0, 100.0, 135.0, 179.0]

AXIS_ANGLES = [
    [0.3, 0.2, 0.1],
    [0.0, 0.0, 1.0],
    [1.0, 0.0, 0.0],
    [0.0, 0.8, 0.0],
    [0.5, -0.4, 0.9],
    list(0.7 * np.array([2.0, 5.0, -3.0]) / np.linalg.norm([2.0, 5.0, -3.0])),
]


class TestPaethRotation2:
    """Test 2D decomposition R = Y @ X."""

    @pytest.mark.parametrize("degrees", ANGLES_DEG)
    def test_reconstructs(self, degrees):
        """Shear product reproduces the rotation matrix."""
        m = rotation_matrix_2d(np.radians(degrees))
        rot = PaethRotation2.from_matrix(m)
        assert rot.verify(m)
        ShearVerifier.assert_reconstructs(rot, m, atol=1e-10)

    def test_explicit_entries(self):
        """Descriptor entries follow the closed-form expressions."""
        theta = np.radians(30.0)
        c, s = np.cos(theta), np.sin(theta)
        rot = PaethRotation2.from_angle(theta, dtype=np.float64)
        np.testing.assert_allclose(rot.as_tuple(), (c, -s, s / c, 1.0 / c), rtol=1e-12)

    def test_identity(self):
        """Zero rotation gives identity shears."""
        rot = PaethRotation2.from_degrees(0.0)
        np.testing.assert_allclose(rot.as_tuple(), (1.0, 0.0, 0.0, 1.0))
        np.testing.assert_allclose(rot.shear_x(), np.eye(2))
        np.testing.assert_allclose(rot.shear_y(), np.eye(2))

    def test_half_turn(self):
        """180 degrees has pivots of -1 and reconstructs."""
        m = rotation_matrix_2d(np.pi)
        rot = decompose_2d(m)
        assert rot.xx == pytest.approx(-1.0)
        assert rot.yy == pytest.approx(-1.0)
        assert rot.verify(m)

    @pytest.mark.parametrize("dtype", [np.float32, np.float64])
    def test_dtype_preserved(self, dtype):
        """Descriptor scalars keep the input element type."""
        m = rotation_matrix_2d(np.radians(25.0), dtype=dtype)
        rot = PaethRotation2.from_matrix(m)
        assert rot.dtype == np.dtype(dtype)
        assert rot.shear_x().dtype == np.dtype(dtype)

    @pytest.mark.parametrize("degrees", [90.0, -90.0, 270.0])
    def test_quarter_turn_raises(self, degrees):
        """Rotations by +-90 degrees have no Paeth decomposition."""
        with pytest.raises(DegenerateShearPivot) as excinfo:
            PaethRotation2.from_degrees(degrees, dtype=np.float64)
        assert excinfo.value.axis == "x"

    def test_quarter_turn_float32_raises(self):
        """float32 cos(pi/2) falls under the float32 pivot tolerance."""
        with pytest.raises(DegenerateShearPivot):
            PaethRotation2.from_angle(np.pi / 2, dtype=np.float32)

    def test_degenerate_is_arithmetic_error(self):
        """DegenerateShearPivot can be caught as ArithmeticError."""
        with pytest.raises(ArithmeticError):
            decompose_2d([[0.0, -1.0], [1.0, 0.0]])

    def test_custom_tolerance(self):
        """A looser tolerance rejects near-degenerate pivots."""
        m = rotation_matrix_2d(np.radians(89.9))
        PaethRotation2.from_matrix(m)
        with pytest.raises(DegenerateShearPivot):
            PaethRotation2.from_matrix(m, atol=1e-2)

    def test_not_a_rotation(self):
        """Non-rotations are rejected unless the check is disabled."""
        scale = [[2.0, 0.0], [0.0, 1.0]]
        reflect = [[1.0, 0.0], [0.0, -1.0]]
        with pytest.raises(NotARotation):
            PaethRotation2.from_matrix(scale)
        with pytest.raises(NotARotation):
            PaethRotation2.from_matrix(reflect)
        with pytest.raises(ValueError):
            PaethRotation2.from_matrix(reflect)
        rot = PaethRotation2.from_matrix(scale, check=False)
        assert rot.xx == 2.0

    def test_wrong_shape(self):
        """Matrices of the wrong size are rejected."""
        with pytest.raises(ValueError):
            PaethRotation2.from_matrix(np.eye(3))

    def test_input_not_mutated(self):
        """Decomposition leaves the input matrix untouched."""
        m = rotation_matrix_2d(0.4)
        before = m.copy()
        PaethRotation2.from_matrix(m)
        np.testing.assert_array_equal(m, before)

    def test_from_shears(self):
        """Rebuilding from explicit shears gives the same descriptor."""
        rot = PaethRotation2.from_degrees(33.0, dtype=np.float64)
        again = PaethRotation2.from_shears(rot.shear_x(), rot.shear_y())
        np.testing.assert_allclose(again.as_tuple(), rot.as_tuple())

    @pytest.mark.parametrize("degrees", [-45.0, 10.0, 120.0])
    def test_idempotent(self, degrees):
        """Decomposing the reconstruction yields the same descriptor."""
        rot = PaethRotation2.from_degrees(degrees, dtype=np.float64)
        ShearVerifier.assert_idempotent(rot, atol=1e-12)

    def test_frozen(self):
        """Descriptors are immutable."""
        rot = PaethRotation2.from_degrees(10.0)
        with pytest.raises(AttributeError):
            rot.xx = 2.0


class TestPaethRotation3:
    """Test 3D decomposition R = Z @ Y @ X."""

    @pytest.mark.parametrize("axis_angle", AXIS_ANGLES)
    def test_reconstructs(self, axis_angle):
        """Shear product reproduces the rotation matrix."""
        m = axis_angle_to_rotation_matrix(axis_angle)
        rot = PaethRotation3.from_matrix(m)
        assert rot.verify(m)
        ShearVerifier.assert_reconstructs(rot, m, atol=1e-10)

    def test_random_rotations(self):
        """Random rotations reconstruct to 1e-4."""
        rng = np.random.default_rng(7)
        for _ in range(25):
            m = random_rotation_matrix(3, rng)
            rot = decompose_3d(m)
            ShearVerifier.assert_reconstructs(rot, m, atol=1e-4)

    def test_peeling_rows(self):
        """x triple is row 1 of m; z triple is what remains after peeling."""
        m = axis_angle_to_rotation_matrix([0.3, -0.2, 0.5])
        rot = PaethRotation3.from_matrix(m)
        np.testing.assert_allclose([rot.xx, rot.xy, rot.xz], m[0])
        remaining = m @ np.linalg.inv(rot.shear_x()) @ np.linalg.inv(rot.shear_y())
        np.testing.assert_allclose([rot.zx, rot.zy, rot.zz], remaining[2], atol=1e-12)

    def test_about_z_matches_2d(self):
        """A rotation about z decomposes like the 2D rotation with a trivial z shear."""
        theta = 0.6
        rot3 = PaethRotation3.from_axis_angle([0.0, 0.0, theta], dtype=np.float64)
        rot2 = PaethRotation2.from_angle(theta, dtype=np.float64)
        np.testing.assert_allclose([rot3.xx, rot3.xy], [rot2.xx, rot2.xy], atol=1e-12)
        np.testing.assert_allclose([rot3.yx, rot3.yy], [rot2.yx, rot2.yy], atol=1e-12)
        np.testing.assert_allclose([rot3.xz, rot3.yz], [0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose([rot3.zx, rot3.zy, rot3.zz], [0.0, 0.0, 1.0], atol=1e-12)

    def test_half_turn_about_z(self):
        """diag(-1, -1, 1) peels into sign-flip shears."""
        m = np.diag([-1.0, -1.0, 1.0])
        rot = PaethRotation3.from_matrix(m)
        np.testing.assert_allclose(rot.as_array(), np.diag([-1.0, -1.0, 1.0]), atol=1e-12)
        assert rot.verify(m)

    def test_x_pivot_degenerate(self):
        """Quarter turn about z leaves no x pivot."""
        m = [[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]]
        with pytest.raises(DegenerateShearPivot) as excinfo:
            PaethRotation3.from_matrix(m)
        assert excinfo.value.axis == "x"

    def test_y_pivot_degenerate(self):
        """Quarter turn about x leaves no y pivot."""
        m = [[1.0, 0.0, 0.0], [0.0, 0.0, -1.0], [0.0, 1.0, 0.0]]
        with pytest.raises(DegenerateShearPivot) as excinfo:
            PaethRotation3.from_matrix(m)
        assert excinfo.value.axis == "y"

    def test_dtype_preserved(self):
        """float32 matrices give float32 descriptors."""
        m = axis_angle_to_rotation_matrix([0.1, 0.2, 0.3], dtype=np.float32)
        rot = PaethRotation3.from_matrix(m)
        assert rot.dtype == np.float32
        assert rot.verify(m)

    def test_from_shears(self):
        """Rebuilding from explicit shears gives the same descriptor."""
        rot = PaethRotation3.from_axis_angle([0.2, 0.4, -0.1], dtype=np.float64)
        again = PaethRotation3.from_shears(rot.shear_x(), rot.shear_y(), rot.shear_z())
        np.testing.assert_allclose(again.as_array(), rot.as_array())

    def test_idempotent(self):
        """Decomposing the reconstruction yields the same descriptor."""
        rot = PaethRotation3.from_axis_angle([0.5, -0.4, 0.9], dtype=np.float64)
        ShearVerifier.assert_idempotent(rot, atol=1e-10)

    def test_not_a_rotation(self):
        """Reflections are rejected."""
        with pytest.raises(NotARotation):
            PaethRotation3.from_matrix(np.diag([1.0, 1.0, -1.0]))


class TestShearPrimitives:
    """Test shear_matrix / invert_shear."""

    @pytest.mark.parametrize("axis", [0, 1, 2])
    def test_invert_shear(self, axis):
        """Closed-form inverse multiplies to the identity."""
        s = shear_matrix([0.7, -0.3, 1.4], axis)
        inv = invert_shear(s, axis)
        np.testing.assert_allclose(s @ inv, np.eye(3), atol=1e-12)
        np.testing.assert_allclose(inv @ s, np.eye(3), atol=1e-12)

    def test_shear_matrix_layout(self):
        """Only the selected row differs from the identity."""
        s = shear_matrix([2.0, 3.0], 1)
        np.testing.assert_array_equal(s, [[1.0, 0.0], [2.0, 3.0]])

    def test_zero_pivot(self):
        """A zero pivot cannot be inverted."""
        s = shear_matrix([0.5, 0.0, 0.2], 1)
        with pytest.raises(DegenerateShearPivot) as excinfo:
            invert_shear(s, 1)
        assert excinfo.value.axis == "y"

    def test_nan_pivot(self):
        """A non-finite pivot cannot be inverted."""
        s = shear_matrix([np.nan, 0.0], 0)
        with pytest.raises(DegenerateShearPivot):
            invert_shear(s, 0)
