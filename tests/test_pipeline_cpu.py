"""Tests for the rotation pipelines on the numba CPU queue."""

import os
import subprocess
import sys
import time
from pathlib import Path

import numpy as np
import pytest

from paeth import (
    BuildFailure,
    CpuQueue,
    DegenerateShearPivot,
    DeviceFailure,
    DispatchFailure,
    PaethRotation2,
    PaethRotation3,
    PassState,
    PipelineBusy,
    Rotator2,
    Rotator3,
    RotatorConfig,
    UserEvent,
    rotate_image,
    rotate_volume,
)
from paeth.shared import axis_angle_to_rotation_matrix, rotation_matrix_2d


@pytest.fixture
def queue():
    """In-order CPU queue, closed after the test."""
    q = CpuQueue()
    yield q
    q.close()


def point_image(n: int, dx: int, dy: int, dtype=np.float32) -> np.ndarray:
    """Square image with a single unit pixel at offset (dx, dy) from the center."""
    img = np.zeros((n, n), dtype=dtype)
    c = n // 2
    img[c + dy, c + dx] = 1.0
    return img


def centroid(arr: np.ndarray) -> np.ndarray:
    """Intensity-weighted centroid in index order, relative to the array center."""
    arr = np.asarray(arr, dtype=np.float64)
    grids = np.indices(arr.shape)
    total = arr.sum()
    center = (np.array(arr.shape) - 1) / 2.0
    return np.array([(g * arr).sum() / total for g in grids]) - center


class TestRotator2:
    """Test the two-pass image rotator."""

    def test_identity(self, queue):
        """Zero rotation reproduces the image exactly."""
        rng = np.random.default_rng(0)
        img = rng.random((64, 64), dtype=np.float32)
        with Rotator2(queue, 64, 64) as rotator:
            out = rotator.rotate(img, PaethRotation2.from_degrees(0.0))
        np.testing.assert_allclose(out, img, atol=1e-6)

    def test_half_turn_keeps_center(self, queue):
        """A 180 degree rotation leaves the center pixel in place."""
        img = point_image(65, 0, 0)
        with Rotator2(queue, 65, 65) as rotator:
            out = rotator.rotate(img, rotation_matrix_2d(np.pi, dtype=np.float32))
        assert out[32, 32] == pytest.approx(1.0, abs=1e-5)
        assert out.sum() == pytest.approx(1.0, abs=1e-5)

    def test_half_turn_flips(self, queue):
        """A 180 degree rotation mirrors an off-center pixel through the center."""
        img = point_image(33, 5, -3)
        with Rotator2(queue, 33, 33) as rotator:
            out = rotator.rotate(img, rotation_matrix_2d(np.pi, dtype=np.float32))
        assert out[16 + 3, 16 - 5] == pytest.approx(1.0, abs=1e-5)

    @pytest.mark.parametrize("degrees", [30.0, -45.0, 120.0])
    def test_uniform_stays_uniform(self, queue, degrees):
        """Weights sum to one, so a constant image stays constant."""
        img = np.full((40, 48), 0.75, dtype=np.float32)
        with Rotator2(queue, 48, 40) as rotator:
            out = rotator.rotate(img, PaethRotation2.from_degrees(degrees))
        np.testing.assert_allclose(out, 0.75, atol=1e-5)

    def test_rotation_sense(self, queue):
        """Content at (+10, 0) moves to (10 cos, 10 sin) in (x, y)."""
        img = point_image(65, 10, 0)
        with Rotator2(queue, 65, 65) as rotator:
            out = rotator.rotate(img, PaethRotation2.from_degrees(30.0))
        cy, cx = centroid(out)
        assert cx == pytest.approx(10 * np.cos(np.radians(30)), abs=0.25)
        assert cy == pytest.approx(10 * np.sin(np.radians(30)), abs=0.25)

    def test_mass_conserved(self, queue):
        """Interior content keeps its total intensity."""
        rng = np.random.default_rng(3)
        img = np.zeros((64, 64), dtype=np.float64)
        img[24:40, 24:40] = rng.random((16, 16))
        with Rotator2(queue, 64, 64, dtype=np.float64) as rotator:
            out = rotator.rotate(img, PaethRotation2.from_degrees(37.0, dtype=np.float64))
        assert out.dtype == np.float64
        assert out.sum() == pytest.approx(img.sum(), rel=1e-6)

    def test_non_square(self, queue):
        """Width and height are handled independently."""
        img = np.zeros((21, 50), dtype=np.float32)
        img[10, 25] = 1.0
        with Rotator2(queue, 50, 21) as rotator:
            out = rotator.rotate(img, PaethRotation2.from_degrees(15.0))
        assert out.shape == (21, 50)
        assert out[10, 25] == out.max()

    def test_matrix_and_descriptor_agree(self, queue):
        """forward accepts a matrix or a precomputed descriptor."""
        rng = np.random.default_rng(1)
        img = rng.random((32, 32), dtype=np.float32)
        m = rotation_matrix_2d(np.radians(20.0), dtype=np.float32)
        with Rotator2(queue, 32, 32) as rotator:
            a = rotator.rotate(img, m)
            b = rotator.rotate(img, PaethRotation2.from_matrix(m))
        np.testing.assert_array_equal(a, b)

    def test_forward_in_place(self, queue):
        """src and dst may be the same buffer."""
        rng = np.random.default_rng(2)
        img = rng.random((32, 32), dtype=np.float32)
        rot = PaethRotation2.from_degrees(25.0)
        with Rotator2(queue, 32, 32) as rotator:
            expected = rotator.rotate(img, rot)
            buf = queue.create_buffer_from(img)
            done = rotator.forward(buf, buf, rot)
            out = queue.read_buffer(buf, wait_for=[done]).reshape(32, 32)
        np.testing.assert_array_equal(out, expected)

    def test_sequential_forwards(self, queue):
        """A rotator is reusable once its previous forward completed."""
        img = point_image(33, 4, 0)
        with Rotator2(queue, 33, 33) as rotator:
            src = queue.create_buffer_from(img)
            dst = queue.create_buffer(33 * 33, np.float32)
            for degrees in (10.0, 20.0, -30.0):
                done = rotator.forward(src, dst, PaethRotation2.from_degrees(degrees))
                done.wait()
                assert rotator.state is PassState.COMPLETE
                out = queue.read_buffer(dst).reshape(33, 33)
                assert out.sum() == pytest.approx(1.0, abs=1e-4)

    def test_sequential_identity_and_half_turn(self, queue):
        """Each forward on a reused rotator is exact for identity and 180 degrees."""
        rng = np.random.default_rng(5)
        img = rng.random((31, 36), dtype=np.float32)
        identity = np.eye(2, dtype=np.float32)
        half_turn = rotation_matrix_2d(np.pi, dtype=np.float32)
        with Rotator2(queue, 36, 31) as rotator:
            src = queue.create_buffer_from(img)
            dst = queue.create_buffer(31 * 36, np.float32)
            for _ in range(2):
                done = rotator.forward(src, dst, identity)
                out = queue.read_buffer(dst, wait_for=[done]).reshape(31, 36)
                np.testing.assert_allclose(out, img, atol=1e-6)
                assert rotator.state is PassState.COMPLETE

                done = rotator.forward(src, dst, half_turn)
                out = queue.read_buffer(dst, wait_for=[done]).reshape(31, 36)
                np.testing.assert_allclose(out, img[::-1, ::-1], atol=1e-5)
                assert out[15, 17] == pytest.approx(img[15, 18], abs=1e-5)
                assert rotator.state is PassState.COMPLETE

    def test_degenerate_dispatches_nothing(self, queue):
        """A quarter turn raises before any pass is enqueued."""
        with Rotator2(queue, 16, 16) as rotator:
            src = queue.create_buffer(256, np.float32)
            dst = queue.create_buffer(256, np.float32)
            with pytest.raises(DegenerateShearPivot):
                rotator.forward(src, dst, rotation_matrix_2d(np.pi / 2, dtype=np.float32))
            assert rotator.state is PassState.IDLE
            assert rotator.pending is None

    def test_not_a_rotation(self, queue):
        """Matrices are validated unless check_rotation is off."""
        skew = np.array([[1.0, 0.3], [0.0, 1.0]], dtype=np.float32)
        with Rotator2(queue, 8, 8) as rotator:
            with pytest.raises(ValueError):
                rotator.rotate(np.zeros((8, 8), np.float32), skew)
        unchecked = RotatorConfig(check_rotation=False)
        with Rotator2(queue, 8, 8, config=unchecked) as rotator:
            out = rotator.rotate(np.ones((8, 8), np.float32), skew)
        np.testing.assert_allclose(out, 1.0, atol=1e-5)


class TestRotator2Events:
    """Test event gating, busy detection and state tracking."""

    def test_user_event_gates_x_pass(self, queue):
        """Nothing runs until the gate is set."""
        img = np.ones((16, 16), dtype=np.float32)
        gate = UserEvent("gate")
        with Rotator2(queue, 16, 16) as rotator:
            src = queue.create_buffer_from(img)
            dst = queue.create_buffer_from(np.full((16, 16), -1.0, dtype=np.float32))
            try:
                done = rotator.forward(src, dst, PaethRotation2.from_degrees(10), wait_for=[gate])
                time.sleep(0.05)
                assert not done.done()
                assert rotator.state is PassState.Y_DISPATCHED
                np.testing.assert_array_equal(dst.data, -1.0)
            finally:
                gate.set()
            done.wait(timeout=60)
            assert rotator.state is PassState.COMPLETE
            np.testing.assert_allclose(queue.read_buffer(dst), 1.0, atol=1e-5)

    def test_busy(self, queue):
        """A second forward while the first is in flight is rejected."""
        gate = UserEvent("gate")
        rot = PaethRotation2.from_degrees(5)
        with Rotator2(queue, 16, 16) as rotator:
            src = queue.create_buffer(256, np.float32)
            dst = queue.create_buffer(256, np.float32)
            try:
                rotator.forward(src, dst, rot, wait_for=[gate])
                with pytest.raises(PipelineBusy):
                    rotator.forward(src, dst, rot)
            finally:
                gate.set()
            rotator.pending.wait(timeout=60)

    def test_chained_forward(self, queue):
        """Passing the in-flight event in wait_for chains the next forward."""
        img = point_image(33, 6, 0)
        gate = UserEvent("gate")
        rot = PaethRotation2.from_degrees(20.0)
        with Rotator2(queue, 33, 33) as rotator:
            src = queue.create_buffer_from(img)
            mid = queue.create_buffer(33 * 33, np.float32)
            dst = queue.create_buffer(33 * 33, np.float32)
            try:
                first = rotator.forward(src, mid, rot, wait_for=[gate])
                second = rotator.forward(mid, dst, rot, wait_for=[first])
            finally:
                gate.set()
            second.wait(timeout=60)
            out = queue.read_buffer(dst).reshape(33, 33)
        cy, cx = centroid(out)
        assert cx == pytest.approx(6 * np.cos(np.radians(40)), abs=0.3)
        assert cy == pytest.approx(6 * np.sin(np.radians(40)), abs=0.3)

    def test_failed_dependency(self, queue):
        """A failed gate fails the returned event and the rotator state."""
        gate = UserEvent("gate")
        gate.set_error(RuntimeError("upstream failed"))
        with Rotator2(queue, 8, 8) as rotator:
            src = queue.create_buffer(64, np.float32)
            dst = queue.create_buffer(64, np.float32)
            done = rotator.forward(src, dst, PaethRotation2.from_degrees(3), wait_for=[gate])
            with pytest.raises(DeviceFailure):
                done.wait(timeout=60)
            assert done.failed()
            assert rotator.state is PassState.FAILED

    def test_bad_buffers(self, queue):
        """Size and element type mismatches are dispatch failures."""
        rot = PaethRotation2.from_degrees(10)
        with Rotator2(queue, 8, 8) as rotator:
            good = queue.create_buffer(64, np.float32)
            with pytest.raises(DispatchFailure):
                rotator.forward(queue.create_buffer(63, np.float32), good, rot)
            with pytest.raises(DispatchFailure):
                rotator.forward(good, queue.create_buffer(64, np.float64), rot)
            released = queue.create_buffer(64, np.float32)
            released.release()
            with pytest.raises(DispatchFailure):
                rotator.forward(good, released, rot)

    def test_geometry_rejected(self):
        """A work-group larger than the device limit fails the launch."""
        with CpuQueue(max_work_group_size=64) as small:
            with Rotator2(small, 8, 8) as rotator:
                src = small.create_buffer(64, np.float32)
                dst = small.create_buffer(64, np.float32)
                with pytest.raises(DispatchFailure):
                    rotator.forward(src, dst, PaethRotation2.from_degrees(10))
                assert rotator.state is PassState.FAILED

    def test_unsupported_dtype(self, queue):
        """float16 has no kernel variant."""
        with pytest.raises(BuildFailure):
            Rotator2(queue, 8, 8, dtype=np.float16)

    def test_closed(self, queue):
        """A closed rotator refuses work; closing twice is harmless."""
        rotator = Rotator2(queue, 8, 8)
        rotator.close()
        rotator.close()
        assert rotator.closed
        src = queue.create_buffer(64, np.float32)
        with pytest.raises(DispatchFailure):
            rotator.forward(src, src, PaethRotation2.from_degrees(1))

    def test_invalid_shape(self, queue):
        """Zero-sized images are rejected."""
        with pytest.raises(ValueError):
            Rotator2(queue, 0, 8)


class TestRotator3:
    """Test the three-pass volume rotator."""

    def test_identity(self, queue):
        """Identity reproduces the volume exactly."""
        rng = np.random.default_rng(4)
        vol = rng.random((6, 10, 12), dtype=np.float32)
        with Rotator3(queue, 12, 10, 6) as rotator:
            out = rotator.rotate(vol, np.eye(3, dtype=np.float32))
        np.testing.assert_allclose(out, vol, atol=1e-6)

    def test_uniform_stays_uniform(self, queue):
        """A constant volume stays constant under a generic rotation."""
        vol = np.full((12, 14, 16), 0.5, dtype=np.float32)
        with Rotator3(queue, 16, 14, 12) as rotator:
            out = rotator.rotate(vol, PaethRotation3.from_axis_angle([0.3, 0.2, 0.1]))
        np.testing.assert_allclose(out, 0.5, atol=1e-5)

    def test_half_turn_about_z(self, queue):
        """diag(-1, -1, 1) mirrors each slice through the center."""
        vol = np.zeros((5, 17, 17), dtype=np.float32)
        vol[2, 8 + 2, 8 + 3] = 1.0
        with Rotator3(queue, 17, 17, 5) as rotator:
            out = rotator.rotate(vol, np.diag([-1.0, -1.0, 1.0]).astype(np.float32))
        assert out[2, 8 - 2, 8 - 3] == pytest.approx(1.0, abs=1e-5)

    def test_about_z_matches_2d(self, queue):
        """Rotation about z equals the 2D rotation of every slice."""
        rng = np.random.default_rng(5)
        vol = np.zeros((4, 33, 33), dtype=np.float32)
        vol[:, 8:25, 8:25] = rng.random((4, 17, 17), dtype=np.float32)
        theta = np.radians(30.0)
        with Rotator3(queue, 33, 33, 4) as r3, Rotator2(queue, 33, 33) as r2:
            out3 = r3.rotate(vol, PaethRotation3.from_axis_angle([0.0, 0.0, theta]))
            out2 = np.stack([r2.rotate(s, PaethRotation2.from_angle(theta)) for s in vol])
        np.testing.assert_allclose(out3, out2, atol=1e-4)

    def test_rotation_about_y(self, queue):
        """A voxel at (+6, 0, 0) moves to (6 cos, 0, -6 sin) about +y."""
        n = 25
        vol = np.zeros((n, n, n), dtype=np.float64)
        vol[12, 12, 12 + 6] = 1.0
        theta = np.radians(30.0)
        c, s = np.cos(theta), np.sin(theta)
        m = np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])
        with Rotator3(queue, n, n, n, dtype=np.float64) as rotator:
            out = rotator.rotate(vol, m)
        assert out.sum() == pytest.approx(1.0, rel=1e-6)
        cz, cy, cx = centroid(out)
        assert cx == pytest.approx(6 * c, abs=0.3)
        assert cy == pytest.approx(0.0, abs=1e-6)
        assert cz == pytest.approx(-6 * s, abs=0.3)

    def test_degenerate_y_pivot(self, queue):
        """A quarter turn about x has no decomposition."""
        m = np.array([[1, 0, 0], [0, 0, -1], [0, 1, 0]], dtype=np.float32)
        with Rotator3(queue, 4, 4, 4) as rotator:
            with pytest.raises(DegenerateShearPivot):
                rotator.rotate(np.zeros((4, 4, 4), np.float32), m)
            assert rotator.state is PassState.IDLE

    def test_state_after_forward(self, queue):
        """State resolves to COMPLETE after the z pass finished."""
        with Rotator3(queue, 8, 8, 8) as rotator:
            src = queue.create_buffer_from(np.ones(512, np.float32))
            dst = queue.create_buffer(512, np.float32)
            done = rotator.forward(src, dst, PaethRotation3.from_axis_angle([0.1, 0.0, 0.2]))
            done.wait(timeout=60)
            assert rotator.state is PassState.COMPLETE
            assert "complete" in repr(rotator)


class TestHostFunctions:
    """Test rotate_image / rotate_volume."""

    def test_rotate_image_degrees(self):
        """A scalar rotation is an angle in degrees."""
        img = point_image(33, 5, 0)
        out = rotate_image(img, 90.0 - 60.0)
        expected = rotate_image(img, rotation_matrix_2d(np.radians(30.0)))
        np.testing.assert_allclose(out, expected, atol=1e-6)

    def test_rotate_image_dtype(self):
        """Integer input runs as float32; float64 stays float64."""
        img = np.full((8, 8), 3, dtype=np.uint8)
        out = rotate_image(img, 12.0)
        assert out.dtype == np.float32
        np.testing.assert_allclose(out, 3.0, atol=1e-5)
        assert rotate_image(img.astype(np.float64), 12.0).dtype == np.float64

    def test_rotate_image_channels(self):
        """Channels are rotated independently."""
        rng = np.random.default_rng(6)
        img = rng.random((20, 24, 3), dtype=np.float32)
        out = rotate_image(img, 17.0)
        assert out.shape == (20, 24, 3)
        np.testing.assert_allclose(out[..., 1], rotate_image(img[..., 1], 17.0), atol=1e-6)

    def test_rotate_image_quarter_turn(self):
        """+-90 degrees is not supported."""
        with pytest.raises(DegenerateShearPivot):
            rotate_image(np.zeros((8, 8), np.float32), 90.0)

    def test_rotate_image_bad_shape(self):
        """1D input is rejected."""
        with pytest.raises(ValueError):
            rotate_image(np.zeros(8), 10.0)

    def test_shared_queue_stays_open(self, queue):
        """A caller-provided queue is not closed."""
        img = np.ones((8, 8), np.float32)
        rotate_image(img, 5.0, queue=queue)
        out = rotate_image(img, 5.0, queue=queue)
        np.testing.assert_allclose(out, 1.0, atol=1e-5)

    def test_rotate_volume_axis_angle(self):
        """A length-3 rotation is an axis-angle vector."""
        rng = np.random.default_rng(8)
        vol = rng.random((6, 7, 8), dtype=np.float32)
        aa = [0.1, -0.2, 0.15]
        out = rotate_volume(vol, aa)
        expected = rotate_volume(vol, axis_angle_to_rotation_matrix(aa, dtype=np.float32))
        np.testing.assert_allclose(out, expected, atol=1e-5)

    def test_rotate_volume_identity(self):
        """Identity leaves the volume unchanged."""
        vol = np.arange(4 * 5 * 6, dtype=np.float64).reshape(4, 5, 6)
        np.testing.assert_allclose(rotate_volume(vol, np.eye(3)), vol, atol=1e-9)


class TestCpuQueueShutdown:
    """The worker-thread launch model must not block interpreter exit."""

    def test_tbb_is_last_resort(self):
        """tbb sorts after omp and workqueue unless the environment says otherwise."""
        import numba

        from paeth.cpu import kernels

        assert kernels.THREADING_LAYER_PRIORITY[-1] == "tbb"
        if "NUMBA_THREADING_LAYER_PRIORITY" not in os.environ:
            assert numba.config.THREADING_LAYER_PRIORITY[-1] == "tbb"

    def test_process_exits_after_rotation(self):
        """A process that ran a rotation on a CpuQueue exits cleanly."""
        script = (
            "import numpy as np\n"
            "from paeth import rotate_image\n"
            "out = rotate_image(np.ones((16, 16), np.float32), 25.0)\n"
            "assert abs(float(out.mean()) - 1.0) < 1e-5\n"
        )
        env = dict(os.environ)
        env.pop("NUMBA_THREADING_LAYER", None)
        env.pop("NUMBA_THREADING_LAYER_PRIORITY", None)
        src = str(Path(__file__).resolve().parents[1] / "src")
        env["PYTHONPATH"] = os.pathsep.join(p for p in (src, env.get("PYTHONPATH")) if p)
        result = subprocess.run(
            [sys.executable, "-c", script],
            env=env,
            capture_output=True,
            text=True,
            timeout=300,
        )
        assert result.returncode == 0, result.stderr
