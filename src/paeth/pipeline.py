"""Multi-pass shear rotation pipelines.

A rotator is built once per image size on a caller-provided command queue and
reused for any number of rotations. ``forward`` derives every pass's filter
parameters on the host first, so a degenerate rotation raises before any
kernel is dispatched, then chains the passes through the queue:

    Rotator2:  src --shear_x--> tmp --shear_y--> dst
    Rotator3:  src --shear_x--> tmp_a --shear_y--> tmp_b --shear_z--> dst

Each pass is gated on the previous pass's event; the first is gated on the
caller's ``wait_for``. The last event is returned without blocking.

Example:
    >>> from paeth import CpuQueue, PaethRotation2, Rotator2
    >>>
    >>> queue = CpuQueue()
    >>> with Rotator2(queue, 512, 512) as rotator:
    ...     src = queue.create_buffer_from(image)
    ...     dst = queue.create_buffer(512 * 512, np.float32)
    ...     done = rotator.forward(src, dst, PaethRotation2.from_degrees(30))
    ...     result = queue.read_buffer(dst, wait_for=[done]).reshape(512, 512)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum

import numpy as np

from paeth.abi import program_source
from paeth.config.values import DEFAULT_CONFIG, RotatorConfig
from paeth.decompose import PaethRotation2, PaethRotation3
from paeth.exceptions import DispatchFailure, PaethError, PipelineBusy
from paeth.params import pass_params_3d, x_pass_params, y_pass_params
from paeth.protocols import Buffer, CommandQueue, Event, Kernel
from paeth.types import FloatDType, MatrixLike

logger = logging.getLogger(__name__)


class PassState(Enum):
    """Progress of the most recent ``forward`` call."""

    IDLE = "idle"
    X_DISPATCHED = "x_dispatched"
    Y_DISPATCHED = "y_dispatched"
    Z_DISPATCHED = "z_dispatched"
    COMPLETE = "complete"
    FAILED = "failed"


_IN_FLIGHT = (PassState.X_DISPATCHED, PassState.Y_DISPATCHED, PassState.Z_DISPATCHED)


class _ShearRotator:
    """Resource handling, state tracking and dispatch shared by the rotators."""

    ndim: int
    kernel_names: tuple[str, ...]

    def __init__(
        self,
        queue: CommandQueue,
        shape: tuple[int, ...],
        dtype: FloatDType,
        config: RotatorConfig | None,
        n_intermediates: int,
    ):
        if any(int(n) < 1 for n in shape):
            raise ValueError(f"{type(self).__name__} needs positive dimensions, got {shape}")
        self.queue = queue
        self.config = config if config is not None else DEFAULT_CONFIG
        self.dtype = np.dtype(dtype)
        self.size = int(np.prod(shape))
        self._name = type(self).__name__

        source = program_source(self.ndim, self.dtype)
        self.program = queue.build_program(source)
        self.kernels: dict[str, Kernel] = {
            name: self.program.create_kernel(name) for name in self.kernel_names
        }
        self._intermediates: list[Buffer] = []
        try:
            for _ in range(n_intermediates):
                self._intermediates.append(queue.create_buffer(self.size, self.dtype))
        except PaethError:
            self._release_intermediates()
            raise

        self._state = PassState.IDLE
        self._pending: Event | None = None
        self._closed = False
        logger.debug(
            "[%s] Built %s for shape %s on %s", self._name, source, shape, type(queue).__name__
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> PassState:
        """Current pass state; resolves to COMPLETE/FAILED once the last pass finished."""
        if self._state in _IN_FLIGHT and self._pending is not None and self._pending.done():
            self._state = PassState.FAILED if self._pending.failed() else PassState.COMPLETE
        return self._state

    @property
    def pending(self) -> Event | None:
        """Completion handle of the most recent ``forward``."""
        return self._pending

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_ready(self, wait_for: Sequence[Event]) -> None:
        if self._closed:
            raise DispatchFailure(f"{self._name} is closed")
        pending = self._pending
        if pending is None or pending.done():
            return
        if any(event is pending for event in wait_for):
            return
        raise PipelineBusy(
            f"{self._name}: previous forward still in flight; pass its event in wait_for "
            f"to chain, or wait for it first"
        )

    def _check_buffer(self, buffer: Buffer, role: str) -> None:
        if buffer.released:
            raise DispatchFailure(f"{self._name}: {role} buffer was released")
        if buffer.size != self.size:
            raise DispatchFailure(
                f"{self._name}: {role} buffer has {buffer.size} elements, expected {self.size}"
            )
        if np.dtype(buffer.dtype) != self.dtype:
            raise DispatchFailure(
                f"{self._name}: {role} buffer has element type {buffer.dtype}, "
                f"expected {self.dtype}"
            )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch(
        self,
        name: str,
        scalars: tuple,
        src: Buffer,
        dst: Buffer,
        global_size: tuple[int, ...],
        local_size: tuple[int, ...],
        wait_for: Sequence[Event],
        state: PassState,
    ) -> Event:
        kernel = self.kernels[name]
        try:
            for index, value in enumerate(scalars):
                kernel.bind_scalar(index, value)
            kernel.bind_buffer(len(scalars), src)
            kernel.bind_buffer(len(scalars) + 1, dst)
            event = self.queue.run(kernel, global_size, local_size, wait_for)
        except PaethError:
            self._state = PassState.FAILED
            raise
        except Exception as exc:
            self._state = PassState.FAILED
            raise DispatchFailure(f"{self._name}: {name} launch failed: {exc}") from exc
        self._state = state
        self._pending = event
        return event

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _release_intermediates(self) -> None:
        for buffer in self._intermediates:
            buffer.release()
        self._intermediates = []

    def close(self) -> None:
        """Release the kernels and intermediate buffers. The queue stays open."""
        if self._closed:
            return
        self._closed = True
        self._release_intermediates()
        self.kernels = {}
        logger.debug("[%s] Closed", self._name)

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _run_host(self, image: np.ndarray, rotation, shape: tuple[int, ...]) -> np.ndarray:
        image = np.asarray(image)
        if image.shape != shape:
            raise ValueError(f"{self._name}: expected an array of shape {shape}, got {image.shape}")
        src = self.queue.create_buffer_from(np.ascontiguousarray(image, dtype=self.dtype))
        dst = self.queue.create_buffer(self.size, self.dtype)
        try:
            done = self.forward(src, dst, rotation)
            out = self.queue.read_buffer(dst, wait_for=[done])
        finally:
            src.release()
            dst.release()
        return np.asarray(out).reshape(shape)


class Rotator2(_ShearRotator):
    """Two-pass rotation of ``ny x nx`` row-major images.

    :param queue: Command queue to build and dispatch on (not owned)
    :param nx: Image width
    :param ny: Image height
    :param dtype: Element type of the image buffers (float32 or float64)
    :param config: Launch/tolerance settings (default :data:`DEFAULT_CONFIG`)
    :raises BuildFailure: If the program cannot be built for ``dtype``
    :raises AllocationFailure: If the intermediate buffer cannot be allocated
    """

    ndim = 2
    kernel_names = ("shear_x", "shear_y")

    def __init__(
        self,
        queue: CommandQueue,
        nx: int,
        ny: int,
        dtype: FloatDType = np.float32,
        config: RotatorConfig | None = None,
    ):
        self.nx = int(nx)
        self.ny = int(ny)
        self.wx = (self.nx - 1) / 2.0
        self.wy = (self.ny - 1) / 2.0
        super().__init__(queue, (self.ny, self.nx), dtype, config, n_intermediates=1)

    def __repr__(self) -> str:
        return f"Rotator2(nx={self.nx}, ny={self.ny}, dtype={self.dtype}, state={self.state.value})"

    @property
    def tmp(self) -> Buffer:
        """Intermediate buffer between the x and y passes."""
        return self._intermediates[0]

    def decompose(self, rotation: PaethRotation2 | MatrixLike) -> PaethRotation2:
        """Shear descriptor for ``rotation`` at this rotator's precision."""
        if isinstance(rotation, PaethRotation2):
            return rotation
        m = np.asarray(rotation, dtype=self.dtype)
        return PaethRotation2.from_matrix(
            m, atol=self.config.tolerance_for(self.dtype), check=self.config.check_rotation
        )

    def forward(
        self,
        src: Buffer,
        dst: Buffer,
        rotation: PaethRotation2 | MatrixLike,
        wait_for: Sequence[Event] = (),
    ) -> Event:
        """Enqueue both passes and return the y pass's completion handle.

        ``src`` and ``dst`` may be the same buffer.

        :param src: Input image buffer (``nx * ny`` elements)
        :param dst: Output image buffer (``nx * ny`` elements)
        :param rotation: Shear descriptor or 2x2 rotation matrix
        :param wait_for: Events that must complete before the x pass starts
        :returns: Event completing when ``dst`` holds the rotated image
        :raises DegenerateShearPivot: If a pivot vanishes (nothing is dispatched)
        :raises PipelineBusy: If the previous forward is in flight and not in ``wait_for``
        :raises DispatchFailure: On a buffer mismatch or rejected launch
        """
        rotation = self.decompose(rotation)
        px = x_pass_params(rotation)
        py = y_pass_params(rotation)

        wait_for = tuple(wait_for)
        self._check_ready(wait_for)
        self._check_buffer(src, "src")
        self._check_buffer(dst, "dst")

        geometry = (self.nx, self.ny, self.wx, self.wy)
        local = self.config.local_size
        tmp = self.tmp

        evt_x = self._dispatch(
            "shear_x",
            (*px.kernel_args(), *geometry),
            src,
            tmp,
            (self.nx, self.ny),
            local,
            wait_for,
            PassState.X_DISPATCHED,
        )
        evt_y = self._dispatch(
            "shear_y",
            (*py.kernel_args(), *geometry),
            tmp,
            dst,
            (self.ny, self.nx),
            local,
            [evt_x],
            PassState.Y_DISPATCHED,
        )
        logger.debug(
            "[Rotator2] forward xx=%.6g xy=%.6g yx=%.6g yy=%.6g",
            *(float(v) for v in rotation.as_tuple()),
        )
        return evt_y

    def rotate(self, image: np.ndarray, rotation: PaethRotation2 | MatrixLike) -> np.ndarray:
        """Rotate a host image: upload, run both passes, wait and read back.

        :param image: Array of shape ``(ny, nx)``
        :param rotation: Shear descriptor or 2x2 rotation matrix
        :returns: Rotated image of shape ``(ny, nx)``
        """
        return self._run_host(image, rotation, (self.ny, self.nx))


class Rotator3(_ShearRotator):
    """Three-pass rotation of ``(nz, ny, nx)`` volumes, x fastest.

    :param queue: Command queue to build and dispatch on (not owned)
    :param nx: Volume width
    :param ny: Volume height
    :param nz: Volume depth
    :param dtype: Element type of the volume buffers (float32 or float64)
    :param config: Launch/tolerance settings (default :data:`DEFAULT_CONFIG`)
    """

    ndim = 3
    kernel_names = ("shear_x", "shear_y", "shear_z")

    def __init__(
        self,
        queue: CommandQueue,
        nx: int,
        ny: int,
        nz: int,
        dtype: FloatDType = np.float32,
        config: RotatorConfig | None = None,
    ):
        self.nx = int(nx)
        self.ny = int(ny)
        self.nz = int(nz)
        self.wx = (self.nx - 1) / 2.0
        self.wy = (self.ny - 1) / 2.0
        self.wz = (self.nz - 1) / 2.0
        super().__init__(queue, (self.nz, self.ny, self.nx), dtype, config, n_intermediates=2)

    def __repr__(self) -> str:
        return (
            f"Rotator3(nx={self.nx}, ny={self.ny}, nz={self.nz}, dtype={self.dtype}, "
            f"state={self.state.value})"
        )

    def decompose(self, rotation: PaethRotation3 | MatrixLike) -> PaethRotation3:
        """Shear descriptor for ``rotation`` at this rotator's precision."""
        if isinstance(rotation, PaethRotation3):
            return rotation
        m = np.asarray(rotation, dtype=self.dtype)
        return PaethRotation3.from_matrix(
            m, atol=self.config.tolerance_for(self.dtype), check=self.config.check_rotation
        )

    def forward(
        self,
        src: Buffer,
        dst: Buffer,
        rotation: PaethRotation3 | MatrixLike,
        wait_for: Sequence[Event] = (),
    ) -> Event:
        """Enqueue the x, y and z passes and return the z pass's completion handle.

        :param src: Input volume buffer (``nx * ny * nz`` elements)
        :param dst: Output volume buffer
        :param rotation: Shear descriptor or 3x3 rotation matrix
        :param wait_for: Events that must complete before the x pass starts
        :returns: Event completing when ``dst`` holds the rotated volume
        """
        rotation = self.decompose(rotation)
        px, py, pz = pass_params_3d(rotation)

        wait_for = tuple(wait_for)
        self._check_ready(wait_for)
        self._check_buffer(src, "src")
        self._check_buffer(dst, "dst")

        geometry = (self.nx, self.ny, self.nz, self.wx, self.wy, self.wz)
        local = self.config.local_size_3d
        tmp_a, tmp_b = self._intermediates

        evt_x = self._dispatch(
            "shear_x",
            (*px.kernel_args(), *geometry),
            src,
            tmp_a,
            (self.nx, self.ny, self.nz),
            local,
            wait_for,
            PassState.X_DISPATCHED,
        )
        evt_y = self._dispatch(
            "shear_y",
            (*py.kernel_args(), *geometry),
            tmp_a,
            tmp_b,
            (self.ny, self.nx, self.nz),
            local,
            [evt_x],
            PassState.Y_DISPATCHED,
        )
        evt_z = self._dispatch(
            "shear_z",
            (*pz.kernel_args(), *geometry),
            tmp_b,
            dst,
            (self.nz, self.nx, self.ny),
            local,
            [evt_y],
            PassState.Z_DISPATCHED,
        )
        logger.debug("[Rotator3] forward widths x=%s y=%s z=%s", px.widths, py.widths, pz.widths)
        return evt_z

    def rotate(self, volume: np.ndarray, rotation: PaethRotation3 | MatrixLike) -> np.ndarray:
        """Rotate a host volume of shape ``(nz, ny, nx)`` and return the result."""
        return self._run_host(volume, rotation, (self.nz, self.ny, self.nx))
