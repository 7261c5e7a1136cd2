"""In-order CPU command queue running the numba shear kernels.

Work is executed by a single worker thread per queue, so commands complete in
submission order like an in-order device queue. Every command first waits on
its wait-list; a failed dependency fails the command with
:class:`~paeth.exceptions.DeviceFailure`.

Example:
    >>> with CpuQueue() as queue:
    ...     rotator = Rotator2(queue, 256, 256)
    ...     out = rotator.rotate(image, PaethRotation2.from_degrees(30))
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from paeth.abi import (
    PROGRAM_KERNELS,
    PROGRAM_SIGNATURES,
    KernelArgs,
    check_geometry,
    parse_program_source,
)
from paeth.cpu.kernels import PROGRAMS
from paeth.events import FutureEvent, wait_all
from paeth.exceptions import AllocationFailure, BuildFailure, DispatchFailure
from paeth.protocols import Event

logger = logging.getLogger(__name__)

# The workqueue threading layer is not safe for concurrent parallel launches
# from several threads (one worker per queue, but several queues may exist)
_LAUNCH_LOCK = threading.Lock()


class CpuBuffer:
    """Host-memory buffer owned by a :class:`CpuQueue`."""

    def __init__(self, data: np.ndarray):
        self.data = data
        self.size = data.size
        self.dtype = data.dtype
        self.released = False

    def release(self) -> None:
        self.released = True
        self.data = None

    def __repr__(self) -> str:
        state = " released" if self.released else ""
        return f"CpuBuffer(size={self.size}, dtype={self.dtype}{state})"


class CpuKernel:
    """Kernel object: a numba function plus its argument table."""

    def __init__(self, name: str, program: str, dtype: np.dtype, func):
        self.name = name
        self.program = program
        self.signature = PROGRAM_SIGNATURES[program]
        self.ndim = int(program[-1])
        self.func = func
        self.args = KernelArgs(name, self.signature, dtype)

    def bind_scalar(self, index: int, value: float | int) -> None:
        self.args.set_scalar(index, value)

    def bind_buffer(self, index: int, buffer: CpuBuffer) -> None:
        self.args.set_buffer(index, buffer, CpuBuffer)


class CpuProgram:
    """Built program: the numba kernels of one rotation program."""

    def __init__(self, source: str):
        self.source = source
        self.program, self.dtype = parse_program_source(source)
        self._kernels = PROGRAMS[self.program]

    def create_kernel(self, name: str) -> CpuKernel:
        if name not in PROGRAM_KERNELS[self.program]:
            raise BuildFailure(f"Program '{self.source}' has no kernel '{name}'")
        return CpuKernel(name, self.program, self.dtype, self._kernels[name])


class CpuQueue:
    """In-order command queue backed by numba kernels.

    :param max_work_group_size: Largest accepted ``local_size`` product
    """

    def __init__(self, max_work_group_size: int = 1024):
        self.max_work_group_size = max_work_group_size
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="paeth-cpu-queue")
        self._closed = False

    def __enter__(self) -> CpuQueue:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"CpuQueue(max_work_group_size={self.max_work_group_size})"

    # ------------------------------------------------------------------
    # Programs and buffers
    # ------------------------------------------------------------------

    def build_program(self, source: str) -> CpuProgram:
        program = CpuProgram(source)
        logger.debug("[CpuQueue] Built program %s", source)
        return program

    def create_buffer(self, size: int, dtype: np.dtype) -> CpuBuffer:
        size = int(size)
        if size < 1:
            raise AllocationFailure(f"Cannot allocate a buffer of {size} elements")
        try:
            data = np.empty(size, dtype=np.dtype(dtype))
        except MemoryError as exc:
            raise AllocationFailure(
                f"Out of host memory allocating {size} x {np.dtype(dtype)}"
            ) from exc
        return CpuBuffer(data)

    def create_buffer_from(self, host: np.ndarray) -> CpuBuffer:
        host = np.asarray(host)
        buffer = self.create_buffer(host.size, host.dtype)
        buffer.data[:] = host.ravel()
        return buffer

    def write_buffer(
        self, buffer: CpuBuffer, host: np.ndarray, wait_for: Sequence[Event] = ()
    ) -> FutureEvent:
        host = np.asarray(host, dtype=buffer.dtype).ravel()
        if host.size != buffer.size:
            raise DispatchFailure(f"write of {host.size} elements into buffer of {buffer.size}")
        data = self._data(buffer, "write_buffer")
        # Copy now; the caller may reuse its array right away
        host = host.copy()

        def _write():
            wait_all(wait_for)
            data[:] = host

        return FutureEvent(self._submit(_write), label="write_buffer")

    def read_buffer(self, buffer: CpuBuffer, wait_for: Sequence[Event] = ()) -> np.ndarray:
        data = self._data(buffer, "read_buffer")

        def _read():
            wait_all(wait_for)
            return data.copy()

        event = FutureEvent(self._submit(_read), label="read_buffer")
        event.wait()
        return event.future.result()

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    def run(
        self,
        kernel: CpuKernel,
        global_size: tuple[int, ...],
        local_size: tuple[int, ...] | None = None,
        wait_for: Sequence[Event] = (),
    ) -> FutureEvent:
        if not isinstance(kernel, CpuKernel):
            raise DispatchFailure(f"CpuQueue cannot run {type(kernel).__name__}")
        global_size, _ = check_geometry(
            kernel.name, global_size, local_size, self.max_work_group_size
        )
        if len(global_size) != kernel.ndim:
            raise DispatchFailure(
                f"{kernel.name}: {kernel.program} expects a {kernel.ndim}-D global size, "
                f"got {global_size}"
            )

        # Capture arguments at enqueue time
        args = tuple(
            self._data(value, kernel.name) if isinstance(value, CpuBuffer) else value
            for value in kernel.args.snapshot()
        )
        wait_for = tuple(wait_for)
        func = kernel.func

        def _launch():
            wait_all(wait_for)
            with _LAUNCH_LOCK:
                func(*global_size, *args)

        label = f"{kernel.program}.{kernel.name}"
        logger.debug("[CpuQueue] Enqueue %s global=%s", label, global_size)
        return FutureEvent(self._submit(_launch), label=label)

    def finish(self) -> None:
        self._submit(lambda: None).result()

    def close(self) -> None:
        """Drain and stop the worker thread."""
        if not self._closed:
            self._closed = True
            self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------

    def _submit(self, fn):
        if self._closed:
            raise DispatchFailure("CpuQueue is closed")
        return self._executor.submit(fn)

    @staticmethod
    def _data(buffer: CpuBuffer, what: str) -> np.ndarray:
        if buffer.released or buffer.data is None:
            raise DispatchFailure(f"{what}: buffer was released")
        return buffer.data
