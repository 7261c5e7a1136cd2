"""
Protocol definitions for the compute backend consumed by the rotators.

The rotation pipelines never discover devices or create contexts. They are
handed a :class:`CommandQueue` and use only the capabilities listed here:
build a program, create kernels, bind typed arguments, allocate/read/write
buffers and launch kernels gated on explicit wait-lists. Each launch returns
an :class:`Event`.

Two implementations ship with paeth:

- :class:`paeth.cpu.CpuQueue` - numba kernels on an in-order worker thread
- :class:`paeth.torch.TorchQueue` - torch (optionally triton) kernels on a
  CUDA stream, or synchronously on CPU tensors
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    import numpy as np

    from paeth.abi import KernelArg


@runtime_checkable
class Event(Protocol):
    """Completion handle of asynchronously issued work."""

    def done(self) -> bool:
        """True once the work finished, successfully or not."""
        ...

    def failed(self) -> bool:
        """True if the work finished with an error."""
        ...

    def wait(self, timeout: float | None = None) -> None:
        """Block until the work finished.

        :param timeout: Seconds to wait; ``None`` waits indefinitely
        :raises DeviceFailure: If the work (or a dependency) failed
        :raises TimeoutError: If ``timeout`` elapsed first
        """
        ...


@runtime_checkable
class Buffer(Protocol):
    """Flat device buffer of ``size`` elements of ``dtype``."""

    size: int
    dtype: np.dtype
    released: bool

    def release(self) -> None:
        """Drop the buffer's storage. Work already queued keeps its reference."""
        ...


@runtime_checkable
class Kernel(Protocol):
    """Kernel object with positional argument bindings."""

    name: str
    signature: tuple[KernelArg, ...]

    def bind_scalar(self, index: int, value: float | int) -> None:
        """Bind a scalar argument.

        :raises DispatchFailure: On a kind mismatch or bad index
        """
        ...

    def bind_buffer(self, index: int, buffer: Buffer) -> None:
        """Bind a buffer argument.

        :raises DispatchFailure: On a kind/type/element-type mismatch
        """
        ...


@runtime_checkable
class Program(Protocol):
    """Built program holding the kernels of one source."""

    source: str

    def create_kernel(self, name: str) -> Kernel:
        """Create a kernel object.

        :raises BuildFailure: If the program has no kernel ``name``
        """
        ...


@runtime_checkable
class CommandQueue(Protocol):
    """In-order command queue on one device."""

    def build_program(self, source: str) -> Program:
        """Build a program from its source name (e.g. ``"rotate2_f32"``).

        :raises BuildFailure: If the source is unknown or fails to build
        """
        ...

    def create_buffer(self, size: int, dtype: np.dtype) -> Buffer:
        """Allocate an uninitialized buffer.

        :raises AllocationFailure: If the allocation fails
        """
        ...

    def create_buffer_from(self, host: np.ndarray) -> Buffer:
        """Allocate a buffer initialized with a copy of ``host`` (flattened)."""
        ...

    def write_buffer(
        self, buffer: Buffer, host: np.ndarray, wait_for: Sequence[Event] = ()
    ) -> Event:
        """Copy ``host`` into ``buffer`` after ``wait_for`` completed."""
        ...

    def read_buffer(self, buffer: Buffer, wait_for: Sequence[Event] = ()) -> np.ndarray:
        """Blocking read of ``buffer`` into a new host array."""
        ...

    def run(
        self,
        kernel: Kernel,
        global_size: tuple[int, ...],
        local_size: tuple[int, ...] | None = None,
        wait_for: Sequence[Event] = (),
    ) -> Event:
        """Launch ``kernel`` over ``global_size`` once ``wait_for`` completed.

        Arguments are captured when the launch is enqueued.

        :raises DispatchFailure: If the launch is rejected
        """
        ...

    def finish(self) -> None:
        """Block until all queued work completed."""
        ...
