"""Command queue over torch tensors.

On CUDA every command is issued on one :class:`torch.cuda.Stream`, so commands
run in submission order without host synchronization. Dependencies from the
same device become ``stream.wait_event`` calls. Other events (e.g. a
:class:`~paeth.events.UserEvent`) are waited for on the host before issuing.

On a CPU device commands execute synchronously; each returns a
:class:`~paeth.events.CompletedEvent` that carries the error if the command
failed.

Example:
    >>> queue = TorchQueue("cuda")
    >>> rotator = Rotator2(queue, 1024, 1024)
    >>> src = queue.create_buffer_from(image)
    >>> dst = queue.create_buffer(1024 * 1024, np.float32)
    >>> rotator.forward(src, dst, PaethRotation2.from_degrees(30)).wait()
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Sequence

import numpy as np
import torch

from paeth.abi import (
    PROGRAM_KERNELS,
    PROGRAM_SIGNATURES,
    KernelArgs,
    check_geometry,
    parse_program_source,
)
from paeth.events import CompletedEvent
from paeth.exceptions import AllocationFailure, BuildFailure, DeviceFailure, DispatchFailure
from paeth.protocols import Event
from paeth.torch.kernels import PROGRAMS

logger = logging.getLogger(__name__)

TORCH_DTYPES = {
    np.dtype(np.float32): torch.float32,
    np.dtype(np.float64): torch.float64,
}


def _torch_dtype(dtype) -> torch.dtype:
    dt = np.dtype(dtype)
    if dt not in TORCH_DTYPES:
        raise AllocationFailure(f"No torch buffer type for element type {dt}")
    return TORCH_DTYPES[dt]


class TorchBuffer:
    """Flat tensor owned by a :class:`TorchQueue`."""

    def __init__(self, tensor: torch.Tensor):
        self.tensor = tensor
        self.size = tensor.numel()
        self.dtype = np.dtype(str(tensor.dtype).removeprefix("torch."))
        self.device = tensor.device
        self.released = False

    def release(self) -> None:
        self.released = True
        self.tensor = None

    def __repr__(self) -> str:
        state = " released" if self.released else ""
        return f"TorchBuffer(size={self.size}, dtype={self.dtype}, device={self.device}{state})"


class TorchEvent:
    """Completion handle backed by a recorded :class:`torch.cuda.Event`."""

    def __init__(self, event: torch.cuda.Event, label: str = ""):
        self.event = event
        self.label = label
        self._error: BaseException | None = None

    def done(self) -> bool:
        if self._error is not None:
            return True
        try:
            return self.event.query()
        except RuntimeError as exc:
            self._error = exc
            return True

    def failed(self) -> bool:
        return self.done() and self._error is not None

    def wait(self, timeout: float | None = None) -> None:
        # CUDA events cannot be waited on with a timeout; ``timeout`` is ignored
        if self._error is None:
            try:
                self.event.synchronize()
            except RuntimeError as exc:
                self._error = exc
        if self._error is not None:
            raise DeviceFailure(f"{self.label or 'kernel'} failed: {self._error}") from self._error

    def __repr__(self) -> str:
        return f"TorchEvent({self.label!r})"


class TorchKernel:
    """Kernel object: a torch (or triton) launcher plus its argument table."""

    def __init__(self, name: str, program: str, dtype: np.dtype, func, takes_local_size: bool):
        self.name = name
        self.program = program
        self.signature = PROGRAM_SIGNATURES[program]
        self.ndim = int(program[-1])
        self.func = func
        self.takes_local_size = takes_local_size
        self.args = KernelArgs(name, self.signature, dtype)

    def bind_scalar(self, index: int, value: float | int) -> None:
        self.args.set_scalar(index, value)

    def bind_buffer(self, index: int, buffer: TorchBuffer) -> None:
        self.args.set_buffer(index, buffer, TorchBuffer)


class TorchProgram:
    """Built program holding torch or triton launchers."""

    def __init__(self, source: str, kernels: dict, triton: bool):
        self.source = source
        self.program, self.dtype = parse_program_source(source)
        self.triton = triton
        self._kernels = kernels

    def create_kernel(self, name: str) -> TorchKernel:
        if name not in PROGRAM_KERNELS[self.program]:
            raise BuildFailure(f"Program '{self.source}' has no kernel '{name}'")
        return TorchKernel(name, self.program, self.dtype, self._kernels[name], self.triton)


class TorchQueue:
    """In-order command queue on one torch device.

    :param device: Torch device (default: ``cuda`` if available, else ``cpu``)
    :param stream: CUDA stream to issue on (default: a new stream)
    :param use_triton: Build 2D programs from the triton kernels (CUDA, float32)
    :param max_work_group_size: Largest accepted ``local_size`` product
    """

    def __init__(
        self,
        device: str | torch.device | None = None,
        stream: torch.cuda.Stream | None = None,
        use_triton: bool = False,
        max_work_group_size: int = 1024,
    ):
        if device is None:
            device = "cuda" if torch.cuda.is_available() else "cpu"
        self.device = torch.device(device)
        self.use_triton = use_triton
        self.max_work_group_size = max_work_group_size
        if self.device.type == "cuda":
            self.stream = stream if stream is not None else torch.cuda.Stream(self.device)
        else:
            self.stream = None

    @property
    def is_cuda(self) -> bool:
        return self.device.type == "cuda"

    def __repr__(self) -> str:
        return f"TorchQueue(device={self.device}, use_triton={self.use_triton})"

    # ------------------------------------------------------------------
    # Programs and buffers
    # ------------------------------------------------------------------

    def build_program(self, source: str) -> TorchProgram:
        program, dtype = parse_program_source(source)
        if not self.use_triton:
            built = TorchProgram(source, PROGRAMS[program], triton=False)
            logger.debug("[TorchQueue] Built program %s on %s", source, self.device)
            return built

        from paeth.torch import triton_kernels

        if not triton_kernels.TRITON_AVAILABLE:
            raise BuildFailure("use_triton=True but triton is not installed")
        if not self.is_cuda:
            raise BuildFailure(f"triton kernels need a CUDA device, queue is on {self.device}")
        if program not in triton_kernels.PROGRAMS or dtype != np.dtype(np.float32):
            raise BuildFailure(f"No triton variant of '{source}' (float32 rotate2 only)")
        logger.debug("[TorchQueue] Built triton program %s on %s", source, self.device)
        return TorchProgram(source, triton_kernels.PROGRAMS[program], triton=True)

    def create_buffer(self, size: int, dtype: np.dtype) -> TorchBuffer:
        size = int(size)
        if size < 1:
            raise AllocationFailure(f"Cannot allocate a buffer of {size} elements")
        torch_dtype = _torch_dtype(dtype)
        try:
            with self._stream_context():
                tensor = torch.empty(size, dtype=torch_dtype, device=self.device)
        except RuntimeError as exc:
            raise AllocationFailure(
                f"Out of memory on {self.device} allocating {size} x {np.dtype(dtype)}"
            ) from exc
        return TorchBuffer(tensor)

    def create_buffer_from(self, host: np.ndarray) -> TorchBuffer:
        host = np.asarray(host)
        buffer = self.create_buffer(host.size, host.dtype)
        self.write_buffer(buffer, host).wait()
        return buffer

    def write_buffer(
        self, buffer: TorchBuffer, host: np.ndarray, wait_for: Sequence[Event] = ()
    ) -> Event:
        host = np.ascontiguousarray(host, dtype=buffer.dtype).ravel()
        if host.size != buffer.size:
            raise DispatchFailure(f"write of {host.size} elements into buffer of {buffer.size}")
        tensor = self._tensor(buffer, "write_buffer")
        staged = torch.from_numpy(host.copy())
        return self._issue("write_buffer", wait_for, lambda: tensor.copy_(staged))

    def read_buffer(self, buffer: TorchBuffer, wait_for: Sequence[Event] = ()) -> np.ndarray:
        tensor = self._tensor(buffer, "read_buffer")
        out: list[torch.Tensor] = []
        event = self._issue(
            "read_buffer", wait_for, lambda: out.append(tensor.to("cpu", copy=True))
        )
        event.wait()
        return out[0].numpy()

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    def run(
        self,
        kernel: TorchKernel,
        global_size: tuple[int, ...],
        local_size: tuple[int, ...] | None = None,
        wait_for: Sequence[Event] = (),
    ) -> Event:
        if not isinstance(kernel, TorchKernel):
            raise DispatchFailure(f"TorchQueue cannot run {type(kernel).__name__}")
        global_size, local_size = check_geometry(
            kernel.name, global_size, local_size, self.max_work_group_size
        )
        if len(global_size) != kernel.ndim:
            raise DispatchFailure(
                f"{kernel.name}: {kernel.program} expects a {kernel.ndim}-D global size, "
                f"got {global_size}"
            )

        args = []
        for value in kernel.args.snapshot():
            if isinstance(value, TorchBuffer):
                tensor = self._tensor(value, kernel.name)
                if tensor.device != self.device:
                    raise DispatchFailure(
                        f"{kernel.name}: buffer on {tensor.device}, queue on {self.device}"
                    )
                value = tensor
            args.append(value)
        args = tuple(args)
        func = kernel.func

        if kernel.takes_local_size:

            def launch():
                func(global_size, args, local_size)

        else:

            def launch():
                func(global_size, args)

        label = f"{kernel.program}.{kernel.name}"
        logger.debug("[TorchQueue] Issue %s global=%s on %s", label, global_size, self.device)
        return self._issue(label, wait_for, launch)

    def finish(self) -> None:
        if self.stream is not None:
            self.stream.synchronize()

    # ------------------------------------------------------------------

    def _stream_context(self):
        if self.stream is not None:
            return torch.cuda.stream(self.stream)
        return contextlib.nullcontext()

    def _issue(self, label: str, wait_for: Sequence[Event], fn) -> Event:
        if self.stream is None:
            try:
                for dep in wait_for:
                    dep.wait()
                with torch.no_grad():
                    fn()
            except DispatchFailure:
                raise
            except Exception as exc:
                logger.debug("[TorchQueue] %s failed: %s", label, exc)
                return CompletedEvent(label, error=exc)
            return CompletedEvent(label)

        for dep in wait_for:
            if isinstance(dep, TorchEvent):
                if dep.failed():
                    error = DeviceFailure(f"{label}: dependency {dep.label!r} failed")
                    logger.debug("[TorchQueue] %s skipped: %s", label, error)
                    return CompletedEvent(label, error=error)
                self.stream.wait_event(dep.event)
            else:
                try:
                    dep.wait()
                except DeviceFailure as exc:
                    return CompletedEvent(label, error=exc)

        event = TorchEvent(torch.cuda.Event(), label=label)
        try:
            with torch.cuda.stream(self.stream), torch.no_grad():
                fn()
        except DispatchFailure:
            raise
        except RuntimeError as exc:
            event._error = exc
        event.event.record(self.stream)
        return event

    @staticmethod
    def _tensor(buffer: TorchBuffer, what: str) -> torch.Tensor:
        if buffer.released or buffer.tensor is None:
            raise DispatchFailure(f"{what}: buffer was released")
        return buffer.tensor
