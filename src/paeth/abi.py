"""Kernel argument contract shared by the rotation pipelines and backends.

The pipelines bind arguments by index, exactly as listed in
:data:`SHEAR2_SIGNATURE` / :data:`SHEAR3_SIGNATURE`. Every backend kernel is
built against the same table, so a mismatch between dispatch code and kernel
is caught when binding (as :class:`~paeth.exceptions.DispatchFailure`) rather
than producing garbage.

Program sources are named ``rotate<ndim>_<suffix>`` (e.g. ``rotate2_f32``):
one monomorphic program per element type.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from paeth.exceptions import BuildFailure, DispatchFailure
from paeth.types import FloatDType


class ArgKind(Enum):
    """Kind of a kernel argument."""

    FLOAT = "float"
    INT = "int"
    BUFFER = "buffer"


@dataclass(frozen=True)
class KernelArg:
    """One positional kernel argument.

    Attributes:
        name: Argument name (documentation and error messages only)
        kind: Scalar/buffer kind checked when binding
    """

    name: str
    kind: ArgKind

    def __repr__(self) -> str:
        return f"KernelArg({self.name}: {self.kind.value})"


def _args(spec: str) -> tuple[KernelArg, ...]:
    kinds = {"f": ArgKind.FLOAT, "i": ArgKind.INT, "b": ArgKind.BUFFER}
    out = []
    for item in spec.split():
        name, kind = item.split(":")
        out.append(KernelArg(name, kinds[kind]))
    return tuple(out)


# shear_x / shear_y of program "rotate2_*"
SHEAR2_SIGNATURE = _args(
    "scale:f cross:f band_half_width:f tau0:f tau1:f tau2:f tau3:f "
    "nx:i ny:i wx:f wy:f src:b dst:b"
)

# shear_x / shear_y / shear_z of program "rotate3_*"
SHEAR3_SIGNATURE = _args(
    "scale:f cross_a:f cross_b:f width0:f width1:f width2:f "
    "nx:i ny:i nz:i wx:f wy:f wz:f src:b dst:b"
)

PROGRAM_KERNELS = {
    "rotate2": ("shear_x", "shear_y"),
    "rotate3": ("shear_x", "shear_y", "shear_z"),
}

PROGRAM_SIGNATURES = {
    "rotate2": SHEAR2_SIGNATURE,
    "rotate3": SHEAR3_SIGNATURE,
}

DTYPE_SUFFIXES = {
    np.dtype(np.float32): "f32",
    np.dtype(np.float64): "f64",
}


def program_source(ndim: int, dtype: FloatDType) -> str:
    """Name of the program implementing ``ndim``-D rotation for ``dtype``.

    :param ndim: 2 or 3
    :param dtype: Element type of the image buffers
    :returns: Program source name, e.g. ``"rotate2_f32"``
    :raises BuildFailure: If no kernel variant exists for ``dtype``
    """
    dt = np.dtype(dtype)
    if dt not in DTYPE_SUFFIXES:
        supported = ", ".join(str(d) for d in DTYPE_SUFFIXES)
        raise BuildFailure(f"No kernel variant for element type {dt} (supported: {supported})")
    if f"rotate{ndim}" not in PROGRAM_KERNELS:
        raise BuildFailure(f"No rotation program for ndim={ndim}")
    return f"rotate{ndim}_{DTYPE_SUFFIXES[dt]}"


def parse_program_source(source: str) -> tuple[str, np.dtype]:
    """Split a program source name into ``(program, dtype)``.

    :raises BuildFailure: If the name is not a known program/element type
    """
    program, _, suffix = source.partition("_")
    if program not in PROGRAM_KERNELS:
        raise BuildFailure(f"Unknown program source '{source}'")
    for dt, known in DTYPE_SUFFIXES.items():
        if known == suffix:
            return program, dt
    raise BuildFailure(f"Unknown element type suffix in program source '{source}'")


class KernelArgs:
    """Argument table for one kernel object.

    Backends keep one table per kernel; values are captured with
    :meth:`snapshot` at enqueue time, so rebinding after a launch never
    affects work already queued.
    """

    def __init__(self, name: str, signature: tuple[KernelArg, ...], dtype: np.dtype):
        self.name = name
        self.signature = signature
        self.dtype = np.dtype(dtype)
        self._values: list[object] = [None] * len(signature)
        self._bound = [False] * len(signature)

    def _arg(self, index: int, kind: ArgKind) -> KernelArg:
        if not 0 <= index < len(self.signature):
            raise DispatchFailure(
                f"{self.name}: argument index {index} out of range (0..{len(self.signature) - 1})"
            )
        arg = self.signature[index]
        if kind is ArgKind.BUFFER and arg.kind is not ArgKind.BUFFER:
            raise DispatchFailure(f"{self.name}: argument {index} ({arg.name}) is not a buffer")
        if kind is not ArgKind.BUFFER and arg.kind is ArgKind.BUFFER:
            raise DispatchFailure(f"{self.name}: argument {index} ({arg.name}) expects a buffer")
        return arg

    def set_scalar(self, index: int, value: float | int) -> None:
        """Bind a scalar after checking it against the signature."""
        arg = self._arg(index, ArgKind.FLOAT)
        if isinstance(value, bool | np.bool_):
            raise DispatchFailure(f"{self.name}: argument {index} ({arg.name}) got a bool")
        if arg.kind is ArgKind.INT:
            if not isinstance(value, int | np.integer):
                raise DispatchFailure(
                    f"{self.name}: argument {index} ({arg.name}) expects int, "
                    f"got {type(value).__name__}"
                )
            value = int(value)
        else:
            if not isinstance(value, int | float | np.integer | np.floating):
                raise DispatchFailure(
                    f"{self.name}: argument {index} ({arg.name}) expects float, "
                    f"got {type(value).__name__}"
                )
            # Scalars travel at the kernel's precision
            value = float(self.dtype.type(value))
        self._values[index] = value
        self._bound[index] = True

    def set_buffer(self, index: int, buffer, buffer_type: type) -> None:
        """Bind a buffer after checking backend type and element type."""
        arg = self._arg(index, ArgKind.BUFFER)
        if not isinstance(buffer, buffer_type):
            raise DispatchFailure(
                f"{self.name}: argument {index} ({arg.name}) expects {buffer_type.__name__}, "
                f"got {type(buffer).__name__}"
            )
        if buffer.released:
            raise DispatchFailure(f"{self.name}: argument {index} ({arg.name}) was released")
        if buffer.dtype != self.dtype:
            raise DispatchFailure(
                f"{self.name}: argument {index} ({arg.name}) has element type "
                f"{buffer.dtype}, kernel expects {self.dtype}"
            )
        self._values[index] = buffer
        self._bound[index] = True

    def snapshot(self) -> tuple:
        """Current values in signature order.

        :raises DispatchFailure: If any argument is unbound
        """
        missing = [arg.name for arg, ok in zip(self.signature, self._bound, strict=True) if not ok]
        if missing:
            raise DispatchFailure(f"{self.name}: unbound arguments {missing}")
        return tuple(self._values)


def check_geometry(
    name: str,
    global_size: tuple[int, ...],
    local_size: tuple[int, ...] | None,
    max_work_group_size: int,
) -> tuple[tuple[int, ...], tuple[int, ...] | None]:
    """Validate a launch geometry the way a device would.

    :returns: Normalized ``(global_size, local_size)`` tuples
    :raises DispatchFailure: On empty, negative or oversized geometry
    """
    global_size = tuple(int(g) for g in global_size)
    if not 1 <= len(global_size) <= 3 or any(g < 1 for g in global_size):
        raise DispatchFailure(f"{name}: invalid global size {global_size}")
    if local_size is None:
        return global_size, None

    local_size = tuple(int(v) for v in local_size)
    if len(local_size) != len(global_size) or any(v < 1 for v in local_size):
        raise DispatchFailure(
            f"{name}: local size {local_size} does not match global size {global_size}"
        )
    if int(np.prod(local_size)) > max_work_group_size:
        raise DispatchFailure(
            f"{name}: work-group {local_size} exceeds device limit of {max_work_group_size}"
        )
    return global_size, local_size
