"""
paeth - Anti-aliased shear rotation of images and volumes

Rotates 2D images and 3D volumes by factoring the rotation into
one-dimensional shears (Paeth decomposition) and running each shear as a
separable, anti-aliased kernel pass on a command queue.

Features:
- Exact shear decomposition of 2x2 (``R = Y @ X``) and 3x3 (``R = Z @ Y @ X``) rotations
- Area-coverage (trapezoid / box-sum) filtering per pass; uniform images stay uniform
- Chained, non-blocking passes with explicit event dependencies
- CPU backend (numba, parallel) and torch backend (CUDA streams, optional triton)
- float32 and float64 buffers, clamp-to-edge borders

Example - One-off rotation:
    >>> from paeth import rotate_image
    >>>
    >>> out = rotate_image(image, 30.0)  # degrees

Example - Reusable pipeline:
    >>> from paeth import CpuQueue, PaethRotation2, Rotator2
    >>>
    >>> queue = CpuQueue()
    >>> rotator = Rotator2(queue, nx=1024, ny=768)
    >>> src = queue.create_buffer_from(image)
    >>> dst = queue.create_buffer(1024 * 768, np.float32)
    >>> done = rotator.forward(src, dst, PaethRotation2.from_degrees(12.5))
    >>> result = queue.read_buffer(dst, wait_for=[done]).reshape(768, 1024)

Example - Volumes:
    >>> from paeth import PaethRotation3, Rotator3
    >>>
    >>> rotator = Rotator3(queue, 128, 128, 64)
    >>> out = rotator.rotate(volume, PaethRotation3.from_axis_angle([0.2, 0.1, 0.4]))
"""

__version__ = "0.1.0"

from paeth.api import rotate_image, rotate_volume
from paeth.config import DEFAULT_CONFIG, RotatorConfig, get_rotator_preset, load_rotator_json
from paeth.cpu import CpuQueue
from paeth.decompose import (
    PaethRotation2,
    PaethRotation3,
    decompose_2d,
    decompose_3d,
    invert_shear,
    shear_matrix,
)
from paeth.events import CompletedEvent, FutureEvent, UserEvent, wait_all
from paeth.exceptions import (
    AllocationFailure,
    BuildFailure,
    DegenerateShearPivot,
    DeviceFailure,
    DispatchFailure,
    NotARotation,
    PaethError,
    PipelineBusy,
)
from paeth.params import (
    ShearFilterParams,
    ShearFilterParams3,
    pass_params_3d,
    shear_filter_params,
    shear_filter_params_3d,
    x_pass_params,
    y_pass_params,
)
from paeth.pipeline import PassState, Rotator2, Rotator3
from paeth.protocols import Buffer, CommandQueue, Event, Kernel, Program
from paeth.verification import ShearVerifier

__all__ = [
    "__version__",
    # Decomposition
    "PaethRotation2",
    "PaethRotation3",
    "decompose_2d",
    "decompose_3d",
    "invert_shear",
    "shear_matrix",
    # Filter parameters
    "ShearFilterParams",
    "ShearFilterParams3",
    "shear_filter_params",
    "shear_filter_params_3d",
    "x_pass_params",
    "y_pass_params",
    "pass_params_3d",
    # Pipelines
    "Rotator2",
    "Rotator3",
    "PassState",
    "rotate_image",
    "rotate_volume",
    # Backend
    "CpuQueue",
    "CommandQueue",
    "Program",
    "Kernel",
    "Buffer",
    "Event",
    "CompletedEvent",
    "FutureEvent",
    "UserEvent",
    "wait_all",
    # Configuration
    "RotatorConfig",
    "DEFAULT_CONFIG",
    "get_rotator_preset",
    "load_rotator_json",
    # Verification
    "ShearVerifier",
    # Errors
    "PaethError",
    "DegenerateShearPivot",
    "NotARotation",
    "BuildFailure",
    "AllocationFailure",
    "DispatchFailure",
    "DeviceFailure",
    "PipelineBusy",
]
