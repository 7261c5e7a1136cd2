"""PyTorch backend for paeth rotators.

Runs the shear passes as vectorized torch kernels on a CUDA stream, or
synchronously on CPU tensors. With ``use_triton=True`` the 2D float32 passes
use fused triton kernels instead.

Example:
    >>> from paeth import Rotator2, PaethRotation2
    >>> from paeth.torch import TorchQueue
    >>>
    >>> queue = TorchQueue("cuda", use_triton=True)
    >>> rotator = Rotator2(queue, 2048, 2048)
    >>> out = rotator.rotate(image, PaethRotation2.from_degrees(12.5))
"""

from paeth.torch.queue import TorchBuffer, TorchEvent, TorchKernel, TorchProgram, TorchQueue

__all__ = [
    "TorchQueue",
    "TorchBuffer",
    "TorchEvent",
    "TorchKernel",
    "TorchProgram",
]
