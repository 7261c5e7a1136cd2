"""CPU backend: numba kernels behind an in-order command queue."""

from paeth.cpu.queue import CpuBuffer, CpuKernel, CpuProgram, CpuQueue

__all__ = ["CpuQueue", "CpuBuffer", "CpuKernel", "CpuProgram"]
