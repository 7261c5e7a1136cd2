"""Benchmark shear rotation on the numba CPU queue vs the torch queues.

Measures the steady-state cost of ``Rotator2.forward`` / ``Rotator3.forward``
(buffers already resident) for a few image and volume sizes.
"""

from __future__ import annotations

import time

import numpy as np
import torch

from paeth import CpuQueue, PaethRotation2, PaethRotation3, Rotator2, Rotator3
from paeth.torch import TorchQueue
from paeth.torch.triton_kernels import is_triton_available


def time_forward(queue, rotator, src, dst, rotation, iterations: int = 20) -> float:
    """Average milliseconds per forward call, including completion.

    :param queue: Queue the rotator runs on
    :param rotator: Rotator2 or Rotator3
    :param src: Input buffer
    :param dst: Output buffer
    :param rotation: Shear descriptor
    :param iterations: Number of timed iterations
    :returns: Average time in milliseconds
    """
    # Warmup (also triggers numba/triton compilation)
    for _ in range(3):
        rotator.forward(src, dst, rotation).wait()
    queue.finish()

    start = time.perf_counter()
    done = None
    for _ in range(iterations):
        done = rotator.forward(src, dst, rotation, wait_for=[done] if done else ())
    done.wait()
    queue.finish()
    return (time.perf_counter() - start) * 1000 / iterations


def bench_2d(queue, label: str, n: int) -> float:
    image = np.random.default_rng(0).random((n, n), dtype=np.float32)
    with Rotator2(queue, n, n) as rotator:
        src = queue.create_buffer_from(image)
        dst = queue.create_buffer(n * n, np.float32)
        ms = time_forward(queue, rotator, src, dst, PaethRotation2.from_degrees(33.0))
    print(f"  {label:<24} {n:>5}^2   {ms:8.3f} ms   {n * n / ms / 1e3:8.1f} Mpx/s")
    return ms


def bench_3d(queue, label: str, n: int) -> float:
    volume = np.random.default_rng(0).random((n, n, n), dtype=np.float32)
    with Rotator3(queue, n, n, n) as rotator:
        src = queue.create_buffer_from(volume)
        dst = queue.create_buffer(n**3, np.float32)
        rotation = PaethRotation3.from_axis_angle([0.3, 0.2, 0.1])
        ms = time_forward(queue, rotator, src, dst, rotation, iterations=5)
    print(f"  {label:<24} {n:>5}^3   {ms:8.3f} ms   {n**3 / ms / 1e3:8.1f} Mvox/s")
    return ms


def main():
    """Run the rotation benchmarks on every available queue."""
    print("=" * 72)
    print("paeth shear rotation benchmark")
    print("=" * 72)

    queues = [("numba CpuQueue", CpuQueue())]
    if torch.cuda.is_available():
        queues.append(("torch CUDA", TorchQueue("cuda")))
        if is_triton_available():
            queues.append(("triton CUDA", TorchQueue("cuda", use_triton=True)))
    else:
        print("CUDA not available, benchmarking CPU queues only")
        queues.append(("torch CPU", TorchQueue("cpu")))

    print("\n2D images (33 deg)")
    print("-" * 72)
    for n in (256, 1024, 2048):
        for label, queue in queues:
            bench_2d(queue, label, n)

    print("\n3D volumes (axis-angle [0.3, 0.2, 0.1])")
    print("-" * 72)
    for n in (32, 96):
        for label, queue in queues:
            if label.startswith("triton"):
                continue  # 2D only
            bench_3d(queue, label, n)

    for _, queue in queues:
        if isinstance(queue, CpuQueue):
            queue.close()

    print(f"\n{'=' * 72}")
    print("Benchmark Complete!")
    print(f"{'=' * 72}\n")


if __name__ == "__main__":
    main()
