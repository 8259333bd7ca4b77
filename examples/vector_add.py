"""
Vector Addition Example for PyDotArray.

Demonstrates distributed vectors and lazy expressions with a simple
vector addition. This example works on both CPU and GPU.
"""

from __future__ import annotations

import numpy as np

from pydotarray import (
    CPUBackend,
    CUDABackend,
    DistributedVector,
    PyDotArrayError,
    copy,
    element_index,
    get_kernel_cache,
)
from pydotarray.backends.base import CommandQueue


def make_queues(count: int = 2) -> list[CommandQueue]:
    """Use every GPU when CUDA is available, otherwise CPU queues."""
    try:
        backend = CUDABackend()
        return backend.create_queues(backend.device_count)
    except PyDotArrayError:
        return CPUBackend().create_queues(count)


def run_vector_add_example(size: int = 1_000_000) -> None:
    """Run the vector addition example."""
    print("=" * 60)
    print("PyDotArray Vector Addition Example")
    print("=" * 60)

    queues = make_queues()
    print(f"\n1. Created {len(queues)} queue(s) on {queues[0].backend!r}")

    print("\n2. Creating vectors...")
    a = DistributedVector(queues, np.random.default_rng(0).random(size))
    b = DistributedVector(queues, size)
    c = DistributedVector(queues, size)
    print(f"   a: {a!r}")

    print("\n3. Filling b from the element index...")
    b.assign(element_index() * 0.5)

    print("\n4. Adding...")
    for _ in range(3):
        c.assign(a + b)
    print(f"   Kernel cache: {get_kernel_cache().get_stats()}")

    print("\n5. Copying back and checking...")
    host = np.empty(size)
    copy(c, host)
    expected = a.to_host() + np.arange(size) * 0.5
    print(f"   Max error: {np.max(np.abs(host - expected)):.3e}")

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    run_vector_add_example()
