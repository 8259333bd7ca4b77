"""
Expression Assignment Micro-Benchmark

Measures the cost of a first assignment (kernel synthesis and
compilation), of repeated assignments served from the kernel cache,
and of host transfers, across different numbers of queues.
"""

from __future__ import annotations

import statistics
import time

import numpy as np

from pydotarray import (
    CPUBackend,
    DistributedVector,
    ExpressionEngine,
    KernelCache,
    KernelCompiler,
    cos,
    element_index,
    sin,
)


def benchmark_compilation(size: int = 10_000) -> dict[str, float]:
    """Benchmark a cold assignment against a cached one."""
    print(f"\n{'='*60}")
    print("COMPILATION BENCHMARK")
    print(f"{'='*60}")

    queues = CPUBackend().create_queues(1)
    engine = ExpressionEngine(cache=KernelCache(compiler=KernelCompiler()))
    x = DistributedVector(queues, size)

    start = time.perf_counter()
    engine.assign(x, sin(element_index()) * cos(element_index()))
    x.finish()
    cold_ms = (time.perf_counter() - start) * 1e3

    start = time.perf_counter()
    engine.assign(x, sin(element_index()) * cos(element_index()))
    x.finish()
    warm_ms = (time.perf_counter() - start) * 1e3

    print(f"  Cold assignment:  {cold_ms:10.2f} ms")
    print(f"  Cached assignment:{warm_ms:10.2f} ms")
    return {"cold_ms": cold_ms, "warm_ms": warm_ms}


def benchmark_throughput(
    size: int = 4_000_000,
    queue_counts: tuple[int, ...] = (1, 2, 4),
    iterations: int = 20,
) -> dict[int, float]:
    """Benchmark a * b + c over an increasing number of queues."""
    print(f"\n{'='*60}")
    print("THROUGHPUT BENCHMARK")
    print(f"{'='*60}")

    results = {}
    rng = np.random.default_rng(0)
    host = rng.random(size)

    for count in queue_counts:
        queues = CPUBackend(device_count=count).create_queues(count)
        a = DistributedVector(queues, host)
        b = DistributedVector(queues, host)
        out = DistributedVector(queues, size)

        # Warmup (compiles the kernel on every device)
        out.assign(a * b + 1.0)
        out.finish()

        times = []
        for _ in range(iterations):
            start = time.perf_counter()
            out.assign(a * b + 1.0)
            out.finish()
            times.append(time.perf_counter() - start)

        mean_ms = statistics.mean(times) * 1e3
        gbps = 3 * size * 8 / statistics.mean(times) / 1e9
        results[count] = mean_ms
        print(f"  {count} queue(s): {mean_ms:8.2f} ms  ({gbps:6.2f} GB/s)")

    return results


def benchmark_transfer(size: int = 4_000_000, iterations: int = 10) -> dict[str, float]:
    """Benchmark host to device and device to host copies."""
    print(f"\n{'='*60}")
    print("TRANSFER BENCHMARK")
    print(f"{'='*60}")

    queues = CPUBackend().create_queues(2)
    host = np.ones(size)
    x = DistributedVector(queues, size)

    upload = []
    download = []
    for _ in range(iterations):
        start = time.perf_counter()
        x.resize(queues, host)
        x.finish()
        upload.append(time.perf_counter() - start)

        start = time.perf_counter()
        x.to_host()
        download.append(time.perf_counter() - start)

    results = {
        "upload_ms": statistics.mean(upload) * 1e3,
        "download_ms": statistics.mean(download) * 1e3,
    }
    print(f"  Upload:   {results['upload_ms']:8.2f} ms")
    print(f"  Download: {results['download_ms']:8.2f} ms")
    return results


def main() -> None:
    """Run all benchmarks."""
    benchmark_compilation()
    benchmark_throughput()
    benchmark_transfer()


if __name__ == "__main__":
    main()
