"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

from collections.abc import Generator

import numpy as np
import pytest

from pydotarray.backends.base import CommandQueue
from pydotarray.backends.cpu import CPUBackend
from pydotarray.compilation.cache import KernelCache
from pydotarray.compilation.compiler import KernelCompiler
from pydotarray.expressions.engine import ExpressionEngine


@pytest.fixture(scope="session")
def backend() -> CPUBackend:
    """Provide a CPU backend shared by the whole session."""
    return CPUBackend()


@pytest.fixture(scope="session")
def queues(backend: CPUBackend) -> list[CommandQueue]:
    """Provide two queues on one CPU device."""
    return backend.create_queues(2)


@pytest.fixture(scope="session")
def single_queue(backend: CPUBackend) -> list[CommandQueue]:
    """Provide a one-queue list."""
    return backend.create_queues(1)


@pytest.fixture(scope="session")
def device_queues() -> list[CommandQueue]:
    """Provide three queues on three virtual CPU devices."""
    return CPUBackend(device_count=3).create_queues(3)


@pytest.fixture
def isolated_backend() -> CPUBackend:
    """Provide a fresh backend whose memory statistics start at zero."""
    return CPUBackend()


@pytest.fixture
def engine() -> Generator[ExpressionEngine, None, None]:
    """Provide an engine with its own empty kernel cache."""
    cache = KernelCache(compiler=KernelCompiler())
    yield ExpressionEngine(cache=cache)
    cache.clear()


@pytest.fixture
def rng() -> np.random.Generator:
    """Provide a seeded random generator."""
    return np.random.default_rng(12345)


# Markers for CUDA tests
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom markers."""
    config.addinivalue_line("markers", "cuda: mark test as requiring CUDA")
    config.addinivalue_line("markers", "slow: mark test as slow running")


def pytest_collection_modifyitems(
    config: pytest.Config,
    items: list[pytest.Item],
) -> None:
    """Skip CUDA tests if CUDA is not available."""
    cuda_available = False
    try:
        import cupy as cp

        cuda_available = cp.cuda.runtime.getDeviceCount() > 0
    except ImportError:
        pass
    except Exception:
        pass

    if not cuda_available:
        skip_cuda = pytest.mark.skip(reason="CUDA not available")
        for item in items:
            if "cuda" in item.keywords:
                item.add_marker(skip_cuda)
