"""
Backend implementations for PyDotArray.
"""

from pydotarray.backends.base import (
    Backend,
    BackendType,
    CommandQueue,
    DeviceContext,
    MemoryStatistics,
)
from pydotarray.backends.cpu import CPUBackend, CPUQueue
from pydotarray.backends.cuda import CUDABackend, CUDAQueue

__all__ = [
    "Backend",
    "BackendType",
    "CommandQueue",
    "DeviceContext",
    "MemoryStatistics",
    "CPUBackend",
    "CPUQueue",
    "CUDABackend",
    "CUDAQueue",
]
