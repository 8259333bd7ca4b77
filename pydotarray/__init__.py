"""
PyDotArray - numerical arrays that live on one or more compute devices.

Arrays are split across the caller's device queues, and ordinary
arithmetic on them builds expression trees that are compiled into
device kernels, cached, and run on every partition.

Core Features:
    - Distributed Vectors: one flat array partitioned across queues
    - Lazy Expressions: elementwise arithmetic compiled into kernels
    - Kernel Cache: one compilation per expression shape and device
    - Multi-dimensional Arrays: shaped arrays over distributed storage
    - CPU Backend: Numba-compiled kernels when CUDA is unavailable

Quick Start:
    >>> import math
    >>> from pydotarray import CPUBackend, DistributedVector, copy, element_index, sin, cos
    >>>
    >>> queues = CPUBackend().create_queues(2)
    >>> x = DistributedVector(queues, 1024)
    >>> x.assign(2 * math.pi * element_index() / 1024)
    >>> y = DistributedVector(queues, 1024)
    >>> y.assign(sin(x) ** 2 + cos(x) ** 2)
    >>> host = y.to_host()
"""

from pydotarray.backends.base import Backend, BackendType, CommandQueue, DeviceContext
from pydotarray.backends.cpu import CPUBackend
from pydotarray.backends.cuda import CUDABackend
from pydotarray.compilation.cache import KernelCache, get_kernel_cache
from pydotarray.compilation.compiler import CompilationOptions, KernelCompiler
from pydotarray.core.device_buffer import DeviceBuffer
from pydotarray.core.multi_array import MultiArray
from pydotarray.core.partition import Partition, plan
from pydotarray.core.vector import DistributedVector, copy, swap
from pydotarray.exceptions import (
    DeviceAllocationError,
    DeviceTransferError,
    InvalidSizeError,
    PyDotArrayError,
    SizeMismatchError,
    UnsupportedOperandError,
)
from pydotarray.expressions.engine import ExpressionEngine, get_engine
from pydotarray.expressions.functions import (
    acos,
    asin,
    atan,
    atan2,
    ceil,
    cos,
    cosh,
    exp,
    fabs,
    floor,
    fmax,
    fmin,
    hypot,
    log,
    log10,
    pow,
    sin,
    sinh,
    sqrt,
    tan,
    tanh,
    where,
)
from pydotarray.expressions.nodes import element_index

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Backends
    "Backend",
    "BackendType",
    "CommandQueue",
    "DeviceContext",
    "CPUBackend",
    "CUDABackend",
    # Core
    "DeviceBuffer",
    "DistributedVector",
    "MultiArray",
    "Partition",
    "plan",
    "copy",
    "swap",
    # Expressions
    "ExpressionEngine",
    "get_engine",
    "element_index",
    "sin",
    "cos",
    "tan",
    "asin",
    "acos",
    "atan",
    "sinh",
    "cosh",
    "tanh",
    "exp",
    "log",
    "log10",
    "sqrt",
    "fabs",
    "floor",
    "ceil",
    "pow",
    "atan2",
    "hypot",
    "fmax",
    "fmin",
    "where",
    # Compilation
    "CompilationOptions",
    "KernelCompiler",
    "KernelCache",
    "get_kernel_cache",
    # Errors
    "PyDotArrayError",
    "InvalidSizeError",
    "SizeMismatchError",
    "DeviceAllocationError",
    "DeviceTransferError",
    "UnsupportedOperandError",
]
