"""
CUDA backend for PyDotArray.

Provides a CUDA-based implementation using CuPy: device memory is CuPy
arrays, every queue is a CUDA stream and kernels are CUDA C compiled
through ``cupy.RawKernel``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

import numpy as np

from pydotarray.backends.base import Backend, BackendType, CommandQueue, DeviceContext
from pydotarray.exceptions import BackendNotAvailableError, CommandQueueError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from pydotarray.compilation.compiler import CompilationOptions
    from pydotarray.expressions.codegen import KernelSource

logger = logging.getLogger(__name__)


def _check_cuda_available() -> bool:
    """Check if CUDA is available."""
    try:
        import cupy as cp

        return cp.cuda.runtime.getDeviceCount() > 0
    except ImportError:
        return False
    except Exception:
        return False


class CUDAQueue(CommandQueue):
    """Command queue backed by a non-blocking CUDA stream."""

    def __init__(self, context: DeviceContext, index: int) -> None:
        super().__init__(context, index)
        import cupy as cp

        self._cp = cp
        with cp.cuda.Device(context.device_id):
            self._stream = cp.cuda.Stream(non_blocking=True)

    @property
    def stream(self) -> Any:
        """Get the underlying CuPy stream."""
        return self._stream

    @property
    def device(self) -> Any:
        """Get the CuPy device of this queue."""
        return self._cp.cuda.Device(self.device_id)

    def finish(self) -> None:
        """Block until the stream has drained."""
        try:
            self._stream.synchronize()
        except self._cp.cuda.runtime.CUDARuntimeError as e:
            raise CommandQueueError(self, e) from e


class CUDABackend(Backend):
    """
    CUDA backend implementation using CuPy.

    Example:
        >>> backend = CUDABackend()
        >>> queues = backend.create_queues(backend.device_count)
    """

    def __init__(self) -> None:
        """
        Initialize the CUDA backend.

        Raises:
            BackendNotAvailableError: If CUDA is not available.
        """
        super().__init__()
        if not _check_cuda_available():
            raise BackendNotAvailableError("CUDA", "CuPy is not installed or no device is visible")

        import cupy as cp

        self._cp = cp
        logger.info("CUDA backend initialized with %d device(s)", self.device_count)

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.CUDA

    @property
    def is_available(self) -> bool:
        """Check if this backend is available."""
        return _check_cuda_available()

    @property
    def device_count(self) -> int:
        """Get the number of available CUDA devices."""
        return self._cp.cuda.runtime.getDeviceCount()

    @property
    def dialect(self) -> str:
        """Kernels are CUDA C."""
        return "cuda"

    def _make_queue(self, context: DeviceContext, index: int) -> CUDAQueue:
        return CUDAQueue(context, index)

    def allocate(self, queue: CommandQueue, count: int, dtype: np.dtype[Any]) -> Any:
        """
        Allocate a CuPy array on the queue's device.

        Raises:
            cupy.cuda.memory.OutOfMemoryError: If the device is full.
        """
        with _as_cuda(queue).device:
            array = self._cp.empty(count, dtype=dtype)
        self._record_allocation(array.nbytes)
        logger.debug("Allocated %d bytes on %r", array.nbytes, queue.context)
        return array

    def free(self, queue: CommandQueue, handle: Any) -> None:
        """
        Release a CuPy array.

        CuPy returns the memory to its pool once the last reference
        (including pending stream work) is gone.
        """
        self._record_free(handle.nbytes)
        logger.debug("Freed %d bytes on %r", handle.nbytes, queue.context)

    def write(self, queue: CommandQueue, handle: Any, host: NDArray[Any], offset: int) -> None:
        """Enqueue a host to device transfer on the queue's stream."""
        cuda_queue = _as_cuda(queue)
        data = np.ascontiguousarray(host, dtype=handle.dtype)
        with cuda_queue.device:
            handle[offset : offset + data.shape[0]].set(data, stream=cuda_queue.stream)

    def read(self, queue: CommandQueue, handle: Any, offset: int, count: int) -> NDArray[Any]:
        """Transfer device data to the host after prior work on the stream."""
        cuda_queue = _as_cuda(queue)
        with cuda_queue.device:
            host = handle[offset : offset + count].get(stream=cuda_queue.stream)
        cuda_queue.finish()
        return host

    def copy_buffer(self, queue: CommandQueue, src: Any, dst: Any, count: int) -> None:
        """Enqueue a device to device copy on the queue's stream."""
        cuda_queue = _as_cuda(queue)
        with cuda_queue.device, cuda_queue.stream:
            dst[:count] = src[:count]

    def compile_kernel(
        self,
        context: DeviceContext,
        source: KernelSource,
        options: CompilationOptions,
    ) -> Callable[..., Any]:
        """Compile generated CUDA C with NVRTC for the context's device."""
        nvrtc_options: list[str] = []
        if options.fastmath:
            nvrtc_options.append("--use_fast_math")
        if options.debug:
            nvrtc_options.append("--device-debug")

        with self._cp.cuda.Device(context.device_id):
            kernel = self._cp.RawKernel(source.source, source.name, options=tuple(nvrtc_options))
            kernel.compile()
        return kernel

    def launch(
        self,
        queue: CommandQueue,
        kernel: Callable[..., Any],
        count: int,
        args: Sequence[Any],
        *,
        block_size: int = 256,
    ) -> None:
        """Enqueue the kernel with one thread per work-item."""
        cuda_queue = _as_cuda(queue)
        grid_size = (count + block_size - 1) // block_size
        with cuda_queue.device, cuda_queue.stream:
            kernel((grid_size,), (block_size,), (np.int64(count), *args))

    def __repr__(self) -> str:
        """String representation."""
        return f"CUDABackend(devices={self.device_count})"


def _as_cuda(queue: CommandQueue) -> CUDAQueue:
    if not isinstance(queue, CUDAQueue):
        raise TypeError(f"{queue!r} is not a CUDA queue")
    return queue
