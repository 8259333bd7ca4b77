"""
CPU backend for PyDotArray.

Provides a CPU-based implementation of the backend interface. Device
memory is plain NumPy storage, every queue is an in-order worker thread
and kernels are compiled with Numba.
Useful for testing and development without GPU.
"""

from __future__ import annotations

import linecache
import logging
import math
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Any

import numba
import numpy as np

from pydotarray.backends.base import Backend, BackendType, CommandQueue, DeviceContext
from pydotarray.exceptions import CommandQueueError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from pydotarray.compilation.compiler import CompilationOptions
    from pydotarray.expressions.codegen import KernelSource

logger = logging.getLogger(__name__)

_KERNEL_MODULE = "pydotarray.backends.cpu.kernels"

# Fast-math flags that keep IEEE inf and nan results.
_FASTMATH_FLAGS = frozenset({"nsz", "arcp", "contract", "afn", "reassoc"})


class CPUQueue(CommandQueue):
    """
    In-order command queue backed by a single worker thread.

    Example:
        >>> queue = CPUBackend().create_queue()
        >>> future = queue.submit(sum, [1, 2, 3])
        >>> queue.finish()
        >>> future.result()
        6
    """

    def __init__(self, context: DeviceContext, index: int) -> None:
        super().__init__(context, index)
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"pydotarray-cpu{context.device_id}-q{index}",
        )
        self._pending: dict[Future[Any], None] = {}
        self._pending_lock = threading.Lock()

    @property
    def pending_count(self) -> int:
        """Number of enqueued calls that have not completed yet."""
        with self._pending_lock:
            return len(self._pending)

    def submit(self, func: Callable[..., Any], *args: Any) -> Future[Any]:
        """
        Enqueue a call; it runs after everything submitted before it.

        Args:
            func: Callable to run on the queue's worker.
            *args: Positional arguments.

        Returns:
            Future of the call's result.
        """
        with self._pending_lock:
            future = self._executor.submit(func, *args)
            self._pending[future] = None
        future.add_done_callback(self._retire)
        return future

    def _retire(self, future: Future[Any]) -> None:
        # Failed calls stay pending until finish() reports them.
        if future.exception() is None:
            with self._pending_lock:
                self._pending.pop(future, None)

    def finish(self) -> None:
        """Block until all enqueued work has completed."""
        with self._pending_lock:
            pending = list(self._pending)
        wait(pending)

        with self._pending_lock:
            for future in pending:
                self._pending.pop(future, None)

        failure: BaseException | None = None
        for future in pending:
            error = future.exception()
            if error is not None and failure is None:
                failure = error

        if failure is not None:
            raise CommandQueueError(self, failure) from failure

    def close(self) -> None:
        """Run the remaining work and stop the worker thread."""
        self._executor.shutdown(wait=True)
        logger.debug("Closed %r", self)


class CPUBackend(Backend):
    """
    CPU backend implementation.

    Executes generated kernels on the CPU after compiling them with
    Numba. ``device_count`` virtual devices can be requested so that
    multi-device partitioning is exercised without a GPU.

    Example:
        >>> backend = CPUBackend(device_count=2)
        >>> queues = backend.create_queues(2)
        >>> queues[0].context == queues[1].context
        False
    """

    def __init__(self, device_count: int = 1) -> None:
        """
        Initialize the CPU backend.

        Args:
            device_count: Number of virtual CPU devices.
        """
        if device_count < 1:
            raise ValueError(f"device_count must be >= 1, got {device_count}")
        super().__init__()
        self._device_count = device_count
        self._queues: list[CPUQueue] = []

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.CPU

    @property
    def is_available(self) -> bool:
        """Check if this backend is available."""
        return True  # CPU is always available

    @property
    def device_count(self) -> int:
        """Get the number of virtual devices."""
        return self._device_count

    @property
    def dialect(self) -> str:
        """Kernels are Python functions compiled by Numba."""
        return "python"

    def _make_queue(self, context: DeviceContext, index: int) -> CPUQueue:
        queue = CPUQueue(context, index)
        with self._lock:
            self._queues.append(queue)
        return queue

    def close(self) -> None:
        """Close every queue created by this backend."""
        with self._lock:
            queues, self._queues = self._queues, []
        for queue in queues:
            queue.close()

    def allocate(self, queue: CommandQueue, count: int, dtype: np.dtype[Any]) -> NDArray[Any]:
        """
        Allocate a NumPy array.

        Args:
            queue: Queue whose device receives the allocation.
            count: Number of elements.
            dtype: Element type.

        Returns:
            Uninitialized NumPy array.
        """
        array = np.empty(count, dtype=dtype)
        self._record_allocation(array.nbytes)
        logger.debug("Allocated %d bytes on %r", array.nbytes, queue.context)
        return array

    def free(self, queue: CommandQueue, handle: NDArray[Any]) -> None:
        """
        Free a NumPy array.

        The memory itself is reclaimed by NumPy once pending work that
        references it has run; only the accounting happens here.

        Args:
            queue: Queue the buffer was allocated through.
            handle: Array to free.
        """
        self._record_free(handle.nbytes)
        logger.debug("Freed %d bytes on %r", handle.nbytes, queue.context)

    def write(self, queue: CommandQueue, handle: NDArray[Any], host: NDArray[Any], offset: int) -> None:
        """Enqueue a copy of ``host`` into ``handle[offset:]``."""
        data = np.array(host, dtype=handle.dtype, copy=True)
        _as_cpu(queue).submit(_store, handle, data, offset)

    def read(self, queue: CommandQueue, handle: NDArray[Any], offset: int, count: int) -> NDArray[Any]:
        """Read ``handle[offset:offset + count]`` once prior work has run."""
        future = _as_cpu(queue).submit(_load, handle, offset, count)
        queue.finish()
        return future.result()

    def copy_buffer(self, queue: CommandQueue, src: NDArray[Any], dst: NDArray[Any], count: int) -> None:
        """Enqueue a buffer to buffer copy."""
        _as_cpu(queue).submit(_store, dst, src[:count], 0)

    def compile_kernel(
        self,
        context: DeviceContext,
        source: KernelSource,
        options: CompilationOptions,
    ) -> Callable[..., Any]:
        """
        Compile a generated Python kernel with Numba.

        The kernel is compiled eagerly for the exact argument types so
        that compilation errors surface here and not on the queue.

        Args:
            context: Target device.
            source: Python kernel source.
            options: Compilation options.

        Returns:
            Numba dispatcher.
        """
        filename = f"<pydotarray-kernel {source.name}>"
        linecache.cache[filename] = (
            len(source.source),
            None,
            source.source.splitlines(keepends=True),
            filename,
        )

        namespace: dict[str, Any] = {
            "__name__": _KERNEL_MODULE,
            "math": math,
            "np": np,
            "out_t": source.out_dtype.type,
        }
        exec(compile(source.source, filename, "exec"), namespace)

        signature = numba.types.void(
            numba.types.int64,
            numba.types.int64,
            numba.from_dtype(source.out_dtype)[::1],
            *(numba.from_dtype(dtype)[::1] for dtype in source.vector_dtypes),
            *(numba.from_dtype(dtype) for dtype in source.scalar_dtypes),
        )
        return numba.njit(
            signature,
            fastmath=set(_FASTMATH_FLAGS) if options.fastmath else False,
            debug=options.debug,
            nogil=True,
            error_model="numpy",
        )(namespace[source.name])

    def launch(
        self,
        queue: CommandQueue,
        kernel: Callable[..., Any],
        count: int,
        args: Sequence[Any],
        *,
        block_size: int = 256,
    ) -> None:
        """Enqueue ``kernel(count, *args)``; ``block_size`` is ignored on CPU."""
        _as_cpu(queue).submit(kernel, count, *args)

    def __repr__(self) -> str:
        """String representation."""
        return f"CPUBackend(devices={self._device_count})"


def _as_cpu(queue: CommandQueue) -> CPUQueue:
    if not isinstance(queue, CPUQueue):
        raise TypeError(f"{queue!r} is not a CPU queue")
    return queue


def _store(dst: NDArray[Any], data: NDArray[Any], offset: int) -> None:
    dst[offset : offset + data.shape[0]] = data


def _load(src: NDArray[Any], offset: int, count: int) -> NDArray[Any]:
    return src[offset : offset + count].copy()
