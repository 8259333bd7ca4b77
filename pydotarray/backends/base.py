"""
Backend base classes and interfaces.

Defines the abstract interface that all backends must implement, together
with the device context and command queue handles that callers pass to
vectors and arrays.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from pydotarray.compilation.compiler import CompilationOptions
    from pydotarray.expressions.codegen import KernelSource


class BackendType(Enum):
    """Type of compute backend."""

    CPU = auto()
    CUDA = auto()


@dataclass
class MemoryStatistics:
    """Device memory accounting for a backend."""

    allocations: int = 0
    frees: int = 0
    bytes_in_use: int = 0
    peak_bytes: int = 0

    @property
    def live_allocations(self) -> int:
        """Get the number of allocations not yet freed."""
        return self.allocations - self.frees

    @property
    def used_mb(self) -> float:
        """Get memory in use in MB."""
        return self.bytes_in_use / (1024 * 1024)


@dataclass(frozen=True)
class DeviceContext:
    """
    Identity of one device of a backend.

    Compiled kernels are cached per context; two queues on the same
    context share every kernel compiled for it.
    """

    backend: Backend
    device_id: int

    @property
    def backend_type(self) -> BackendType:
        """Get the type of the owning backend."""
        return self.backend.backend_type

    def __repr__(self) -> str:
        """String representation."""
        return f"DeviceContext({self.backend_type.name}:{self.device_id})"


class CommandQueue(ABC):
    """
    Handle to the command-submission channel of one device.

    Work enqueued on a queue executes in submission order. Work on
    different queues runs concurrently with no ordering between them.
    """

    def __init__(self, context: DeviceContext, index: int) -> None:
        """
        Initialize a command queue.

        Args:
            context: Device context the queue submits to.
            index: Ordinal of the queue within its backend.
        """
        self._context = context
        self._index = index

    @property
    def context(self) -> DeviceContext:
        """Get the device context."""
        return self._context

    @property
    def backend(self) -> Backend:
        """Get the backend owning this queue."""
        return self._context.backend

    @property
    def device_id(self) -> int:
        """Get the device id of this queue."""
        return self._context.device_id

    @property
    def index(self) -> int:
        """Get the ordinal of this queue."""
        return self._index

    @abstractmethod
    def finish(self) -> None:
        """
        Block until all enqueued work has completed.

        Raises:
            CommandQueueError: If any enqueued work failed.
        """
        ...

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"{type(self).__name__}(backend={self.backend.backend_type.name}, "
            f"device={self.device_id}, index={self._index})"
        )


class Backend(ABC):
    """
    Abstract base class for compute backends.

    All backends must implement this interface to provide a consistent
    API for memory management, transfers and kernel execution.
    """

    def __init__(self) -> None:
        """Initialize shared backend state."""
        self._contexts: dict[int, DeviceContext] = {}
        self._queue_count = 0
        self._stats = MemoryStatistics()
        # Re-entrant: buffer finalizers may free memory while it is held.
        self._lock = threading.RLock()

    @property
    @abstractmethod
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        ...

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Check if this backend is available."""
        ...

    @property
    @abstractmethod
    def device_count(self) -> int:
        """Get the number of available devices."""
        ...

    @property
    @abstractmethod
    def dialect(self) -> str:
        """Get the language kernels for this backend are written in."""
        ...

    @property
    def memory_stats(self) -> MemoryStatistics:
        """Get a snapshot of the memory statistics."""
        with self._lock:
            return MemoryStatistics(
                allocations=self._stats.allocations,
                frees=self._stats.frees,
                bytes_in_use=self._stats.bytes_in_use,
                peak_bytes=self._stats.peak_bytes,
            )

    def create_context(self, device_id: int = 0) -> DeviceContext:
        """
        Get the context of a device, creating it on first use.

        Args:
            device_id: Device id.

        Returns:
            The device context (the same object for repeated calls).
        """
        if device_id < 0 or device_id >= self.device_count:
            raise ValueError(
                f"Invalid device_id: {device_id}. Valid range: 0-{self.device_count - 1}"
            )
        with self._lock:
            context = self._contexts.get(device_id)
            if context is None:
                context = DeviceContext(self, device_id)
                self._contexts[device_id] = context
        return context

    def create_queue(self, context: DeviceContext | None = None) -> CommandQueue:
        """
        Create a new command queue.

        Args:
            context: Device context (default: device 0).

        Returns:
            New command queue.
        """
        if context is None:
            context = self.create_context(0)
        if context.backend is not self:
            raise ValueError(f"{context!r} does not belong to {self!r}")
        with self._lock:
            index = self._queue_count
            self._queue_count += 1
        return self._make_queue(context, index)

    def create_queues(
        self,
        count: int,
        device_ids: Sequence[int] | None = None,
    ) -> list[CommandQueue]:
        """
        Create several queues, spreading them over devices round-robin.

        Args:
            count: Number of queues.
            device_ids: Devices to use (default: all devices).

        Returns:
            List of new queues.
        """
        if count < 0:
            raise ValueError(f"count must be >= 0, got {count}")
        if device_ids is None:
            device_ids = range(self.device_count)
        device_ids = list(device_ids)
        if count and not device_ids:
            raise ValueError("No devices to create queues on")
        return [
            self.create_queue(self.create_context(device_ids[i % len(device_ids)]))
            for i in range(count)
        ]

    @abstractmethod
    def _make_queue(self, context: DeviceContext, index: int) -> CommandQueue:
        """Construct a backend-specific queue."""
        ...

    @abstractmethod
    def allocate(self, queue: CommandQueue, count: int, dtype: np.dtype[Any]) -> Any:
        """
        Allocate device memory for ``count`` elements.

        Args:
            queue: Queue whose device receives the allocation.
            count: Number of elements.
            dtype: Element type.

        Returns:
            Backend-specific buffer handle.
        """
        ...

    @abstractmethod
    def free(self, queue: CommandQueue, handle: Any) -> None:
        """
        Release device memory.

        Args:
            queue: Queue the buffer was allocated through.
            handle: Buffer handle.
        """
        ...

    @abstractmethod
    def write(self, queue: CommandQueue, handle: Any, host: NDArray[Any], offset: int) -> None:
        """
        Enqueue a host to device transfer.

        The host data is captured before this call returns.

        Args:
            queue: Queue to order the transfer on.
            handle: Destination buffer.
            host: Contiguous 1-D host data of the buffer's dtype.
            offset: Destination element offset.
        """
        ...

    @abstractmethod
    def read(self, queue: CommandQueue, handle: Any, offset: int, count: int) -> NDArray[Any]:
        """
        Transfer device data to the host, blocking until it arrives.

        Args:
            queue: Queue to order the transfer on.
            handle: Source buffer.
            offset: Source element offset.
            count: Number of elements.

        Returns:
            New host array.
        """
        ...

    @abstractmethod
    def copy_buffer(self, queue: CommandQueue, src: Any, dst: Any, count: int) -> None:
        """
        Enqueue a device to device copy of ``count`` elements.

        Args:
            queue: Queue to order the copy on.
            src: Source buffer.
            dst: Destination buffer.
            count: Number of elements.
        """
        ...

    @abstractmethod
    def compile_kernel(
        self,
        context: DeviceContext,
        source: KernelSource,
        options: CompilationOptions,
    ) -> Callable[..., Any]:
        """
        Compile generated kernel source for a device.

        Args:
            context: Target device.
            source: Generated kernel source in this backend's dialect.
            options: Compilation options.

        Returns:
            Launchable kernel.
        """
        ...

    @abstractmethod
    def launch(
        self,
        queue: CommandQueue,
        kernel: Callable[..., Any],
        count: int,
        args: Sequence[Any],
        *,
        block_size: int = 256,
    ) -> None:
        """
        Enqueue a kernel over ``count`` work-items.

        Args:
            queue: Queue to enqueue on.
            kernel: Compiled kernel.
            count: Number of work-items.
            args: Kernel arguments after the work-item count.
            block_size: Work-items per block where the backend uses blocks.
        """
        ...

    def _record_allocation(self, nbytes: int) -> None:
        with self._lock:
            self._stats.allocations += 1
            self._stats.bytes_in_use += nbytes
            self._stats.peak_bytes = max(self._stats.peak_bytes, self._stats.bytes_in_use)

    def _record_free(self, nbytes: int) -> None:
        with self._lock:
            self._stats.frees += 1
            self._stats.bytes_in_use -= nbytes
