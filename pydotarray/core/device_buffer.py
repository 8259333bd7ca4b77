"""
Device-resident storage for one partition.
"""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING, Any

import numpy as np

from pydotarray.exceptions import (
    DeviceAllocationError,
    DeviceTransferError,
    PyDotArrayError,
    SizeMismatchError,
)

if TYPE_CHECKING:
    from numpy.typing import DTypeLike, NDArray

    from pydotarray.backends.base import CommandQueue

logger = logging.getLogger(__name__)


class DeviceBuffer:
    """
    Exclusive owner of ``count`` elements of device memory.

    All transfers and copies are ordered on the queue the buffer was
    allocated through.

    Example:
        >>> buffer = DeviceBuffer.allocate(queue, 1000, np.float32)
        >>> buffer.write(np.arange(1000, dtype=np.float32))
        >>> buffer.read(10, 5)
        array([10., 11., 12., 13., 14.], dtype=float32)
    """

    def __init__(self, queue: CommandQueue, count: int, dtype: DTypeLike) -> None:
        """
        Allocate a device buffer.

        Args:
            queue: Queue whose device holds the buffer.
            count: Number of elements.
            dtype: Element type.

        Raises:
            DeviceAllocationError: If the device cannot provide the memory.
        """
        self._queue = queue
        self._count = count
        self._dtype = np.dtype(dtype)
        self._handle: Any = None

        try:
            self._handle = queue.backend.allocate(queue, count, self._dtype)
        except PyDotArrayError:
            raise
        except Exception as e:
            raise DeviceAllocationError(count, self._dtype, e) from e

    @classmethod
    def allocate(cls, queue: CommandQueue, count: int, dtype: DTypeLike) -> DeviceBuffer:
        """Allocate a device buffer (same as the constructor)."""
        return cls(queue, count, dtype)

    @property
    def queue(self) -> CommandQueue:
        """Get the owning queue."""
        return self._queue

    @property
    def count(self) -> int:
        """Get the number of elements."""
        return self._count

    @property
    def dtype(self) -> np.dtype[Any]:
        """Get the element type."""
        return self._dtype

    @property
    def nbytes(self) -> int:
        """Get the size in bytes."""
        return self._count * self._dtype.itemsize

    @property
    def handle(self) -> Any:
        """Get the backend handle passed to kernels."""
        return self._handle

    @property
    def is_allocated(self) -> bool:
        """Check if the buffer still owns device memory."""
        return self._handle is not None

    def write(self, host: NDArray[Any], device_offset: int = 0) -> None:
        """
        Copy host data into the buffer starting at ``device_offset``.

        Args:
            host: Host data; converted to the buffer's dtype.
            device_offset: First element to overwrite.

        Raises:
            SizeMismatchError: If the data does not fit.
            DeviceTransferError: If the transfer fails.
        """
        self._check_allocated()
        data = np.ascontiguousarray(host, dtype=self._dtype).reshape(-1)
        if device_offset < 0 or device_offset + data.shape[0] > self._count:
            raise SizeMismatchError(
                f"at most {self._count - max(device_offset, 0)} elements",
                data.shape[0],
                "device buffer write",
            )
        try:
            self._queue.backend.write(self._queue, self._handle, data, device_offset)
        except PyDotArrayError:
            raise
        except Exception as e:
            raise DeviceTransferError("host->device", e) from e

    def read(self, device_offset: int = 0, count: int | None = None) -> NDArray[Any]:
        """
        Copy buffer contents to a new host array, blocking until done.

        Args:
            device_offset: First element to read.
            count: Number of elements (default: up to the end).

        Raises:
            SizeMismatchError: If the range is outside the buffer.
            DeviceTransferError: If the transfer fails.
        """
        self._check_allocated()
        if count is None:
            count = self._count - device_offset
        if device_offset < 0 or count < 0 or device_offset + count > self._count:
            raise SizeMismatchError(
                f"a range within [0, {self._count})",
                (device_offset, device_offset + count),
                "device buffer read",
            )
        try:
            return self._queue.backend.read(self._queue, self._handle, device_offset, count)
        except PyDotArrayError:
            raise
        except Exception as e:
            raise DeviceTransferError("device->host", e) from e

    def copy_from(self, other: DeviceBuffer) -> None:
        """
        Enqueue a copy of another buffer's contents into this one.

        Raises:
            SizeMismatchError: If the buffers differ in size.
            DeviceTransferError: If the copy fails.
        """
        self._check_allocated()
        other._check_allocated()
        if other.count != self._count:
            raise SizeMismatchError(self._count, other.count, "device buffer copy")
        try:
            self._queue.backend.copy_buffer(self._queue, other.handle, self._handle, self._count)
        except PyDotArrayError:
            raise
        except Exception as e:
            raise DeviceTransferError("device->device", e) from e

    def free(self) -> None:
        """Release the device memory. Calling it again does nothing."""
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        self._queue.backend.free(self._queue, handle)

    def _check_allocated(self) -> None:
        if self._handle is None:
            raise DeviceTransferError("to or from a freed buffer", ValueError("buffer was freed"))

    def __del__(self) -> None:
        """Free memory if still owned."""
        with contextlib.suppress(Exception):
            self.free()

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"DeviceBuffer(count={self._count}, dtype={self._dtype}, "
            f"queue={self._queue!r}, allocated={self.is_allocated})"
        )
