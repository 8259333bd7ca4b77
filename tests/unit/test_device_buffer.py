"""
Unit tests for DeviceBuffer.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pytest

from pydotarray.backends.cpu import CPUBackend
from pydotarray.core.device_buffer import DeviceBuffer
from pydotarray.exceptions import (
    DeviceAllocationError,
    DeviceTransferError,
    SizeMismatchError,
)


class FailingAllocationBackend(CPUBackend):
    """CPU backend whose device is out of memory."""

    def allocate(self, queue: Any, count: int, dtype: np.dtype[Any]) -> Any:
        raise MemoryError("out of device memory")


class TestDeviceBuffer:
    """Tests for DeviceBuffer."""

    def test_allocate(self, isolated_backend: CPUBackend) -> None:
        """Test buffer properties after allocation."""
        queue = isolated_backend.create_queue()

        buffer = DeviceBuffer.allocate(queue, 100, np.float32)

        assert buffer.count == 100
        assert buffer.dtype == np.float32
        assert buffer.nbytes == 400
        assert buffer.queue is queue
        assert buffer.is_allocated
        assert isolated_backend.memory_stats.allocations == 1

    def test_write_and_read(self, isolated_backend: CPUBackend) -> None:
        """Test host round trip."""
        buffer = DeviceBuffer(isolated_backend.create_queue(), 10, np.float64)

        buffer.write(np.arange(10.0))

        np.testing.assert_array_equal(buffer.read(), np.arange(10.0))
        np.testing.assert_array_equal(buffer.read(3, 2), [3.0, 4.0])

    def test_write_at_offset(self, isolated_backend: CPUBackend) -> None:
        """Test writing part of a buffer."""
        buffer = DeviceBuffer(isolated_backend.create_queue(), 6, np.int64)
        buffer.write(np.zeros(6, dtype=np.int64))

        buffer.write(np.array([7, 8]), device_offset=4)

        np.testing.assert_array_equal(buffer.read(), [0, 0, 0, 0, 7, 8])

    def test_write_converts_dtype(self, isolated_backend: CPUBackend) -> None:
        """Test that host data is converted to the buffer's type."""
        buffer = DeviceBuffer(isolated_backend.create_queue(), 3, np.int32)

        buffer.write([1.0, 2.0, 3.0])

        result = buffer.read()
        assert result.dtype == np.int32
        np.testing.assert_array_equal(result, [1, 2, 3])

    def test_write_too_much(self, isolated_backend: CPUBackend) -> None:
        """Test that oversized writes are rejected."""
        buffer = DeviceBuffer(isolated_backend.create_queue(), 4, np.float64)

        with pytest.raises(SizeMismatchError):
            buffer.write(np.zeros(5))
        with pytest.raises(SizeMismatchError):
            buffer.write(np.zeros(2), device_offset=3)

    def test_read_out_of_range(self, isolated_backend: CPUBackend) -> None:
        """Test that reads beyond the end are rejected."""
        buffer = DeviceBuffer(isolated_backend.create_queue(), 4, np.float64)

        with pytest.raises(SizeMismatchError):
            buffer.read(2, 3)

    def test_copy_from(self, isolated_backend: CPUBackend) -> None:
        """Test device to device copy."""
        queue = isolated_backend.create_queue()
        src = DeviceBuffer(queue, 5, np.float64)
        dst = DeviceBuffer(queue, 5, np.float64)
        src.write(np.arange(5.0))

        dst.copy_from(src)

        np.testing.assert_array_equal(dst.read(), np.arange(5.0))

    def test_copy_from_size_mismatch(self, isolated_backend: CPUBackend) -> None:
        """Test copying between buffers of different sizes."""
        queue = isolated_backend.create_queue()

        with pytest.raises(SizeMismatchError):
            DeviceBuffer(queue, 5, np.float64).copy_from(DeviceBuffer(queue, 6, np.float64))

    def test_free_is_idempotent(self, isolated_backend: CPUBackend) -> None:
        """Test freeing twice."""
        buffer = DeviceBuffer(isolated_backend.create_queue(), 8, np.float64)

        buffer.free()
        buffer.free()

        stats = isolated_backend.memory_stats
        assert not buffer.is_allocated
        assert stats.frees == 1
        assert stats.bytes_in_use == 0

    def test_use_after_free(self, isolated_backend: CPUBackend) -> None:
        """Test transfers on a freed buffer."""
        buffer = DeviceBuffer(isolated_backend.create_queue(), 8, np.float64)
        buffer.free()

        with pytest.raises(DeviceTransferError):
            buffer.read()
        with pytest.raises(DeviceTransferError):
            buffer.write(np.zeros(8))

    def test_finalizer_frees(self, isolated_backend: CPUBackend) -> None:
        """Test that dropping the last reference releases device memory."""
        buffer = DeviceBuffer(isolated_backend.create_queue(), 8, np.float64)

        del buffer

        assert isolated_backend.memory_stats.bytes_in_use == 0

    def test_allocation_failure(self) -> None:
        """Test that backend allocation errors are wrapped."""
        queue = FailingAllocationBackend().create_queue()

        with pytest.raises(DeviceAllocationError) as exc_info:
            DeviceBuffer(queue, 10, np.float64)

        assert exc_info.value.count == 10
        assert isinstance(exc_info.value.cause, MemoryError)
