"""
Unit tests for the backends.
"""

from __future__ import annotations

import threading

import numpy as np
import pytest

from pydotarray.backends.base import BackendType, DeviceContext, MemoryStatistics
from pydotarray.backends.cpu import CPUBackend, CPUQueue
from pydotarray.backends.cuda import CUDABackend
from pydotarray.exceptions import BackendNotAvailableError, CommandQueueError


class TestCPUBackend:
    """Tests for CPUBackend."""

    def test_properties(self) -> None:
        """Test backend properties."""
        backend = CPUBackend()

        assert backend.backend_type == BackendType.CPU
        assert backend.is_available
        assert backend.device_count == 1
        assert backend.dialect == "python"

    def test_virtual_devices(self) -> None:
        """Test requesting several virtual devices."""
        backend = CPUBackend(device_count=4)

        assert backend.device_count == 4

    def test_invalid_device_count(self) -> None:
        """Test that at least one device is required."""
        with pytest.raises(ValueError):
            CPUBackend(device_count=0)

    def test_allocate_and_free_statistics(self, isolated_backend: CPUBackend) -> None:
        """Test memory accounting across allocate and free."""
        queue = isolated_backend.create_queue()

        handle = isolated_backend.allocate(queue, 100, np.dtype(np.float64))
        stats = isolated_backend.memory_stats
        assert stats.allocations == 1
        assert stats.bytes_in_use == 800
        assert stats.peak_bytes == 800

        isolated_backend.free(queue, handle)
        stats = isolated_backend.memory_stats
        assert stats.frees == 1
        assert stats.bytes_in_use == 0
        assert stats.live_allocations == 0
        assert stats.peak_bytes == 800

    def test_write_then_read(self, isolated_backend: CPUBackend) -> None:
        """Test that transfers are ordered on the queue."""
        queue = isolated_backend.create_queue()
        handle = isolated_backend.allocate(queue, 8, np.dtype(np.int32))

        isolated_backend.write(queue, handle, np.arange(8, dtype=np.int32), 0)
        result = isolated_backend.read(queue, handle, 2, 3)

        np.testing.assert_array_equal(result, [2, 3, 4])

    def test_write_captures_host_data(self, isolated_backend: CPUBackend) -> None:
        """Test that host data can be reused right after write returns."""
        queue = isolated_backend.create_queue()
        handle = isolated_backend.allocate(queue, 4, np.dtype(np.float64))
        host = np.ones(4)

        isolated_backend.write(queue, handle, host, 0)
        host[:] = 7.0

        np.testing.assert_array_equal(isolated_backend.read(queue, handle, 0, 4), np.ones(4))

    def test_copy_buffer(self, isolated_backend: CPUBackend) -> None:
        """Test device to device copy."""
        queue = isolated_backend.create_queue()
        src = isolated_backend.allocate(queue, 5, np.dtype(np.float32))
        dst = isolated_backend.allocate(queue, 5, np.dtype(np.float32))

        isolated_backend.write(queue, src, np.arange(5, dtype=np.float32), 0)
        isolated_backend.copy_buffer(queue, src, dst, 5)

        np.testing.assert_array_equal(isolated_backend.read(queue, dst, 0, 5), np.arange(5))

    def test_repr(self) -> None:
        """Test string representation."""
        assert repr(CPUBackend(device_count=2)) == "CPUBackend(devices=2)"


class TestDeviceContext:
    """Tests for device contexts."""

    def test_context_is_cached(self, backend: CPUBackend) -> None:
        """Test that a device has a single context."""
        assert backend.create_context(0) is backend.create_context(0)

    def test_invalid_device(self, backend: CPUBackend) -> None:
        """Test out-of-range device ids."""
        with pytest.raises(ValueError):
            backend.create_context(1)
        with pytest.raises(ValueError):
            backend.create_context(-1)

    def test_contexts_differ_per_device(self) -> None:
        """Test that devices get distinct contexts."""
        backend = CPUBackend(device_count=2)

        first, second = backend.create_context(0), backend.create_context(1)
        assert first != second
        assert first.backend_type == BackendType.CPU

    def test_contexts_differ_per_backend(self) -> None:
        """Test that the same device id of two backends is not the same context."""
        assert CPUBackend().create_context(0) != CPUBackend().create_context(0)

    def test_usable_as_key(self, backend: CPUBackend) -> None:
        """Test hashing for use in cache keys."""
        context = backend.create_context(0)

        assert {context: 1}[DeviceContext(backend, 0)] == 1


class TestCPUQueue:
    """Tests for CPUQueue."""

    def test_create_queues_round_robin(self) -> None:
        """Test spreading queues over devices."""
        backend = CPUBackend(device_count=2)

        queues = backend.create_queues(4)

        assert [q.device_id for q in queues] == [0, 1, 0, 1]
        assert [q.index for q in queues] == [0, 1, 2, 3]
        assert all(isinstance(q, CPUQueue) for q in queues)

    def test_create_queues_on_devices(self) -> None:
        """Test restricting queues to chosen devices."""
        backend = CPUBackend(device_count=3)

        queues = backend.create_queues(2, device_ids=[2])

        assert [q.device_id for q in queues] == [2, 2]
        assert queues[0].context is queues[1].context

    def test_queue_from_other_backend(self) -> None:
        """Test that a context of another backend is rejected."""
        context = CPUBackend().create_context(0)

        with pytest.raises(ValueError):
            CPUBackend().create_queue(context)

    def test_in_order_execution(self, backend: CPUBackend) -> None:
        """Test that work runs in submission order."""
        queue = backend.create_queue()
        order: list[int] = []

        for k in range(20):
            queue.submit(order.append, k)
        queue.finish()

        assert order == list(range(20))

    def test_runs_off_the_calling_thread(self, backend: CPUBackend) -> None:
        """Test that submitted work is asynchronous."""
        queue = backend.create_queue()

        future = queue.submit(threading.get_ident)
        queue.finish()

        assert future.result() != threading.get_ident()

    def test_failure_surfaces_at_finish(self, backend: CPUBackend) -> None:
        """Test that errors in enqueued work are reported by finish()."""
        queue = backend.create_queue()

        def fail() -> None:
            raise RuntimeError("boom")

        queue.submit(fail)
        with pytest.raises(CommandQueueError, match="boom"):
            queue.finish()

        # Reported once.
        queue.finish()

    def test_completed_work_is_not_retained(self) -> None:
        """Test that finished calls are dropped without calling finish()."""
        queue = CPUBackend().create_queue()
        target = np.zeros(4)

        for _ in range(200):
            queue.submit(target.fill, 1.0)
        queue.close()

        assert queue.pending_count == 0
        np.testing.assert_array_equal(target, np.ones(4))

    def test_failure_is_retained_until_finish(self) -> None:
        """Test that a failed call is still reported after later work completes."""
        queue = CPUBackend().create_queue()

        def fail() -> None:
            raise RuntimeError("lost")

        queue.submit(fail)
        for k in range(10):
            queue.submit(abs, k)
        queue.close()

        assert queue.pending_count == 1
        with pytest.raises(CommandQueueError, match="lost"):
            queue.finish()
        assert queue.pending_count == 0

    def test_close_runs_remaining_work(self) -> None:
        """Test that close() drains the queue before stopping it."""
        queue = CPUBackend().create_queue()
        order: list[int] = []

        for k in range(50):
            queue.submit(order.append, k)
        queue.close()

        assert order == list(range(50))
        with pytest.raises(RuntimeError):
            queue.submit(order.append, 50)

    def test_backend_close_stops_every_queue(self) -> None:
        """Test that closing the backend closes the queues it created."""
        backend = CPUBackend(device_count=2)
        queues = backend.create_queues(3)
        seen: list[int] = []

        for queue in queues:
            queue.submit(seen.append, queue.index)
        backend.close()

        assert sorted(seen) == [0, 1, 2]
        for queue in queues:
            with pytest.raises(RuntimeError):
                queue.submit(seen.append, -1)


class TestMemoryStatistics:
    """Tests for MemoryStatistics."""

    def test_derived_values(self) -> None:
        """Test derived properties."""
        stats = MemoryStatistics(allocations=3, frees=1, bytes_in_use=2 * 1024 * 1024)

        assert stats.live_allocations == 2
        assert stats.used_mb == 2.0


class TestCUDABackend:
    """Tests for CUDABackend."""

    def test_unavailable_raises(self) -> None:
        """Test construction without a usable GPU."""
        try:
            import cupy as cp

            if cp.cuda.runtime.getDeviceCount() > 0:
                pytest.skip("CUDA is available")
        except Exception:
            pass

        with pytest.raises(BackendNotAvailableError):
            CUDABackend()

    @pytest.mark.cuda
    def test_properties(self) -> None:
        """Test backend properties."""
        backend = CUDABackend()

        assert backend.backend_type == BackendType.CUDA
        assert backend.is_available
        assert backend.device_count >= 1
        assert backend.dialect == "cuda"

    @pytest.mark.cuda
    def test_write_then_read(self) -> None:
        """Test host/device round trip through a stream."""
        backend = CUDABackend()
        queue = backend.create_queue()
        handle = backend.allocate(queue, 16, np.dtype(np.float32))

        backend.write(queue, handle, np.arange(16, dtype=np.float32), 0)

        np.testing.assert_array_equal(backend.read(queue, handle, 4, 4), [4, 5, 6, 7])
        backend.free(queue, handle)
