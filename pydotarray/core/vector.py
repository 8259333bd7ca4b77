"""
Distributed device vector.

A vector is one logical flat array split into contiguous partitions, each
stored in a device buffer on its own queue. It behaves like a value:
copies are deep, moves hand over the device buffers, and assignment from
an expression runs a generated kernel on every partition.
"""

from __future__ import annotations

import bisect
import ctypes
import logging
import operator
from collections.abc import MutableSequence, Sequence
from typing import TYPE_CHECKING, Any

import numpy as np

from pydotarray.core.device_buffer import DeviceBuffer
from pydotarray.core.partition import Partition, plan
from pydotarray.exceptions import InvalidSizeError, SizeMismatchError
from pydotarray.expressions.nodes import ExpressionMixin, element_dtype

if TYPE_CHECKING:
    from numpy.typing import DTypeLike, NDArray

    from pydotarray.backends.base import CommandQueue

logger = logging.getLogger(__name__)

DEFAULT_DTYPE = np.dtype(np.float64)


class DistributedVector(ExpressionMixin):
    """
    Flat array partitioned across device queues.

    Example:
        >>> queues = CPUBackend().create_queues(2)
        >>> x = DistributedVector(queues, 1024)
        >>> x.assign(42)
        >>> host = np.empty(1024)
        >>> copy(x, host)
    """

    def __init__(
        self,
        queues: Sequence[CommandQueue] | DistributedVector | None = None,
        data: int | Sequence[Any] | NDArray[Any] | None = None,
        *,
        host: Any = None,
        dtype: DTypeLike | None = None,
    ) -> None:
        """
        Create a vector.

        ``DistributedVector()`` is empty. ``DistributedVector(queues, n)``
        has ``n`` uninitialized elements. ``DistributedVector(queues, data)``
        holds a copy of the host sequence ``data``.
        ``DistributedVector(queues, n, host=ptr)`` copies ``n`` elements of
        contiguous host memory (a buffer-protocol object or a ctypes
        pointer). ``DistributedVector(other)`` is a deep copy of ``other``.

        Args:
            queues: Queues to partition over, or a vector to copy.
            data: Element count or host data.
            host: Host memory to read ``data`` elements from.
            dtype: Element type (default: the host data's type, else float64).

        Raises:
            InvalidSizeError: If the size is negative, or there are no
                queues for a non-empty size.
            DeviceAllocationError: If device memory cannot be allocated;
                the vector is left empty.
            UnsupportedOperandError: If the element type is not supported.
        """
        self._reset()
        self._dtype = DEFAULT_DTYPE if dtype is None else element_dtype(dtype)

        if isinstance(queues, DistributedVector):
            if data is not None or host is not None:
                raise TypeError("Copy construction takes no data or host arguments")
            if dtype is None:
                self._dtype = queues.dtype
            self._copy_from(queues)
            return

        if queues is None:
            if data is not None or host is not None:
                raise TypeError("Queues are required to place data on devices")
            return

        self._populate(list(queues), data, host, dtype)

    # ------------------------------------------------------------------
    # Properties

    @property
    def size(self) -> int:
        """Get the number of elements."""
        return self._size

    @property
    def dtype(self) -> np.dtype[Any]:
        """Get the element type."""
        return self._dtype

    @property
    def queues(self) -> tuple[CommandQueue, ...]:
        """Get the queues the vector was created on."""
        return self._queues

    @property
    def partitions(self) -> tuple[Partition, ...]:
        """Get the partition plan."""
        return tuple(self._partitions)

    @property
    def buffers(self) -> tuple[DeviceBuffer, ...]:
        """Get the device buffers, one per partition."""
        return tuple(self._buffers)

    @property
    def nbytes(self) -> int:
        """Get the total size in bytes."""
        return self._size * self._dtype.itemsize

    def buffer(self, partition_index: int) -> DeviceBuffer:
        """Get the device buffer of one partition."""
        return self._buffers[partition_index]

    # ------------------------------------------------------------------
    # Value semantics

    def copy(self) -> DistributedVector:
        """Return a deep copy on the same queues."""
        return type(self)(self)

    def __copy__(self) -> DistributedVector:
        return self.copy()

    def __deepcopy__(self, memo: dict[int, Any]) -> DistributedVector:
        return self.copy()

    def move(self) -> DistributedVector:
        """
        Hand the device buffers over to a new vector.

        This vector becomes empty. No device memory is allocated or freed.
        """
        moved = type(self)(dtype=self._dtype)
        moved._take(self)
        return moved

    def move_from(self, source: DistributedVector) -> DistributedVector:
        """
        Take over ``source``'s device buffers, leaving it empty.

        Buffers this vector held before are freed.

        Returns:
            Self for method chaining.
        """
        if source is self:
            return self
        self._release_buffers()
        self._dtype = source.dtype
        self._take(source)
        return self

    def swap(self, other: DistributedVector) -> None:
        """Exchange contents with ``other`` without touching the devices."""
        for name in ("_dtype", "_queues", "_partitions", "_buffers", "_size"):
            mine, theirs = getattr(self, name), getattr(other, name)
            setattr(self, name, theirs)
            setattr(other, name, mine)

    def resize(
        self,
        queues_or_source: Sequence[CommandQueue] | DistributedVector,
        data: int | Sequence[Any] | NDArray[Any] | None = None,
        *,
        host: Any = None,
    ) -> DistributedVector:
        """
        Discard the contents and re-create the vector.

        ``resize(queues, n)`` leaves ``n`` uninitialized elements,
        ``resize(queues, data)`` copies host data, and ``resize(other)``
        copies another vector onto its queues (converting to this
        vector's element type if they differ).

        Returns:
            Self for method chaining.

        Raises:
            InvalidSizeError: See the constructor.
            DeviceAllocationError: If device memory cannot be allocated;
                the vector is left empty.
        """
        if isinstance(queues_or_source, DistributedVector):
            source = queues_or_source
            if source is self:
                return self
            self._release_buffers()
            if source.dtype == self._dtype:
                self._copy_from(source)
                return self
            self._allocate(list(source.queues), source.size)
            try:
                self.assign(source)
            except Exception:
                self._release_buffers()
                raise
            return self

        self._release_buffers()
        self._populate(list(queues_or_source), data, host, self._dtype)
        return self

    def release(self) -> None:
        """Free all device memory and become empty."""
        self._release_buffers()

    # ------------------------------------------------------------------
    # Expressions and host transfer

    def assign(self, expr: Any) -> DistributedVector:
        """
        Evaluate an expression elementwise into this vector.

        Args:
            expr: Expression tree, vector or scalar.

        Returns:
            Self for method chaining.

        Raises:
            UnsupportedOperandError: If the expression cannot be lowered.
            SizeMismatchError: If an operand is partitioned differently.
        """
        from pydotarray.expressions.engine import get_engine

        get_engine().assign(self, expr)
        return self

    def finish(self) -> None:
        """Wait for all work enqueued on this vector's queues."""
        for queue in _unique(p.queue for p in self._partitions):
            queue.finish()

    def to_host(self) -> NDArray[Any]:
        """Copy the whole vector into a new host array."""
        out = np.empty(self._size, dtype=self._dtype)
        self._read_into(out)
        return out

    def _read_into(self, out: NDArray[Any]) -> None:
        for partition, buffer in zip(self._partitions, self._buffers):
            out[partition.offset : partition.stop] = buffer.read()

    def _write_from(self, host: NDArray[Any]) -> None:
        for partition, buffer in zip(self._partitions, self._buffers):
            buffer.write(host[partition.offset : partition.stop])

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Any:
        return iter(self.to_host())

    def __array__(self, dtype: DTypeLike | None = None, copy: bool | None = None) -> NDArray[Any]:
        host = self.to_host()
        return host if dtype is None else host.astype(dtype)

    def __getitem__(self, index: int | slice) -> Any:
        """Read one element (or a slice, through a full host copy)."""
        if isinstance(index, slice):
            return self.to_host()[index]
        part, local = self._locate(index)
        return self._buffers[part].read(local, 1)[0]

    def __setitem__(self, index: int | slice, value: Any) -> None:
        """``x[:] = expr`` assigns an expression; ``x[i] = v`` writes one element."""
        if isinstance(index, slice):
            if index != slice(None):
                raise IndexError("Only the full slice [:] can be assigned an expression")
            self.assign(value)
            return
        part, local = self._locate(index)
        self._buffers[part].write(np.asarray([value], dtype=self._dtype), local)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"DistributedVector(size={self._size}, dtype={self._dtype}, "
            f"partitions={[(p.offset, p.count) for p in self._partitions]})"
        )

    # ------------------------------------------------------------------
    # Internals

    def _reset(self) -> None:
        self._queues: tuple[CommandQueue, ...] = ()
        self._partitions: list[Partition] = []
        self._buffers: list[DeviceBuffer] = []
        self._size = 0

    def _take(self, source: DistributedVector) -> None:
        self._queues = source._queues
        self._partitions = source._partitions
        self._buffers = source._buffers
        self._size = source._size
        source._reset()

    def _release_buffers(self) -> None:
        buffers = self._buffers
        self._reset()
        for buffer in buffers:
            buffer.free()

    def _allocate(self, queues: list[CommandQueue], size: int) -> None:
        partitions = plan(size, queues)
        buffers: list[DeviceBuffer] = []
        try:
            for partition in partitions:
                buffers.append(DeviceBuffer(partition.queue, partition.count, self._dtype))
        except Exception:
            for buffer in buffers:
                buffer.free()
            raise

        self._queues = tuple(queues)
        self._partitions = partitions
        self._buffers = buffers
        self._size = size
        logger.debug("Allocated %r", self)

    def _populate(
        self,
        queues: list[CommandQueue],
        data: Any,
        host: Any,
        dtype: DTypeLike | None,
    ) -> None:
        if data is None:
            data = 0
        if isinstance(data, (bool, np.bool_)):
            raise TypeError("Vector size must be an integer, not a bool")

        if isinstance(data, (int, np.integer)):
            size = int(data)
            source = None if host is None else _host_memory(host, size, self._dtype)
        else:
            if host is not None:
                raise TypeError("host= can only be combined with an element count")
            if dtype is None and isinstance(data, np.ndarray):
                self._dtype = element_dtype(data.dtype)
            source = np.ascontiguousarray(data, dtype=self._dtype).reshape(-1)
            size = source.shape[0]

        self._allocate(queues, size)
        if source is not None:
            try:
                self._write_from(source)
            except Exception:
                self._release_buffers()
                raise

    def _copy_from(self, source: DistributedVector) -> None:
        self._allocate(list(source.queues), source.size)
        try:
            for buffer, source_buffer in zip(self._buffers, source._buffers):
                buffer.copy_from(source_buffer)
        except Exception:
            self._release_buffers()
            raise

    def _locate(self, index: int) -> tuple[int, int]:
        index = operator.index(index)
        if index < 0:
            index += self._size
        if index < 0 or index >= self._size:
            raise IndexError(f"Index out of range for vector of size {self._size}")
        offsets = [p.offset for p in self._partitions]
        part = bisect.bisect_right(offsets, index) - 1
        return part, index - self._partitions[part].offset


def swap(a: DistributedVector, b: DistributedVector) -> None:
    """Exchange the contents of two vectors in constant time."""
    a.swap(b)


def copy(src: Any, dst: Any) -> None:
    """
    Copy between a vector and host memory.

    ``copy(vector, host)`` reads every partition into the matching
    slice of ``host`` (a NumPy array or a mutable sequence), blocking
    until the data has arrived. ``copy(host, vector)`` writes host data
    into an existing vector. A ``MultiArray`` may be used wherever a
    vector is.

    Raises:
        SizeMismatchError: If the sizes differ.
    """
    from pydotarray.core.multi_array import MultiArray

    if isinstance(src, MultiArray):
        src = src.vector
    if isinstance(dst, MultiArray):
        dst = dst.vector

    if isinstance(src, DistributedVector):
        if isinstance(dst, DistributedVector):
            raise TypeError("Use resize() or assign() to copy between vectors")
        _copy_to_host(src, dst)
        return

    if isinstance(dst, DistributedVector):
        host = np.ascontiguousarray(src, dtype=dst.dtype).reshape(-1)
        if host.shape[0] != dst.size:
            raise SizeMismatchError(dst.size, host.shape[0], "copy to device")
        dst._write_from(host)
        return

    raise TypeError("copy() needs a DistributedVector on one side")


def _copy_to_host(src: DistributedVector, dst: Any) -> None:
    if isinstance(dst, np.ndarray):
        if dst.size != src.size:
            raise SizeMismatchError(src.size, dst.size, "copy to host")
        if dst.ndim == 1 and dst.flags.c_contiguous and dst.dtype == src.dtype:
            src._read_into(dst)
        else:
            np.copyto(dst, src.to_host().reshape(dst.shape), casting="unsafe")
        return

    if isinstance(dst, MutableSequence):
        if len(dst) != src.size:
            raise SizeMismatchError(src.size, len(dst), "copy to host")
        dst[:] = src.to_host().tolist()
        return

    raise TypeError(f"Cannot copy into {type(dst).__name__}")


def _host_memory(host: Any, size: int, dtype: np.dtype[Any]) -> NDArray[Any]:
    if size < 0:
        raise InvalidSizeError("size must be non-negative", size)
    if isinstance(host, ctypes._Pointer):
        array = np.ctypeslib.as_array(host, shape=(size,))
    elif isinstance(host, np.ndarray):
        array = host.reshape(-1)
    else:
        try:
            array = np.frombuffer(host, dtype=dtype, count=size)
        except ValueError as e:
            raise InvalidSizeError(f"host memory holds fewer than {size} elements") from e
    if array.shape[0] < size:
        raise InvalidSizeError(f"host memory holds fewer than {size} elements", array.shape[0])
    return np.ascontiguousarray(array[:size], dtype=dtype)


def _unique(queues: Any) -> list[CommandQueue]:
    seen: list[CommandQueue] = []
    for queue in queues:
        if not any(queue is q for q in seen):
            seen.append(queue)
    return seen
