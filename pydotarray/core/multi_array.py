"""
Multi-dimensional array over a distributed vector.

The array only records its shape; storage and expression assignment are
those of a flat ``DistributedVector`` holding ``prod(lengths)`` elements
in C order. Partitioning is over the flat index space.

Expressions may only read flat vectors. An expression that references a
``MultiArray`` is rejected when it is lowered to a kernel.
"""

from __future__ import annotations

import math
import operator
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import numpy as np

from pydotarray.core.vector import DistributedVector
from pydotarray.exceptions import InvalidSizeError
from pydotarray.expressions.nodes import ExpressionMixin

if TYPE_CHECKING:
    from numpy.typing import DTypeLike, NDArray

    from pydotarray.backends.base import CommandQueue


class MultiArray(ExpressionMixin):
    """
    An ``ndim``-dimensional array stored as one distributed vector.

    Example:
        >>> y = MultiArray(queues, (32, 32, 32), ndim=3)
        >>> x = DistributedVector(queues, y.size)
        >>> x.assign(2 * math.pi * element_index())
        >>> y.assign(pow(sin(x), 2.0) + pow(cos(x), 2.0))
    """

    def __init__(
        self,
        queues: Sequence[CommandQueue],
        lengths: Sequence[int],
        ndim: int,
        dtype: DTypeLike = np.float64,
    ) -> None:
        """
        Create an array with uninitialized contents.

        Args:
            queues: Queues to partition the flat storage over.
            lengths: Length of every axis, slowest first.
            ndim: Required number of axes.
            dtype: Element type.

        Raises:
            InvalidSizeError: If ``len(lengths) != ndim`` or a length is
                not positive.
        """
        lengths = tuple(operator.index(n) for n in lengths)
        if ndim < 1:
            raise InvalidSizeError("ndim must be at least 1", ndim)
        if len(lengths) != ndim:
            raise InvalidSizeError(f"expected {ndim} axis lengths", lengths)
        if any(n <= 0 for n in lengths):
            raise InvalidSizeError("axis lengths must be positive", lengths)

        self._ndim = ndim
        self._lengths = lengths
        self._vector = DistributedVector(queues, math.prod(lengths), dtype=dtype)

    @property
    def ndim(self) -> int:
        """Get the number of axes."""
        return self._ndim

    @property
    def lengths(self) -> tuple[int, ...]:
        """Get the axis lengths."""
        return self._lengths

    @property
    def shape(self) -> tuple[int, ...]:
        """Get the axis lengths (NumPy spelling)."""
        return self._lengths

    @property
    def size(self) -> int:
        """Get the total number of elements."""
        return self._vector.size

    @property
    def dtype(self) -> np.dtype[Any]:
        """Get the element type."""
        return self._vector.dtype

    @property
    def vector(self) -> DistributedVector:
        """Get the flat storage."""
        return self._vector

    @property
    def queues(self) -> tuple[CommandQueue, ...]:
        """Get the queues of the flat storage."""
        return self._vector.queues

    def assign(self, expr: Any) -> MultiArray:
        """
        Evaluate an expression over flat vectors into this array.

        Returns:
            Self for method chaining.

        Raises:
            UnsupportedOperandError: If the expression reads a MultiArray.
        """
        self._vector.assign(expr)
        return self

    def to_host(self) -> NDArray[Any]:
        """Copy the array into a new host array of shape ``lengths``."""
        return self._vector.to_host().reshape(self._lengths)

    def finish(self) -> None:
        """Wait for all work enqueued on the array's queues."""
        self._vector.finish()

    def __len__(self) -> int:
        return self._vector.size

    def __setitem__(self, index: slice, value: Any) -> None:
        """``a[:] = expr`` assigns an expression."""
        if index != slice(None):
            raise IndexError("Only the full slice [:] can be assigned an expression")
        self.assign(value)

    def __repr__(self) -> str:
        """String representation."""
        return f"MultiArray(lengths={self._lengths}, dtype={self.dtype})"
