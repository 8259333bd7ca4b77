"""
Partitioning of a flat index space across device queues.
"""

from __future__ import annotations

import operator
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydotarray.exceptions import InvalidSizeError

if TYPE_CHECKING:
    from pydotarray.backends.base import CommandQueue


@dataclass(frozen=True)
class Partition:
    """A contiguous range ``[offset, offset + count)`` bound to one queue."""

    device_index: int
    queue: CommandQueue
    offset: int
    count: int

    @property
    def stop(self) -> int:
        """End of the range (exclusive)."""
        return self.offset + self.count


def plan(total_size: int, queues: Sequence[CommandQueue]) -> list[Partition]:
    """
    Split ``total_size`` elements as evenly as possible over ``queues``.

    The first ``total_size % len(queues)`` partitions receive one extra
    element. Queues that would receive no element get no partition, so
    an empty size yields an empty plan.

    Args:
        total_size: Number of elements.
        queues: Queues in partition order.

    Returns:
        Partitions ordered by offset.

    Raises:
        InvalidSizeError: If the size is negative, or there are no
            queues for a non-empty size.

    Example:
        >>> [(p.offset, p.count) for p in plan(10, [q0, q1, q2])]
        [(0, 4), (4, 3), (7, 3)]
    """
    total_size = operator.index(total_size)
    if total_size < 0:
        raise InvalidSizeError("size must be non-negative", total_size)
    if total_size == 0:
        return []
    if not queues:
        raise InvalidSizeError("no queues to place a non-empty vector on", total_size)

    base, remainder = divmod(total_size, len(queues))
    partitions: list[Partition] = []
    offset = 0
    for index, queue in enumerate(queues):
        count = base + (1 if index < remainder else 0)
        if count == 0:
            break
        partitions.append(Partition(index, queue, offset, count))
        offset += count
    return partitions


def plans_compatible(first: Sequence[Partition], second: Sequence[Partition]) -> bool:
    """Check that two plans use the same queues with the same ranges."""
    if len(first) != len(second):
        return False
    return all(
        a.queue is b.queue and a.offset == b.offset and a.count == b.count
        for a, b in zip(first, second)
    )


def describe(partitions: Sequence[Partition]) -> list[tuple[int, int]]:
    """Summarize a plan as ``(offset, count)`` pairs for error messages."""
    return [(p.offset, p.count) for p in partitions]
