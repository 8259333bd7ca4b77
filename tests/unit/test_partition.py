"""
Unit tests for the partition planner.
"""

from __future__ import annotations

import pytest

from pydotarray.backends.base import CommandQueue
from pydotarray.core.partition import Partition, describe, plan, plans_compatible
from pydotarray.exceptions import InvalidSizeError


class TestPlan:
    """Tests for plan()."""

    def test_even_split(self, queues: list[CommandQueue]) -> None:
        """Test a size that divides evenly."""
        partitions = plan(1024, queues)

        assert describe(partitions) == [(0, 512), (512, 512)]
        assert [p.queue for p in partitions] == queues
        assert [p.device_index for p in partitions] == [0, 1]

    def test_remainder_goes_to_first_partitions(self, device_queues: list[CommandQueue]) -> None:
        """Test that leftover elements land on the earliest partitions."""
        partitions = plan(11, device_queues)

        assert describe(partitions) == [(0, 4), (4, 4), (8, 3)]

    @pytest.mark.parametrize("size", [1, 2, 3, 7, 100, 1001])
    def test_covers_size_without_overlap(
        self,
        size: int,
        device_queues: list[CommandQueue],
    ) -> None:
        """Test that partitions are contiguous, disjoint and cover the size."""
        partitions = plan(size, device_queues)

        assert partitions[0].offset == 0
        for before, after in zip(partitions, partitions[1:]):
            assert before.stop == after.offset
        assert partitions[-1].stop == size
        assert sum(p.count for p in partitions) == size

    def test_zero_size_is_empty(self, queues: list[CommandQueue]) -> None:
        """Test that an empty size has no partitions."""
        assert plan(0, queues) == []
        assert plan(0, []) == []

    def test_more_queues_than_elements(self, device_queues: list[CommandQueue]) -> None:
        """Test that queues with nothing to hold get no partition."""
        partitions = plan(2, device_queues)

        assert describe(partitions) == [(0, 1), (1, 1)]
        assert all(p.count > 0 for p in partitions)

    def test_no_queues(self) -> None:
        """Test that a non-empty size needs queues."""
        with pytest.raises(InvalidSizeError):
            plan(10, [])

    def test_negative_size(self, queues: list[CommandQueue]) -> None:
        """Test that negative sizes are rejected."""
        with pytest.raises(InvalidSizeError):
            plan(-1, queues)

    def test_deterministic(self, device_queues: list[CommandQueue]) -> None:
        """Test that planning twice gives the same result."""
        assert plan(1000, device_queues) == plan(1000, device_queues)


class TestPartition:
    """Tests for the Partition dataclass."""

    def test_stop(self, single_queue: list[CommandQueue]) -> None:
        """Test the exclusive end of the range."""
        partition = Partition(device_index=0, queue=single_queue[0], offset=10, count=5)

        assert partition.stop == 15


class TestPlansCompatible:
    """Tests for plans_compatible()."""

    def test_same_inputs(self, queues: list[CommandQueue]) -> None:
        """Test plans built from the same queues and size."""
        assert plans_compatible(plan(100, queues), plan(100, queues))

    def test_different_sizes(self, queues: list[CommandQueue]) -> None:
        """Test plans of different sizes."""
        assert not plans_compatible(plan(100, queues), plan(101, queues))

    def test_different_queues(
        self,
        queues: list[CommandQueue],
        device_queues: list[CommandQueue],
    ) -> None:
        """Test plans over different queues."""
        assert not plans_compatible(plan(100, queues), plan(100, device_queues[:2]))

    def test_empty_plans(self, queues: list[CommandQueue]) -> None:
        """Test that two empty plans are compatible."""
        assert plans_compatible(plan(0, queues), [])
