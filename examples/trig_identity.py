"""
Trigonometric identity over a 3-D array.

Fills a flat vector with angles, evaluates sin^2 + cos^2 into a
32x32x32 MultiArray and checks that every element is 1.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from pydotarray import CPUBackend, DistributedVector, MultiArray, cos, element_index, pow, sin


def run_trig_identity_example(device_count: int = 2) -> None:
    """Run the identity check on virtual CPU devices."""
    queues = CPUBackend(device_count=device_count).create_queues(device_count)

    y = MultiArray(queues, (32, 32, 32), ndim=3)
    x = DistributedVector(queues, y.size)

    x.assign(2 * math.pi * element_index())
    y.assign(pow(sin(x), 2.0) + pow(cos(x), 2.0))

    result = y.to_host()
    print(f"{y!r}: all ones = {np.allclose(result, 1.0)}")


if __name__ == "__main__":
    # Shows kernel compilation messages.
    logging.basicConfig(level=logging.INFO)
    run_trig_identity_example()
