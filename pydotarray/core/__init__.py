"""
Core abstractions for PyDotArray.
"""

from pydotarray.core.device_buffer import DeviceBuffer
from pydotarray.core.multi_array import MultiArray
from pydotarray.core.partition import Partition, plan
from pydotarray.core.vector import DistributedVector, copy, swap

__all__ = [
    "DeviceBuffer",
    "DistributedVector",
    "MultiArray",
    "Partition",
    "copy",
    "plan",
    "swap",
]
