"""
PyDotArray examples.

This module contains example programs demonstrating distributed
vectors, lazy expressions and multi-dimensional arrays.
"""

from examples.trig_identity import run_trig_identity_example
from examples.vector_add import run_vector_add_example

__all__ = [
    "run_trig_identity_example",
    "run_vector_add_example",
]
