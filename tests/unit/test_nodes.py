"""
Unit tests for expression nodes and builtin functions.
"""

from __future__ import annotations

import numpy as np
import pytest

from pydotarray.expressions.functions import FUNCTIONS, atan2, sin, where
from pydotarray.expressions.nodes import (
    BinaryOp,
    ElementIndex,
    FunctionCall,
    NodeKind,
    Scalar,
    UnaryOp,
    VectorRef,
    as_node,
    element_dtype,
    element_index,
    scalar,
)
from pydotarray.exceptions import UnsupportedOperandError


class TestScalar:
    """Tests for scalar type inference."""

    def test_python_int(self) -> None:
        """Test that ints are 64-bit signed."""
        node = scalar(3)

        assert node.kind is NodeKind.SCALAR
        assert node.dtype == np.int64
        assert node.value == 3

    def test_large_int(self) -> None:
        """Test ints that only fit unsigned."""
        assert scalar(2**63).dtype == np.uint64

    def test_int_too_large(self) -> None:
        """Test ints beyond 64 bits."""
        with pytest.raises(UnsupportedOperandError):
            scalar(2**64)

    def test_python_float(self) -> None:
        """Test that floats are double precision."""
        assert scalar(1.5).dtype == np.float64

    def test_bool(self) -> None:
        """Test that bools keep their type."""
        assert scalar(True).dtype == np.bool_

    def test_numpy_scalar_keeps_dtype(self) -> None:
        """Test NumPy scalars."""
        node = scalar(np.float32(2.5))

        assert node.dtype == np.float32
        assert node.value == 2.5

    def test_explicit_dtype(self) -> None:
        """Test forcing a type."""
        node = scalar(3, np.int16)

        assert node.dtype == np.int16

    def test_unsupported_values(self) -> None:
        """Test values that are not real numbers."""
        with pytest.raises(UnsupportedOperandError):
            scalar("3")
        with pytest.raises(UnsupportedOperandError):
            scalar(1 + 2j)
        with pytest.raises(UnsupportedOperandError):
            scalar(np.complex64(1))


class TestOperators:
    """Tests for tree building through operators."""

    def test_arithmetic_builds_tree(self) -> None:
        """Test that operators build nodes without evaluating."""
        tree = element_index() * 2 + 1.0

        assert isinstance(tree, BinaryOp)
        assert tree.op == "add"
        assert isinstance(tree.left, BinaryOp)
        assert tree.left.op == "mul"
        assert isinstance(tree.left.left, ElementIndex)
        assert isinstance(tree.left.right, Scalar)
        assert isinstance(tree.right, Scalar)

    def test_reflected_operators(self) -> None:
        """Test numbers on the left-hand side."""
        tree = 2 - element_index()

        assert tree.op == "sub"
        assert isinstance(tree.left, Scalar)
        assert isinstance(tree.right, ElementIndex)

    def test_numpy_scalar_on_the_left(self) -> None:
        """Test that NumPy scalars defer to the expression."""
        tree = np.float32(2) * element_index()

        assert isinstance(tree, BinaryOp)
        assert tree.left.dtype == np.float32

    @pytest.mark.parametrize(
        "build, op",
        [
            (lambda e: e - 1, "sub"),
            (lambda e: e / 2, "truediv"),
            (lambda e: e % 3, "mod"),
            (lambda e: e**2, "pow"),
            (lambda e: e < 1, "lt"),
            (lambda e: e <= 1, "le"),
            (lambda e: e > 1, "gt"),
            (lambda e: e >= 1, "ge"),
        ],
    )
    def test_binary_operator(self, build, op: str) -> None:
        """Test every binary operator."""
        assert build(element_index()).op == op

    def test_unary_operators(self) -> None:
        """Test unary operators."""
        index = element_index()

        assert (-index).op == "neg"
        assert (+index).op == "pos"
        assert abs(index).op == "abs"
        assert isinstance(-index, UnaryOp)

    def test_unknown_operator(self) -> None:
        """Test that unknown operators are rejected."""
        with pytest.raises(ValueError):
            BinaryOp("xor", ElementIndex(), ElementIndex())
        with pytest.raises(ValueError):
            UnaryOp("not", ElementIndex())

    def test_element_index_offset(self) -> None:
        """Test a shifted element index."""
        tree = element_index(5)

        assert tree.op == "add"
        assert tree.right.value == 5


class TestAsNode:
    """Tests for as_node()."""

    def test_node_unchanged(self) -> None:
        """Test that nodes pass through."""
        node = ElementIndex()

        assert as_node(node) is node

    def test_vector_like_becomes_reference(self, queues) -> None:
        """Test that vectors become vector references."""
        from pydotarray.core.vector import DistributedVector

        x = DistributedVector(queues, 4)
        node = as_node(x)

        assert isinstance(node, VectorRef)
        assert node.vector is x
        assert node.kind is NodeKind.VECTOR

    def test_number_becomes_scalar(self) -> None:
        """Test that numbers become scalars."""
        assert isinstance(as_node(1.0), Scalar)


class TestFunctions:
    """Tests for builtin elementwise functions."""

    def test_call_builds_node(self) -> None:
        """Test calling a builtin."""
        node = sin(element_index())

        assert isinstance(node, FunctionCall)
        assert node.kind is NodeKind.FUNCTION
        assert node.function is sin
        assert isinstance(node.args[0], ElementIndex)

    def test_arity_is_checked(self) -> None:
        """Test the number of arguments."""
        with pytest.raises(TypeError):
            sin(1.0, 2.0)
        with pytest.raises(TypeError):
            atan2(1.0)

    def test_render(self) -> None:
        """Test rendering in both dialects."""
        assert sin.render("python", ["a"]) == "math.sin(a)"
        assert sin.render("cuda", ["a"]) == "sin(a)"
        assert where.render("python", ["c", "a", "b"]) == "(a if c else b)"

    def test_registry(self) -> None:
        """Test the registry of builtins."""
        assert FUNCTIONS["sin"] is sin
        assert FUNCTIONS["where"].arity == 3


class TestElementDtype:
    """Tests for element_dtype()."""

    @pytest.mark.parametrize("dtype", [np.int8, np.uint32, np.int64, np.float32, "float64"])
    def test_supported(self, dtype) -> None:
        """Test supported element types."""
        assert element_dtype(dtype) == np.dtype(dtype)

    @pytest.mark.parametrize("dtype", [np.bool_, np.complex128, np.float16, object])
    def test_unsupported(self, dtype) -> None:
        """Test unsupported element types."""
        with pytest.raises(UnsupportedOperandError):
            element_dtype(dtype)
