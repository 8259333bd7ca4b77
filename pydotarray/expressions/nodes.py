"""
Expression tree nodes.

An expression is a tree over a closed set of node kinds. Building a tree
never touches a device; only assigning it to a vector does. Nodes hold
plain references to the vectors they read and are meant to live no
longer than the statement that assigns them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, ClassVar, Union

import numpy as np

from pydotarray.exceptions import UnsupportedOperandError

if TYPE_CHECKING:
    from pydotarray.expressions.functions import ElementwiseFunction


class NodeKind(Enum):
    """Kind of an expression node."""

    VECTOR = auto()
    SCALAR = auto()
    ELEMENT_INDEX = auto()
    UNARY = auto()
    BINARY = auto()
    FUNCTION = auto()


UNARY_OPS = frozenset({"neg", "pos", "abs"})
ARITHMETIC_OPS = frozenset({"add", "sub", "mul", "truediv", "mod", "pow"})
COMPARISON_OPS = frozenset({"lt", "le", "gt", "ge"})
BINARY_OPS = ARITHMETIC_OPS | COMPARISON_OPS

# Element types a vector may hold.
ELEMENT_TYPES = frozenset(
    np.dtype(t)
    for t in (
        np.int8,
        np.int16,
        np.int32,
        np.int64,
        np.uint8,
        np.uint16,
        np.uint32,
        np.uint64,
        np.float32,
        np.float64,
    )
)

INDEX_DTYPE = np.dtype(np.int64)


def element_dtype(dtype: Any) -> np.dtype[Any]:
    """
    Normalize and check a vector element type.

    Args:
        dtype: Anything ``np.dtype`` accepts.

    Returns:
        The normalized dtype.

    Raises:
        UnsupportedOperandError: If the type cannot be held by a vector.
    """
    try:
        normalized = np.dtype(dtype)
    except TypeError as e:
        raise UnsupportedOperandError(dtype, f"not a dtype: {e}") from e
    if normalized not in ELEMENT_TYPES:
        raise UnsupportedOperandError(dtype, f"element type {normalized} is not supported")
    return normalized


class ExpressionMixin:
    """
    Arithmetic operators that build expression trees.

    Shared by expression nodes and by anything that can appear as a
    vector operand, so ``2 * x + sin(y)`` builds a tree no matter which
    side the vectors are on.
    """

    # Make NumPy scalars defer to our reflected operators.
    __array_ufunc__ = None

    def __add__(self, other: Any) -> BinaryOp:
        return _binary("add", self, other)

    def __radd__(self, other: Any) -> BinaryOp:
        return _binary("add", other, self)

    def __sub__(self, other: Any) -> BinaryOp:
        return _binary("sub", self, other)

    def __rsub__(self, other: Any) -> BinaryOp:
        return _binary("sub", other, self)

    def __mul__(self, other: Any) -> BinaryOp:
        return _binary("mul", self, other)

    def __rmul__(self, other: Any) -> BinaryOp:
        return _binary("mul", other, self)

    def __truediv__(self, other: Any) -> BinaryOp:
        return _binary("truediv", self, other)

    def __rtruediv__(self, other: Any) -> BinaryOp:
        return _binary("truediv", other, self)

    def __mod__(self, other: Any) -> BinaryOp:
        return _binary("mod", self, other)

    def __rmod__(self, other: Any) -> BinaryOp:
        return _binary("mod", other, self)

    def __pow__(self, other: Any) -> BinaryOp:
        return _binary("pow", self, other)

    def __rpow__(self, other: Any) -> BinaryOp:
        return _binary("pow", other, self)

    def __lt__(self, other: Any) -> BinaryOp:
        return _binary("lt", self, other)

    def __le__(self, other: Any) -> BinaryOp:
        return _binary("le", self, other)

    def __gt__(self, other: Any) -> BinaryOp:
        return _binary("gt", self, other)

    def __ge__(self, other: Any) -> BinaryOp:
        return _binary("ge", self, other)

    def __neg__(self) -> UnaryOp:
        return UnaryOp("neg", as_node(self))

    def __pos__(self) -> UnaryOp:
        return UnaryOp("pos", as_node(self))

    def __abs__(self) -> UnaryOp:
        return UnaryOp("abs", as_node(self))


@dataclass(frozen=True, eq=False)
class VectorRef(ExpressionMixin):
    """Reads element ``i`` of a vector operand."""

    vector: Any

    kind: ClassVar[NodeKind] = NodeKind.VECTOR


@dataclass(frozen=True, eq=False)
class Scalar(ExpressionMixin):
    """A literal broadcast to every element; passed to kernels by value."""

    value: Any
    dtype: np.dtype[Any]

    kind: ClassVar[NodeKind] = NodeKind.SCALAR


@dataclass(frozen=True, eq=False)
class ElementIndex(ExpressionMixin):
    """Position of the element in the logical flat index space."""

    kind: ClassVar[NodeKind] = NodeKind.ELEMENT_INDEX


@dataclass(frozen=True, eq=False)
class UnaryOp(ExpressionMixin):
    """Unary operator applied to one subtree."""

    op: str
    operand: Node

    kind: ClassVar[NodeKind] = NodeKind.UNARY

    def __post_init__(self) -> None:
        if self.op not in UNARY_OPS:
            raise ValueError(f"Unknown unary operator: {self.op!r}")


@dataclass(frozen=True, eq=False)
class BinaryOp(ExpressionMixin):
    """Binary operator applied to two subtrees."""

    op: str
    left: Node
    right: Node

    kind: ClassVar[NodeKind] = NodeKind.BINARY

    def __post_init__(self) -> None:
        if self.op not in BINARY_OPS:
            raise ValueError(f"Unknown binary operator: {self.op!r}")


@dataclass(frozen=True, eq=False)
class FunctionCall(ExpressionMixin):
    """Elementwise builtin function applied to its argument subtrees."""

    function: ElementwiseFunction
    args: tuple[Node, ...]

    kind: ClassVar[NodeKind] = NodeKind.FUNCTION


Node = Union[VectorRef, Scalar, ElementIndex, UnaryOp, BinaryOp, FunctionCall]

_NODE_TYPES = (VectorRef, Scalar, ElementIndex, UnaryOp, BinaryOp, FunctionCall)


def scalar(value: Any, dtype: Any = None) -> Scalar:
    """
    Make a scalar node, inferring its type from the Python value.

    Python ints become int64 (uint64 when they only fit there), floats
    become float64 and bools stay bool. NumPy scalars keep their dtype.

    Raises:
        UnsupportedOperandError: If the value is not a real number.
    """
    if dtype is not None:
        dtype = np.dtype(dtype)
        return Scalar(dtype.type(value).item(), dtype)
    if isinstance(value, np.generic):
        if value.dtype.kind not in "biuf":
            raise UnsupportedOperandError(value, f"scalar of type {value.dtype} is not supported")
        return Scalar(value.item(), value.dtype)
    if isinstance(value, bool):
        return Scalar(value, np.dtype(np.bool_))
    if isinstance(value, int):
        if np.iinfo(np.int64).min <= value <= np.iinfo(np.int64).max:
            return Scalar(value, np.dtype(np.int64))
        if 0 <= value <= np.iinfo(np.uint64).max:
            return Scalar(value, np.dtype(np.uint64))
        raise UnsupportedOperandError(value, "integer does not fit in 64 bits")
    if isinstance(value, float):
        return Scalar(value, np.dtype(np.float64))
    raise UnsupportedOperandError(value, "only real numbers can be used as scalars")


def as_node(value: Any) -> Node:
    """
    Lift a value into an expression node.

    Nodes are returned unchanged, vector-like operands become
    ``VectorRef`` and numbers become ``Scalar``. Whether a vector-like
    operand can actually be read by a kernel is decided when the tree
    is lowered.
    """
    if isinstance(value, _NODE_TYPES):
        return value
    if isinstance(value, ExpressionMixin):
        return VectorRef(value)
    return scalar(value)


def element_index(offset: int = 0) -> Node:
    """
    Position of each element in the logical flat index space.

    Args:
        offset: Constant added to every index.

    Example:
        >>> x.assign(2 * math.pi * element_index())
    """
    if offset:
        return BinaryOp("add", ElementIndex(), scalar(offset))
    return ElementIndex()


def _binary(op: str, left: Any, right: Any) -> BinaryOp:
    return BinaryOp(op, as_node(left), as_node(right))
