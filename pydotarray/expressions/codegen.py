"""
Lowering of expression trees to kernel source.

A tree is walked once, left to right. Vector operands become array
parameters ``v0, v1, ...`` and scalars become value parameters
``s0, s1, ...`` in the order they are met, so the generated kernel and
its structural signature depend only on the shape of the tree and the
operand types, never on which vectors or literal values are involved.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from pydotarray.exceptions import UnsupportedOperandError
from pydotarray.expressions.nodes import INDEX_DTYPE, NodeKind, Scalar, as_node

if TYPE_CHECKING:
    from pydotarray.core.vector import DistributedVector
    from pydotarray.expressions.nodes import Node

DIALECTS = ("python", "cuda")

_FLOAT32 = np.dtype(np.float32)
_FLOAT64 = np.dtype(np.float64)
_BOOL = np.dtype(np.bool_)

C_TYPES: dict[np.dtype[Any], str] = {
    np.dtype(np.bool_): "bool",
    np.dtype(np.int8): "signed char",
    np.dtype(np.int16): "short",
    np.dtype(np.int32): "int",
    np.dtype(np.int64): "long long",
    np.dtype(np.uint8): "unsigned char",
    np.dtype(np.uint16): "unsigned short",
    np.dtype(np.uint32): "unsigned int",
    np.dtype(np.uint64): "unsigned long long",
    np.dtype(np.float32): "float",
    np.dtype(np.float64): "double",
}

_PYTHON_UNARY = {
    "neg": "(-{0})",
    "pos": "(+{0})",
    "abs": "abs({0})",
}

_CUDA_UNARY = {
    "neg": "(-{0})",
    "pos": "(+{0})",
    "abs": "(({0}) < 0 ? -({0}) : ({0}))",
}

_INFIX = {
    "add": "+",
    "sub": "-",
    "mul": "*",
    "truediv": "/",
    "mod": "%",
    "lt": "<",
    "le": "<=",
    "gt": ">",
    "ge": ">=",
}


@dataclass(frozen=True)
class KernelSource:
    """Generated source of one elementwise kernel."""

    name: str
    signature: str
    dialect: str
    source: str
    out_dtype: np.dtype[Any]
    vector_dtypes: tuple[np.dtype[Any], ...]
    scalar_dtypes: tuple[np.dtype[Any], ...]


@dataclass
class Operands:
    """Runtime operands of a tree in kernel parameter order."""

    vectors: list[DistributedVector] = field(default_factory=list)
    scalars: list[Scalar] = field(default_factory=list)

    def scalar_values(self) -> list[Any]:
        """Get the scalar values typed for binding."""
        return [s.dtype.type(s.value) for s in self.scalars]


def float_dtype(*dtypes: np.dtype[Any]) -> np.dtype[Any]:
    """Result type of a floating point operation on the given types."""
    if dtypes and all(d == _FLOAT32 for d in dtypes):
        return _FLOAT32
    return _FLOAT64


def result_dtype(node: Node) -> np.dtype[Any]:
    """Element type produced by a subtree."""
    return _Lowering("python").visit(as_node(node))[2]


def collect_operands(tree: Any) -> Operands:
    """
    Gather vector and scalar operands in parameter order.

    Raises:
        UnsupportedOperandError: If a vector operand cannot be read by
            a kernel.
    """
    lowering = _Lowering("python")
    lowering.visit(as_node(tree))
    return lowering.operands


def structural_signature(tree: Any, out_dtype: np.dtype[Any]) -> str:
    """
    Key identifying the kernel that assigns ``tree`` to a vector.

    Example:
        >>> structural_signature(x * 2 + y, np.dtype("float64"))
        'float64=add(mul(v:float64,s:int64),v:float64)'
    """
    signature = _Lowering("python").visit(as_node(tree))[0]
    return f"{np.dtype(out_dtype)}={signature}"


def kernel_name(signature: str) -> str:
    """Stable kernel name derived from a structural signature."""
    return "pda_kernel_" + hashlib.sha256(signature.encode()).hexdigest()[:16]


def generate_source(tree: Any, out_dtype: np.dtype[Any], dialect: str) -> KernelSource:
    """
    Generate an elementwise kernel assigning ``tree`` to an output vector.

    Every kernel takes ``(n, offset, out, v0.., s0..)``: the number of
    work-items, the partition's offset in the flat index space, the
    output buffer, the vector operand buffers and the scalar values.

    Args:
        tree: Expression (anything ``as_node`` accepts).
        out_dtype: Element type of the output vector.
        dialect: ``"python"`` or ``"cuda"``.

    Returns:
        The generated kernel source.
    """
    if dialect not in DIALECTS:
        raise ValueError(f"Unknown kernel dialect: {dialect!r}")

    out_dtype = np.dtype(out_dtype)
    lowering = _Lowering(dialect)
    tree_signature, expression, _ = lowering.visit(as_node(tree))
    signature = f"{out_dtype}={tree_signature}"
    name = kernel_name(signature)

    vector_dtypes = tuple(v.dtype for v in lowering.operands.vectors)
    scalar_dtypes = tuple(s.dtype for s in lowering.operands.scalars)
    vector_params = [f"v{k}" for k in range(len(vector_dtypes))]
    scalar_params = [f"s{k}" for k in range(len(scalar_dtypes))]

    if dialect == "python":
        params = ", ".join(["n", "offset", "out", *vector_params, *scalar_params])
        source = (
            f"def {name}({params}):\n"
            f"    for i in range(n):\n"
            f"        out[i] = out_t({expression})\n"
        )
    else:
        out_type = C_TYPES[out_dtype]
        params = ", ".join(
            [
                "const long long n",
                "const long long offset",
                f"{out_type}* out",
                *(f"const {C_TYPES[d]}* {p}" for d, p in zip(vector_dtypes, vector_params)),
                *(f"const {C_TYPES[d]} {p}" for d, p in zip(scalar_dtypes, scalar_params)),
            ]
        )
        source = (
            f'extern "C" __global__ void {name}({params})\n'
            "{\n"
            "    const long long i = (long long)blockIdx.x * blockDim.x + threadIdx.x;\n"
            "    if (i < n) {\n"
            f"        out[i] = ({out_type})({expression});\n"
            "    }\n"
            "}\n"
        )

    return KernelSource(
        name=name,
        signature=signature,
        dialect=dialect,
        source=source,
        out_dtype=out_dtype,
        vector_dtypes=vector_dtypes,
        scalar_dtypes=scalar_dtypes,
    )


class _Lowering:
    """One left-to-right walk producing (signature, code, dtype) per node."""

    def __init__(self, dialect: str) -> None:
        self.dialect = dialect
        self.operands = Operands()

    def visit(self, node: Node) -> tuple[str, str, np.dtype[Any]]:
        kind = getattr(node, "kind", None)

        if kind is NodeKind.VECTOR:
            vector = _flat_vector(node.vector)
            k = len(self.operands.vectors)
            self.operands.vectors.append(vector)
            return f"v:{vector.dtype}", f"v{k}[i]", vector.dtype

        if kind is NodeKind.SCALAR:
            if node.dtype not in C_TYPES:
                raise UnsupportedOperandError(node.value, f"scalar type {node.dtype} is not supported")
            k = len(self.operands.scalars)
            self.operands.scalars.append(node)
            return f"s:{node.dtype}", f"s{k}", node.dtype

        if kind is NodeKind.ELEMENT_INDEX:
            return "idx", "(offset + i)", INDEX_DTYPE

        if kind is NodeKind.UNARY:
            sig, code, dtype = self.visit(node.operand)
            table = _PYTHON_UNARY if self.dialect == "python" else _CUDA_UNARY
            return f"{node.op}({sig})", table[node.op].format(code), dtype

        if kind is NodeKind.BINARY:
            left_sig, left, left_dtype = self.visit(node.left)
            right_sig, right, right_dtype = self.visit(node.right)
            dtype = _binary_dtype(node.op, left_dtype, right_dtype)
            code = self._binary(node.op, left, right, dtype)
            return f"{node.op}({left_sig},{right_sig})", code, dtype

        if kind is NodeKind.FUNCTION:
            visited = [self.visit(arg) for arg in node.args]
            function = node.function
            arg_dtypes = [dtype for _, _, dtype in visited]
            codes = [code for _, code, _ in visited]
            if function.result_args is None:
                dtype = float_dtype(*arg_dtypes)
                if self.dialect == "cuda":
                    codes = [f"(({C_TYPES[dtype]})({c}))" for c in codes]
            else:
                dtype = np.result_type(*(arg_dtypes[k] for k in function.result_args))
            sig = ",".join(s for s, _, _ in visited)
            return f"{function.name}({sig})", function.render(self.dialect, codes), dtype

        raise UnsupportedOperandError(node, "not an expression node")

    def _binary(self, op: str, left: str, right: str, dtype: np.dtype[Any]) -> str:
        if self.dialect == "python":
            if op == "pow":
                return f"math.pow({left}, {right})"
            return f"({left} {_INFIX[op]} {right})"

        c_type = C_TYPES[dtype]
        if op == "pow":
            return f"pow(({c_type})({left}), ({c_type})({right}))"
        if op == "truediv":
            return f"(({c_type})({left}) / ({c_type})({right}))"
        if op == "mod" and dtype.kind == "f":
            return f"fmod(({c_type})({left}), ({c_type})({right}))"
        return f"({left} {_INFIX[op]} {right})"


def _binary_dtype(op: str, left: np.dtype[Any], right: np.dtype[Any]) -> np.dtype[Any]:
    if op in ("lt", "le", "gt", "ge"):
        return _BOOL
    if op in ("truediv", "pow"):
        return float_dtype(left, right)
    return np.result_type(left, right)


def _flat_vector(operand: Any) -> DistributedVector:
    from pydotarray.core.vector import DistributedVector

    if isinstance(operand, DistributedVector):
        return operand

    from pydotarray.core.multi_array import MultiArray

    if isinstance(operand, MultiArray):
        raise UnsupportedOperandError(
            operand,
            "multi-dimensional arrays cannot be read inside a kernel; "
            "use a flat DistributedVector of the same size",
        )
    raise UnsupportedOperandError(operand, "only DistributedVector operands can be read")
