"""
Lazy elementwise expressions and their lowering to device kernels.
"""

from pydotarray.expressions.codegen import (
    KernelSource,
    generate_source,
    result_dtype,
    structural_signature,
)
from pydotarray.expressions.engine import ExpressionEngine, get_engine
from pydotarray.expressions.functions import (
    FUNCTIONS,
    ElementwiseFunction,
    acos,
    asin,
    atan,
    atan2,
    ceil,
    cos,
    cosh,
    exp,
    fabs,
    floor,
    fmax,
    fmin,
    hypot,
    log,
    log10,
    pow,
    sin,
    sinh,
    sqrt,
    tan,
    tanh,
    where,
)
from pydotarray.expressions.nodes import (
    BinaryOp,
    ElementIndex,
    ExpressionMixin,
    FunctionCall,
    NodeKind,
    Scalar,
    UnaryOp,
    VectorRef,
    as_node,
    element_index,
    scalar,
)

__all__ = [
    # Nodes
    "NodeKind",
    "ExpressionMixin",
    "VectorRef",
    "Scalar",
    "ElementIndex",
    "UnaryOp",
    "BinaryOp",
    "FunctionCall",
    "as_node",
    "scalar",
    "element_index",
    # Functions
    "FUNCTIONS",
    "ElementwiseFunction",
    "sin",
    "cos",
    "tan",
    "asin",
    "acos",
    "atan",
    "sinh",
    "cosh",
    "tanh",
    "exp",
    "log",
    "log10",
    "sqrt",
    "fabs",
    "floor",
    "ceil",
    "pow",
    "atan2",
    "hypot",
    "fmax",
    "fmin",
    "where",
    # Lowering
    "KernelSource",
    "generate_source",
    "result_dtype",
    "structural_signature",
    "ExpressionEngine",
    "get_engine",
]
