"""
Elementwise builtin functions usable inside expressions.

Each function knows how to render itself in every kernel dialect.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydotarray.expressions.nodes import FunctionCall, as_node


@dataclass(frozen=True)
class ElementwiseFunction:
    """
    A builtin elementwise function.

    Attributes:
        name: Name used in structural signatures.
        arity: Number of arguments.
        python: Template for the Python (Numba) dialect.
        cuda: Template for the CUDA C dialect.
        result_args: Indices of the arguments whose promoted type is the
            result type. ``None`` means the result is floating point.
    """

    name: str
    arity: int
    python: str
    cuda: str
    result_args: tuple[int, ...] | None = None

    def __call__(self, *args: Any) -> FunctionCall:
        if len(args) != self.arity:
            raise TypeError(f"{self.name}() takes {self.arity} argument(s), got {len(args)}")
        return FunctionCall(self, tuple(as_node(arg) for arg in args))

    def render(self, dialect: str, args: list[str]) -> str:
        """Render a call in the given dialect."""
        template = self.python if dialect == "python" else self.cuda
        return template.format(*args)

    def __repr__(self) -> str:
        return f"<elementwise function {self.name}/{self.arity}>"


def _unary(name: str, python: str | None = None, cuda: str | None = None) -> ElementwiseFunction:
    return ElementwiseFunction(
        name,
        1,
        python or f"math.{name}({{0}})",
        cuda or f"{name}({{0}})",
    )


sin = _unary("sin")
cos = _unary("cos")
tan = _unary("tan")
asin = _unary("asin")
acos = _unary("acos")
atan = _unary("atan")
sinh = _unary("sinh")
cosh = _unary("cosh")
tanh = _unary("tanh")
exp = _unary("exp")
log = _unary("log")
log10 = _unary("log10")
sqrt = _unary("sqrt")
fabs = _unary("fabs", python="abs({0})")
floor = _unary("floor", python="np.floor({0})")
ceil = _unary("ceil", python="np.ceil({0})")

pow = ElementwiseFunction("pow", 2, "math.pow({0}, {1})", "pow({0}, {1})")  # noqa: A001
atan2 = ElementwiseFunction("atan2", 2, "math.atan2({0}, {1})", "atan2({0}, {1})")
hypot = ElementwiseFunction("hypot", 2, "math.hypot({0}, {1})", "hypot({0}, {1})")
fmax = ElementwiseFunction("fmax", 2, "np.fmax({0}, {1})", "fmax({0}, {1})")
fmin = ElementwiseFunction("fmin", 2, "np.fmin({0}, {1})", "fmin({0}, {1})")

where = ElementwiseFunction(
    "where",
    3,
    "({1} if {0} else {2})",
    "(({0}) ? ({1}) : ({2}))",
    result_args=(1, 2),
)

FUNCTIONS: dict[str, ElementwiseFunction] = {
    f.name: f
    for f in (
        sin,
        cos,
        tan,
        asin,
        acos,
        atan,
        sinh,
        cosh,
        tanh,
        exp,
        log,
        log10,
        sqrt,
        fabs,
        floor,
        ceil,
        pow,
        atan2,
        hypot,
        fmax,
        fmin,
        where,
    )
}
