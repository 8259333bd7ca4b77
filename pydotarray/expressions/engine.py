"""
Expression engine: assigns expression trees to distributed vectors.

Assignment runs in two phases. First everything that can fail without
touching a device is checked and every partition's kernel is obtained
from the cache, synthesizing and compiling it on a miss. Only then are
the kernels enqueued, one per partition, on the partition's queue. The
target is therefore untouched when an error is raised before dispatch.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np

from pydotarray.compilation.cache import KernelCache, get_kernel_cache
from pydotarray.core.partition import describe, plans_compatible
from pydotarray.exceptions import SizeMismatchError
from pydotarray.expressions.codegen import (
    KernelSource,
    collect_operands,
    generate_source,
    structural_signature,
)
from pydotarray.expressions.nodes import as_node, element_dtype

if TYPE_CHECKING:
    from pydotarray.compilation.compiler import CompiledKernel
    from pydotarray.core.vector import DistributedVector

logger = logging.getLogger(__name__)


class ExpressionEngine:
    """
    Lowers expression trees to cached kernels and dispatches them.

    Example:
        >>> engine = ExpressionEngine(cache=KernelCache())
        >>> engine.assign(y, sin(x) ** 2 + cos(x) ** 2)
    """

    def __init__(self, cache: KernelCache | None = None) -> None:
        """
        Initialize the engine.

        Args:
            cache: Kernel cache (default: the process-wide cache).
        """
        self._cache = cache

    @property
    def cache(self) -> KernelCache:
        """Get the kernel cache."""
        if self._cache is None:
            self._cache = get_kernel_cache()
        return self._cache

    def assign(self, target: DistributedVector, expr: Any) -> DistributedVector:
        """
        Evaluate ``expr`` elementwise into ``target``.

        Args:
            target: Output vector.
            expr: Expression tree, vector or scalar.

        Returns:
            The target.

        Raises:
            UnsupportedOperandError: If the tree reads anything but flat
                vectors, scalars and the element index.
            SizeMismatchError: If an operand is partitioned differently
                from the target.
            KernelCompilationError: If a kernel fails to compile.
        """
        tree = as_node(expr)
        out_dtype = element_dtype(target.dtype)
        operands = collect_operands(tree)

        for operand in operands.vectors:
            if not plans_compatible(target.partitions, operand.partitions):
                raise SizeMismatchError(
                    describe(target.partitions),
                    describe(operand.partitions),
                    "expression operand partitioning",
                )

        if target.size == 0:
            return target

        signature = structural_signature(tree, out_dtype)
        kernels = self._resolve_kernels(tree, target, signature, out_dtype)

        scalars = operands.scalar_values()
        for index, (partition, compiled) in enumerate(zip(target.partitions, kernels)):
            args = (
                np.int64(partition.offset),
                target.buffer(index).handle,
                *(vector.buffer(index).handle for vector in operands.vectors),
                *scalars,
            )
            partition.queue.backend.launch(
                partition.queue,
                compiled.kernel,
                partition.count,
                args,
                block_size=compiled.options.block_size,
            )

        logger.debug(
            "Enqueued %s on %d partition(s)", kernels[0].name, len(target.partitions)
        )
        return target

    def _resolve_kernels(
        self,
        tree: Any,
        target: DistributedVector,
        signature: str,
        out_dtype: np.dtype[Any],
    ) -> list[CompiledKernel]:
        sources: dict[str, KernelSource] = {}
        kernels: list[CompiledKernel] = []
        for partition in target.partitions:
            context = partition.queue.context
            compiled = self.cache.lookup(signature, context)
            if compiled is None:
                dialect = context.backend.dialect
                source = sources.get(dialect)
                if source is None:
                    source = generate_source(tree, out_dtype, dialect)
                    sources[dialect] = source
                compiled = self.cache.insert(signature, context, source)
            kernels.append(compiled)
        return kernels

    def __repr__(self) -> str:
        """String representation."""
        return f"ExpressionEngine(cache={self.cache!r})"


# Global engine instance
_global_engine: ExpressionEngine | None = None


def get_engine() -> ExpressionEngine:
    """Get the global expression engine."""
    global _global_engine
    if _global_engine is None:
        _global_engine = ExpressionEngine()
    return _global_engine
