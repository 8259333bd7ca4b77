"""
Kernel compiler for PyDotArray.

Turns generated kernel source into a launchable kernel for one device
context by handing it to the context's backend (Numba for CPU, NVRTC
through CuPy for CUDA).
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydotarray.exceptions import KernelCompilationError, PyDotArrayError

if TYPE_CHECKING:
    from pydotarray.backends.base import DeviceContext
    from pydotarray.expressions.codegen import KernelSource

logger = logging.getLogger(__name__)


def _show_kernels_default() -> bool:
    return os.environ.get("PYDOTARRAY_SHOW_KERNELS", "").lower() in ("1", "true", "yes")


@dataclass
class CompilationOptions:
    """Options for kernel compilation."""

    fastmath: bool = True
    debug: bool = False
    show_kernels: bool = field(default_factory=_show_kernels_default)
    block_size: int = 256

    def __post_init__(self) -> None:
        """Validate options."""
        if self.block_size < 1 or self.block_size > 1024:
            raise ValueError(f"block_size must be in [1, 1024], got {self.block_size}")


@dataclass
class CompiledKernel:
    """A compiled kernel with metadata."""

    kernel: Callable[..., Any]
    name: str
    signature: str
    source: str
    context: DeviceContext
    options: CompilationOptions
    compile_time_ms: float = 0.0


class KernelCompiler:
    """
    Compiler for generated kernels.

    Example:
        >>> compiler = KernelCompiler()
        >>> compiled = compiler.compile(generate_source(x + y, x.dtype, "python"), context)
    """

    def __init__(self, options: CompilationOptions | None = None) -> None:
        """
        Initialize the kernel compiler.

        Args:
            options: Compilation options.
        """
        self._options = options or CompilationOptions()
        self._compile_count = 0

    @property
    def options(self) -> CompilationOptions:
        """Get the compilation options."""
        return self._options

    @property
    def compile_count(self) -> int:
        """Get the number of kernels compiled so far."""
        return self._compile_count

    def compile(self, source: KernelSource, context: DeviceContext) -> CompiledKernel:
        """
        Compile generated source for a device context.

        Args:
            source: Generated kernel source.
            context: Target device.

        Returns:
            CompiledKernel with the launchable kernel.

        Raises:
            KernelCompilationError: If compilation fails.
        """
        backend = context.backend
        if source.dialect != backend.dialect:
            raise KernelCompilationError(
                source.name,
                ValueError(
                    f"{source.dialect} source cannot be compiled for {context!r} "
                    f"(expects {backend.dialect})"
                ),
            )

        if self._options.show_kernels:
            logger.info("Kernel %s for %r:\n%s", source.name, context, source.source)

        start_time = time.perf_counter()
        try:
            kernel = backend.compile_kernel(context, source, self._options)
        except PyDotArrayError:
            raise
        except Exception as e:
            raise KernelCompilationError(source.name, e) from e
        compile_time = (time.perf_counter() - start_time) * 1000

        self._compile_count += 1
        logger.info(
            "Compiled %s for %r in %.1f ms (%s)",
            source.name,
            context,
            compile_time,
            source.signature,
        )

        return CompiledKernel(
            kernel=kernel,
            name=source.name,
            signature=source.signature,
            source=source.source,
            context=context,
            options=self._options,
            compile_time_ms=compile_time,
        )

    def __repr__(self) -> str:
        """String representation."""
        return f"KernelCompiler(compiled={self._compile_count}, options={self._options})"


# Global compiler instance
_global_compiler: KernelCompiler | None = None


def get_compiler() -> KernelCompiler:
    """Get the global kernel compiler instance."""
    global _global_compiler
    if _global_compiler is None:
        _global_compiler = KernelCompiler()
    return _global_compiler
