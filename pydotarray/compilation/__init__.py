"""
Kernel compilation and caching system.
"""

from pydotarray.compilation.cache import CacheEntry, KernelCache, get_kernel_cache
from pydotarray.compilation.compiler import (
    CompilationOptions,
    CompiledKernel,
    KernelCompiler,
    get_compiler,
)

__all__ = [
    "CacheEntry",
    "CompilationOptions",
    "CompiledKernel",
    "KernelCache",
    "KernelCompiler",
    "get_compiler",
    "get_kernel_cache",
]
