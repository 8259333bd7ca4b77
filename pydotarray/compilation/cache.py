"""
Kernel caching system for PyDotArray.

Compiled kernels are kept for the lifetime of the process, keyed by
device context and structural signature. Entries are written once, on
the first insertion of a key, and only read afterwards.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydotarray.compilation.compiler import CompiledKernel, KernelCompiler, get_compiler

if TYPE_CHECKING:
    from pydotarray.backends.base import DeviceContext
    from pydotarray.expressions.codegen import KernelSource

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Entry in the kernel cache."""

    signature: str
    context: DeviceContext
    kernel: CompiledKernel
    created_timestamp: float = 0.0
    last_accessed: float = 0.0
    hit_count: int = 0


class KernelCache:
    """
    Append-only cache of compiled kernels.

    Lookups take no lock. Insertion and the compilation it triggers run
    under a lock, so a key is compiled exactly once even when several
    threads miss on it at the same time.

    Example:
        >>> cache = KernelCache()
        >>> kernel = cache.lookup(signature, context)
        >>> if kernel is None:
        ...     kernel = cache.insert(signature, context, source)
    """

    def __init__(self, compiler: KernelCompiler | None = None) -> None:
        """
        Initialize the kernel cache.

        Args:
            compiler: Compiler used on insertion (default: global compiler).
        """
        self._compiler = compiler
        self._entries: dict[tuple[DeviceContext, str], CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._compilations = 0

    @property
    def compiler(self) -> KernelCompiler:
        """Get the compiler used on insertion."""
        if self._compiler is None:
            self._compiler = get_compiler()
        return self._compiler

    def lookup(self, signature: str, context: DeviceContext) -> CompiledKernel | None:
        """
        Find the kernel compiled for a signature on a device.

        Args:
            signature: Structural signature.
            context: Device context.

        Returns:
            CompiledKernel or None if not cached.
        """
        entry = self._entries.get((context, signature))
        if entry is None:
            self._misses += 1
            return None

        entry.last_accessed = time.time()
        entry.hit_count += 1
        self._hits += 1
        logger.debug("Cache hit for %s on %r", entry.kernel.name, context)
        return entry.kernel

    def insert(self, signature: str, context: DeviceContext, source: KernelSource) -> CompiledKernel:
        """
        Compile and store a kernel unless the key is already present.

        Args:
            signature: Structural signature.
            context: Device context.
            source: Generated source for the signature.

        Returns:
            The cached kernel for the key.

        Raises:
            KernelCompilationError: If compilation fails; nothing is stored.
        """
        if source.signature != signature:
            raise ValueError(
                f"Source was generated for {source.signature!r}, not {signature!r}"
            )

        key = (context, signature)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                return entry.kernel

            kernel = self.compiler.compile(source, context)
            now = time.time()
            self._entries[key] = CacheEntry(
                signature=signature,
                context=context,
                kernel=kernel,
                created_timestamp=now,
                last_accessed=now,
            )
            self._compilations += 1
            return kernel

    def contains(self, signature: str, context: DeviceContext) -> bool:
        """
        Check if a kernel is in the cache.

        Args:
            signature: Structural signature.
            context: Device context.

        Returns:
            True if kernel is cached.
        """
        return (context, signature) in self._entries

    def entries_for(self, context: DeviceContext) -> list[CacheEntry]:
        """Get the entries compiled for one device context."""
        return [entry for (ctx, _), entry in list(self._entries.items()) if ctx == context]

    def clear(self) -> int:
        """
        Clear all cached entries.

        Returns:
            Number of entries cleared.
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._compilations = 0
        return count

    def get_stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache statistics.
        """
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "compilations": self._compilations,
            "contexts": len({ctx for ctx, _ in list(self._entries)}),
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        """String representation."""
        stats = self.get_stats()
        return (
            f"KernelCache(entries={stats['entries']}, hits={stats['hits']}, "
            f"misses={stats['misses']})"
        )


# Global cache instance
_global_cache: KernelCache | None = None


def get_kernel_cache() -> KernelCache:
    """Get the global kernel cache instance."""
    global _global_cache
    if _global_cache is None:
        _global_cache = KernelCache()
    return _global_cache
