"""
PyDotArray exception hierarchy.

This module defines the complete exception hierarchy for PyDotArray,
providing specific exception types for different error categories:

- SizeError: Shape, size and partition plan inconsistencies
- DeviceError: Device allocation, transfer and queue failures
- ExpressionError: Expressions that cannot be lowered to a kernel
- CompilationError: Kernel compilation failures
- BackendError: Compute backend availability

All exceptions inherit from PyDotArrayError for easy catching.
"""

from __future__ import annotations


class PyDotArrayError(Exception):
    """Base exception for all PyDotArray errors."""

    pass


class SizeError(PyDotArrayError):
    """Base exception for size-related errors."""

    pass


class InvalidSizeError(SizeError):
    """Raised when a size or shape is inconsistent with the request."""

    def __init__(self, reason: str, size: object = None) -> None:
        self.reason = reason
        self.size = size
        msg = f"Invalid size: {reason}"
        if size is not None:
            msg += f" (got {size!r})"
        super().__init__(msg)


class SizeMismatchError(SizeError):
    """Raised when two sizes or partition plans that must agree do not."""

    def __init__(self, expected: object, actual: object, context: str) -> None:
        self.expected = expected
        self.actual = actual
        self.context = context
        super().__init__(f"Size mismatch in {context}: expected {expected}, got {actual}")


class DeviceError(PyDotArrayError):
    """Base exception for device-related errors."""

    pass


class DeviceAllocationError(DeviceError):
    """Raised when device memory cannot be allocated."""

    def __init__(self, count: int, dtype: object, cause: Exception) -> None:
        self.count = count
        self.dtype = dtype
        self.cause = cause
        super().__init__(f"Failed to allocate {count} elements of {dtype} on device: {cause}")


class DeviceTransferError(DeviceError):
    """Raised when a host/device transfer fails."""

    def __init__(self, direction: str, cause: Exception) -> None:
        self.direction = direction
        self.cause = cause
        super().__init__(f"Failed to transfer {direction}: {cause}")


class CommandQueueError(DeviceError):
    """Raised at a synchronization point when enqueued work has failed."""

    def __init__(self, queue: object, cause: BaseException) -> None:
        self.queue = queue
        self.cause = cause
        super().__init__(f"Enqueued work failed on {queue!r}: {cause}")


class ExpressionError(PyDotArrayError):
    """Base exception for expression-related errors."""

    pass


class UnsupportedOperandError(ExpressionError):
    """Raised when an expression references something that cannot go into a kernel."""

    def __init__(self, operand: object, reason: str) -> None:
        self.operand = operand
        self.reason = reason
        super().__init__(
            f"Unsupported operand of type '{type(operand).__name__}' in kernel: {reason}"
        )


class CompilationError(PyDotArrayError):
    """Base exception for compilation-related errors."""

    pass


class KernelCompilationError(CompilationError):
    """Raised when kernel compilation fails."""

    def __init__(self, kernel_name: str, cause: Exception) -> None:
        self.kernel_name = kernel_name
        self.cause = cause
        super().__init__(f"Failed to compile kernel '{kernel_name}': {cause}")


class BackendError(PyDotArrayError):
    """Base exception for backend-related errors."""

    pass


class BackendNotAvailableError(BackendError):
    """Raised when a requested backend is not available."""

    def __init__(self, backend_name: str, reason: str) -> None:
        self.backend_name = backend_name
        self.reason = reason
        super().__init__(f"Backend '{backend_name}' is not available: {reason}")
