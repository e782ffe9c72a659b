# Copyright 2026 Ruihang Li.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for details.

"""Unified exception handling for balancer.

Local errors (misuse, bad partition arguments, a failing work function) are
raised to the caller. Collective errors are fatal to the whole group; see
``Balancer.collect``.
"""

from __future__ import annotations

import traceback
from enum import Enum

from balancer.utils.logging import get_logger

logger = get_logger("balancer.errors")


class ErrorCode(Enum):
    """Error codes for categorizing exceptions."""

    # General errors
    UNKNOWN = "E0000"
    CONFIG_ERROR = "E0001"
    INITIALIZATION_ERROR = "E0002"

    # Partition errors
    PARTITION_ERROR = "E1001"

    # Misuse errors
    COLLECT_BEFORE_WORK = "E2001"
    DISTRIBUTE_ERROR = "E2002"

    # Local compute errors
    WORK_ERROR = "E3001"

    # Collective errors
    COLLECTIVE_ERROR = "E4001"
    GROUP_MISMATCH = "E4002"


class BalancerError(Exception):
    """Base exception for all balancer errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        cause: Exception | None = None,
    ):
        self.message = message
        self.code = code
        self.cause = cause
        self._traceback = traceback.format_exc() if cause else None
        super().__init__(message)

    def __str__(self) -> str:
        parts = [f"[{self.code.value}] {self.message}"]
        if self.cause:
            parts.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")
        return "\n".join(parts)

    def format_full(self) -> str:
        """Format error with full traceback."""
        parts = [str(self)]
        if self._traceback and "NoneType: None" not in self._traceback:
            parts.append("\nFull traceback:")
            parts.append(self._traceback)
        return "\n".join(parts)


class ConfigError(BalancerError):
    """Invalid configuration value."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message, ErrorCode.CONFIG_ERROR, cause)


class InitializationError(BalancerError):
    """Process group could not be set up."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message, ErrorCode.INITIALIZATION_ERROR, cause)


class PartitionError(BalancerError, ValueError):
    """Invalid arguments to the partitioner."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.PARTITION_ERROR)


class CollectBeforeWorkError(BalancerError):
    """``collect`` called with no pending local results."""

    def __init__(self, message: str = "collect() called before any work was submitted"):
        super().__init__(message, ErrorCode.COLLECT_BEFORE_WORK)


class DistributeError(BalancerError):
    """Root rank called ``distribute`` without data."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.DISTRIBUTE_ERROR)


class WorkError(BalancerError):
    """The work function failed on this rank."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message, ErrorCode.WORK_ERROR, cause)


class CollectiveError(BalancerError):
    """A collective call failed or returned inconsistent data."""

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        code: ErrorCode = ErrorCode.COLLECTIVE_ERROR,
    ):
        super().__init__(message, code, cause)


class GroupMismatchError(CollectiveError):
    """Number of gathered buffers does not match the group size."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Gathered {actual} buffers from a group of size {expected}",
            code=ErrorCode.GROUP_MISMATCH,
        )


def log_error(
    error: Exception,
    context: str | None = None,
    include_traceback: bool = True,
) -> None:
    """Log error with optional context and traceback.

    Unlike ``print_rank0`` this logs on every rank: a collective failure is
    usually only visible on the rank that hit it.

    Args:
        error: The exception to log
        context: Optional context information
        include_traceback: Whether to include full traceback
    """
    if context:
        logger.error(f"Error in {context}:")

    if isinstance(error, BalancerError):
        if include_traceback:
            logger.error(error.format_full())
        else:
            logger.error(str(error))
    else:
        logger.error(f"{type(error).__name__}: {error}")
        if include_traceback:
            logger.error("Traceback:")
            logger.error(traceback.format_exc())
