# Copyright 2026 Ruihang Li.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for details.

"""Environment variable utilities.

Runtime knobs are read from BL_ prefixed environment variables so that every
rank started by a batch launcher sees the same settings without extra CLI
plumbing.

Variables:
    BL_NUM_WORKERS: Worker threads per process (default: os.cpu_count())
    BL_VERBOSE: Log banner and timing information (default: false)
    BL_BACKEND: torch.distributed backend (default: gloo)
    BL_TIMEOUT: Collective timeout in seconds (default: backend default)
    BL_ABORT_ON_COLLECTIVE_ERROR: Abort the process on a failed collective
        instead of raising (default: true)
    BL_LOG_DIR: Directory for per-rank log files (default: none)
"""

import os
from typing import Any, Optional, TypeVar, Union

T = TypeVar("T")


def get_env(
    name: str,
    default: T = None,
    type_cast: type = str,
) -> Union[T, Any]:
    """Get environment variable with optional type casting.

    Args:
        name: Environment variable name (without BL_ prefix)
        default: Default value if not set
        type_cast: Type to cast the value to

    Returns:
        Environment variable value or default
    """
    full_name = f"BL_{name}"
    value = os.environ.get(full_name)

    if value is None:
        return default

    try:
        if type_cast == bool:
            return value.lower() in ("true", "1", "yes", "on")
        else:
            return type_cast(value)
    except (ValueError, TypeError):
        return default


def get_env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    """Get string environment variable."""
    return get_env(name, default, str)


def get_env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    """Get integer environment variable."""
    return get_env(name, default, int)


def get_env_float(name: str, default: Optional[float] = None) -> Optional[float]:
    """Get float environment variable."""
    return get_env(name, default, float)


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    return get_env(name, default, bool)
