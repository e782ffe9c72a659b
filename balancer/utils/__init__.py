"""Utility functions for balancer."""

from balancer.utils.logging import get_logger, print_rank0
from balancer.utils.distributed import get_world_size, get_rank, is_main_process
from balancer.utils.env import (
    get_env,
    get_env_str,
    get_env_int,
    get_env_float,
    get_env_bool,
)

__all__ = [
    "get_logger",
    "print_rank0",
    "get_world_size",
    "get_rank",
    "is_main_process",
    # Environment variable utilities
    "get_env",
    "get_env_str",
    "get_env_int",
    "get_env_float",
    "get_env_bool",
]
