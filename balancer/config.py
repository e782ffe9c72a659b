# Copyright 2026 Ruihang Li.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for details.

"""Configuration classes for balancer."""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from balancer.utils.env import get_env_bool, get_env_float, get_env_int, get_env_str
from balancer.utils.exceptions import ConfigError


def _get_default_num_workers() -> int:
    """Get the default number of worker threads.

    Uses the CPUs this process may run on, which is what the launcher pinned
    it to, falling back to the machine count.
    """
    try:
        return max(len(os.sched_getaffinity(0)), 1)
    except AttributeError:
        return os.cpu_count() or 1


class Backend(str, Enum):
    """Supported torch.distributed backends."""

    GLOO = "gloo"
    MPI = "mpi"
    NCCL = "nccl"


@dataclass
class BalancerConfig:
    """Runtime configuration of a ``Balancer``."""

    num_workers: int = field(default_factory=_get_default_num_workers)
    verbose: bool = False
    backend: str = Backend.GLOO.value
    timeout: Optional[float] = None
    # Abort the process on a failed collective instead of raising CollectiveError
    abort_on_collective_error: bool = True
    exit_code: int = 1
    log_dir: Optional[str] = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check field values, raising ``ConfigError`` on the first bad one."""
        if self.num_workers < 1:
            raise ConfigError(f"num_workers must be >= 1, got {self.num_workers}")
        valid_backends = [b.value for b in Backend]
        if self.backend not in valid_backends:
            raise ConfigError(f"Unknown backend '{self.backend}', expected one of {valid_backends}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if self.exit_code == 0:
            raise ConfigError("exit_code for a fatal collective error must be non-zero")

    @classmethod
    def from_env(cls, **overrides) -> "BalancerConfig":
        """Load configuration from BL_ environment variables.

        Keyword arguments that are not None take precedence over the
        environment.
        """
        values = dict(
            num_workers=get_env_int("NUM_WORKERS", _get_default_num_workers()),
            verbose=get_env_bool("VERBOSE", False),
            backend=get_env_str("BACKEND", Backend.GLOO.value),
            timeout=get_env_float("TIMEOUT", None),
            abort_on_collective_error=get_env_bool("ABORT_ON_COLLECTIVE_ERROR", True),
            log_dir=get_env_str("LOG_DIR", None),
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
