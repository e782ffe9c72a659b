# Copyright 2026 Ruihang Li.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for details.

"""Process group capability used by the balancer.

A ``ProcessGroup`` exposes a stable rank, a stable size and the blocking
collectives the balancer needs. Every collective is a rendezvous: it only
returns once all ranks of the group have issued the same call, so a rank that
skips one leaves the others waiting until the backend times out (or forever).

Provides two implementations:

- ``SingleProcessGroup``: size 1, collectives are local no-ops.
- ``TorchProcessGroup``: backed by the default ``torch.distributed`` group.

The group is a process-wide resource. ``init_process_group`` creates it once,
later calls return the same handle, and it is torn down once at interpreter
exit. Balancers only hold a reference to it.
"""

from __future__ import annotations

import atexit
import threading
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import torch.distributed as dist

from balancer.config import BalancerConfig
from balancer.utils.distributed import (
    cleanup_distributed,
    init_distributed,
    is_distributed,
    is_launched_distributed,
)
from balancer.utils.exceptions import InitializationError
from balancer.utils.logging import get_logger

logger = get_logger("balancer.process_group")

# Rank that receives gathered results and sources broadcasts
ROOT = 0


class ProcessGroup(ABC):
    """Abstract base for process groups."""

    @property
    @abstractmethod
    def rank(self) -> int:
        """Position of this process in ``[0, size)``."""

    @property
    @abstractmethod
    def size(self) -> int:
        """Number of processes in the group."""

    @abstractmethod
    def gather_to_root(self, obj: Any) -> Optional[List[Any]]:
        """Gather one object per rank on ``ROOT``.

        Returns the rank-ordered list on ``ROOT`` and None elsewhere.
        """

    @abstractmethod
    def broadcast_from_root(self, obj: Any) -> Any:
        """Return ``ROOT``'s ``obj`` on every rank."""

    @abstractmethod
    def scatter_from_root(self, objs: Optional[List[Any]]) -> Any:
        """Send ``objs[r]`` from ``ROOT`` to rank ``r``.

        Only ``ROOT``'s ``objs`` is read; it must hold ``size`` entries.
        """

    @abstractmethod
    def barrier(self) -> None:
        """Block until every rank has reached the barrier."""

    @property
    def is_root(self) -> bool:
        return self.rank == ROOT

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(rank={self.rank}, size={self.size})"


class SingleProcessGroup(ProcessGroup):
    """Group made of the current process only."""

    @property
    def rank(self) -> int:
        return 0

    @property
    def size(self) -> int:
        return 1

    def gather_to_root(self, obj: Any) -> Optional[List[Any]]:
        return [obj]

    def broadcast_from_root(self, obj: Any) -> Any:
        return obj

    def scatter_from_root(self, objs: Optional[List[Any]]) -> Any:
        if objs is None or len(objs) != 1:
            raise ValueError("scatter_from_root on a single process group needs exactly one object")
        return objs[0]

    def barrier(self) -> None:
        pass


class TorchProcessGroup(ProcessGroup):
    """Group backed by the default ``torch.distributed`` process group.

    Objects are pickled by the ``*_object`` collectives, so any picklable
    result type can be gathered.
    """

    def __init__(self):
        if not is_distributed():
            raise InitializationError("torch.distributed is not initialized")
        # Rank and size are fixed for the lifetime of the group
        self._rank = dist.get_rank()
        self._size = dist.get_world_size()

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._size

    def gather_to_root(self, obj: Any) -> Optional[List[Any]]:
        gathered = [None] * self._size if self._rank == ROOT else None
        dist.gather_object(obj, gathered, dst=ROOT)
        return gathered

    def broadcast_from_root(self, obj: Any) -> Any:
        box = [obj]
        dist.broadcast_object_list(box, src=ROOT)
        return box[0]

    def scatter_from_root(self, objs: Optional[List[Any]]) -> Any:
        out = [None]
        dist.scatter_object_list(out, objs if self._rank == ROOT else None, src=ROOT)
        return out[0]

    def barrier(self) -> None:
        dist.barrier()


# Process-wide shared handle
_group: Optional[ProcessGroup] = None
_group_lock = threading.Lock()


def init_process_group(
    backend: str = "gloo",
    init_method: Optional[str] = None,
    rank: Optional[int] = None,
    world_size: Optional[int] = None,
    timeout: Optional[float] = None,
) -> ProcessGroup:
    """Initialize the process-wide group once and return it.

    With torchrun variables (or explicit ``rank``/``world_size``) a
    ``TorchProcessGroup`` is created; otherwise the process runs alone in a
    ``SingleProcessGroup``. Subsequent calls return the existing handle and
    ignore their arguments.
    """
    global _group

    with _group_lock:
        if _group is not None:
            return _group

        explicit = rank is not None and world_size is not None
        if is_distributed() or explicit or is_launched_distributed():
            try:
                init_distributed(
                    backend=backend,
                    init_method=init_method,
                    rank=rank,
                    world_size=world_size,
                    timeout=timeout,
                )
            except (RuntimeError, ValueError) as e:
                raise InitializationError(f"Failed to initialize '{backend}' process group", cause=e) from e
            _group = TorchProcessGroup()
            atexit.register(destroy_process_group)
        else:
            _group = SingleProcessGroup()

        logger.debug(f"Process group ready: {_group}")
        return _group


def get_process_group() -> ProcessGroup:
    """Return the shared group, initializing it from the environment if needed."""
    if _group is None:
        config = BalancerConfig.from_env()
        return init_process_group(backend=config.backend, timeout=config.timeout)
    return _group


def destroy_process_group() -> None:
    """Tear down the shared group. Safe to call more than once."""
    global _group

    with _group_lock:
        if isinstance(_group, TorchProcessGroup):
            cleanup_distributed()
        _group = None
