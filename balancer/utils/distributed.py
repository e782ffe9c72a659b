# Copyright 2026 Ruihang Li.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for details.

"""Distributed utilities for balancer.

Thin helpers over ``torch.distributed``. Outside an initialized group they
fall back to the torchrun environment variables, so rank information is
available before (or without) ``init_distributed``.
"""

import os
from datetime import timedelta
from typing import Optional

import torch.distributed as dist


def is_distributed() -> bool:
    """Check if running in distributed mode."""
    return dist.is_available() and dist.is_initialized()


def is_launched_distributed() -> bool:
    """Check if the torchrun rendezvous variables are present."""
    return "RANK" in os.environ and "WORLD_SIZE" in os.environ


def get_world_size() -> int:
    """Get the world size (total number of processes).

    Returns:
        World size, or 1 if not distributed
    """
    if is_distributed():
        return dist.get_world_size()
    return int(os.environ.get("WORLD_SIZE", 1))


def get_rank() -> int:
    """Get the global rank of current process.

    Returns:
        Global rank, or 0 if not distributed
    """
    if is_distributed():
        return dist.get_rank()
    return int(os.environ.get("RANK", 0))


def get_local_rank() -> int:
    """Get the local rank of current process.

    Returns:
        Local rank, or 0 if not distributed
    """
    local_rank = os.environ.get("LOCAL_RANK")
    if local_rank is not None:
        return int(local_rank)
    if is_distributed():
        return dist.get_rank()
    return 0


def get_node_rank() -> int:
    """Get the rank of this node (torchrun ``GROUP_RANK``)."""
    return int(os.environ.get("GROUP_RANK", os.environ.get("NODE_RANK", 0)))


def is_main_process() -> bool:
    """Check if current process is the main process (rank 0).

    Returns:
        True if main process
    """
    return get_rank() == 0


def init_distributed(
    backend: str = "gloo",
    init_method: Optional[str] = None,
    rank: Optional[int] = None,
    world_size: Optional[int] = None,
    timeout: Optional[float] = None,
) -> bool:
    """Initialize the default process group if not already initialized.

    Rank and world size come from the arguments when given, otherwise from
    the torchrun environment.

    Args:
        backend: Distributed backend to use
        init_method: URL for rendezvous (``env://`` when None)
        rank: Explicit rank
        world_size: Explicit world size
        timeout: Collective timeout in seconds (backend default when None)

    Returns:
        True if distributed was initialized
    """
    if is_distributed():
        return True

    if rank is None or world_size is None:
        if not is_launched_distributed():
            return False
        rank = int(os.environ["RANK"])
        world_size = int(os.environ["WORLD_SIZE"])

    kwargs = {}
    if init_method is not None:
        kwargs["init_method"] = init_method
    if timeout is not None:
        kwargs["timeout"] = timedelta(seconds=timeout)

    dist.init_process_group(
        backend=backend,
        rank=rank,
        world_size=world_size,
        **kwargs,
    )
    return True


def cleanup_distributed() -> None:
    """Tear down the default process group."""
    if is_distributed():
        dist.destroy_process_group()
