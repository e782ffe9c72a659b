# Copyright 2026 Ruihang Li.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for details.

"""Index-range partitioning across ranks.

Every rank computes the same table from ``(total_len, size)`` alone, so no
communication is needed to agree on who owns which elements.
"""

from typing import List, Tuple

from balancer.utils.exceptions import PartitionError


def partition_range(
    total_len: int,
    rank: int,
    size: int,
) -> Tuple[int, int]:
    """Compute the contiguous index range owned by ``rank``.

    The first ``total_len % size`` ranks receive one extra element.

    Args:
        total_len: Length of the global sequence
        rank: Rank to compute the range for (0-indexed)
        size: Total number of ranks

    Returns:
        Tuple of (start_index, end_index) for this rank, end exclusive
    """
    if size < 1:
        raise PartitionError(f"size must be >= 1, got {size}")
    if not 0 <= rank < size:
        raise PartitionError(f"rank must be in [0, {size}), got {rank}")
    if total_len < 0:
        raise PartitionError(f"total_len must be >= 0, got {total_len}")

    chunk = total_len // size
    remainder = total_len % size

    # Distribute remainder to first ranks
    if rank < remainder:
        start = rank * (chunk + 1)
        end = start + chunk + 1
    else:
        start = remainder * (chunk + 1) + (rank - remainder) * chunk
        end = start + chunk

    return start, end


def partition_table(total_len: int, size: int) -> List[Tuple[int, int]]:
    """Return the ranges of all ranks, in rank order."""
    return [partition_range(total_len, rank, size) for rank in range(size)]


def split(items: list, size: int) -> List[list]:
    """Split ``items`` into ``size`` rank-ordered partitions."""
    return [items[start:end] for start, end in partition_table(len(items), size)]
