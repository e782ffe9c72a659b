# Copyright 2026 Ruihang Li.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for details.

"""Multi-node, multi-core map with ordered gather on rank 0.

Typical use, identical on every rank::

    balancer = Balancer()
    balancer.work_subset(data, work)
    output = balancer.collect()  # full list on rank 0, None elsewhere

``collect``, ``distribute``, ``synchronize_value`` and ``barrier`` are
collectives: every rank of the group must call them, in the same order, or
the group blocks.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, List, Optional, TypeVar

from balancer.config import BalancerConfig
from balancer.process_group import ROOT, ProcessGroup, get_process_group
from balancer.utils.exceptions import (
    CollectBeforeWorkError,
    CollectiveError,
    DistributeError,
    GroupMismatchError,
    WorkError,
    log_error,
)
from balancer.utils.logging import get_logger
from balancer.utils.task_distribution import partition_range, split
from balancer.worker_pool import ThreadWorkerPool, WorkerPool

T = TypeVar("T")
U = TypeVar("U")

logger = get_logger("balancer.balancer")

# Errors raised by collective backends when the group is broken
COLLECTIVE_FAILURES = (RuntimeError, ConnectionError, TimeoutError)


@dataclass
class LocalWork(Generic[U]):
    """Results computed on this rank, waiting for ``collect``."""

    output: List[U]
    # Global index of output[0]; None when the caller partitioned the data
    offset: Optional[int] = None
    # Length of the global sequence; None when unknown to this rank
    total: Optional[int] = None


class Balancer(Generic[U]):
    """Manage compute on this process and across the process group.

    The balancer holds a reference to the shared process group and never
    initializes or destroys it. Its local result buffer is written by one
    work call and consumed by the following ``collect``.
    """

    def __init__(
        self,
        process_group: Optional[ProcessGroup] = None,
        verbose: Optional[bool] = None,
        worker_pool: Optional[WorkerPool] = None,
        config: Optional[BalancerConfig] = None,
        owns_pool: Optional[bool] = None,
    ):
        """Bind to an initialized process group. No communication happens here.

        Args:
            process_group: Group to work in (shared process group when None)
            verbose: Log banner and timings (config value when None)
            worker_pool: Pool for the local map (thread pool when None)
            config: Runtime configuration (loaded from BL_ env vars when None)
            owns_pool: Shut the pool down on close (True when the pool is created here)
        """
        config = config or BalancerConfig.from_env()
        if verbose is not None:
            config = dataclasses.replace(config, verbose=verbose)
        self.config = config

        self.group = process_group if process_group is not None else get_process_group()
        self.rank: int = self.group.rank
        self.size: int = self.group.size
        self.verbose: bool = self.config.verbose

        self._owns_pool = worker_pool is None if owns_pool is None else owns_pool
        self.pool = worker_pool if worker_pool is not None else ThreadWorkerPool(self.config.num_workers)
        self.workers: int = self.pool.num_workers

        self._work: Optional[LocalWork[U]] = None

        if self.verbose and self.rank == ROOT:
            logger.info("--------- Balancer Activated ---------")
            logger.info(f"            Nodes : {self.size}")
            logger.info(f" Workers (rank 0) : {self.workers}")
            logger.info("--------------------------------------")

    # -- work submission -----------------------------------------------------

    def work_local(self, data: Sequence[T], work: Callable[[T], U]) -> None:
        """Apply ``work`` to every element of this rank's partition.

        ``data`` must already be this rank's share of the global sequence,
        split the way ``partition_range`` does it. Full global data is not
        re-sliced: every rank would then contribute a copy of the whole
        output.

        Args:
            data: This rank's elements
            work: Pure function, called concurrently from worker threads
        """
        output = self._map(data, work, "work_local")
        self._work = LocalWork(output=output)

    def work(self, data: Sequence[T], work: Callable[[T], U]) -> None:
        """Alias of ``work_local``, for data returned by ``distribute``."""
        self.work_local(data, work)

    def work_subset(self, data: Sequence[T], work: Callable[[T], U]) -> None:
        """Apply ``work`` to this rank's range of the full global sequence.

        ``data`` must be identical on every rank.

        Args:
            data: Full global sequence
            work: Pure function, called concurrently from worker threads
        """
        total = len(data)
        start, end = partition_range(total, self.rank, self.size)
        if self.verbose:
            logger.info(f"[Rank {self.rank}] Assigned items {start}-{end} of {total}")
        output = self._map(data[start:end], work, "work_subset")
        self._work = LocalWork(output=output, offset=start, total=total)

    def _map(self, items: Sequence[T], work: Callable[[T], U], label: str) -> List[U]:
        # A failed map discards any previous buffer so collect cannot send stale results
        self._work = None
        started = time.perf_counter()
        try:
            output = self.pool.parallel_map(items, work)
        except Exception as e:
            raise WorkError(f"Work function failed on rank {self.rank} during {label}", cause=e) from e
        if self.verbose:
            elapsed = time.perf_counter() - started
            logger.info(
                f"[Rank {self.rank}] {label}: {len(items)} items on {self.workers} workers in {elapsed:.3f}s"
            )
        return output

    # -- collectives ---------------------------------------------------------

    def collect(self) -> Optional[List[U]]:
        """Gather every rank's results on rank 0, in global order.

        Blocking collective. Rank 0 concatenates the per-rank buffers in rank
        order, which is global order because partitions are contiguous and
        rank ordered. Other ranks always get None.

        Returns:
            Full ordered output on rank 0, None on every other rank
        """
        if self._work is None:
            raise CollectBeforeWorkError()
        work, self._work = self._work, None

        started = time.perf_counter()
        try:
            gathered = self.group.gather_to_root(work.output)
        except COLLECTIVE_FAILURES as e:
            self._fatal(CollectiveError(f"gather to rank {ROOT} failed on rank {self.rank}", cause=e))

        if self.rank != ROOT:
            return None

        if gathered is None or len(gathered) != self.size:
            self._fatal(GroupMismatchError(self.size, 0 if gathered is None else len(gathered)))

        output = self._reassemble(gathered)
        if work.total is not None and len(output) != work.total:
            self._fatal(
                CollectiveError(f"Reassembled {len(output)} results, expected {work.total}")
            )

        if self.verbose:
            elapsed = time.perf_counter() - started
            logger.info(f"Collected {len(output)} results from {self.size} ranks in {elapsed:.3f}s")
        return output

    @staticmethod
    def _reassemble(buffers: List[List[U]]) -> List[U]:
        output: List[U] = []
        for buffer in buffers:
            output.extend(buffer)
        return output

    def distribute(self, data: Optional[Sequence[T]] = None) -> List[T]:
        """Scatter rank 0's sequence so each rank receives its partition.

        Blocking collective. Only rank 0's ``data`` is read; other ranks pass
        None. The split matches ``partition_range``.

        Args:
            data: Full sequence on rank 0, ignored elsewhere

        Returns:
            This rank's partition
        """
        if self.rank == ROOT:
            if data is None:
                raise DistributeError("distribute() on rank 0 needs the data to scatter")
            parts = split(list(data), self.size)
        else:
            parts = None

        try:
            ours = self.group.scatter_from_root(parts)
        except COLLECTIVE_FAILURES as e:
            self._fatal(CollectiveError(f"scatter from rank {ROOT} failed on rank {self.rank}", cause=e))
        if self.verbose:
            logger.info(f"[Rank {self.rank}] Received {len(ours)} items")
        return list(ours)

    def synchronize_value(self, value: Any) -> Any:
        """Return rank 0's ``value`` on every rank. Blocking collective."""
        try:
            return self.group.broadcast_from_root(value)
        except COLLECTIVE_FAILURES as e:
            self._fatal(CollectiveError(f"broadcast from rank {ROOT} failed on rank {self.rank}", cause=e))

    def barrier(self) -> None:
        """Wait for every rank of the group."""
        try:
            self.group.barrier()
        except COLLECTIVE_FAILURES as e:
            self._fatal(CollectiveError(f"barrier failed on rank {self.rank}", cause=e))

    def _fatal(self, error: CollectiveError) -> None:
        """Handle a failed collective.

        There is no recovery from a half-finished collective, so by default
        the process exits without unwinding.
        """
        log_error(error, context=f"collective on rank {self.rank}")
        if not self.config.abort_on_collective_error:
            raise error from error.cause
        for handler in logging.getLogger("balancer").handlers:
            handler.flush()
        os._exit(self.config.exit_code)

    # -- lifecycle -----------------------------------------------------------

    @property
    def has_pending_work(self) -> bool:
        """True when a work call has results not yet collected."""
        return self._work is not None

    def close(self) -> None:
        """Shut down the worker pool if the balancer created it."""
        if self._owns_pool:
            self.pool.shutdown()

    def __enter__(self) -> "Balancer[U]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Balancer(rank={self.rank}, size={self.size}, workers={self.workers}, verbose={self.verbose})"
