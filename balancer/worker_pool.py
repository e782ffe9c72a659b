# Copyright 2026 Ruihang Li.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for details.

"""Intra-process parallel map.

Provides three pool implementations:

- ``SerialWorkerPool``: plain loop in the calling thread.
- ``ThreadWorkerPool``: contiguous chunks mapped on a ``ThreadPoolExecutor``.
  Suited for work functions that release the GIL (numpy, torch, I/O).
- ``ProcessWorkerPool``: ``ProcessPoolExecutor`` for pure-Python CPU-bound
  functions. The function and elements must be picklable.

All pools return results in input order. Each chunk writes its own slots of a
pre-sized output list, so no locking is needed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_EXCEPTION, ProcessPoolExecutor, ThreadPoolExecutor, wait
from typing import Any, List, Optional, TypeVar

from balancer.utils.task_distribution import partition_table

T = TypeVar("T")
U = TypeVar("U")

# Chunks submitted per worker, so a slow chunk does not idle the others
CHUNKS_PER_WORKER = 4


class WorkerPool(ABC):
    """Abstract base for intra-process worker pools."""

    num_workers: int = 1

    @abstractmethod
    def parallel_map(self, items: Sequence[T], fn: Callable[[T], U]) -> List[U]:
        """Apply ``fn`` to every element of ``items``, preserving order."""

    def shutdown(self) -> None:
        """Release pool resources."""


class SerialWorkerPool(WorkerPool):
    """Map in the calling thread."""

    def parallel_map(self, items: Sequence[T], fn: Callable[[T], U]) -> List[U]:
        return [fn(item) for item in items]


class ThreadWorkerPool(WorkerPool):
    """Map contiguous chunks of the input on a thread pool.

    The executor is created lazily and reused across calls until
    ``shutdown``.
    """

    def __init__(self, num_workers: int):
        if num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {num_workers}")
        self.num_workers = num_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.num_workers,
                thread_name_prefix="balancer-worker",
            )
        return self._executor

    def parallel_map(self, items: Sequence[T], fn: Callable[[T], U]) -> List[U]:
        total = len(items)
        if total == 0:
            return []
        if self.num_workers == 1 or total == 1:
            return [fn(item) for item in items]

        output: List[Any] = [None] * total

        def run_chunk(start: int, end: int) -> None:
            for i in range(start, end):
                output[i] = fn(items[i])

        num_chunks = min(total, self.num_workers * CHUNKS_PER_WORKER)
        executor = self._get_executor()
        futures = [
            executor.submit(run_chunk, start, end)
            for start, end in partition_table(total, num_chunks)
        ]

        # Without a failure this waits for every chunk
        _, pending = wait(futures, return_when=FIRST_EXCEPTION)
        for future in pending:
            future.cancel()
        wait(pending)
        for future in futures:
            if not future.cancelled() and future.exception() is not None:
                raise future.exception()
        return output

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


class ProcessWorkerPool(WorkerPool):
    """Map on a pool of child processes."""

    def __init__(self, num_workers: int):
        if num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {num_workers}")
        self.num_workers = num_workers
        self._executor: Optional[ProcessPoolExecutor] = None

    def parallel_map(self, items: Sequence[T], fn: Callable[[T], U]) -> List[U]:
        total = len(items)
        if total == 0:
            return []
        if self._executor is None:
            self._executor = ProcessPoolExecutor(max_workers=self.num_workers)
        chunksize = max(1, total // (self.num_workers * CHUNKS_PER_WORKER))
        return list(self._executor.map(fn, items, chunksize=chunksize))

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


def create_worker_pool(kind: str, num_workers: int) -> WorkerPool:
    """Build a pool by name: ``serial``, ``thread`` or ``process``."""
    if kind == "serial":
        return SerialWorkerPool()
    if kind == "thread":
        return ThreadWorkerPool(num_workers)
    if kind == "process":
        return ProcessWorkerPool(num_workers)
    raise ValueError(f"Unknown worker pool '{kind}', expected serial, thread or process")
