"""
Simulated process group for multi-rank tests.

Each rank runs in its own thread; collectives rendezvous on a
``threading.Barrier``, so a rank that skips a collective breaks the barrier
(``BrokenBarrierError``) after the timeout instead of hanging the suite.
"""

import threading
from typing import Any, Callable, List, Optional

from balancer.process_group import ROOT, ProcessGroup

BARRIER_TIMEOUT = 10.0


class ThreadedWorld:
    """State shared by the ranks of one simulated group."""

    def __init__(self, size: int, timeout: float = BARRIER_TIMEOUT):
        self.size = size
        self.barrier = threading.Barrier(size, timeout=timeout)
        self.slots: List[Any] = [None] * size
        self.box: Any = None


class ThreadedGroup(ProcessGroup):
    """One rank of a ``ThreadedWorld``."""

    def __init__(self, world: ThreadedWorld, rank: int):
        self.world = world
        self._rank = rank
        self.calls: List[str] = []

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self.world.size

    def gather_to_root(self, obj: Any) -> Optional[List[Any]]:
        self.calls.append("gather")
        self.world.slots[self._rank] = obj
        self.world.barrier.wait()
        result = list(self.world.slots) if self._rank == ROOT else None
        self.world.barrier.wait()
        return result

    def broadcast_from_root(self, obj: Any) -> Any:
        self.calls.append("broadcast")
        if self._rank == ROOT:
            self.world.box = obj
        self.world.barrier.wait()
        value = self.world.box
        self.world.barrier.wait()
        return value

    def scatter_from_root(self, objs: Optional[List[Any]]) -> Any:
        self.calls.append("scatter")
        if self._rank == ROOT:
            self.world.box = list(objs)
        self.world.barrier.wait()
        value = self.world.box[self._rank]
        self.world.barrier.wait()
        return value

    def barrier(self) -> None:
        self.calls.append("barrier")
        self.world.barrier.wait()


def _is_secondary(error: BaseException) -> bool:
    return isinstance(error, threading.BrokenBarrierError) or isinstance(
        error.__cause__, threading.BrokenBarrierError
    )


def run_ranks(size: int, fn: Callable[[ProcessGroup], Any], timeout: float = BARRIER_TIMEOUT) -> List[Any]:
    """Run ``fn(group)`` once per rank concurrently and return results by rank.

    The first exception raised by any rank is re-raised.
    """
    world = ThreadedWorld(size, timeout=timeout)
    results: List[Any] = [None] * size
    errors: List[Optional[BaseException]] = [None] * size

    def target(rank: int) -> None:
        try:
            results[rank] = fn(ThreadedGroup(world, rank))
        except BaseException as e:  # noqa: B902 - surfaced to the test below
            errors[rank] = e
            world.barrier.abort()

    threads = [threading.Thread(target=target, args=(rank,), name=f"rank-{rank}") for rank in range(size)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    # Prefer the error that broke the barrier over the ranks it released
    for error in errors:
        if error is not None and not _is_secondary(error):
            raise error
    for error in errors:
        if error is not None:
            raise error
    return results


def square(x):
    return x * x
