import logging
import os
import subprocess
import sys
import threading
from pathlib import Path

import pytest

from balancer.balancer import Balancer
from balancer.config import BalancerConfig
from balancer.process_group import ProcessGroup, SingleProcessGroup
from balancer.utils.exceptions import (
    CollectBeforeWorkError,
    CollectiveError,
    DistributeError,
    GroupMismatchError,
    WorkError,
)
from balancer.utils.task_distribution import partition_range
from balancer.worker_pool import SerialWorkerPool
from helpers import run_ranks, square


class BrokenGroup(ProcessGroup):
    """Group whose collectives fail like a dead backend."""

    def __init__(self, rank: int = 0, size: int = 2):
        self._rank = rank
        self._size = size

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._size

    def gather_to_root(self, obj):
        raise RuntimeError("Connection closed by peer")

    def broadcast_from_root(self, obj):
        raise RuntimeError("Connection closed by peer")

    def scatter_from_root(self, objs):
        raise RuntimeError("Connection closed by peer")

    def barrier(self):
        raise RuntimeError("Connection closed by peer")


class ShortGatherGroup(SingleProcessGroup):
    """Claims two ranks but only ever gathers one buffer."""

    @property
    def size(self) -> int:
        return 2


def collect_subset(data, work, config):
    def fn(group):
        balancer = Balancer(group, config=config)
        balancer.work_subset(data, work)
        return balancer.collect()

    return fn


def test_two_rank_squares(config):
    local_outputs = {}

    def fn(group):
        balancer = Balancer(group, config=config)
        balancer.work_subset(list(range(10)), square)
        local_outputs[group.rank] = list(balancer._work.output)
        return balancer.collect()

    results = run_ranks(2, fn)

    assert local_outputs[0] == [0, 1, 4, 9, 16]
    assert local_outputs[1] == [25, 36, 49, 64, 81]
    assert results[0] == [0, 1, 4, 9, 16, 25, 36, 49, 64, 81]
    assert results[1] is None


def test_three_ranks_remainder_distribution(config):
    offsets = {}

    def fn(group):
        balancer = Balancer(group, config=config)
        balancer.work_subset(list(range(7)), square)
        offsets[group.rank] = (balancer._work.offset, len(balancer._work.output))
        return balancer.collect()

    results = run_ranks(3, fn)

    assert offsets == {0: (0, 3), 1: (3, 2), 2: (5, 2)}
    assert results[0] == [x * x for x in range(7)]


@pytest.mark.parametrize("size", [1, 2, 3, 4, 6])
def test_subset_output_independent_of_group_size(size, config):
    data = [f"item-{i}" for i in range(23)]

    results = run_ranks(size, collect_subset(data, str.upper, config))

    assert results[0] == [s.upper() for s in data]
    assert all(r is None for r in results[1:])


def test_more_ranks_than_items(config):
    results = run_ranks(5, collect_subset([1, 2], square, config))

    assert results[0] == [1, 4]


def test_empty_input(config):
    results = run_ranks(3, collect_subset([], square, config))

    assert results[0] == []


def test_local_mode_matches_subset_mode(config):
    data = list(range(31))

    def local(group):
        balancer = Balancer(group, config=config)
        start, end = partition_range(len(data), group.rank, group.size)
        balancer.work_local(data[start:end], square)
        return balancer.collect()

    local_results = run_ranks(4, local)
    subset_results = run_ranks(4, collect_subset(data, square, config))

    assert local_results[0] == subset_results[0] == [x * x for x in data]


def test_single_process_is_plain_map(config):
    balancer = Balancer(SingleProcessGroup(), config=config)
    data = list(range(100))

    balancer.work_subset(data, square)
    subset = balancer.collect()
    balancer.work_local(data, square)
    local = balancer.collect()

    assert subset == local == [x * x for x in data]
    assert balancer.rank == 0
    assert balancer.size == 1


def test_rank_is_exposed(config):
    ranks = run_ranks(3, lambda group: Balancer(group, config=config).rank)

    assert ranks == [0, 1, 2]


def test_construction_does_not_communicate(config):
    def fn(group):
        Balancer(group, config=config)
        return list(group.calls)

    assert run_ranks(2, fn) == [[], []]


def test_collect_before_work_raises(config):
    balancer = Balancer(SingleProcessGroup(), config=config)

    with pytest.raises(CollectBeforeWorkError):
        balancer.collect()


def test_collect_consumes_buffer(config):
    balancer = Balancer(SingleProcessGroup(), config=config)
    balancer.work_local([1, 2], square)

    assert balancer.has_pending_work
    assert balancer.collect() == [1, 4]
    assert not balancer.has_pending_work
    with pytest.raises(CollectBeforeWorkError):
        balancer.collect()


def test_failing_work_raises_work_error(config):
    balancer = Balancer(SingleProcessGroup(), config=config)
    balancer.work_local([1], square)

    def fail(x):
        raise KeyError(x)

    with pytest.raises(WorkError) as exc_info:
        balancer.work_local(list(range(10)), fail)

    assert isinstance(exc_info.value.__cause__, KeyError)
    assert "rank 0" in str(exc_info.value)
    # No partial or stale results are left to collect
    assert not balancer.has_pending_work


def test_work_runs_on_supplied_pool(config):
    pool = SerialWorkerPool()
    thread_names = set()

    def record(x):
        thread_names.add(threading.current_thread().name)
        return x

    balancer = Balancer(SingleProcessGroup(), worker_pool=pool, config=config)
    balancer.work_local([1, 2, 3], record)

    assert balancer.workers == 1
    assert thread_names == {threading.current_thread().name}


def test_distribute_then_work(config):
    data = list(range(11))

    def fn(group):
        balancer = Balancer(group, config=config)
        ours = balancer.distribute(data if group.rank == 0 else None)
        balancer.work(ours, square)
        return ours, balancer.collect()

    results = run_ranks(3, fn)

    assert [ours for ours, _ in results] == [[0, 1, 2, 3], [4, 5, 6, 7], [8, 9, 10]]
    assert results[0][1] == [x * x for x in data]
    assert results[1][1] is None and results[2][1] is None


def test_distribute_ignores_non_root_data(config):
    def fn(group):
        balancer = Balancer(group, config=config)
        return balancer.distribute([0, 1] if group.rank == 0 else ["ignored"] * 5)

    assert run_ranks(2, fn) == [[0], [1]]


def test_distribute_without_root_data_raises(config):
    balancer = Balancer(SingleProcessGroup(), config=config)

    with pytest.raises(DistributeError):
        balancer.distribute(None)


def test_synchronize_value_takes_root_value(config):
    def fn(group):
        balancer = Balancer(group, config=config)
        return balancer.synchronize_value(3.5 if group.rank == 0 else 0.0)

    assert run_ranks(4, fn) == [3.5] * 4


def test_synchronized_multiplier_rounds(config):
    data = [i / 10 for i in range(11)]

    def fn(group):
        balancer = Balancer(group, config=config)
        ours = balancer.distribute(data if group.rank == 0 else None)
        outputs = []
        for i in range(1, 5):
            multiple = balancer.synchronize_value(float(i) if group.rank == 0 else 0.0)
            balancer.work(ours, lambda x: multiple * x)
            outputs.append(balancer.collect())
        return outputs

    results = run_ranks(3, fn)

    for i, output in enumerate(results[0], start=1):
        assert output == [i * x for x in data]
    assert results[1] == [None] * 4


def test_barrier_reaches_group(config):
    def fn(group):
        Balancer(group, config=config).barrier()
        return group.calls

    assert run_ranks(3, fn) == [["barrier"]] * 3


def test_sequential_balancers_share_group(config):
    def fn(group):
        first = Balancer(group, config=config)
        first.work_subset([1, 2, 3], square)
        a = first.collect()
        second = Balancer(group, config=config)
        second.work_subset([4, 5, 6], square)
        return a, second.collect()

    results = run_ranks(2, fn)

    assert results[0] == ([1, 4, 9], [16, 25, 36])


def test_missing_rank_breaks_collect(config):
    def fn(group):
        balancer = Balancer(group, config=config)
        balancer.work_subset(list(range(4)), square)
        if group.rank == 1:
            return None  # skips the collective
        return balancer.collect()

    with pytest.raises(CollectiveError):
        run_ranks(2, fn, timeout=0.5)


def test_broken_group_raises_collective_error(config):
    balancer = Balancer(BrokenGroup(), config=config)
    balancer.work_local([1], square)

    with pytest.raises(CollectiveError) as exc_info:
        balancer.collect()

    assert isinstance(exc_info.value.cause, RuntimeError)


@pytest.mark.parametrize("call", ["synchronize_value", "barrier", "distribute"])
def test_broken_group_other_collectives(call, config):
    balancer = Balancer(BrokenGroup(rank=1), config=config)
    args = {"synchronize_value": (1,), "barrier": (), "distribute": (None,)}[call]

    with pytest.raises(CollectiveError):
        getattr(balancer, call)(*args)


def test_gathered_buffer_count_mismatch(config):
    balancer = Balancer(ShortGatherGroup(), config=config)
    balancer.work_local([1, 2], square)

    with pytest.raises(GroupMismatchError) as exc_info:
        balancer.collect()

    assert exc_info.value.expected == 2
    assert exc_info.value.actual == 1


def test_collective_failure_aborts_process_by_default(monkeypatch):
    exits = []

    def fake_exit(code):
        exits.append(code)
        raise SystemExit(code)

    monkeypatch.setattr("balancer.balancer.os._exit", fake_exit)
    balancer = Balancer(BrokenGroup(), config=BalancerConfig(num_workers=1, exit_code=3))
    balancer.work_local([1], square)

    with pytest.raises(SystemExit):
        balancer.collect()

    assert exits == [3]


def test_verbose_logs_banner_and_timing(caplog, config):
    with caplog.at_level(logging.INFO, logger="balancer"):
        balancer = Balancer(SingleProcessGroup(), verbose=True, config=config)
        balancer.work_subset([1, 2, 3], square)
        balancer.collect()

    text = caplog.text
    assert "Balancer Activated" in text
    assert "Nodes : 1" in text
    assert "work_subset: 3 items" in text
    assert "Collected 3 results" in text
    # The shared config is not modified
    assert config.verbose is False


def test_quiet_by_default(caplog, config):
    with caplog.at_level(logging.INFO, logger="balancer"):
        balancer = Balancer(SingleProcessGroup(), config=config)
        balancer.work_subset([1, 2, 3], square)
        balancer.collect()

    assert "Balancer Activated" not in caplog.text


ROOT_DIR = Path(__file__).resolve().parents[1]

BANNER_SCRIPT = """
from balancer.balancer import Balancer
from balancer.config import BalancerConfig
from balancer.process_group import SingleProcessGroup

balancer = Balancer(SingleProcessGroup(), verbose=True, config=BalancerConfig(num_workers=1))
balancer.work_subset([1, 2, 3], abs)
print("OUT", balancer.collect())
"""


def test_verbose_banner_reaches_stdout_without_setup():
    env = {k: v for k, v in os.environ.items() if not k.startswith("BL_")}
    result = subprocess.run(
        [sys.executable, "-c", BANNER_SCRIPT],
        capture_output=True,
        text=True,
        env=env,
        cwd=str(ROOT_DIR),
        timeout=120,
    )

    assert result.returncode == 0, result.stderr
    assert "Balancer Activated" in result.stdout
    assert "work_subset: 3 items" in result.stdout
    assert "OUT [1, 2, 3]" in result.stdout


def test_context_manager_shuts_down_owned_pool(config):
    with Balancer(SingleProcessGroup(), config=config) as balancer:
        balancer.work_local(list(range(10)), square)
        assert balancer.collect() == [x * x for x in range(10)]

    assert balancer.pool._executor is None


class RecordingPool(SerialWorkerPool):
    def __init__(self):
        self.closed = False

    def shutdown(self) -> None:
        self.closed = True


def test_close_leaves_caller_pool_open(config):
    pool = RecordingPool()
    with Balancer(SingleProcessGroup(), worker_pool=pool, config=config):
        pass

    assert not pool.closed


def test_close_shuts_down_handed_over_pool(config):
    pool = RecordingPool()
    with Balancer(SingleProcessGroup(), worker_pool=pool, config=config, owns_pool=True):
        pass

    assert pool.closed
