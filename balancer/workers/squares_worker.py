# Copyright 2026 Ruihang Li.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for details.

"""Demo worker mapping simple arithmetic over a float range.

Modes:
    simple:      every rank builds the data, slices its partition, work_local
    subset:      every rank builds the data, work_subset
    distribute:  rank 0 builds the data and scatters it with distribute
    synchronize: rank 0 broadcasts a multiplier each round

Rank 0 checks the gathered output against a serial map.
"""

from __future__ import annotations

import argparse
import functools
import sys
from typing import List

from balancer.balancer import Balancer
from balancer.utils.task_distribution import partition_range
from balancer.workers.base import BaseWorker

MODES = ("simple", "subset", "distribute", "synchronize")


def square(x: float) -> float:
    return x * x


def scale(multiple: float, x: float) -> float:
    return multiple * x


def make_data(num_items: int) -> List[float]:
    """Evenly spaced floats in [0, 1)."""
    return [i / num_items for i in range(num_items)]


class SquaresWorker(BaseWorker):
    """Worker running one of the demo modes."""

    @classmethod
    def add_arguments(cls, parser: argparse.ArgumentParser) -> None:
        """Add demo-specific arguments."""
        parser.add_argument("--mode", type=str, default="subset", choices=MODES)
        parser.add_argument("--num_items", type=int, default=100_000)
        parser.add_argument("--repeat", type=int, default=1)
        parser.add_argument("--rounds", type=int, default=4)

    def run(self) -> int:
        """Run the selected mode."""
        self.print_header(
            f"{self.args.mode} demo",
            Items=self.args.num_items,
            Workers=self.config.num_workers,
            Pool=self.args.pool,
        )
        runner = getattr(self, f"_run_{self.args.mode}")
        failed = 0
        with self.create_balancer() as balancer:
            for _ in range(self.args.repeat):
                failed += runner(balancer)
        if self.process_rank == 0:
            self._log("done!" if failed == 0 else f"{failed} runs produced wrong output")
        return 0 if failed == 0 else 1

    def _verify(self, balancer: Balancer, expected: List[float], output) -> int:
        """Compare rank 0's output with a serial map. Returns failures."""
        if balancer.rank != 0:
            if output is not None:
                self._log("Non-root rank received output from collect()")
                return 1
            return 0
        if output != expected:
            self._log(f"Mismatch: expected {len(expected)} results, got {len(output)}")
            return 1
        return 0

    def _report(self, output) -> None:
        if output is None:
            return
        head = ", ".join(str(x) for x in output[:3])
        self._log(f"rank 0 has output [{head}, ..] with length {len(output)}")

    def _run_simple(self, balancer: Balancer) -> int:
        data = make_data(self.args.num_items)
        start, end = partition_range(len(data), balancer.rank, balancer.size)
        balancer.work_local(data[start:end], square)
        output = balancer.collect()
        self._report(output)
        return self._verify(balancer, [square(x) for x in data], output)

    def _run_subset(self, balancer: Balancer) -> int:
        data = make_data(self.args.num_items)
        balancer.work_subset(data, square)
        output = balancer.collect()
        self._report(output)
        return self._verify(balancer, [square(x) for x in data], output)

    def _run_distribute(self, balancer: Balancer) -> int:
        data = make_data(self.args.num_items) if balancer.rank == 0 else None
        ours = balancer.distribute(data)
        balancer.work(ours, square)
        output = balancer.collect()
        expected = [square(x) for x in data] if data is not None else []
        return self._verify(balancer, expected, output)

    def _run_synchronize(self, balancer: Balancer) -> int:
        # Only rank 0 builds the data, then scatters it
        data = [i / 10 for i in range(11)] if balancer.rank == 0 else None
        ours = balancer.distribute(data)

        failed = 0
        for i in range(1, self.args.rounds + 1):
            # Chosen on rank 0, synchronized across all ranks
            multiple = float(i) if balancer.rank == 0 else 0.0
            multiple = balancer.synchronize_value(multiple)

            task = functools.partial(scale, multiple)
            balancer.work(ours, task)
            output = balancer.collect()
            if balancer.rank == 0:
                self._log(f"rank 0 got {output}")
            expected = [scale(multiple, x) for x in data] if data is not None else []
            failed += self._verify(balancer, expected, output)
        return failed


def parse_args(argv=None) -> argparse.Namespace:
    """Parse worker arguments."""
    parser = SquaresWorker.create_parser("Balancer demo worker")
    return parser.parse_args(argv)


def run_squares(args: argparse.Namespace) -> int:
    """Run the demo worker.

    Args:
        args: Parsed arguments or Namespace object

    Returns:
        Exit code
    """
    worker = SquaresWorker(args)
    return worker.run_with_error_handling(worker.run)


def main():
    """Main entry point."""
    args = parse_args()
    sys.exit(run_squares(args))


if __name__ == "__main__":
    main()
