# Copyright 2026 Ruihang Li.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for details.

"""Launcher module for multi-process startup."""

import os
import subprocess
from argparse import Namespace
from enum import Enum
from pathlib import Path
from typing import List

from balancer.utils.distributed import is_launched_distributed


class LaunchStrategy(Enum):
    """Launch strategy types."""

    DIRECT = "direct"  # Run the worker in this process
    TORCHRUN = "torchrun"  # Spawn a process group with torchrun


class Launcher:
    """Launcher selecting how the demo worker is started.

    A single process runs the worker directly. More processes are started
    through torchrun, which provides the RANK/WORLD_SIZE rendezvous the
    process group is initialized from.
    """

    def __init__(self, args: Namespace):
        """Initialize launcher.

        Args:
            args: Parsed command line arguments
        """
        self.args = args
        self.nproc = max(args.nproc, 1)
        self.command = args.command
        # The subcommand selects the worker mode
        self.args.mode = args.command

    def detect_strategy(self) -> LaunchStrategy:
        """Detect the launch strategy.

        Returns:
            Appropriate launch strategy
        """
        # Already inside a launched group, or multi-node started externally
        if is_launched_distributed():
            return LaunchStrategy.DIRECT
        if self.nproc <= 1:
            return LaunchStrategy.DIRECT
        return LaunchStrategy.TORCHRUN

    def run(self) -> int:
        """Execute the command with appropriate launch strategy.

        Returns:
            Exit code
        """
        strategy = self.detect_strategy()

        print(f"Selected launch strategy: {strategy.value}")
        print(f"Processes: {self.nproc}")

        if strategy == LaunchStrategy.DIRECT:
            return self._run_direct()
        elif strategy == LaunchStrategy.TORCHRUN:
            return self._run_torchrun()
        else:
            raise ValueError(f"Unknown strategy: {strategy}")

    def _run_direct(self) -> int:
        """Run the worker in this process.

        Returns:
            Exit code
        """
        from balancer.workers.squares_worker import run_squares

        return run_squares(self.args)

    def build_torchrun_command(self) -> List[str]:
        """Build the torchrun command line for this invocation."""
        cmd = [
            "torchrun",
            f"--nproc_per_node={self.nproc}",
            f"--nnodes={self.args.num_nodes}",
        ]
        if self.args.num_nodes > 1:
            cmd.extend([f"--node_rank={self.args.node_rank}", f"--rdzv_endpoint={self.args.master_addr}"])
        else:
            cmd.append("--standalone")
        cmd.append(self._get_worker_script())
        cmd.extend(self._get_worker_args())
        return cmd

    def _run_torchrun(self) -> int:
        """Run with torchrun.

        Returns:
            Exit code
        """
        cmd = self.build_torchrun_command()
        env = os.environ.copy()
        # Split the machine's cores between the local processes
        if self.args.num_workers is None and "BL_NUM_WORKERS" not in env:
            env["BL_NUM_WORKERS"] = str(max(1, (os.cpu_count() or 1) // self.nproc))

        print(f"Running: {' '.join(cmd)}")
        return subprocess.call(cmd, env=env)

    def _get_worker_script(self) -> str:
        """Get path to worker script.

        Returns:
            Path to worker script
        """
        return str(Path(__file__).parent.parent / "workers" / "squares_worker.py")

    def _get_worker_args(self) -> List[str]:
        """Build worker arguments from parsed args.

        Returns:
            List of worker arguments
        """
        args = ["--mode", self.command]
        args.extend(["--num_items", str(self.args.num_items)])
        args.extend(["--repeat", str(self.args.repeat)])
        args.extend(["--rounds", str(self.args.rounds)])
        args.extend(["--pool", self.args.pool])
        args.extend(["--num_nodes", str(self.args.num_nodes)])

        if self.args.num_workers is not None:
            args.extend(["--num_workers", str(self.args.num_workers)])
        if self.args.backend:
            args.extend(["--backend", self.args.backend])
        if self.args.timeout is not None:
            args.extend(["--timeout", str(self.args.timeout)])
        if self.args.verbose:
            args.append("--verbose")
        if getattr(self.args, "log_dir", None):
            args.extend(["--log_dir", self.args.log_dir])

        return args
