# Copyright 2026 Ruihang Li.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for details.

"""Main CLI entry point for balancer."""

import argparse
import sys
import traceback
from typing import List, Optional


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="balancer",
        description="Multi-node, multi-core map with ordered gather on rank 0",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Square 100k floats with work_subset on 4 local processes
  balancer subset --nproc 4

  # Rank 0 builds the data and scatters it
  balancer distribute --nproc 2 --num_items 1000 --repeat 10

  # Broadcast a multiplier from rank 0 each round
  balancer synchronize --nproc 3 --rounds 4

  # Inside an existing torchrun/batch launch, run the worker directly
  torchrun --nproc_per_node 2 -m balancer.workers.squares_worker --mode subset
""",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("simple", "Pre-sliced data mapped with work_local"),
        ("subset", "Replicated data mapped with work_subset"),
        ("distribute", "Rank 0 scatters the data, then work and collect"),
        ("synchronize", "Rank 0 broadcasts a multiplier each round"),
    ):
        sub = subparsers.add_parser(
            name,
            help=help_text,
            formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        )
        _add_common_arguments(sub)

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Add common arguments shared by all commands.

    Args:
        parser: Argument parser to add arguments to
    """
    data_group = parser.add_argument_group("Data Options")
    data_group.add_argument(
        "--num_items",
        type=int,
        default=100_000,
        help="Length of the global sequence",
    )
    data_group.add_argument(
        "--repeat",
        type=int,
        default=1,
        help="Number of times to run the whole computation",
    )
    data_group.add_argument(
        "--rounds",
        type=int,
        default=4,
        help="Broadcast rounds (synchronize only)",
    )

    exec_group = parser.add_argument_group("Execution Options")
    exec_group.add_argument(
        "--nproc",
        type=int,
        default=1,
        help="Processes per node; more than one launches through torchrun",
    )
    exec_group.add_argument(
        "--num_workers",
        type=int,
        default=None,
        help="Worker threads per process (BL_NUM_WORKERS or CPU count if not specified)",
    )
    exec_group.add_argument(
        "--pool",
        type=str,
        default="thread",
        choices=["thread", "process", "serial"],
        help="Intra-process worker pool",
    )
    exec_group.add_argument(
        "--verbose",
        action="store_true",
        help="Log balancer banner and timings",
    )

    dist_group = parser.add_argument_group("Distributed Options")
    dist_group.add_argument(
        "--backend",
        type=str,
        default=None,
        choices=["gloo", "mpi", "nccl"],
        help="torch.distributed backend (BL_BACKEND or gloo if not specified)",
    )
    dist_group.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Collective timeout in seconds (backend default if not specified)",
    )
    dist_group.add_argument("--num_nodes", type=int, default=1, help="Number of nodes")
    dist_group.add_argument("--node_rank", type=int, default=0, help="Rank of this node")
    dist_group.add_argument(
        "--master_addr",
        type=str,
        default="localhost:29500",
        help="Rendezvous endpoint host:port for multi-node runs",
    )

    log_group = parser.add_argument_group("Logging Options")
    log_group.add_argument(
        "--log_dir",
        type=str,
        default=None,
        help="Directory for per-rank log files",
    )


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if parsed_args.command is None:
        parser.print_help()
        return 1

    from balancer.launcher import Launcher

    launcher = Launcher(parsed_args)

    try:
        return launcher.run()
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as e:
        print(f"Error: {e}")
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
