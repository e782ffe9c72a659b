# Copyright 2026 Ruihang Li.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for details.

"""Base worker class shared by the command line workers."""

from __future__ import annotations

import argparse
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Optional

from balancer.balancer import Balancer
from balancer.config import BalancerConfig
from balancer.process_group import ProcessGroup, init_process_group
from balancer.utils.distributed import get_local_rank, get_node_rank
from balancer.utils.exceptions import BalancerError, log_error
from balancer.utils.logging import LoggingConfig, get_logger, print_rank0, setup_logging
from balancer.worker_pool import create_worker_pool


class BaseWorker(ABC):
    """Abstract base class for workers.

    Provides common functionality:
    - Process group bootstrap (torchrun env or single process)
    - Distributed logging
    - Balancer construction from arguments
    - Error handling and exit codes
    """

    def __init__(self, args: argparse.Namespace):
        """Initialize worker.

        Args:
            args: Parsed command line arguments
        """
        self.args = args
        self.config = self.build_config()
        self.group = self._setup_distributed()
        self._setup_logging()
        self._logger: Optional[logging.Logger] = None

    def build_config(self) -> BalancerConfig:
        """Build balancer configuration from arguments and BL_ env vars."""
        return BalancerConfig.from_env(
            num_workers=getattr(self.args, "num_workers", None),
            verbose=True if getattr(self.args, "verbose", False) else None,
            backend=getattr(self.args, "backend", None),
            timeout=getattr(self.args, "timeout", None),
            log_dir=getattr(self.args, "log_dir", None),
        )

    def _setup_distributed(self) -> ProcessGroup:
        """Join the shared process group."""
        group = init_process_group(backend=self.config.backend, timeout=self.config.timeout)
        self.process_rank = group.rank
        self.num_processes = group.size
        self.distributed_mode = "torchrun" if group.size > 1 else None
        return group

    def _setup_logging(self) -> None:
        """Setup logging system for distributed environment."""
        config = LoggingConfig(
            log_dir=self.config.log_dir,
            rank=self.process_rank,
            local_rank=get_local_rank(),
            node_rank=get_node_rank(),
            num_nodes=getattr(self.args, "num_nodes", 1),
            world_size=self.num_processes,
        )
        self.log_dir = setup_logging(config)

    @property
    def logger(self) -> logging.Logger:
        """Get logger instance for this worker."""
        if self._logger is None:
            self._logger = get_logger(f"balancer.worker.{self.__class__.__name__}")
        return self._logger

    def create_balancer(self) -> Balancer:
        """Create a balancer bound to the shared group."""
        pool = create_worker_pool(getattr(self.args, "pool", "thread"), self.config.num_workers)
        return Balancer(self.group, worker_pool=pool, config=self.config, owns_pool=True)

    def _log(self, message: str) -> None:
        """Log message with process prefix.

        Args:
            message: Message to log
        """
        self.logger.info(f"[Process {self.process_rank}] {message}")

    def _log_rank0(self, message: str) -> None:
        print_rank0(message, self.logger)

    def print_header(self, title: str, **info: Any) -> None:
        """Print formatted header with info.

        Args:
            title: Header title
            **info: Key-value pairs to display
        """
        self._log_rank0("=" * 60)
        self._log_rank0(f"balancer {title}")
        self._log_rank0("=" * 60)
        for key, value in info.items():
            if value is not None:
                self._log_rank0(f"{key}: {value}")
        if self.distributed_mode:
            self._log_rank0(
                f"Distributed Mode: {self.distributed_mode} "
                f"(world_size={self.num_processes})"
            )
        self._log_rank0("=" * 60)

    def run_with_error_handling(self, func: Callable[[], int]) -> int:
        """Run function with standardized error handling.

        Args:
            func: Function to run

        Returns:
            Exit code (0 for success, 1 for failure)
        """
        try:
            return func()
        except KeyboardInterrupt:
            self._log_rank0("Interrupted by user")
            return 130
        except BalancerError as e:
            log_error(e, context="Worker execution", include_traceback=True)
            return 1

    @abstractmethod
    def run(self) -> int:
        """Run the worker.

        Returns:
            Exit code
        """
        pass

    @classmethod
    @abstractmethod
    def add_arguments(cls, parser: argparse.ArgumentParser) -> None:
        """Add worker-specific arguments to parser.

        Args:
            parser: Argument parser
        """
        pass

    @classmethod
    def add_common_arguments(cls, parser: argparse.ArgumentParser) -> None:
        """Add common arguments shared by all workers.

        Args:
            parser: Argument parser
        """
        # Execution
        parser.add_argument("--num_workers", type=int, default=None)
        parser.add_argument("--pool", type=str, default="thread", choices=["thread", "process", "serial"])
        parser.add_argument("--verbose", action="store_true")

        # Distributed
        parser.add_argument("--backend", type=str, default=None)
        parser.add_argument("--timeout", type=float, default=None)
        parser.add_argument("--num_nodes", type=int, default=1)

        # Logging
        parser.add_argument("--log_dir", type=str, default=None)

    @classmethod
    def create_parser(cls, description: str) -> argparse.ArgumentParser:
        """Create argument parser with common arguments.

        Args:
            description: Parser description

        Returns:
            Configured argument parser
        """
        parser = argparse.ArgumentParser(description=description)
        cls.add_common_arguments(parser)
        cls.add_arguments(parser)
        return parser
