# Copyright 2026 Ruihang Li.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for details.

"""Logging utilities for balancer."""

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from balancer.utils.distributed import is_main_process

LOG_FORMAT = "%(asctime)s - [Rank %(rank)s] - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class LoggingConfig:
    """Logging configuration for distributed environment."""

    log_dir: Optional[str] = None
    rank: int = 0
    local_rank: int = 0
    node_rank: int = 0
    num_nodes: int = 1
    world_size: int = 1
    level: int = logging.INFO


class RankFilter(logging.Filter):
    """Stamp every record with the rank of the emitting process."""

    def __init__(self, rank: int):
        super().__init__()
        self.rank = rank

    def filter(self, record: logging.LogRecord) -> bool:
        record.rank = self.rank
        return True


# Global state for logging setup
_logging_initialized = False
_log_dir: Optional[str] = None


def _get_log_filename(rank: int, node_rank: int, local_rank: int, num_nodes: int, world_size: int) -> str:
    """Generate log filename based on process info.

    Args:
        rank: Global rank
        node_rank: Node rank
        local_rank: Local rank within node
        num_nodes: Total number of nodes
        world_size: Total number of processes

    Returns:
        Log filename
    """
    # Single process on single node
    if num_nodes <= 1 and world_size <= 1:
        return "process_0.log"
    if num_nodes <= 1:
        return f"rank{rank}.log"
    return f"node{node_rank}_process{local_rank}.log"


def setup_logging(config: LoggingConfig) -> Optional[str]:
    """Setup the ``balancer`` logger for a distributed run.

    - Only rank 0 writes to the terminal
    - Every rank writes to its own file when ``log_dir`` is set
    - Records carry the emitting rank

    Args:
        config: Logging configuration

    Returns:
        Path to the log directory, or None when file logging is off
    """
    global _logging_initialized, _log_dir

    if _logging_initialized:
        return _log_dir

    package_logger = logging.getLogger("balancer")
    package_logger.setLevel(config.level)
    package_logger.propagate = False

    # Remove handlers installed by get_logger before setup
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    rank_filter = RankFilter(config.rank)

    if config.rank == 0:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(config.level)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(rank_filter)
        package_logger.addHandler(console_handler)

    if config.log_dir:
        Path(config.log_dir).mkdir(parents=True, exist_ok=True)
        _log_dir = config.log_dir
        log_filename = _get_log_filename(
            config.rank, config.node_rank, config.local_rank, config.num_nodes, config.world_size
        )
        file_handler = logging.FileHandler(str(Path(config.log_dir) / log_filename), mode="a", encoding="utf-8")
        file_handler.setLevel(config.level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(rank_filter)
        package_logger.addHandler(file_handler)

    if not package_logger.handlers:
        package_logger.addHandler(logging.NullHandler())

    _logging_initialized = True

    package_logger.info(
        f"Logging initialized: log_dir={_log_dir}, rank={config.rank}, "
        f"local_rank={config.local_rank}, node_rank={config.node_rank}, "
        f"world_size={config.world_size}"
    )

    return _log_dir


def reset_logging() -> None:
    """Drop handlers installed by ``setup_logging``."""
    global _logging_initialized, _log_dir

    package_logger = logging.getLogger("balancer")
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True
    _logging_initialized = False
    _log_dir = None


def get_log_dir() -> Optional[str]:
    """Get the current log directory.

    Returns:
        Log directory path or None if not initialized
    """
    return _log_dir


def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Get a logger with the specified name and level.

    Args:
        name: Logger name
        level: Logging level

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Package loggers share one handler on "balancer", replaced by setup_logging
    target = logging.getLogger("balancer") if name.startswith("balancer.") else logger

    # Only add handler if logging not initialized globally and no handlers exist
    if not _logging_initialized and not target.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt=DATE_FORMAT)
        )
        target.addHandler(handler)
        target.setLevel(level)

    return logger


def print_rank0(message: str, logger: Optional[logging.Logger] = None) -> None:
    """Print message only on rank 0 (main process).

    Args:
        message: Message to print
        logger: Optional logger to use instead of print
    """
    if is_main_process():
        if logger:
            logger.info(message)
        else:
            print(message)
