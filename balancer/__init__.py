"""
balancer - Multi-node, multi-core map with ordered gather.

Splits a global index range across a fixed process group without
communication, maps each rank's share on a local worker pool, and gathers the
results in global order on rank 0.
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("balancer")
except PackageNotFoundError:
    # Fallback for running from source without installing
    __version__ = "0.1.0"

from balancer.balancer import Balancer
from balancer.config import BalancerConfig
from balancer.process_group import (
    ProcessGroup,
    SingleProcessGroup,
    TorchProcessGroup,
    destroy_process_group,
    get_process_group,
    init_process_group,
)
from balancer.utils.task_distribution import partition_range, partition_table
from balancer.worker_pool import ProcessWorkerPool, SerialWorkerPool, ThreadWorkerPool, WorkerPool

__all__ = [
    "__version__",
    "Balancer",
    "BalancerConfig",
    "ProcessGroup",
    "SingleProcessGroup",
    "TorchProcessGroup",
    "init_process_group",
    "get_process_group",
    "destroy_process_group",
    "partition_range",
    "partition_table",
    "WorkerPool",
    "SerialWorkerPool",
    "ThreadWorkerPool",
    "ProcessWorkerPool",
]
