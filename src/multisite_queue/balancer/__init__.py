"""
Load Balancer Package

Dynamic, load-balanced placement of queue workers across sites.

Components:
- config: Balancer configuration and worker tuning
- commands: Probe and worker command lines
- queue_inspector: Per-site queue depth collection
- allocation: Budget split across sites
- process_manager: Worker process lifecycle and reconciliation
- control_loop: Periodic rebalance and liveness monitoring
- shutdown: Graceful-then-forceful teardown
"""

from .allocation import plan_allocation, total_workers
from .config import BalancerConfig, WorkerTuning
from .control_loop import ControlLoop, LoopState
from .process_manager import ManagedWorker, ProcessManager, WorkerState
from .queue_inspector import QueueInspector, SiteDepthStat, parse_probe_output
from .shutdown import ShutdownCoordinator

__all__ = [
    "BalancerConfig",
    "WorkerTuning",
    "ControlLoop",
    "LoopState",
    "ManagedWorker",
    "ProcessManager",
    "WorkerState",
    "QueueInspector",
    "SiteDepthStat",
    "parse_probe_output",
    "plan_allocation",
    "total_workers",
    "ShutdownCoordinator",
]
