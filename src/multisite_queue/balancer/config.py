"""
Load Balancer Configuration

Defines the balancer configuration and the worker tuning options that are
passed through to every spawned worker process.
"""

import os
from dataclasses import dataclass, field


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class WorkerTuning:
    """
    Tunables forwarded to each worker process on its command line.

    Attributes:
        memory: Memory ceiling in MB
        sleep: Seconds to sleep when the queue is empty
        tries: Maximum attempts per job
        timeout: Per-job timeout in seconds
    """

    memory: int = 128
    sleep: int = 3
    tries: int = 3
    timeout: int = 60


@dataclass
class BalancerConfig:
    """
    Global configuration for the dynamic load balancer.

    All settings can be overridden via environment variables, and the CLI
    overrides those in turn.
    """

    # Worker budget
    concurrency: int = field(
        default_factory=lambda: _env_int("MULTISITE_CONCURRENCY", 10)
    )
    min_per_site: int = field(
        default_factory=lambda: _env_int("MULTISITE_MIN_PER_SITE", 1)
    )
    max_per_site: int = field(
        default_factory=lambda: _env_int("MULTISITE_MAX_PER_SITE", 5)
    )

    # Timing
    check_interval: int = field(
        default_factory=lambda: _env_int("MULTISITE_CHECK_INTERVAL", 30)
    )
    monitor_interval: float = field(
        default_factory=lambda: float(os.getenv("MULTISITE_MONITOR_INTERVAL", "5"))
    )
    shutdown_timeout: int = field(
        default_factory=lambda: _env_int("WORKER_SHUTDOWN_TIMEOUT", 10)
    )

    # Worker pass-through options
    sleep: int = field(default_factory=lambda: _env_int("WORKER_SLEEP", 3))
    tries: int = field(default_factory=lambda: _env_int("WORKER_TRIES", 3))
    timeout: int = field(default_factory=lambda: _env_int("WORKER_TIMEOUT", 60))
    memory: int = field(default_factory=lambda: _env_int("WORKER_MEMORY", 128))

    # Output
    mute: bool = field(default_factory=lambda: _env_bool("MULTISITE_MUTE"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    def __post_init__(self):
        """Validate configuration after initialization"""
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.min_per_site < 0:
            raise ValueError("min_per_site must be non-negative")
        if self.max_per_site < 1:
            raise ValueError("max_per_site must be at least 1")
        if self.min_per_site > self.max_per_site:
            raise ValueError("min_per_site cannot exceed max_per_site")
        if self.check_interval <= 0:
            raise ValueError("check_interval must be positive")
        if self.monitor_interval <= 0:
            raise ValueError("monitor_interval must be positive")
        if self.shutdown_timeout <= 0:
            raise ValueError("shutdown_timeout must be positive")
        if self.sleep < 0:
            raise ValueError("sleep must be non-negative")
        if self.tries < 1:
            raise ValueError("tries must be at least 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.memory <= 0:
            raise ValueError("memory must be positive")

    def worker_tuning(self) -> WorkerTuning:
        """Bundle the pass-through worker options"""
        return WorkerTuning(
            memory=self.memory,
            sleep=self.sleep,
            tries=self.tries,
            timeout=self.timeout,
        )
