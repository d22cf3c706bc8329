"""
Load Balancer Orchestrator

Wires the site registry, queue inspector, process manager, control loop and
shutdown coordinator together and runs them under asyncio.

Usage:
    multisite queue --concurrency 20 --max-per-site 4

Environment Variables:
    MULTISITE_CONFIG             YAML file with per-environment site paths
    MULTISITE_CONCURRENCY        Total worker budget (default: 10)
    MULTISITE_CHECK_INTERVAL     Seconds between rebalances (default: 30)
    WORKER_SHUTDOWN_TIMEOUT      Grace period before SIGKILL (default: 10)
    LOG_LEVEL                    Logging level (default: INFO)
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from .balancer import (
    BalancerConfig,
    ControlLoop,
    ProcessManager,
    QueueInspector,
    ShutdownCoordinator,
)
from .reporter import Reporter, make_reporter
from .sites import SiteRegistry, SiteRegistryError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO", stream=None) -> None:
    logging.basicConfig(
        level=level.upper(), format=LOG_FORMAT, stream=stream or sys.stdout
    )


class LoadBalancerOrchestrator:
    """
    Main orchestrator that coordinates all components.

    Handles:
    - Startup sequence (site discovery, component wiring)
    - Signal handling (SIGTERM, SIGINT)
    - Running the control loop until shutdown
    """

    def __init__(
        self,
        config: BalancerConfig,
        sites: Optional[SiteRegistry] = None,
        reporter: Optional[Reporter] = None,
    ):
        self.config = config
        self.sites = sites
        self.reporter = reporter or make_reporter(config.mute)
        self.stop_event: Optional[asyncio.Event] = None
        self.process_manager: Optional[ProcessManager] = None
        self.shutdown: Optional[ShutdownCoordinator] = None
        self.control_loop: Optional[ControlLoop] = None

    async def startup(self):
        """
        Startup sequence.

        1. Resolve the site registry (fatal if unconfigured)
        2. Build components
        3. Setup signal handlers
        4. Print the configuration summary
        """
        logger.info("Starting multisite queue load balancer...")

        if self.sites is None:
            self.sites = SiteRegistry.from_environment()
        logger.info(f"Sites path: {self.sites.paths.sites_path}")

        self.stop_event = asyncio.Event()
        self.process_manager = ProcessManager(self.config.worker_tuning(), self.reporter)
        self.shutdown = ShutdownCoordinator(
            self.process_manager,
            self.reporter,
            self.stop_event,
            grace_period=self.config.shutdown_timeout,
        )
        inspector = QueueInspector(self.reporter, stop_event=self.stop_event)
        self.control_loop = ControlLoop(
            self.config,
            self.sites,
            inspector,
            self.process_manager,
            self.shutdown,
            self.reporter,
            self.stop_event,
        )

        self._install_signal_handlers()
        self._display_configuration()

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.shutdown.request, sig)
            except NotImplementedError:
                logger.warning(f"Could not add signal handler for {sig.name}")

        logger.info("Signal handlers configured (SIGTERM, SIGINT)")

    def _display_configuration(self):
        self.reporter.table(
            ["Config", "Value"],
            [
                ["Strategy", "Dynamic Load Balancer"],
                ["Total Sites", len(self.sites.active_sites())],
                ["Total Workers", self.config.concurrency],
                ["Min Workers/Site", self.config.min_per_site],
                ["Max Workers/Site", self.config.max_per_site],
                ["Rebalance Interval", f"{self.config.check_interval}s"],
            ],
        )
        self.reporter.newline()

    async def run(self):
        """Start up, then run the control loop until shutdown completes"""
        await self.startup()
        await self.control_loop.run()


def run_balancer(config: BalancerConfig, sites: Optional[SiteRegistry] = None) -> int:
    """Blocking entrypoint; returns the process exit code"""
    orchestrator = LoadBalancerOrchestrator(config, sites)
    try:
        asyncio.run(orchestrator.run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except SiteRegistryError:
        raise
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    return 0
