"""
Control Loop

Drives periodic rebalancing and worker liveness monitoring until shutdown.

Each rebalance cycle: active sites -> queue inspection -> allocation plan ->
reconcile. Between cycles the loop wakes every ``monitor_interval`` seconds
to reap workers that died on their own.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..reporter import Reporter
from ..sites import SiteRegistry
from .allocation import plan_allocation, total_workers
from .config import BalancerConfig
from .process_manager import ProcessManager
from .queue_inspector import QueueInspector
from .shutdown import ShutdownCoordinator

logger = logging.getLogger(__name__)


class LoopState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ControlLoop:
    def __init__(
        self,
        config: BalancerConfig,
        sites: SiteRegistry,
        inspector: QueueInspector,
        process_manager: ProcessManager,
        shutdown: ShutdownCoordinator,
        reporter: Reporter,
        stop_event: asyncio.Event,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.sites = sites
        self.inspector = inspector
        self.process_manager = process_manager
        self.shutdown = shutdown
        self.reporter = reporter
        self.stop_event = stop_event
        self.clock = clock
        self.state = LoopState.IDLE
        self.last_rebalance: Optional[float] = None
        self.last_allocation: Dict[str, int] = {}

    @property
    def running(self) -> bool:
        return self.state == LoopState.RUNNING and not self.stop_event.is_set()

    def _rebalance_due(self) -> bool:
        if self.last_rebalance is None:
            return True
        return self.clock() - self.last_rebalance >= self.config.check_interval

    async def run(self) -> None:
        """Run until the stop event is set, then tear everything down"""
        if self.state != LoopState.IDLE:
            raise RuntimeError(f"Control loop cannot start from state {self.state.value}")

        self.state = LoopState.RUNNING
        self.reporter.info("🚀 Starting dynamic load balancer...")

        try:
            while not self.stop_event.is_set():
                if self._rebalance_due():
                    await self.rebalance()
                    self.last_rebalance = self.clock()

                self.monitor()
                await self._wait(self.config.monitor_interval)
        finally:
            self.state = LoopState.SHUTTING_DOWN
            await self.shutdown.shutdown()
            self.state = LoopState.STOPPED
            logger.info("Control loop stopped")

    async def rebalance(self) -> Optional[Dict[str, int]]:
        """
        Run one inspect -> plan -> reconcile cycle.

        Returns:
            The applied allocation, or None if the cycle was skipped or failed
        """
        try:
            sites = self.sites.active_sites()
            stats = await self.inspector.inspect(sites)

            if self.stop_event.is_set():
                logger.info("Shutdown requested, skipping reconciliation")
                return None

            allocation = plan_allocation(
                stats,
                self.config.concurrency,
                self.config.min_per_site,
                self.config.max_per_site,
            )

            self.reporter.info("📊 Rebalancing workers...")
            self.process_manager.reconcile(allocation)
            self._report_allocation(allocation)

            self.last_allocation = allocation
            return allocation

        except Exception as e:
            logger.error(f"Rebalance cycle failed: {e}", exc_info=True)
            return None

    def monitor(self) -> List[str]:
        """Reap workers that exited on their own; the next rebalance replaces them"""
        try:
            dead = self.process_manager.reap_dead()
        except Exception as e:
            logger.error(f"Monitor pass failed: {e}", exc_info=True)
            return []

        for worker_id in dead:
            self.reporter.warn(f"⚠️ Worker {worker_id} died unexpectedly")
        return dead

    def _report_allocation(self, allocation: Dict[str, int]) -> None:
        self.reporter.line("📋 Current allocation:")
        for site, workers in allocation.items():
            self.reporter.line(f"  └─ {site}: {workers} workers")
        self.reporter.line(f"Total active workers: {total_workers(allocation)}")
        self.reporter.newline()

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
