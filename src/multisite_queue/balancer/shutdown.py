"""
Shutdown Coordinator

Turns termination signals into a single, orderly teardown of all workers.
"""

import asyncio
import logging
import signal
from typing import Optional

from ..reporter import Reporter
from .process_manager import DEFAULT_GRACE_PERIOD, ProcessManager

logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    """
    Graceful-then-forceful termination of every worker.

    ``request()`` is what signal handlers call; it only flips the shared stop
    event. ``shutdown()`` does the actual teardown and runs at most once no
    matter how many times it is awaited.
    """

    def __init__(
        self,
        process_manager: ProcessManager,
        reporter: Reporter,
        stop_event: asyncio.Event,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        poll_interval: float = 1.0,
    ):
        self.process_manager = process_manager
        self.reporter = reporter
        self.stop_event = stop_event
        self.grace_period = grace_period
        self.poll_interval = poll_interval
        self.requested = False
        self.completed = False
        self._lock = asyncio.Lock()

    def request(self, sig: Optional[signal.Signals] = None) -> None:
        """Begin shutdown; repeated requests are ignored"""
        if self.requested:
            logger.info(
                f"Shutdown already in progress, ignoring {sig.name if sig else 'request'}"
            )
            return

        self.requested = True
        logger.info(f"Received {sig.name if sig else 'shutdown request'}")
        self.reporter.newline()
        self.reporter.info("🛑 Shutting down gracefully...")
        self.stop_event.set()

    async def shutdown(self) -> None:
        """Stop all workers; later and concurrent calls wait for the first"""
        async with self._lock:
            if self.completed:
                return

            self.requested = True
            self.stop_event.set()

            # Off the event loop so a second signal is still handled promptly
            killed = await asyncio.to_thread(
                self.process_manager.stop_all, self.grace_period, self.poll_interval
            )
            if killed:
                self.reporter.warn(f"Force killed {killed} workers after {self.grace_period}s")

            self.completed = True
            self.reporter.info("✅ All workers stopped")
