"""
Process Manager

Owns the registry of live worker processes. Starts, stops and force-kills
workers, and reconciles the actual per-site worker counts against a target
allocation.
"""

import logging
import subprocess
import threading
import time
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional

from ..reporter import Reporter
from .commands import build_worker_command, build_worker_env
from .config import WorkerTuning

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 10
FORCE_KILL_WAIT = 5


class WorkerState(Enum):
    """Worker process lifecycle states"""

    RUNNING = "running"
    STOPPING = "stopping"  # SIGTERM sent
    STOPPED = "stopped"
    FAILED = "failed"  # Exited without being asked to


class ManagedWorker:
    """
    Wraps a single worker process.

    Attributes:
        site: Site the worker drains
        index: Slot number, unique per site among live workers
        process: Subprocess.Popen object
        started_at: Timestamp when the worker was spawned
        state: Current worker state
    """

    def __init__(self, site: str, index: int, process: subprocess.Popen, started_at: float):
        self.site = site
        self.index = index
        self.process = process
        self.started_at = started_at
        self.state = WorkerState.RUNNING

    @property
    def worker_id(self) -> str:
        return f"{self.site}-{self.index}"

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid

    @property
    def is_alive(self) -> bool:
        return self.process.poll() is None

    def terminate(self) -> None:
        """Send SIGTERM once, if the process is still running"""
        if self.state is WorkerState.STOPPING or not self.is_alive:
            return
        try:
            self.process.terminate()
            self.state = WorkerState.STOPPING
        except OSError as e:
            logger.debug(f"{self.worker_id}: terminate failed: {e}")

    def kill(self) -> None:
        """Send SIGKILL and wait briefly for the process to go away"""
        if not self.is_alive:
            return
        try:
            self.process.kill()
            self.process.wait(timeout=FORCE_KILL_WAIT)
        except subprocess.TimeoutExpired:
            logger.error(f"{self.worker_id}: Still alive {FORCE_KILL_WAIT}s after SIGKILL")
        except OSError as e:
            logger.debug(f"{self.worker_id}: kill failed: {e}")
        self.state = WorkerState.STOPPED


class ProcessManager:
    """
    Manages the per-site worker processes.

    Every method that touches the registry holds ``_lock``; the control loop,
    the monitor pass and the shutdown path may live on different threads.
    """

    def __init__(
        self,
        tuning: WorkerTuning,
        reporter: Reporter,
        command_builder: Callable[[str, WorkerTuning], List[str]] = build_worker_command,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.tuning = tuning
        self.reporter = reporter
        self.command_builder = command_builder
        self.popen = popen
        self.sleep = sleep
        self.monotonic = monotonic
        self.workers: Dict[str, ManagedWorker] = {}
        self._retiring: List[ManagedWorker] = []
        self._lock = threading.RLock()

    # -- single worker -------------------------------------------------------

    def _next_index(self, site: str) -> int:
        # Retiring workers keep their slot until they have exited
        live = list(self.workers.values()) + [w for w in self._retiring if w.is_alive]
        used = {w.index for w in live if w.site == site}
        index = 0
        while index in used:
            index += 1
        return index

    def start(self, site: str) -> Optional[str]:
        """
        Spawn a new worker for a site.

        Returns:
            The new worker id, or None if the process could not be spawned
        """
        with self._lock:
            index = self._next_index(site)
            worker_id = f"{site}-{index}"
            command = self.command_builder(site, self.tuning)
            logger.debug(f"{worker_id}: Command: {' '.join(command)}")

            try:
                # Output is inherited so worker logs land next to ours
                process = self.popen(
                    command,
                    env=build_worker_env(site, worker_id),
                    stdout=None,
                    stderr=None,
                )
            except (OSError, ValueError) as e:
                logger.error(f"{worker_id}: Failed to start: {e}")
                return None

            self.workers[worker_id] = ManagedWorker(site, index, process, time.time())

        logger.info(f"{worker_id}: Started with PID {process.pid}")
        self.reporter.line(f"  ✅ Started worker {worker_id}")
        return worker_id

    def stop(self, worker_id: str) -> bool:
        """
        Ask a worker to stop and drop it from the registry.

        Returns:
            False if the worker id was unknown
        """
        with self._lock:
            worker = self.workers.pop(worker_id, None)
            if worker is None:
                return False

            if worker.is_alive:
                worker.terminate()
                self._retiring.append(worker)
            else:
                worker.state = WorkerState.STOPPED

        logger.info(f"{worker_id}: Stop requested (PID {worker.pid})")
        self.reporter.line(f"  ❌ Stopped worker {worker_id}")
        return True

    # -- per-site views ------------------------------------------------------

    def workers_for(self, site: str) -> List[ManagedWorker]:
        """Workers of a site, oldest first"""
        with self._lock:
            return [w for w in self.workers.values() if w.site == site]

    def count_for(self, site: str) -> int:
        return len(self.workers_for(site))

    def get_worker(self, worker_id: str) -> Optional[ManagedWorker]:
        with self._lock:
            return self.workers.get(worker_id)

    def get_all_workers(self) -> List[ManagedWorker]:
        with self._lock:
            return list(self.workers.values())

    # -- reconciliation ------------------------------------------------------

    def reconcile(self, allocation: Mapping[str, int]) -> None:
        """
        Bring the registry in line with a target allocation.

        Workers of sites missing from ``allocation`` are stopped first, then
        each site is topped up or trimmed to its target. Trimming stops the
        newest workers and keeps the oldest.
        """
        with self._lock:
            for worker_id, worker in list(self.workers.items()):
                if worker.site not in allocation:
                    self.stop(worker_id)

            for site, target in allocation.items():
                current = self.count_for(site)
                if current < target:
                    for _ in range(target - current):
                        self.start(site)
                elif current > target:
                    self._stop_newest(site, current - target)

    def _stop_newest(self, site: str, count: int) -> None:
        newest = [w.worker_id for w in self.workers_for(site)][-count:]
        for worker_id in reversed(newest):
            self.stop(worker_id)

    # -- monitoring ----------------------------------------------------------

    def reap_dead(self) -> List[str]:
        """
        Remove workers whose process exited on its own.

        Returns:
            Ids of the workers that died without being stopped
        """
        with self._lock:
            dead = [wid for wid, worker in self.workers.items() if not worker.is_alive]
            for worker_id in dead:
                worker = self.workers.pop(worker_id)
                worker.state = WorkerState.FAILED
                logger.warning(
                    f"{worker_id}: Exited with code {worker.process.returncode}"
                )

            # poll() inside is_alive also collects the exit status
            self._retiring = [w for w in self._retiring if w.is_alive]

        return dead

    # -- shutdown ------------------------------------------------------------

    def _prune_exited(self) -> int:
        with self._lock:
            for worker_id in [w for w, worker in self.workers.items() if not worker.is_alive]:
                self.workers.pop(worker_id).state = WorkerState.STOPPED
            self._retiring = [w for w in self._retiring if w.is_alive]
            return len(self.workers) + len(self._retiring)

    def stop_all(
        self, grace_period: float = DEFAULT_GRACE_PERIOD, poll_interval: float = 1.0
    ) -> int:
        """
        Stop every worker, gracefully first.

        Sends SIGTERM to all workers, polls until they exit or the grace
        period runs out, then SIGKILLs whatever is left.

        Args:
            grace_period: Seconds to wait for voluntary exit
            poll_interval: Seconds between liveness polls

        Returns:
            Number of workers that had to be force-killed
        """
        with self._lock:
            tracked = list(self.workers.values()) + self._retiring
            logger.info(f"Stopping all workers ({len(tracked)} processes)...")
            for worker in tracked:
                worker.terminate()

        deadline = self.monotonic() + grace_period
        remaining = self._prune_exited()
        while remaining and self.monotonic() < deadline:
            self.sleep(poll_interval)
            remaining = self._prune_exited()

        with self._lock:
            leftovers = list(self.workers.values()) + self._retiring
            for worker in leftovers:
                logger.warning(f"{worker.worker_id}: Grace period expired, force killing (SIGKILL)")
                worker.kill()
            self.workers.clear()
            self._retiring = []

        if leftovers:
            logger.warning(f"Force killed {len(leftovers)} workers")
        else:
            logger.info("All workers stopped gracefully")
        return len(leftovers)
