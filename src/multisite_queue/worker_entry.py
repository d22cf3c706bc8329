"""
Queue worker for a single site.

Runs an RQ worker against the site's queue with the tunables the balancer
passes on the command line:

- ``--sleep``: seconds to idle when a pass finds no jobs
- ``--tries``: attempts per job, for jobs enqueued without a retry policy
- ``--timeout``: per-job timeout, for jobs enqueued without one
- ``--memory``: MB of resident memory after which the worker exits so the
  balancer can replace it

Jobs run inside this process, so the memory ceiling measures what the jobs
actually use. SIGTERM finishes the current job and exits 0.
"""

import logging
import os
import resource
import signal
import socket
import sys
import threading
from typing import Optional

from rq import Queue, SimpleWorker, Worker

from .balancer.config import WorkerTuning
from .queue_probe import site_queue
from .sites import SiteRegistry

logger = logging.getLogger(__name__)

# Same code Laravel's queue:work uses for "memory limit exceeded"
EXIT_MEMORY_EXCEEDED = 12


def resident_memory_mb() -> float:
    """Peak resident set size of this process in MB"""
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes elsewhere
    if sys.platform == "darwin":
        return peak / (1024 * 1024)
    return peak / 1024


def rq_worker_name(worker_id: Optional[str], pid: Optional[int] = None) -> Optional[str]:
    """
    Redis registration name for a worker process.

    The balancer reuses ``WORKER_ID`` values, and a retiring or killed process
    can still be registered under its old name, so the pid is appended.
    """
    if not worker_id:
        return None
    return f"{worker_id}.{pid or os.getpid()}"


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def clear_stale_registrations(queue: Queue, worker_id: str) -> int:
    """
    Register the death of leftover workers for this slot on this host.

    Only registrations named ``<worker_id>.<pid>`` from this hostname whose
    process is gone (or whose pid is now ours) are touched.

    Returns:
        Number of registrations cleaned up
    """
    hostname = socket.gethostname()
    prefix = f"{worker_id}."
    try:
        cleaned = 0
        for worker in Worker.all(connection=queue.connection, queue=queue):
            if worker.hostname != hostname or not worker.name.startswith(prefix):
                continue
            if worker.pid and worker.pid != os.getpid() and _pid_alive(worker.pid):
                continue
            worker.register_death()
            cleaned += 1
        return cleaned

    except Exception as e:
        logger.warning(f"{worker_id}: Failed to clean up stale workers: {e}")
        return 0


class SiteWorker(SimpleWorker):
    """RQ worker that fills in per-job defaults and tracks stop requests"""

    def __init__(self, *args, tuning: WorkerTuning, **kwargs):
        super().__init__(*args, **kwargs)
        self.tuning = tuning
        self.stop_requested = threading.Event()

    def execute_job(self, job, queue):
        if job.timeout is None:
            job.timeout = self.tuning.timeout
        if self.tuning.tries > 1 and job.retries_left is None:
            job.retries_left = self.tuning.tries - 1
            job.retry_intervals = [0]
        return super().execute_job(job, queue)

    def request_stop(self, signum, frame):
        """Finish the current job, then leave the work loop; never raises"""
        if not self.stop_requested.is_set():
            logger.info(f"{self.name}: Received {signal.Signals(signum).name}, stopping")
        self.stop_requested.set()
        self._stop_requested = True


def run_worker(
    site: str,
    registry: SiteRegistry,
    tuning: WorkerTuning,
    worker_id: Optional[str] = None,
) -> int:
    """
    Drain the site's queue until asked to stop.

    Returns:
        Process exit code
    """
    queue = site_queue(registry, site)
    if worker_id:
        cleaned = clear_stale_registrations(queue, worker_id)
        if cleaned:
            logger.info(f"{worker_id}: Cleaned up {cleaned} stale worker registrations")

    worker = SiteWorker(
        [queue], connection=queue.connection, name=rq_worker_name(worker_id), tuning=tuning
    )
    # rq reinstalls the same handlers on every pass; these cover the gaps between passes
    worker._install_signal_handlers()
    logger.info(f"{worker.name}: Working queue '{queue.name}' for {site}")

    while not worker.stop_requested.is_set():
        did_work = worker.work(burst=True)
        if worker.stop_requested.is_set():
            break

        if resident_memory_mb() >= tuning.memory:
            logger.warning(f"{worker.name}: Memory limit of {tuning.memory}MB exceeded")
            return EXIT_MEMORY_EXCEEDED

        if not did_work:
            worker.stop_requested.wait(tuning.sleep)

    logger.info(f"{worker.name}: Stopped")
    return 0
