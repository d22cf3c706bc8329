"""
Queue Inspector

Runs the external depth probe for every site and turns its output into
per-site queue statistics. Probes in a batch run as concurrent processes;
any probe failure degrades to an empty stat for that site only.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..reporter import Reporter
from .commands import build_probe_command

logger = logging.getLogger(__name__)

# priority = pending + failed * FAILED_JOB_WEIGHT
FAILED_JOB_WEIGHT = 2

PROBE_BATCH_SIZE = 50
BATCH_DELAY_SECONDS = 1.0


@dataclass(frozen=True)
class SiteDepthStat:
    pending: int = 0
    failed: int = 0
    priority: float = 0.0

    @classmethod
    def from_counts(cls, pending: int, failed: int = 0) -> "SiteDepthStat":
        return cls(
            pending=pending,
            failed=failed,
            priority=float(pending + failed * FAILED_JOB_WEIGHT),
        )

    @property
    def total(self) -> int:
        return self.pending + self.failed


EMPTY_STAT = SiteDepthStat()


def _as_count(value) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value < 0:
        return None
    return int(value)


def parse_probe_output(output: str) -> Optional[Tuple[int, int]]:
    """
    Parse the probe's stdout.

    Args:
        output: Raw stdout, expected to be a JSON object with a numeric
            ``pending`` and optionally ``failed``

    Returns:
        (pending, failed) tuple, or None if the output is unusable
    """
    try:
        data = json.loads(output.strip())
    except ValueError:
        return None

    if not isinstance(data, dict):
        return None

    pending = _as_count(data.get("pending"))
    if pending is None:
        return None

    raw_failed = data.get("failed")
    failed = 0 if raw_failed is None else _as_count(raw_failed)
    if failed is None:
        return None

    return pending, failed


class QueueInspector:
    """
    Collects queue depth statistics for a list of sites.

    Sites are probed in batches of ``batch_size`` to bound the number of
    simultaneous probe processes, with a short pause between batches.
    """

    def __init__(
        self,
        reporter: Reporter,
        probe_command: Callable[[str], List[str]] = build_probe_command,
        stop_event: Optional[asyncio.Event] = None,
        batch_size: int = PROBE_BATCH_SIZE,
        batch_delay: float = BATCH_DELAY_SECONDS,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.reporter = reporter
        self.probe_command = probe_command
        self.stop_event = stop_event
        self.batch_size = batch_size
        self.batch_delay = batch_delay

    async def inspect(self, sites: Sequence[str]) -> Dict[str, SiteDepthStat]:
        """
        Probe every site and return its stats, keyed in input order.

        If shutdown is requested mid-way, the sites not yet probed are
        left out of the result.
        """
        sites = list(sites)
        self.reporter.info(f"📊 Checking queue sizes for {len(sites)} sites...")

        batches = [
            sites[i : i + self.batch_size]
            for i in range(0, len(sites), self.batch_size)
        ]
        stats: Dict[str, SiteDepthStat] = {}

        for number, batch in enumerate(batches):
            if self._stopping():
                logger.info("Shutdown requested, stopping queue inspection early")
                break

            results = await asyncio.gather(*(self._probe(site) for site in batch))
            stats.update(zip(batch, results))

            if number < len(batches) - 1 and await self._pause():
                logger.info("Shutdown requested during batch pause")
                break

        active = sum(1 for stat in stats.values() if stat.total > 0)
        self.reporter.info(f"Found {active} sites with pending jobs")
        return stats

    async def _probe(self, site: str) -> SiteDepthStat:
        command = self.probe_command(site)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
            stdout, _ = await process.communicate()
        except Exception as e:
            logger.debug(f"{site}: Probe could not run: {e}")
            return EMPTY_STAT

        if process.returncode != 0:
            logger.debug(f"{site}: Probe exited with code {process.returncode}")
            return EMPTY_STAT

        counts = parse_probe_output(stdout.decode("utf-8", errors="replace"))
        if counts is None:
            logger.debug(f"{site}: Probe output not parseable")
            return EMPTY_STAT

        return SiteDepthStat.from_counts(*counts)

    def _stopping(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    async def _pause(self) -> bool:
        """Wait between batches; returns True if shutdown cut the wait short"""
        if self.stop_event is None:
            await asyncio.sleep(self.batch_delay)
            return False
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=self.batch_delay)
            return True
        except asyncio.TimeoutError:
            return False
