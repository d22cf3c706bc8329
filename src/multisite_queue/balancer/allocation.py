"""
Allocation Planner

Splits the worker budget across sites in proportion to their queue priority.
Pure functions only: no I/O, deterministic for a given input.

Sites are visited in the iteration order of ``stats``. The balancer builds
``stats`` from the site registry, which lists sites in sorted order, so ties
always break the same way between runs.
"""

import logging
from typing import Dict, Mapping

from .queue_inspector import SiteDepthStat

logger = logging.getLogger(__name__)


def _distribute_evenly(
    stats: Mapping[str, SiteDepthStat], budget: int, max_per_site: int
) -> Dict[str, int]:
    # Even split may place fewer than min_per_site workers on a site
    active = [site for site, stat in stats.items() if stat.pending > 0]
    if not active:
        return {}

    per_site = min(max(1, budget // len(active)), max_per_site)
    return {site: per_site for site in active}


def plan_allocation(
    stats: Mapping[str, SiteDepthStat],
    budget: int,
    min_per_site: int,
    max_per_site: int,
) -> Dict[str, int]:
    """
    Compute the target worker count for each site.

    Args:
        stats: Queue statistics per site, in registry order
        budget: Total number of workers available
        min_per_site: Floor for every site that receives workers
        max_per_site: Ceiling for every site

    Returns:
        Mapping of site to target worker count. Sites with zero priority are
        absent. Values sum to at most ``budget``.
    """
    total_priority = sum(stat.priority for stat in stats.values())
    if total_priority <= 0:
        return _distribute_evenly(stats, budget, max_per_site)

    allocation: Dict[str, int] = {}
    remaining = budget

    for site, stat in stats.items():
        if stat.priority <= 0:
            continue

        share = int((budget * stat.priority) // total_priority)
        target = max(min_per_site, min(max_per_site, share))

        # Floors alone can overshoot the budget when there are many sites
        target = min(target, remaining)
        if target < min_per_site:
            logger.debug(f"{site}: Budget exhausted, no workers this cycle")
            continue

        allocation[site] = target
        remaining -= target

    # Hand out what is left one worker at a time, in the same order
    while remaining > 0:
        assigned = False
        for site in allocation:
            if allocation[site] < max_per_site and stats[site].priority > 0:
                allocation[site] += 1
                remaining -= 1
                assigned = True
                if remaining == 0:
                    break
        if not assigned:
            break

    return allocation


def total_workers(allocation: Mapping[str, int]) -> int:
    return sum(allocation.values())
