"""
Queue depth probe for a single site.

Prints ``{"pending": N, "failed": M}`` for the site's RQ queue on stdout and
nothing else. The load balancer runs this once per site per rebalance cycle.
"""

import json
import logging
from typing import Dict

from redis import Redis
from rq import Queue

from .sites import SiteRegistry

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_QUEUE_NAME = "default"


def site_queue(registry: SiteRegistry, site: str) -> Queue:
    """Open the RQ queue configured in the site's .env"""
    env = registry.load_env(site)
    redis_url = env.get("REDIS_URL") or DEFAULT_REDIS_URL
    queue_name = env.get("QUEUE_NAME") or DEFAULT_QUEUE_NAME
    return Queue(queue_name, connection=Redis.from_url(redis_url))


def queue_depth(queue: Queue) -> Dict[str, int]:
    return {
        "pending": len(queue),
        "failed": queue.failed_job_registry.count,
    }


def run_probe(site: str, registry: SiteRegistry) -> int:
    """
    Print the queue depth for a site.

    Returns:
        Process exit code: 0 on success, 1 if the queue could not be read
    """
    try:
        depth = queue_depth(site_queue(registry, site))
    except Exception as e:
        logger.error(f"{site}: Failed to read queue depth: {e}")
        return 1

    print(json.dumps(depth), flush=True)
    return 0
