"""
Command Builders

Builds the command lines for the two external processes the balancer drives:
the per-site queue depth probe and the per-site queue worker.
"""

import os
import sys
from typing import Dict, List, Optional

from .config import WorkerTuning

SITE_ENV_VAR = "QUEUE_SITE"
WORKER_ID_ENV_VAR = "WORKER_ID"


def build_probe_command(site: str) -> List[str]:
    """Command that prints the site's queue depth as JSON on stdout"""
    return [sys.executable, "-m", "multisite_queue", "pending", "--site", site]


def build_worker_command(site: str, tuning: WorkerTuning) -> List[str]:
    """Command that drains the site's queue until terminated"""
    return [
        sys.executable,
        "-m",
        "multisite_queue",
        "work",
        "--site",
        site,
        "--memory",
        str(tuning.memory),
        "--sleep",
        str(tuning.sleep),
        "--tries",
        str(tuning.tries),
        "--timeout",
        str(tuning.timeout),
    ]


def build_worker_env(
    site: str, worker_id: str, base: Optional[Dict[str, str]] = None
) -> Dict[str, str]:
    """Environment for a worker process: inherited env plus site identity"""
    env = dict(os.environ if base is None else base)
    env[SITE_ENV_VAR] = site
    env[WORKER_ID_ENV_VAR] = worker_id
    return env
