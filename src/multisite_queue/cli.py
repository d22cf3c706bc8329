"""
Multisite Queue CLI
Run the load-balanced queue workers and their helper commands
"""

import argparse
import os
import sys
from typing import List, Optional

from rich.console import Console

from .balancer.config import BalancerConfig, WorkerTuning
from .orchestrator import configure_logging, run_balancer
from .sites import SiteRegistry, SiteRegistryError

console = Console()

# queue option -> BalancerConfig field
QUEUE_OPTIONS = {
    "concurrency": "concurrency",
    "min_per_site": "min_per_site",
    "max_per_site": "max_per_site",
    "check_interval": "check_interval",
    "sleep": "sleep",
    "tries": "tries",
    "timeout": "timeout",
    "memory": "memory",
    "grace_period": "shutdown_timeout",
    "log_level": "log_level",
}


def build_config(args: argparse.Namespace) -> BalancerConfig:
    """BalancerConfig from env defaults, overridden by explicit CLI options"""
    overrides = {
        field: getattr(args, option)
        for option, field in QUEUE_OPTIONS.items()
        if getattr(args, option, None) is not None
    }
    if args.mute:
        overrides["mute"] = True
    return BalancerConfig(**overrides)


def list_sites(registry: SiteRegistry) -> None:
    sites = registry.all()
    if not sites:
        console.print("[cyan]No sites found.[/cyan]")
        return

    console.print(f"[cyan]Found {len(sites)} sites:[/cyan]")
    for site in sites:
        status = "🟢" if registry.is_valid(site) else "🔴"
        console.print(f"  {status} {site}", markup=False, highlight=False)
        console.print(f"  URL: [https://{site}]", markup=False, highlight=False)
        console.print("  " + "·" * 100, style="grey50")


def _add_tuning_arguments(parser: argparse.ArgumentParser, defaults: Optional[WorkerTuning]):
    def default(name):
        return getattr(defaults, name) if defaults else None

    parser.add_argument('--sleep', type=int, default=default("sleep"),
                        help='Number of seconds to sleep when no jobs')
    parser.add_argument('--tries', type=int, default=default("tries"),
                        help='Number of attempts per job')
    parser.add_argument('--timeout', type=int, default=default("timeout"),
                        help='Job timeout in seconds')
    parser.add_argument('--memory', type=int, default=default("memory"),
                        help='Memory limit per worker in MB')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="multisite", description="Multisite queue workers"
    )
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Dynamic load balancer; unset options fall back to BalancerConfig env defaults
    queue_parser = subparsers.add_parser(
        'queue', help='Dynamic load-balanced queue workers for all sites'
    )
    queue_parser.add_argument('--concurrency', type=int,
                              help='Total number of concurrent workers (default: 10)')
    queue_parser.add_argument('--min-per-site', type=int,
                              help='Minimum workers per active site (default: 1)')
    queue_parser.add_argument('--max-per-site', type=int,
                              help='Maximum workers per active site (default: 5)')
    queue_parser.add_argument('--check-interval', type=int,
                              help='Seconds between load checks (default: 30)')
    queue_parser.add_argument('--grace-period', type=int,
                              help='Seconds to wait for workers on shutdown (default: 10)')
    _add_tuning_arguments(queue_parser, None)
    queue_parser.add_argument('--mute', action='store_true', help='Run without output')
    queue_parser.add_argument('--log-level', help='Logging level (default: $LOG_LEVEL or INFO)')

    pending_parser = subparsers.add_parser(
        'pending', help='Print pending and failed job counts for a site as JSON'
    )
    pending_parser.add_argument('--site', required=True, help='Site to inspect')

    work_parser = subparsers.add_parser('work', help='Process jobs for a single site')
    work_parser.add_argument('--site', default=os.getenv("QUEUE_SITE"),
                             help='Site to work (default: $QUEUE_SITE)')
    _add_tuning_arguments(work_parser, WorkerTuning())

    subparsers.add_parser('list', help='List all available sites')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.command == 'queue':
            try:
                config = build_config(args)
            except ValueError as e:
                console.print(f"[red]❌ Invalid configuration: {e}[/red]", highlight=False)
                return 1
            configure_logging(config.log_level)
            return run_balancer(config)

        if args.command == 'work':
            configure_logging(os.getenv("LOG_LEVEL", "INFO"))
        else:
            # stdout belongs to the command output
            configure_logging(os.getenv("LOG_LEVEL", "WARNING"), stream=sys.stderr)
        registry = SiteRegistry.from_environment()

        if args.command == 'pending':
            from .queue_probe import run_probe

            return run_probe(args.site, registry)

        if args.command == 'work':
            from .worker_entry import run_worker

            if not args.site:
                console.print("[red]❌ --site or QUEUE_SITE is required[/red]")
                return 1
            tuning = WorkerTuning(
                memory=args.memory, sleep=args.sleep, tries=args.tries, timeout=args.timeout
            )
            return run_worker(args.site, registry, tuning, os.getenv("WORKER_ID"))

        list_sites(registry)
        return 0

    except SiteRegistryError as e:
        console.print(f"[red]❌ {e}[/red]", highlight=False)
        return 1
