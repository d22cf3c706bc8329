"""
Site Registry

Discovers the sites hosted on this machine and checks whether each one has a
usable environment configuration.

Layout on disk:
    <sites_path>/<site>/<base_path>/.env
    <sites_path>/<site>/<public_path>/

The three path settings come from a YAML file (``MULTISITE_CONFIG``, default
``config/multisite.yml``) with one section per environment, or from the
``MULTISITE_SITES_PATH`` / ``MULTISITE_BASE_PATH`` / ``MULTISITE_PUBLIC_PATH``
environment variables.
"""

import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from dotenv import dotenv_values

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/multisite.yml"
PATH_KEYS = ("sites_path", "base_path", "public_path")

_SCHEME_PREFIX = re.compile(r"^(https?://)?(www\.|api\.)?")
_PORT_SUFFIX = re.compile(r":\d+$")


class SiteRegistryError(RuntimeError):
    """Raised when the multisite environment is not configured"""


class SiteStatus(Enum):
    """Outcome of checking a single site"""

    OK = "ok"
    SKIPPED = "skipped"  # No usable environment, silently excluded
    FAILED = "failed"  # Check itself errored


@dataclass(frozen=True)
class SiteCheck:
    site: str
    status: SiteStatus
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is SiteStatus.OK


@dataclass(frozen=True)
class MultisitePaths:
    sites_path: str
    base_path: str
    public_path: str


def parse_domain(domain: str) -> str:
    """
    Normalize a domain or host string into its canonical site name.

    Examples:
        >>> parse_domain("https://www.Example.com:8080")
        'example.com'
        >>> parse_domain("api.shop.test")
        'shop.test'
    """
    domain = _SCHEME_PREFIX.sub("", domain.strip().lower(), count=1)
    return _PORT_SUFFIX.sub("", domain)


def _environment_key(app_env: Optional[str]) -> str:
    return "local" if app_env == "local" else "production"


def load_multisite_paths(
    config_path: Optional[str] = None, app_env: Optional[str] = None
) -> MultisitePaths:
    """
    Resolve the sites/base/public paths for the current environment.

    Args:
        config_path: YAML file to read (defaults to $MULTISITE_CONFIG)
        app_env: Environment name (defaults to $APP_ENV)

    Returns:
        MultisitePaths for the selected environment

    Raises:
        SiteRegistryError: If no configuration source defines all three paths
    """
    config_path = config_path or os.getenv("MULTISITE_CONFIG", DEFAULT_CONFIG_PATH)
    env_key = _environment_key(app_env if app_env is not None else os.getenv("APP_ENV"))

    path = Path(config_path)
    if path.exists():
        try:
            with open(path, "r") as f:
                document = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise SiteRegistryError(f"Could not parse {path}: {e}") from e

        section = document.get(env_key) if isinstance(document, dict) else None
        if not isinstance(section, dict):
            raise SiteRegistryError(f"MULTISITE.{env_key} is not defined in {path}.")

        values = {}
        for key in PATH_KEYS:
            if not section.get(key):
                raise SiteRegistryError(f"MULTISITE.{env_key}.{key} is not defined.")
            values[key] = str(section[key])
        return MultisitePaths(**values)

    values = {key: os.getenv(f"MULTISITE_{key.upper()}") for key in PATH_KEYS}
    missing = [key for key, value in values.items() if not value]
    if missing:
        raise SiteRegistryError(
            "MULTISITE environment is not defined "
            f"(missing {', '.join(f'MULTISITE_{k.upper()}' for k in missing)} "
            f"and no {config_path})."
        )
    return MultisitePaths(**values)


class SiteRegistry:
    """
    Read-only view of the configured site directories.

    Sites are always listed in sorted order so that every consumer sees the
    same, reproducible ordering.
    """

    def __init__(self, paths: MultisitePaths):
        self.paths = paths

    @classmethod
    def from_environment(cls) -> "SiteRegistry":
        return cls(load_multisite_paths())

    def all(self) -> List[str]:
        """Return every site directory name, excluding ``*.local`` entries"""
        root = Path(self.paths.sites_path)
        if not root.is_dir():
            logger.warning(f"Sites path does not exist: {root}")
            return []

        return sorted(
            entry.name
            for entry in root.iterdir()
            if entry.is_dir() and not entry.name.endswith(".local")
        )

    def base_path(self, site: str) -> Path:
        return Path(self.paths.sites_path) / parse_domain(site) / self.paths.base_path

    def public_path(self, site: str) -> Path:
        return Path(self.paths.sites_path) / parse_domain(site) / self.paths.public_path

    def env_path(self, site: str) -> Path:
        return self.base_path(site) / ".env"

    def check(self, site: str) -> SiteCheck:
        """Check whether a site has a usable .env file"""
        try:
            if self.env_path(site).is_file():
                return SiteCheck(site, SiteStatus.OK)
            return SiteCheck(site, SiteStatus.SKIPPED, "missing .env")
        except OSError as e:
            return SiteCheck(site, SiteStatus.FAILED, str(e))

    def is_valid(self, site: str) -> bool:
        return self.check(site).ok

    def active_sites(self) -> List[str]:
        """Valid sites in registry order; invalid ones are logged and dropped"""
        active = []
        for site in self.all():
            result = self.check(site)
            if result.ok:
                active.append(site)
            elif result.status is SiteStatus.FAILED:
                logger.warning(f"{site}: Site check failed: {result.reason}")
            else:
                logger.debug(f"{site}: Skipped ({result.reason})")
        return active

    def load_env(self, site: str) -> Dict[str, Optional[str]]:
        """Read the site's .env file"""
        return dict(dotenv_values(self.env_path(site)))
