"""
config.py — Runtime configuration for the package manager.

Paths and settings are resolved once into an MpmConfig and handed to each
component, so nothing in mpm_core reads ambient paths on its own.

Environment variables:
  MPM_ROOT                — Project root; archives extract here (default: cwd)
  MPM_REPO                — Repository name used for operations (default: main)
  MPM_MAX_EXECUTION_TIME  — Host execution allowance in seconds, 0 = unbounded
  MPM_SSL_VERIFY / MPM_SSL_CERT — see transport.py
"""

import json
import logging
import os
from dataclasses import dataclass

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR = ".config"
CACHE_DIR = ".cache"

DEFAULT_REPO = "main"
DEFAULT_REPOS = {
    "main": [
        "https://raw.githubusercontent.com/mehrnet/mpm-repo/refs/heads/main/main",
    ],
}

LOCK_TIMEOUT = 60          # seconds, used when the host allowance is unbounded
METADATA_TIMEOUT = 30
DOWNLOAD_TIMEOUT = 60


@dataclass
class MpmConfig:
    root: str
    repo: str = DEFAULT_REPO
    max_execution_time: int = 0
    metadata_timeout: int = METADATA_TIMEOUT
    download_timeout: int = DOWNLOAD_TIMEOUT

    @classmethod
    def from_env(cls, root=None):
        """Build a config from MPM_* environment variables."""
        root = root or os.environ.get("MPM_ROOT") or os.getcwd()
        try:
            max_exec = int(os.environ.get("MPM_MAX_EXECUTION_TIME", "0") or 0)
        except ValueError:
            logger.warning("Ignoring non-integer MPM_MAX_EXECUTION_TIME")
            max_exec = 0
        return cls(
            root=os.path.abspath(root),
            repo=os.environ.get("MPM_REPO") or DEFAULT_REPO,
            max_execution_time=max_exec,
        )

    @property
    def config_dir(self):
        return os.path.join(self.root, CONFIG_DIR)

    @property
    def cache_dir(self):
        return os.path.join(self.root, CACHE_DIR)

    @property
    def repos_file(self):
        return os.path.join(self.config_dir, "repos.json")

    @property
    def packages_file(self):
        return os.path.join(self.config_dir, "packages.json")

    @property
    def lock_file(self):
        return os.path.join(self.cache_dir, "mpm.lock")

    @property
    def lock_timeout(self):
        """Lock TTL: the host allowance when bounded, else LOCK_TIMEOUT."""
        if self.max_execution_time > 0:
            return self.max_execution_time
        return LOCK_TIMEOUT

    def load_repos(self):
        """Load the repository → mirror list mapping.

        Returns the built-in default when repos.json does not exist.

        Raises:
            ConfigError: If the file is unreadable or not a non-empty object.
        """
        if not os.path.exists(self.repos_file):
            logger.debug("No %s, using default repositories", self.repos_file)
            return {name: list(mirrors) for name, mirrors in DEFAULT_REPOS.items()}
        try:
            with open(self.repos_file, "r", encoding="utf-8") as f:
                repos = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Invalid repositories configuration: {e}") from e
        if not isinstance(repos, dict) or not repos:
            raise ConfigError("Invalid repositories configuration")
        return repos
