"""
repo_client.py — Repository database client with mirror failover.

A repository is a named, ordered list of mirror base URLs. Each mirror
serves the package database at {mirror}/database.json and archives at
{mirror}/{id}-{version}.zip.
"""

import json
import logging

from . import transport
from .config import METADATA_TIMEOUT
from .errors import RepoNotFoundError, RepoUnavailableError

logger = logging.getLogger(__name__)


class RepositoryClient:
    def __init__(self, repos, timeout=METADATA_TIMEOUT):
        self.repos = repos
        self.timeout = timeout

    def mirrors(self, repo_name):
        """Return the ordered mirror list for a repository.

        Raises:
            RepoNotFoundError: If the repository is unknown or has no mirrors.
        """
        mirrors = self.repos.get(repo_name) or []
        if not mirrors:
            raise RepoNotFoundError(f"Repository not found: {repo_name}")
        return [m.rstrip("/") for m in mirrors]

    def fetch_database(self, repo_name):
        """Fetch the package database from the first mirror that serves one.

        Returns:
            The database's `packages` mapping (package id -> entry).

        Raises:
            RepoNotFoundError: If the repository has no mirrors.
            RepoUnavailableError: If every mirror failed; carries the last
                                  mirror's error.
        """
        last_error = None
        for mirror in self.mirrors(repo_name):
            url = f"{mirror}/database.json"
            try:
                body = transport.fetch_bytes(url, timeout=self.timeout)
            except transport.TransportError as e:
                last_error = f"Mirror {mirror}: connection failed ({e})"
                logger.warning("%s", last_error)
                continue

            try:
                document = json.loads(body.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError):
                document = None
            if not isinstance(document, dict) or not isinstance(document.get("packages"), dict):
                last_error = f"Mirror {mirror}: invalid format"
                logger.warning("%s", last_error)
                continue

            packages = document["packages"]
            logger.info("Repository %s: %d package(s) from %s",
                        repo_name, len(packages), mirror)
            return packages

        raise RepoUnavailableError(
            f"Failed to fetch database from mirrors: {last_error}")
