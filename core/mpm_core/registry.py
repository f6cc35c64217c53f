"""
registry.py — Persisted record of installed packages.

The registry document is read once per operation and rewritten as a whole,
via a temporary file and os.replace, so a crash mid-operation leaves the
previous document intact.
"""

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from .errors import ConfigError

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


@dataclass
class InstalledPackage:
    version: str
    installed_at: str
    dependencies: list = field(default_factory=list)
    files: list = field(default_factory=list)
    download_url: str = ""
    download_time: str = ""
    checksum: str = ""
    repository: str = ""

    @classmethod
    def from_dict(cls, data):
        return cls(
            version=data.get("version", ""),
            installed_at=data.get("installed_at", ""),
            dependencies=list(data.get("dependencies") or []),
            files=list(data.get("files") or []),
            download_url=data.get("download_url", ""),
            download_time=data.get("download_time", ""),
            checksum=data.get("checksum", ""),
            repository=data.get("repository", ""),
        )

    def to_dict(self):
        return asdict(self)


@dataclass
class Registry:
    created_at: str
    updated_at: str
    packages: dict = field(default_factory=dict)

    def dependents_of(self, package):
        """Installed packages that declare `package` as a dependency."""
        return [name for name, pkg in self.packages.items()
                if name != package and package in pkg.dependencies]

    def owners_of(self, path, exclude=None):
        """Installed packages whose file list claims `path`."""
        return [name for name, pkg in self.packages.items()
                if name != exclude and path in pkg.files]

    def to_dict(self):
        return {
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "packages": {name: pkg.to_dict() for name, pkg in self.packages.items()},
        }


class RegistryStore:
    """Loads and saves the registry document at a fixed path."""

    def __init__(self, path, clock=_utcnow):
        self.path = path
        self._clock = clock

    def load(self):
        """Load the registry; a missing file yields an empty registry.

        Raises:
            ConfigError: If the document exists but is not valid.
        """
        if not os.path.exists(self.path):
            now = self._clock().isoformat()
            return Registry(created_at=now, updated_at=now)
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Invalid packages configuration: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("packages", {}), dict):
            raise ConfigError("Invalid packages configuration")
        for name, entry in data.get("packages", {}).items():
            if not isinstance(entry, dict):
                raise ConfigError(f"Invalid packages configuration: entry for {name} is not an object")

        now = self._clock().isoformat()
        return Registry(
            created_at=data.get("createdAt", now),
            updated_at=data.get("updatedAt", now),
            packages={name: InstalledPackage.from_dict(entry)
                      for name, entry in data.get("packages", {}).items()},
        )

    def save(self, registry):
        """Write the whole registry, stamping updatedAt."""
        registry.updated_at = self._clock().isoformat()
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(registry.to_dict(), f, indent=4)
                f.write("\n")
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug("Registry saved: %d package(s)", len(registry.packages))
