"""
engine.py — Install / upgrade / remove orchestration and read-only queries.

Mutating operations run under the project lock and follow the same phases:
resolve → download everything → extract everything → commit the registry
once. A failure before the commit undoes every extraction made by the call
and leaves the registry document untouched.
"""

import contextlib
import logging
import os
from datetime import datetime, timezone

from . import __version__
from .config import MpmConfig
from .downloader import Downloader
from .errors import (
    LockedError, MpmError, NotInstalledError, DependentsExistError,
    PackageIOError, PackageNotFoundError, PackageSetError,
)
from .extractor import extract, move_aside
from .lock import LockManager, MSG_LOCKED
from .registry import InstalledPackage, RegistryStore
from .repo_client import RepositoryClient
from .resolver import latest_entry, resolve

logger = logging.getLogger(__name__)

HELP_TEXT = """\
MPM - Mehr's Package Manager

USAGE: pkg <action> [options]

ACTIONS:
  add [PACKAGE ...]       Install packages with dependency resolution
  del <PACKAGE>           Remove a package (fails if dependencies exist)
  upgrade [PACKAGE]       Upgrade all packages or specific package to latest
  update                  Refresh repository cache
  list [FILTER]           List installed packages (optionally filter by name)
  search <KEYWORD>        Search packages by name/description
  info <PACKAGE>          Show package details and available versions
  unlock                  Force remove lock file (for manual recovery)
  help                    Show this help message
  version                 Show package manager version

EXAMPLES:
  pkg add users auth
  pkg search database
  pkg list
  pkg info users
  pkg del users
  pkg upgrade
  pkg unlock"""


def _utcnow():
    return datetime.now(timezone.utc)


class PackageManager:
    def __init__(self, config: MpmConfig, repo_client=None, downloader=None,
                 lock=None, store=None, clock=_utcnow):
        self.config = config
        self.root = config.root
        self.repo = config.repo
        self.repo_client = repo_client or RepositoryClient(
            config.load_repos(), timeout=config.metadata_timeout)
        self.downloader = downloader or Downloader(
            config.cache_dir, self.repo_client, timeout=config.download_timeout)
        self.lock = lock or LockManager(config.lock_file, config.lock_timeout)
        self.store = store or RegistryStore(config.packages_file)
        self._clock = clock

    @contextlib.contextmanager
    def _locked(self):
        self.lock.acquire()
        try:
            yield
        finally:
            self.lock.release()

    def _abs(self, rel):
        return os.path.join(self.root, *rel.split("/"))

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def install(self, packages):
        """Install packages and their dependencies. Returns a text summary."""
        with self._locked():
            output = []
            database = self.repo_client.fetch_database(self.repo)
            registry = self.store.load()

            for pkg in packages:
                if pkg not in database:
                    raise PackageNotFoundError(f"Package not found: {pkg}")
                current = registry.packages.get(pkg)
                if current is None:
                    continue
                latest = database[pkg].get("latest")
                if current.version == latest:
                    output.append(f"Package '{pkg}' is already installed (version {latest})")
                else:
                    output.append(f"Package '{pkg}' will be upgraded from "
                                  f"{current.version} to {latest}")

            to_install = resolve(packages, database, registry.packages)
            if not to_install:
                logger.info("Nothing to install for %s", ", ".join(packages))
                return "\n".join(output) or "Nothing to install"

            output.append("")
            output.append("Packages to install: " + ", ".join(to_install))
            output.append("")
            entries = self._apply(to_install, database, registry, output,
                                  failure="Failed to extract packages")

            output.append("")
            output.append(f"Successfully installed {len(entries)} package(s): "
                          + ", ".join(entries))
            return "\n".join(output)

    def upgrade(self, package=None):
        """Upgrade one installed package, or all of them, to latest."""
        with self._locked():
            registry = self.store.load()
            database = self.repo_client.fetch_database(self.repo)
            output = []

            if package:
                if package not in registry.packages:
                    raise NotInstalledError(f"Package not installed: {package}")
                scope = [package]
            else:
                scope = list(registry.packages)
            if not scope:
                return "No packages installed"

            outdated = []
            for pkg in scope:
                current = registry.packages[pkg]
                if pkg not in database:
                    output.append(f"Package no longer available in repository: {pkg}")
                    continue
                latest = database[pkg].get("latest")
                if current.version == latest:
                    output.append(f"{pkg} is up to date ({latest})")
                    continue
                output.append(f"Will upgrade {pkg} from {current.version} to {latest}")
                outdated.append(pkg)

            if not outdated:
                output.append("")
                output.append("All packages are up to date")
                return "\n".join(output)

            order = resolve(outdated, database, registry.packages)
            extra = [pkg for pkg in order if pkg not in outdated]
            if extra:
                output.append("Additional dependencies to install: " + ", ".join(extra))
            output.append("")
            entries = self._apply(order, database, registry, output,
                                  failure="Failed to extract package updates")

            output.append("")
            output.append(f"Successfully upgraded {len(entries)} package(s): "
                          + ", ".join(entries))
            return "\n".join(output)

    def remove(self, package):
        """Remove an installed package that nothing else depends on."""
        with self._locked():
            registry = self.store.load()
            if package not in registry.packages:
                raise NotInstalledError(f"Package not installed: {package}")

            dependents = registry.dependents_of(package)
            if dependents:
                raise DependentsExistError(package, dependents)

            entry = registry.packages[package]
            kept = [rel for rel in entry.files
                    if registry.owners_of(rel, exclude=package)]
            staged = move_aside(self.root, [rel for rel in entry.files if rel not in kept])
            removed = len(staged.replaced)

            del registry.packages[package]
            try:
                self.store.save(registry)
            except OSError as e:
                registry.packages[package] = entry
                staged.rollback(self.root)
                raise PackageIOError(f"Cannot write package registry: {e}") from e
            staged.finalize(self.root)
            removed_dirs = self._prune_dirs(entry.files)
            logger.info("Removed %s %s: %d file(s), %d dir(s)",
                        package, entry.version, removed, removed_dirs)

            msg = (f"Removed package: {package} (version {entry.version}) - "
                   f"{removed} files deleted")
            if removed_dirs > 0:
                msg += f", {removed_dirs} empty directories removed"
            if kept:
                msg += f", {len(kept)} shared files kept"
            return msg

    def _apply(self, order, database, registry, output, failure):
        """Download, extract and commit `order`. Returns the new entries.

        Raises:
            PackageSetError: If any download or extraction failed; the
                             filesystem is restored and nothing is committed.
        """
        output.append("Downloading packages...")
        downloads = self.downloader.download_all(order, database, self.repo)
        output.append("All packages downloaded and verified")
        output.append("")

        output.append("Extracting packages...")
        extractions = {}
        entries = {}
        failed = {}
        for pkg in order:
            version, info = latest_entry(database, pkg)
            meta = downloads[pkg]
            previous = registry.packages.get(pkg)
            try:
                result = extract(meta.zip_file, self.root,
                                 replaceable=previous.files if previous else ())
            except MpmError as e:
                logger.warning("Extraction of %s failed: %s", pkg, e)
                failed[pkg] = e
                continue
            except BaseException:
                self._rollback(extractions)
                raise

            extractions[pkg] = result
            output.extend(result.warnings)
            for rel in result.files:
                owners = registry.owners_of(rel, exclude=pkg)
                owners += [other for other, r in extractions.items()
                           if other != pkg and rel in r.files]
                if owners:
                    output.append(f"WARNING: {rel} is also claimed by: "
                                  + ", ".join(owners))

            entries[pkg] = InstalledPackage(
                version=version,
                installed_at=self._clock().isoformat(),
                dependencies=list(info.get("dependencies") or []),
                files=list(result.files),
                download_url=meta.url,
                download_time=meta.downloaded_at,
                checksum=meta.checksum,
                repository=meta.repository,
            )
            output.append(f"Extracted {pkg} ({version})")

        if failed:
            self._rollback(extractions)
            raise PackageSetError(failure, failed)

        output.append("")
        output.append("Registering packages...")
        stale = {}
        previous_entries = {}
        for pkg, entry in entries.items():
            previous = registry.packages.get(pkg)
            previous_entries[pkg] = previous
            if previous is not None:
                new_files = set(entry.files)
                stale[pkg] = [f for f in previous.files if f not in new_files]
            registry.packages[pkg] = entry
        try:
            self.store.save(registry)
        except OSError as e:
            for pkg, previous in previous_entries.items():
                if previous is None:
                    del registry.packages[pkg]
                else:
                    registry.packages[pkg] = previous
            self._rollback(extractions)
            raise PackageIOError(f"Cannot write package registry: {e}") from e

        for result in extractions.values():
            result.finalize(self.root)
        for pkg, files in stale.items():
            if files:
                self._delete_stale(files, registry, owner=pkg)
        logger.info("Committed %d package(s): %s", len(entries), ", ".join(entries))
        return entries

    def _rollback(self, extractions):
        # Later extractions may have moved files of earlier ones aside
        for pkg in reversed(list(extractions)):
            logger.info("Rolling back %s", pkg)
            extractions[pkg].rollback(self.root)

    def _delete_stale(self, files, registry, owner):
        """Delete files an upgrade left behind, once the registry is saved.

        Files another installed package claims are kept. The upgrade is
        already committed, so a file that cannot be deleted is only logged.
        """
        for rel in files:
            if registry.owners_of(rel, exclude=owner):
                continue
            path = self._abs(rel)
            if os.path.isfile(path) or os.path.islink(path):
                try:
                    os.unlink(path)
                except OSError as e:
                    logger.warning("Cannot delete stale file %s: %s", rel, e)
        self._prune_dirs(files)

    def _prune_dirs(self, files):
        """Remove the now-empty parent directories of files, deepest first.

        Returns:
            Number of directories removed.
        """
        directories = set()
        for rel in files:
            parent = rel.rpartition("/")[0]
            while parent:
                directories.add(parent)
                parent = parent.rpartition("/")[0]

        removed_dirs = 0
        for rel_dir in sorted(directories, key=lambda d: d.count("/"), reverse=True):
            path = self._abs(rel_dir)
            if not os.path.isdir(path) or os.listdir(path):
                continue
            try:
                os.rmdir(path)
                removed_dirs += 1
            except OSError as e:
                logger.warning("Cannot remove directory %s: %s", rel_dir, e)
        return removed_dirs

    # ------------------------------------------------------------------
    # Read-only operations
    # ------------------------------------------------------------------

    def refresh(self):
        """Fetch the repository database and report its size."""
        if self.lock.is_locked():
            raise LockedError(MSG_LOCKED.format(path=self.lock.lock_path))
        database = self.repo_client.fetch_database(self.repo)
        return f"Repository cache refreshed - {len(database)} packages available"

    def list_installed(self, name_filter=None):
        registry = self.store.load()
        if not registry.packages:
            return "No packages installed"

        output = ["Installed packages:", ""]
        for name, pkg in registry.packages.items():
            if name_filter and name_filter.lower() not in name.lower():
                continue
            deps = (f" (depends: {', '.join(pkg.dependencies)})"
                    if pkg.dependencies else "")
            output.append("  %-20s  v%-10s  installed: %s%s"
                          % (name, pkg.version, pkg.installed_at[:10], deps))
        return "\n".join(output)

    def search(self, keyword):
        database = self.repo_client.fetch_database(self.repo)
        registry = self.store.load()
        needle = keyword.lower()

        results = []
        matches = 0
        for pkg, data in database.items():
            haystack = " ".join([pkg, data.get("name") or "",
                                 data.get("description") or ""]).lower()
            if needle not in haystack:
                continue
            matches += 1
            installed = " [installed]" if pkg in registry.packages else ""
            results.append("  %-20s  v%-10s  %s%s"
                           % (pkg, data.get("latest", ""), data.get("name") or pkg, installed))
            if data.get("description"):
                results.append(f"    {data['description']}")

        if not results:
            return f"No packages found matching: {keyword}"
        plural = "package" if matches == 1 else "packages"
        return "\n".join([f"Found {matches} {plural}:", ""] + results)

    def info(self, package):
        database = self.repo_client.fetch_database(self.repo)
        registry = self.store.load()
        if package not in database:
            raise PackageNotFoundError(f"Package not found: {package}")

        data = database[package]
        output = [
            f"Package: {data.get('name') or package}",
            f"ID: {package}",
            f"Latest: {data.get('latest', '')}",
            f"Description: {data.get('description', '')}",
        ]
        if "author" in data:
            output.append(f"Author: {data['author']}")
        if "license" in data:
            output.append(f"License: {data['license']}")

        output.append("")
        installed = registry.packages.get(package)
        if installed is not None:
            output.append(f"Installed: v{installed.version} (on {installed.installed_at})")
            if installed.dependencies:
                output.append(f"Dependencies: {', '.join(installed.dependencies)}")
        else:
            output.append("Status: Not installed")

        output.append("")
        output.append("Available versions:")
        for version, vdata in data.get("versions", {}).items():
            deps = vdata.get("dependencies") or []
            requires = f" (requires: {', '.join(deps)})" if deps else ""
            output.append(f"  v{version} - released: {vdata.get('released_at', '')}{requires}")
        return "\n".join(output)

    def unlock(self):
        self.lock.force_unlock()
        return "Lock removed"

    def help(self):
        return HELP_TEXT

    def version(self):
        return f"MPM - Mehr's Package Manager v{__version__}"
