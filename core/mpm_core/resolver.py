"""
resolver.py — Dependency-first installation order.

Depth-first, post-order traversal over the latest version of each package.
A package already installed at the database's latest version is treated as
resolved without visiting its dependencies.
"""

from .errors import CircularDependencyError, PackageNotFoundError


def latest_entry(database, package):
    """Return (latest_version, version_info) for a package in the database.

    Raises:
        PackageNotFoundError: If the package or its latest version entry is missing.
    """
    if package not in database:
        raise PackageNotFoundError(f"Package not found: {package}")
    pkg_data = database[package]
    latest = pkg_data.get("latest", "")
    versions = pkg_data.get("versions", {})
    if latest not in versions:
        raise PackageNotFoundError(
            f"Package {package} has no entry for its latest version {latest!r}")
    return latest, versions[latest]


def resolve(requested, database, installed):
    """Compute the installation order for the requested packages.

    Args:
        requested: Package ids, in request order.
        database: Repository `packages` mapping.
        installed: Mapping of installed package id -> object or dict with a
                   version (InstalledPackage or raw registry entry).

    Returns:
        List of package ids to install; every dependency precedes its
        dependents. Empty when everything is already at latest.

    Raises:
        PackageNotFoundError: On an unknown package or dependency.
        CircularDependencyError: When a package depends on itself, directly
                                 or transitively.
    """
    order = []
    visiting = set()
    path = []
    processed = set()

    def _installed_version(name):
        entry = installed.get(name)
        if entry is None:
            return None
        if isinstance(entry, dict):
            return entry.get("version")
        return entry.version

    def _visit(name):
        if name not in database:
            raise PackageNotFoundError(f"Package not found: {name}")
        if name in visiting:
            raise CircularDependencyError(path + [name])
        if name in processed:
            return

        latest, info = latest_entry(database, name)
        if _installed_version(name) == latest:
            processed.add(name)
            return

        visiting.add(name)
        path.append(name)
        for dep in info.get("dependencies") or []:
            _visit(dep)
        path.pop()
        visiting.discard(name)

        processed.add(name)
        order.append(name)

    for name in requested:
        if name not in processed:
            _visit(name)
    return order
