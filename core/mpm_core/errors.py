"""
errors.py — Error kinds and exception hierarchy for mpm_core.

Every failure raised out of the core is an MpmError carrying an explicit
ErrorKind. The boundary layer (HTTP app or CLI) maps the kind to a status
or exit code; the core never deals with either.
"""

import enum


class ErrorKind(enum.Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    LOCKED = "locked"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    DOWNLOAD_FAILED = "download_failed"
    SECURITY_VIOLATION = "security_violation"
    IO_ERROR = "io_error"
    INVALID_ARGUMENT = "invalid_argument"

    @property
    def status_code(self):
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 400,
    ErrorKind.LOCKED: 503,
    ErrorKind.CHECKSUM_MISMATCH: 503,
    ErrorKind.DOWNLOAD_FAILED: 503,
    ErrorKind.SECURITY_VIOLATION: 400,
    ErrorKind.IO_ERROR: 500,
    ErrorKind.INVALID_ARGUMENT: 400,
}


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class MpmError(Exception):
    """Base exception for package manager operations."""

    kind = ErrorKind.IO_ERROR

    def __init__(self, message, kind=None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    @property
    def status_code(self):
        return self.kind.status_code


class LockedError(MpmError):
    """Raised when another mutating operation holds the lock."""

    kind = ErrorKind.LOCKED


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class NotFoundError(MpmError):
    kind = ErrorKind.NOT_FOUND


class RepoNotFoundError(NotFoundError):
    """Raised when a repository name has no configured mirrors."""


class PackageNotFoundError(NotFoundError):
    """Raised when a package id is unknown to the repository database."""


class NotInstalledError(NotFoundError):
    """Raised when a package id is absent from the installed registry."""


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------

class ConflictError(MpmError):
    kind = ErrorKind.CONFLICT


class CircularDependencyError(ConflictError):
    """Raised when dependency resolution revisits a package on its own path."""

    def __init__(self, cycle):
        self.cycle = list(cycle)
        super().__init__(f"Circular dependency: {' -> '.join(self.cycle)}")


class DependentsExistError(ConflictError):
    """Raised when removing a package other installed packages depend on."""

    def __init__(self, package, dependents):
        self.package = package
        self.dependents = list(dependents)
        super().__init__(
            f"Cannot remove {package} - required by: {', '.join(self.dependents)}")


# ---------------------------------------------------------------------------
# Network / download
# ---------------------------------------------------------------------------

class DownloadFailedError(MpmError):
    """Raised when every mirror failed to deliver a usable artifact."""

    kind = ErrorKind.DOWNLOAD_FAILED


class RepoUnavailableError(DownloadFailedError):
    """Raised when no mirror served a valid database document."""


class ChecksumMismatchError(DownloadFailedError):
    """Raised when the last mirror tried served bytes with a wrong checksum."""

    kind = ErrorKind.CHECKSUM_MISMATCH


# ---------------------------------------------------------------------------
# Filesystem / archives
# ---------------------------------------------------------------------------

class SecurityViolationError(MpmError):
    """Raised when an archive entry would escape the target directory."""

    kind = ErrorKind.SECURITY_VIOLATION


class PackageIOError(MpmError):
    kind = ErrorKind.IO_ERROR


class ArchiveOpenError(PackageIOError):
    """Raised when an archive cannot be opened or read."""


class ConfigError(PackageIOError):
    """Raised when a configuration document is missing required structure."""


class InvalidArgumentError(MpmError):
    """Raised for malformed command usage."""

    kind = ErrorKind.INVALID_ARGUMENT


# ---------------------------------------------------------------------------
# Composite
# ---------------------------------------------------------------------------

class PackageSetError(MpmError):
    """Raised when a multi-package phase could not complete.

    Holds every failing package id and its error. The kind is taken from
    the first failure in processing order.
    """

    def __init__(self, summary, failures):
        self.summary = summary
        self.failures = dict(failures)
        lines = [f"{pkg}: {err}" for pkg, err in self.failures.items()]
        message = f"{summary}:\n  - " + "\n  - ".join(lines)
        first = next(iter(self.failures.values()), None)
        kind = first.kind if isinstance(first, MpmError) else None
        super().__init__(message, kind=kind)
