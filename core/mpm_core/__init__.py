"""mpm_core — pure-stdlib package manager library: resolve, download, extract, commit."""

__version__ = "0.1.2"

from .config import MpmConfig
from .errors import (
    ErrorKind, MpmError, LockedError,
    NotFoundError, RepoNotFoundError, PackageNotFoundError, NotInstalledError,
    ConflictError, CircularDependencyError, DependentsExistError,
    DownloadFailedError, RepoUnavailableError, ChecksumMismatchError,
    SecurityViolationError, PackageIOError, ArchiveOpenError, ConfigError,
    InvalidArgumentError, PackageSetError,
)
from .lock import LockManager, LockRecord
from .repo_client import RepositoryClient
from .resolver import resolve
from .downloader import Downloader, DownloadMeta, verify_checksum
from .extractor import Extraction, extract
from .registry import InstalledPackage, Registry, RegistryStore
from .engine import PackageManager
from .commands import execute
